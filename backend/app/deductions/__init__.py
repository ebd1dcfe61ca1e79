from .types import (
    DeductionCategory,
    DeductionContext,
    DeductionMatch,
    DeductionRule,
    DeductionSummary,
    DeductionSummaryResult,
)

__all__ = [
    "DeductionCategory",
    "DeductionContext",
    "DeductionMatch",
    "DeductionRule",
    "DeductionSummary",
    "DeductionSummaryResult",
]
