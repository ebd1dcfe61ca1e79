from .config import DEFAULT_CONFIG, InsightConfig
from .fingerprint import fingerprint, normalize_merchant
from .schema import (
    InsightCandidate,
    InsightExplanation,
    InsightType,
    StoredInsight,
    ThresholdCheck,
    TransactionRecord,
)

__all__ = [
    "DEFAULT_CONFIG",
    "InsightCandidate",
    "InsightConfig",
    "InsightExplanation",
    "InsightType",
    "StoredInsight",
    "ThresholdCheck",
    "TransactionRecord",
    "fingerprint",
    "normalize_merchant",
]
