from __future__ import annotations

import math
from typing import List, Optional

from backend.app.insights.config import DEFAULT_CONFIG, InsightConfig
from backend.app.insights.explain import build_explanation
from backend.app.insights.fingerprint import fingerprint
from backend.app.insights.schema import InsightCandidate, InsightType, TransactionRecord

from .rules_engine import DEFAULT_MIN_CONFIDENCE
from .summary import build_deduction_summary, format_category_label, format_currency
from .types import DeductionContext


def detect_deduction_insights(
    txns: List[TransactionRecord],
    config: InsightConfig = DEFAULT_CONFIG,
    context: Optional[DeductionContext] = None,
) -> List[InsightCandidate]:
    """
    One DEDUCTION insight per category in the deduction summary.

    severity = ceil(estimated_savings / 100), kept within [1, max_severity]
    """
    summary = build_deduction_summary(txns, context)

    candidates: List[InsightCandidate] = []
    for deduction in summary.deductions:
        label = format_category_label(deduction.category)
        grouping_key = deduction.category.value
        severity = min(config.max_severity, max(1, math.ceil(deduction.estimated_savings / 100)))
        evidence = {
            "category_label": label,
            "potential_deduction": deduction.potential_deduction,
            "estimated_savings": deduction.estimated_savings,
            "confidence": deduction.confidence,
            "min_confidence": DEFAULT_MIN_CONFIDENCE,
        }
        candidates.append(
            InsightCandidate(
                type=InsightType.DEDUCTION,
                title=f"Potential {label} deduction: {format_currency(deduction.potential_deduction)}",
                summary=(
                    f"{deduction.suggestion} Estimated tax savings: "
                    f"{format_currency(deduction.estimated_savings)}."
                ),
                severity_score=severity,
                supporting_transaction_ids=list(deduction.transactions),
                grouping_key=grouping_key,
                fingerprint=fingerprint(InsightType.DEDUCTION, grouping_key),
                explanation=build_explanation(InsightType.DEDUCTION, evidence, config),
            )
        )
    return candidates
