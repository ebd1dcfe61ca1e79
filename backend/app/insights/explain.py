"""
Explanation builder.

Turns the evidence a detector already computed into the "Why am I seeing this?"
payload. Builders only format; they never recompute a number, so the rendered
explanation cannot drift from the decision that produced the insight.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from .config import DEFAULT_CONFIG, InsightConfig
from .schema import InsightExplanation, InsightType, ThresholdCheck


def _money(value: float) -> str:
    return f"${value:,.2f}"


def _money_whole(value: float) -> str:
    return f"${value:,.0f}"


def _money_short(value: float) -> str:
    return f"${value:g}"


def _pct(rate: float) -> str:
    return f"{rate * 100:.1f}%"


def _quiet_leak(evidence: Dict[str, Any], config: InsightConfig) -> InsightExplanation:
    t = config.quiet_leak
    merchant = evidence["merchant"]
    return InsightExplanation(
        reason=f"You have recurring small purchases at {merchant} that add up over time.",
        thresholds=[
            ThresholdCheck("occurrences", evidence["count"], t.min_occurrences),
            ThresholdCheck("cumulative total", _money(evidence["total"]), _money_short(t.min_cumulative_total)),
            ThresholdCheck(
                "individual amount",
                f"≤{_money(evidence['max_amount'])}",
                f"≤{_money_short(t.max_individual_amount)}",
            ),
        ],
        suggestion=(
            f"Consider whether these frequent purchases at {merchant} are necessary, "
            "or if you could reduce them."
        ),
    )


def _tax_drag(evidence: Dict[str, Any], config: InsightConfig) -> InsightExplanation:
    t = config.tax_drag
    merchant = evidence["merchant"]
    return InsightExplanation(
        reason=(
            f"Purchases at {merchant} carry an effective tax rate of {_pct(evidence['effective_rate'])}, "
            f"above the {_pct(t.min_tax_rate)} level you would usually expect."
        ),
        thresholds=[
            ThresholdCheck("effective tax rate", _pct(evidence["effective_rate"]), _pct(t.min_tax_rate)),
            ThresholdCheck("total spent", _money_whole(evidence["total_spent"]), _money_short(t.min_total_spent)),
        ],
        suggestion=(
            f"Check whether {merchant} charges extra taxes or fees, or whether a "
            "lower-tax alternative exists for these purchases."
        ),
    )


def _spike(evidence: Dict[str, Any], config: InsightConfig) -> InsightExplanation:
    t = config.spike
    merchant = evidence["merchant"]
    if evidence.get("kind") == "month_over_month":
        return InsightExplanation(
            reason=(
                f"Spending at {merchant} in {evidence['month']} rose sharply compared to "
                f"{evidence['prior_month']}."
            ),
            thresholds=[
                ThresholdCheck(
                    "month-over-month increase",
                    f"{evidence['percent_increase']:.0f}%",
                    f"{t.month_over_month_pct:g}%",
                ),
                ThresholdCheck(
                    "monthly total",
                    _money(evidence["current_total"]),
                    _money(evidence["prior_total"]),
                ),
            ],
            suggestion=f"Review recent charges at {merchant} to confirm the increase is expected.",
        )

    return InsightExplanation(
        reason=f"This purchase at {merchant} is much larger than your average transaction.",
        thresholds=[
            ThresholdCheck("multiplier vs average", f"{evidence['multiplier']:.1f}x", f"{t.average_multiplier:g}x"),
            ThresholdCheck("amount", _money(evidence["amount"]), _money(evidence["average"] * t.average_multiplier)),
        ],
        suggestion="Verify this charge is correct and expected.",
    )


def _duplicate(evidence: Dict[str, Any], config: InsightConfig) -> InsightExplanation:
    t = config.duplicate
    merchant = evidence["merchant"]
    return InsightExplanation(
        reason=f"Two charges of the same amount at {merchant} landed close together.",
        thresholds=[
            ThresholdCheck("time between charges", f"{evidence['hours_apart']:.1f}h", f"{t.window_hours:g}h"),
            ThresholdCheck("matching amount", _money(evidence["amount"]), _money(evidence["amount"])),
        ],
        suggestion=f"Check your statement to make sure {merchant} did not bill you twice.",
    )


def _deduction(evidence: Dict[str, Any], config: InsightConfig) -> InsightExplanation:
    label = evidence["category_label"]
    return InsightExplanation(
        reason=f"Some of your transactions look like {label} expenses, which may be tax deductible.",
        thresholds=[
            ThresholdCheck("confidence", f"{evidence['confidence']:.0%}", f"{evidence['min_confidence']:.0%}"),
            ThresholdCheck("potential deduction", _money(evidence["potential_deduction"]), _money(0)),
        ],
        suggestion="Keep the receipts for these transactions and confirm eligibility with your tax advisor.",
    )


_BUILDERS: Dict[InsightType, Callable[[Dict[str, Any], InsightConfig], InsightExplanation]] = {
    InsightType.QUIET_LEAK: _quiet_leak,
    InsightType.TAX_DRAG: _tax_drag,
    InsightType.SPIKE: _spike,
    InsightType.DUPLICATE: _duplicate,
    InsightType.DEDUCTION: _deduction,
}


def build_explanation(
    insight_type: InsightType,
    evidence: Dict[str, Any],
    config: InsightConfig = DEFAULT_CONFIG,
) -> InsightExplanation:
    return _BUILDERS[insight_type](evidence, config)


def _is_threshold_value(value: Any) -> bool:
    return isinstance(value, (int, float, str)) and not isinstance(value, bool)


def parse_explanation(value: Any) -> Optional[InsightExplanation]:
    """Rebuild an explanation from stored JSON, dropping malformed threshold rows."""
    if not isinstance(value, dict):
        return None
    reason = value.get("reason")
    if not isinstance(reason, str):
        return None

    raw_thresholds = value.get("thresholds")
    thresholds: List[ThresholdCheck] = []
    for entry in raw_thresholds if isinstance(raw_thresholds, list) else []:
        if not isinstance(entry, dict):
            continue
        name = entry.get("name")
        actual = entry.get("actual")
        threshold = entry.get("threshold")
        if not isinstance(name, str) or not _is_threshold_value(actual) or not _is_threshold_value(threshold):
            continue
        thresholds.append(ThresholdCheck(name, actual, threshold))

    suggestion = value.get("suggestion")
    return InsightExplanation(
        reason=reason,
        thresholds=thresholds,
        suggestion=suggestion if isinstance(suggestion, str) else None,
    )
