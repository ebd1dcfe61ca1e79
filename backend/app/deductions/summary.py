from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from backend.app.insights.schema import TransactionRecord

from .rules_engine import DEFAULT_MIN_CONFIDENCE, match_deduction_rules, round_currency
from .types import (
    DeductionCategory,
    DeductionContext,
    DeductionSummary,
    DeductionSummaryResult,
)

DEFAULT_TAX_RATE = 0.25


@dataclass
class _Aggregate:
    category: DeductionCategory
    total_spend: float = 0.0
    potential_deduction: float = 0.0
    transaction_ids: List[str] = field(default_factory=list)
    merchant_counts: Counter = field(default_factory=Counter)
    confidence_total: float = 0.0
    match_count: int = 0


def normalize_tax_rate(tax_rate: Optional[float]) -> float:
    """
    None (or NaN) falls back to the 25% default; an explicit 0 is kept.
    Values above 1 are read as percentages.
    """
    if tax_rate is None:
        return DEFAULT_TAX_RATE
    rate = float(tax_rate)
    if math.isnan(rate):
        return DEFAULT_TAX_RATE
    if rate > 1:
        rate = rate / 100
    return min(max(rate, 0.0), 1.0)


def format_category_label(category: DeductionCategory) -> str:
    return " ".join(chunk.capitalize() for chunk in category.value.split("_"))


def format_currency(value: float) -> str:
    return f"${value:,.2f}"


def _top_merchant(counts: Counter) -> Optional[str]:
    # Counter.most_common keeps first-seen order among ties.
    top = counts.most_common(1)
    return top[0][0] if top else None


def _suggestion(aggregate: _Aggregate, total_spend: float) -> str:
    count = len(aggregate.transaction_ids)
    merchant = _top_merchant(aggregate.merchant_counts)
    noun = "transaction" if count == 1 else "transactions"
    subject = f"{count} {merchant} {noun}" if merchant else f"{count} {noun}"
    return (
        f"Your {subject} totaling {format_currency(total_spend)} may be deductible as "
        f"{format_category_label(aggregate.category)}."
    )


def build_deduction_summary(
    transactions: Iterable[TransactionRecord],
    context: Optional[DeductionContext] = None,
    *,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
) -> DeductionSummaryResult:
    """
    Roll rule matches up into per-category deduction candidates.

    Only the best match of each transaction counts, so one purchase never
    lands in two categories.
    """
    ctx = context or DeductionContext()
    tax_rate = normalize_tax_rate(ctx.estimated_tax_rate)
    aggregates: Dict[DeductionCategory, _Aggregate] = {}

    for txn in transactions:
        matches = match_deduction_rules(txn, ctx, min_confidence=min_confidence)
        if not matches:
            continue
        best = matches[0]
        aggregate = aggregates.setdefault(best.category, _Aggregate(category=best.category))
        aggregate.total_spend += best.amount
        aggregate.potential_deduction += best.potential_deduction
        aggregate.transaction_ids.append(txn.id)
        aggregate.confidence_total += best.confidence
        aggregate.match_count += 1
        if txn.merchant:
            aggregate.merchant_counts[txn.merchant] += 1

    deductions: List[DeductionSummary] = []
    for aggregate in aggregates.values():
        total_spend = round_currency(aggregate.total_spend)
        potential = round_currency(aggregate.potential_deduction)
        deductions.append(
            DeductionSummary(
                category=aggregate.category,
                potential_deduction=potential,
                estimated_savings=round_currency(potential * tax_rate),
                transactions=list(aggregate.transaction_ids),
                suggestion=_suggestion(aggregate, total_spend),
                confidence=round(aggregate.confidence_total / aggregate.match_count, 2),
                total_spend=total_spend,
            )
        )

    deductions.sort(key=lambda d: -d.potential_deduction)
    return DeductionSummaryResult(
        deductions=deductions,
        total_potential_deduction=round_currency(sum(d.potential_deduction for d in deductions)),
        estimated_tax_savings=round_currency(sum(d.estimated_savings for d in deductions)),
        tax_rate_used=tax_rate,
    )
