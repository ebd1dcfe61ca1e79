from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Optional, Sequence

from backend.app.insights.schema import TransactionRecord

from .rules import CONTEXT_ADJUSTMENTS, DEDUCTION_RULES
from .types import DeductionContext, DeductionMatch, DeductionRule

DEFAULT_MIN_CONFIDENCE = 0.45
MAX_CONFIDENCE = 0.95

COVERAGE_WEIGHT = 0.4
MERCHANT_BONUS = 0.1
MULTI_DESCRIPTION_BONUS = 0.05


@dataclass(frozen=True)
class KeywordStats:
    matched_keywords: List[str]
    merchant_matches: int
    description_matches: int
    coverage: float


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def round_currency(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def parse_amount(value: object) -> float:
    try:
        amount = float(Decimal(str(value)))
    except (InvalidOperation, ValueError, TypeError):
        return 0.0
    return amount if amount == amount else 0.0


def is_rule_eligible(rule: DeductionRule, context: DeductionContext) -> bool:
    return not any(context.flag(requirement) is False for requirement in rule.requires)


def score_keyword_matches(rule: DeductionRule, merchant: str, description: str) -> KeywordStats:
    matched: List[str] = []
    merchant_matches = 0
    description_matches = 0

    for keyword in rule.keywords:
        needle = keyword.lower()
        hit = False
        if needle in merchant:
            merchant_matches += 1
            hit = True
        if needle in description:
            description_matches += 1
            hit = True
        if hit and needle not in matched:
            matched.append(needle)

    coverage = len(matched) / len(rule.keywords) if rule.keywords else 0.0
    return KeywordStats(
        matched_keywords=matched,
        merchant_matches=merchant_matches,
        description_matches=description_matches,
        coverage=coverage,
    )


def calculate_confidence(rule: DeductionRule, stats: KeywordStats, context: DeductionContext) -> float:
    """
    confidence = base + coverage * 0.4
                 + 0.1 if any keyword hit the merchant
                 + 0.05 if more than one keyword hit the description
                 + per-category context adjustment
    clamped to [0, 0.95].
    """
    confidence = rule.base_confidence + stats.coverage * COVERAGE_WEIGHT
    if stats.merchant_matches > 0:
        confidence += MERCHANT_BONUS
    if stats.description_matches > 1:
        confidence += MULTI_DESCRIPTION_BONUS
    confidence += CONTEXT_ADJUSTMENTS[rule.category](context)
    return round(_clamp(confidence, 0.0, MAX_CONFIDENCE), 4)


def match_deduction_rules(
    transaction: TransactionRecord,
    context: Optional[DeductionContext] = None,
    *,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    rules: Sequence[DeductionRule] = DEDUCTION_RULES,
) -> List[DeductionMatch]:
    """
    Score one transaction against the rule table.

    Returns every eligible rule whose confidence clears `min_confidence`,
    highest confidence first (rule table order breaks ties).
    """
    ctx = context or DeductionContext()
    merchant = (transaction.merchant or "").lower()
    description = (transaction.description or "").lower()
    if not merchant and not description:
        return []

    amount = parse_amount(transaction.total_amount)
    matches: List[DeductionMatch] = []
    for rule in rules:
        if not is_rule_eligible(rule, ctx):
            continue
        stats = score_keyword_matches(rule, merchant, description)
        if not stats.matched_keywords:
            continue
        confidence = calculate_confidence(rule, stats, ctx)
        if confidence < min_confidence:
            continue
        matches.append(
            DeductionMatch(
                transaction_id=transaction.id,
                category=rule.category,
                rule_id=rule.id,
                confidence=confidence,
                deduction_percent=rule.deduction_percent,
                irs_category=rule.irs_category,
                matched_keywords=stats.matched_keywords,
                amount=amount,
                potential_deduction=round_currency(amount * rule.deduction_percent),
                merchant=transaction.merchant,
                description=transaction.description,
            )
        )

    return sorted(matches, key=lambda m: -m.confidence)
