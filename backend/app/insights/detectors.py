from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from backend.app.deductions.insights import detect_deduction_insights
from backend.app.deductions.types import DeductionContext

from .config import DEFAULT_CONFIG, InsightConfig
from .explain import build_explanation
from .fingerprint import fingerprint, merchant_label, normalize_merchant
from .schema import InsightCandidate, InsightType, TransactionRecord


@dataclass(frozen=True)
class DetectorRunResult:
    detector_id: str
    insight_type: str
    ran: bool
    skipped_reason: Optional[str]
    fired: bool
    candidate_count: int
    max_severity: Optional[int]


@dataclass(frozen=True)
class DetectorRunSummary:
    candidates: List[InsightCandidate]
    detectors: List[DetectorRunResult]


@dataclass(frozen=True)
class DetectorDefinition:
    detector_id: str
    insight_type: InsightType
    runner: Callable[..., List[InsightCandidate]]
    needs_context: bool = False


def clamp_severity(raw: float, config: InsightConfig = DEFAULT_CONFIG) -> int:
    if math.isnan(raw):
        return 0
    return int(max(0, min(config.max_severity, math.floor(raw))))


def _amount(value: Optional[Decimal]) -> float:
    return float(value or 0.0)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _ordered(txns: Iterable[TransactionRecord]) -> List[TransactionRecord]:
    return sorted(txns, key=lambda t: (_as_utc(t.date), t.id))


def _group_by_merchant(
    txns: Iterable[TransactionRecord],
) -> Tuple[Dict[str, List[TransactionRecord]], Dict[str, str]]:
    groups: Dict[str, List[TransactionRecord]] = {}
    labels: Dict[str, str] = {}
    for txn in _ordered(txns):
        key = normalize_merchant(txn.merchant)
        labels.setdefault(key, merchant_label(txn.merchant))
        groups.setdefault(key, []).append(txn)
    return groups, labels


def _candidate(
    insight_type: InsightType,
    grouping_key: str,
    *,
    title: str,
    summary: str,
    severity: int,
    txns: Sequence[TransactionRecord],
    evidence: Dict[str, object],
    config: InsightConfig,
) -> InsightCandidate:
    return InsightCandidate(
        type=insight_type,
        title=title,
        summary=summary,
        severity_score=severity,
        supporting_transaction_ids=[t.id for t in txns],
        grouping_key=grouping_key,
        fingerprint=fingerprint(insight_type, grouping_key),
        explanation=build_explanation(insight_type, evidence, config),
    )


def detect_quiet_leaks(
    txns: List[TransactionRecord],
    config: InsightConfig = DEFAULT_CONFIG,
) -> List[InsightCandidate]:
    """
    Quiet leak: many small purchases at one merchant adding up.

    Qualifies when:
      count >= min_occurrences, every member <= max_individual_amount
      and sum >= min_cumulative_total
    Severity:
      floor(sum / severity_divisor), clamped to [0, max_severity]
    """
    t = config.quiet_leak
    groups, labels = _group_by_merchant(txns)

    candidates: List[InsightCandidate] = []
    for key in sorted(groups):
        group = groups[key]
        if len(group) < t.min_occurrences:
            continue
        if any(_amount(txn.total_amount) > t.max_individual_amount for txn in group):
            continue
        total = sum(_amount(txn.total_amount) for txn in group)
        if total < t.min_cumulative_total:
            continue

        merchant = labels[key]
        count = len(group)
        evidence = {
            "merchant": merchant,
            "count": count,
            "total": round(total, 2),
            "max_amount": max(_amount(txn.total_amount) for txn in group),
        }
        candidates.append(
            _candidate(
                InsightType.QUIET_LEAK,
                key,
                title=f"Quiet Leak: {merchant}",
                summary=f"{count} purchases totaling ${total:,.2f}",
                severity=clamp_severity(total / t.severity_divisor, config),
                txns=group,
                evidence=evidence,
                config=config,
            )
        )
    return candidates


def detect_tax_drag(
    txns: List[TransactionRecord],
    config: InsightConfig = DEFAULT_CONFIG,
) -> List[InsightCandidate]:
    """
    Tax drag: merchants whose effective tax rate is unusually high.

    Formula:
      effective_rate = sum(tax_amount) / sum(total_amount)
    Qualifies when:
      effective_rate > min_tax_rate and sum(total_amount) >= min_total_spent
    Severity:
      floor(round(effective_rate - baseline_rate, 4) * severity_multiplier)
    """
    t = config.tax_drag
    groups, labels = _group_by_merchant(txns)

    candidates: List[InsightCandidate] = []
    for key in sorted(groups):
        group = groups[key]
        total_spent = sum(_amount(txn.total_amount) for txn in group)
        if total_spent <= 0 or total_spent < t.min_total_spent:
            continue
        total_tax = sum(_amount(txn.tax_amount) for txn in group)
        effective_rate = total_tax / total_spent
        if effective_rate <= t.min_tax_rate:
            continue

        # 0.12 - 0.08 is 0.03999... in binary floating point.
        diff = round(effective_rate - t.baseline_rate, 4)
        merchant = labels[key]
        evidence = {
            "merchant": merchant,
            "effective_rate": effective_rate,
            "total_spent": total_spent,
            "total_tax": round(total_tax, 2),
        }
        candidates.append(
            _candidate(
                InsightType.TAX_DRAG,
                key,
                title=f"High Tax: {merchant}",
                summary=f"{effective_rate * 100:.1f}% effective rate on ${total_spent:,.0f}",
                severity=clamp_severity(diff * t.severity_multiplier, config),
                txns=group,
                evidence=evidence,
                config=config,
            )
        )
    return candidates


def _month_key(value: datetime) -> str:
    return _as_utc(value).strftime("%Y-%m")


def _previous_month(month: str) -> str:
    year, mon = (int(part) for part in month.split("-"))
    if mon == 1:
        return f"{year - 1:04d}-12"
    return f"{year:04d}-{mon - 1:02d}"


def _detect_outliers(
    txns: List[TransactionRecord],
    config: InsightConfig,
) -> List[InsightCandidate]:
    t = config.spike
    if not txns:
        return []
    average = sum(_amount(txn.total_amount) for txn in txns) / len(txns)
    if average <= 0:
        return []

    candidates: List[InsightCandidate] = []
    for txn in _ordered(txns):
        amount = _amount(txn.total_amount)
        if amount <= average * t.average_multiplier:
            continue
        multiplier = amount / average
        merchant = merchant_label(txn.merchant)
        grouping_key = f"{normalize_merchant(txn.merchant)}|{_as_utc(txn.date).date().isoformat()}|{amount:.2f}"
        evidence = {
            "kind": "outlier",
            "merchant": merchant,
            "amount": amount,
            "average": average,
            "multiplier": multiplier,
        }
        candidates.append(
            _candidate(
                InsightType.SPIKE,
                grouping_key,
                title=f"Unusual: {merchant}",
                summary=f"${amount:,.0f} ({multiplier:.1f}x your average)",
                severity=clamp_severity((multiplier - 1) * t.severity_multiplier, config),
                txns=[txn],
                evidence=evidence,
                config=config,
            )
        )
    return candidates


def _detect_month_over_month(
    txns: List[TransactionRecord],
    config: InsightConfig,
) -> List[InsightCandidate]:
    t = config.spike
    groups, labels = _group_by_merchant(txns)

    candidates: List[InsightCandidate] = []
    for key in sorted(groups):
        by_month: Dict[str, List[TransactionRecord]] = {}
        for txn in groups[key]:
            by_month.setdefault(_month_key(txn.date), []).append(txn)

        for month in sorted(by_month):
            prior_month = _previous_month(month)
            if prior_month not in by_month:
                continue
            prior_total = sum(_amount(txn.total_amount) for txn in by_month[prior_month])
            if prior_total <= 0:
                continue
            current_total = sum(_amount(txn.total_amount) for txn in by_month[month])
            percent_increase = (current_total - prior_total) / prior_total * 100
            if percent_increase <= t.month_over_month_pct:
                continue

            merchant = labels[key]
            evidence = {
                "kind": "month_over_month",
                "merchant": merchant,
                "month": month,
                "prior_month": prior_month,
                "current_total": round(current_total, 2),
                "prior_total": round(prior_total, 2),
                "percent_increase": percent_increase,
            }
            candidates.append(
                _candidate(
                    InsightType.SPIKE,
                    f"{key}|{month}",
                    title=f"Spending up: {merchant}",
                    summary=(
                        f"${current_total:,.2f} in {month}, up {percent_increase:.0f}% "
                        f"from ${prior_total:,.2f} in {prior_month}"
                    ),
                    severity=clamp_severity(
                        (percent_increase - t.month_over_month_pct) / t.month_over_month_divisor,
                        config,
                    ),
                    txns=by_month[month],
                    evidence=evidence,
                    config=config,
                )
            )
    return candidates


def detect_spikes(
    txns: List[TransactionRecord],
    config: InsightConfig = DEFAULT_CONFIG,
) -> List[InsightCandidate]:
    """
    Spending spikes.

    Outliers:
      average = mean(total_amount) over the window
      outlier when amount > average_multiplier * average
      severity = floor((amount / average - 1) * severity_multiplier)
    Month over month, per merchant:
      pct = (month_total - prior_month_total) / prior_month_total * 100
      flagged when pct > month_over_month_pct
      severity = floor((pct - month_over_month_pct) / month_over_month_divisor)
    """
    return _detect_outliers(txns, config) + _detect_month_over_month(txns, config)


def detect_duplicates(
    txns: List[TransactionRecord],
    config: InsightConfig = DEFAULT_CONFIG,
) -> List[InsightCandidate]:
    """
    Likely duplicate charges: same merchant and amount within the window.

    Each transaction is paired at most once. Transactions without a merchant
    are never compared.
    """
    t = config.duplicate
    window_seconds = t.window_hours * 3600

    buckets: Dict[Tuple[str, int], List[TransactionRecord]] = {}
    for txn in _ordered(txns):
        if not txn.merchant or not txn.merchant.strip():
            continue
        cents = int(round(_amount(txn.total_amount) * 100))
        buckets.setdefault((normalize_merchant(txn.merchant), cents), []).append(txn)

    candidates: List[InsightCandidate] = []
    for merchant_key, cents in sorted(buckets):
        group = buckets[(merchant_key, cents)]
        if len(group) < 2:
            continue
        paired: set[str] = set()
        for i, first in enumerate(group):
            if first.id in paired:
                continue
            for second in group[i + 1:]:
                if second.id in paired:
                    continue
                gap = (_as_utc(second.date) - _as_utc(first.date)).total_seconds()
                if gap > window_seconds:
                    break
                paired.update({first.id, second.id})
                amount = cents / 100
                merchant = merchant_label(first.merchant)
                grouping_key = f"{merchant_key}|{amount:.2f}|{_as_utc(first.date).isoformat()}"
                evidence = {
                    "merchant": merchant,
                    "amount": amount,
                    "hours_apart": gap / 3600,
                }
                candidates.append(
                    _candidate(
                        InsightType.DUPLICATE,
                        grouping_key,
                        title=f"Possible Duplicate: {merchant}",
                        summary=f"${amount:,.2f} charged twice within {t.window_hours:g}h",
                        severity=clamp_severity(t.severity, config),
                        txns=[first, second],
                        evidence=evidence,
                        config=config,
                    )
                )
                break
    return candidates


def dedupe_candidates(candidates: Iterable[InsightCandidate]) -> List[InsightCandidate]:
    seen: set[Tuple[str, str]] = set()
    unique: List[InsightCandidate] = []
    for candidate in candidates:
        if candidate.key in seen:
            continue
        seen.add(candidate.key)
        unique.append(candidate)
    return unique


DETECTOR_DEFINITIONS: List[DetectorDefinition] = [
    DetectorDefinition("detect_quiet_leaks", InsightType.QUIET_LEAK, detect_quiet_leaks),
    DetectorDefinition("detect_tax_drag", InsightType.TAX_DRAG, detect_tax_drag),
    DetectorDefinition("detect_spikes", InsightType.SPIKE, detect_spikes),
    DetectorDefinition("detect_duplicates", InsightType.DUPLICATE, detect_duplicates),
    DetectorDefinition(
        "detect_deduction_insights",
        InsightType.DEDUCTION,
        detect_deduction_insights,
        needs_context=True,
    ),
]


def _run_one(
    detector: DetectorDefinition,
    txns: List[TransactionRecord],
    config: InsightConfig,
    context: Optional[DeductionContext],
) -> List[InsightCandidate]:
    if detector.needs_context:
        return detector.runner(txns, config, context)
    return detector.runner(txns, config)


def run_detectors_with_summary(
    txns: Sequence[TransactionRecord],
    config: InsightConfig = DEFAULT_CONFIG,
    *,
    context: Optional[DeductionContext] = None,
    max_workers: int = 1,
) -> DetectorRunSummary:
    window = list(txns)
    active: List[DetectorDefinition] = []
    detector_results: List[DetectorRunResult] = []
    for detector in DETECTOR_DEFINITIONS:
        if detector.insight_type is InsightType.DEDUCTION and not config.include_deductions:
            detector_results.append(
                DetectorRunResult(
                    detector_id=detector.detector_id,
                    insight_type=detector.insight_type.value,
                    ran=False,
                    skipped_reason="disabled",
                    fired=False,
                    candidate_count=0,
                    max_severity=None,
                )
            )
            continue
        active.append(detector)

    if max_workers > 1 and len(active) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [pool.submit(_run_one, d, window, config, context) for d in active]
            outputs = [future.result() for future in futures]
    else:
        outputs = [_run_one(d, window, config, context) for d in active]

    all_candidates: List[InsightCandidate] = []
    for detector, candidates in zip(active, outputs):
        detector_results.append(
            DetectorRunResult(
                detector_id=detector.detector_id,
                insight_type=detector.insight_type.value,
                ran=True,
                skipped_reason=None,
                fired=bool(candidates),
                candidate_count=len(candidates),
                max_severity=max((c.severity_score for c in candidates), default=None),
            )
        )
        all_candidates.extend(candidates)

    ordered_detectors = sorted(detector_results, key=lambda d: (d.insight_type, d.detector_id))
    return DetectorRunSummary(candidates=dedupe_candidates(all_candidates), detectors=ordered_detectors)


def run_detectors(
    txns: Sequence[TransactionRecord],
    config: InsightConfig = DEFAULT_CONFIG,
    *,
    context: Optional[DeductionContext] = None,
    max_workers: int = 1,
) -> List[InsightCandidate]:
    return run_detectors_with_summary(
        txns,
        config,
        context=context,
        max_workers=max_workers,
    ).candidates
