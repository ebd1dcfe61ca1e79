from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import os
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[2]))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from backend.app.deductions.types import DeductionContext  # noqa: E402
from backend.app.insights.config import DEFAULT_CONFIG  # noqa: E402
from backend.app.insights.detectors import (  # noqa: E402
    clamp_severity,
    dedupe_candidates,
    detect_duplicates,
    detect_quiet_leaks,
    detect_spikes,
    detect_tax_drag,
    run_detectors,
    run_detectors_with_summary,
)
from backend.app.insights.fingerprint import fingerprint  # noqa: E402
from backend.app.insights.schema import InsightType, TransactionRecord  # noqa: E402

BASE = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _txn(
    txn_id: str,
    amount,
    merchant="Coffee Shop",
    *,
    days: float = 0,
    hours: float = 0,
    tax="0",
    description=None,
):
    return TransactionRecord(
        id=txn_id,
        date=BASE + timedelta(days=days, hours=hours),
        total_amount=Decimal(str(amount)),
        tax_amount=Decimal(str(tax)),
        merchant=merchant,
        description=description,
    )


def test_clamp_severity_bounds():
    assert clamp_severity(-3.2) == 0
    assert clamp_severity(0.99) == 0
    assert clamp_severity(4.7) == 4
    assert clamp_severity(42) == 10
    assert clamp_severity(float("nan")) == 0


def test_empty_window_yields_no_candidates():
    assert detect_quiet_leaks([]) == []
    assert detect_tax_drag([]) == []
    assert detect_spikes([]) == []
    assert detect_duplicates([]) == []
    assert run_detectors([]) == []


# -------------------------
# Quiet leak
# -------------------------

def test_quiet_leak_small_purchases_adding_up():
    txns = [
        _txn("t1", "15.00", "Starbucks", days=0),
        _txn("t2", "18.00", "Starbucks", days=2),
        _txn("t3", "20.00", "Starbucks", days=4),
    ]

    insights = detect_quiet_leaks(txns)

    assert len(insights) == 1
    leak = insights[0]
    assert leak.type is InsightType.QUIET_LEAK
    assert leak.title == "Quiet Leak: Starbucks"
    assert leak.summary == "3 purchases totaling $53.00"
    assert leak.severity_score == 2
    assert leak.supporting_transaction_ids == ["t1", "t2", "t3"]
    assert leak.fingerprint == fingerprint(InsightType.QUIET_LEAK, "starbucks")


def test_quiet_leak_requires_cumulative_minimum():
    txns = [_txn(f"c{i}", "5.50", "Coffee Shop", days=i) for i in range(4)]
    assert detect_quiet_leaks(txns) == []


def test_quiet_leak_requires_three_occurrences():
    txns = [_txn("a", "19.00", "Starbucks"), _txn("b", "19.50", "Starbucks", days=1)]
    assert detect_quiet_leaks(txns) == []


def test_quiet_leak_ignores_large_purchases():
    txns = [
        _txn("r1", "25.00", "Restaurant"),
        _txn("r2", "30.00", "Restaurant", days=1),
        _txn("r3", "28.00", "Restaurant", days=2),
    ]
    assert detect_quiet_leaks(txns) == []


def test_quiet_leak_members_are_all_small():
    txns = [
        _txn("s1", "18.00", "Starbucks"),
        _txn("s2", "18.00", "Starbucks", days=1),
        _txn("s3", "18.00", "Starbucks", days=2),
        _txn("s4", "45.00", "Starbucks", days=3),
    ]

    assert detect_quiet_leaks(txns) == []


def test_quiet_leak_severity_capped():
    txns = [_txn(f"d{i}", "15.00", "Daily Coffee", days=i) for i in range(20)]
    assert detect_quiet_leaks(txns)[0].severity_score == 10


def test_quiet_leak_groups_on_normalized_merchant():
    txns = [
        _txn("n1", "18.00", "Starbucks", days=0),
        _txn("n2", "18.00", "  starbucks ", days=1),
        _txn("n3", "18.00", "STARBUCKS", days=2),
    ]

    insights = detect_quiet_leaks(txns)

    assert len(insights) == 1
    assert insights[0].title == "Quiet Leak: Starbucks"
    assert len(insights[0].supporting_transaction_ids) == 3


def test_quiet_leak_missing_merchant_goes_to_unknown_bucket():
    txns = [_txn(f"u{i}", "12.00", None, days=i) for i in range(5)]

    insights = detect_quiet_leaks(txns)

    assert len(insights) == 1
    assert insights[0].title == "Quiet Leak: Unknown"
    assert insights[0].grouping_key == "unknown"


def test_quiet_leak_severity_non_decreasing_in_total():
    previous = -1
    for count in range(3, 25):
        txns = [_txn(f"m{i}", "20.00", "Cafe", days=i * 0.5) for i in range(count)]
        severity = detect_quiet_leaks(txns)[0].severity_score
        assert 0 <= severity <= 10
        assert severity >= previous
        previous = severity


# -------------------------
# Tax drag
# -------------------------

def test_tax_drag_just_below_threshold_does_not_trigger():
    txns = [_txn("e1", "1247.00", "Electronics Store", tax="112.00")]
    assert detect_tax_drag(txns) == []


def test_tax_drag_triggers_above_threshold():
    txns = [_txn("e1", "1247.00", "Electronics Store", tax="115.00")]

    insights = detect_tax_drag(txns)

    assert len(insights) == 1
    drag = insights[0]
    assert drag.type is InsightType.TAX_DRAG
    assert drag.title == "High Tax: Electronics Store"
    assert drag.severity_score == 1
    assert drag.supporting_transaction_ids == ["e1"]


def test_tax_drag_absorbs_float_noise():
    # 0.12 - 0.08 evaluates to 0.03999... without rounding.
    insights = detect_tax_drag([_txn("x", "100.00", "Hardware", tax="12.00")])
    assert insights[0].severity_score == 4
    assert insights[0].summary == "12.0% effective rate on $100"


def test_tax_drag_requires_minimum_spend():
    assert detect_tax_drag([_txn("x", "50.00", "Kiosk", tax="10.00")]) == []


def test_tax_drag_skips_non_positive_totals():
    txns = [_txn("refund", "0.00", "Returns Desk", tax="0.00"), _txn("neg", "-80.00", "Refunds", tax="5")]
    assert detect_tax_drag(txns) == []


def test_tax_drag_severity_non_decreasing_in_rate():
    previous = -1
    for basis_points in range(910, 3000, 35):
        tax = Decimal(basis_points) / Decimal(10)
        insights = detect_tax_drag([_txn("t", "1000.00", "Store", tax=tax)])
        severity = insights[0].severity_score
        assert 0 <= severity <= 10
        assert severity >= previous
        previous = severity


# -------------------------
# Spikes
# -------------------------

def test_spike_flags_outliers():
    txns = [
        _txn("a", "10.00", "Cafe", days=0),
        _txn("b", "10.00", "Bakery", days=1),
        _txn("c", "10.00", "Deli", days=2),
        _txn("d", "100.00", "Electronics", days=3),
    ]

    insights = detect_spikes(txns)

    assert len(insights) == 1
    spike = insights[0]
    assert spike.type is InsightType.SPIKE
    assert spike.title == "Unusual: Electronics"
    assert spike.supporting_transaction_ids == ["d"]
    # 100 / 32.5 = 3.08x -> floor(2.08 * 2)
    assert spike.severity_score == 4


def test_spike_zero_average_is_ignored():
    txns = [_txn("z1", "0", "Cafe"), _txn("z2", "0", "Cafe", days=1)]
    assert detect_spikes(txns) == []


def test_spike_fingerprint_stable_across_windows():
    outlier = _txn("big", "500.00", "Furniture", days=3)
    first = detect_spikes([_txn("a", "10", "Cafe"), _txn("b", "12", "Deli", days=1), outlier])
    second = detect_spikes([_txn("c", "11", "Bakery", days=2), _txn("d", "9", "Cafe", days=4), outlier])

    assert [c.fingerprint for c in first] == [c.fingerprint for c in second]


def test_spike_same_day_outliers_at_one_merchant_stay_distinct():
    txns = [_txn(f"x{i}", "10.00", "Cafe", days=i) for i in range(8)]
    txns += [_txn("big1", "400.00", "Furniture", days=9), _txn("big2", "450.00", "Furniture", days=9, hours=2)]

    outliers = [c for c in detect_spikes(txns) if c.title == "Unusual: Furniture"]

    assert sorted(c.supporting_transaction_ids[0] for c in outliers) == ["big1", "big2"]
    assert len({c.fingerprint for c in outliers}) == 2


def test_spike_severity_non_decreasing_in_ratio():
    previous = -1
    for amount in range(100, 5000, 150):
        txns = [_txn(f"s{i}", "10.00", "Cafe", days=i) for i in range(9)]
        txns.append(_txn("outlier", amount, "Store", days=9))
        outliers = [c for c in detect_spikes(txns) if c.supporting_transaction_ids == ["outlier"]]
        severity = outliers[0].severity_score
        assert 0 <= severity <= 10
        assert severity >= previous
        previous = severity


def test_month_over_month_increase_flagged():
    txns = [
        _txn("feb", "100.00", "Gym", days=-20),
        _txn("mar", "180.00", "Gym", days=9),
    ]

    insights = detect_spikes(txns)

    assert len(insights) == 1
    mom = insights[0]
    assert mom.title == "Spending up: Gym"
    assert mom.grouping_key == "gym|2026-03"
    assert mom.supporting_transaction_ids == ["mar"]
    # 80% increase -> floor((80 - 50) / 10)
    assert mom.severity_score == 3
    assert mom.explanation.thresholds[0].name == "month-over-month increase"


def test_month_over_month_at_threshold_not_flagged():
    txns = [
        _txn("feb", "100.00", "Gym", days=-20),
        _txn("mar", "150.00", "Gym", days=9),
    ]
    assert detect_spikes(txns) == []


def test_month_over_month_requires_adjacent_month():
    txns = [
        _txn("jan", "100.00", "Gym", days=-45),
        _txn("mar", "180.00", "Gym", days=9),
    ]
    assert [c for c in detect_spikes(txns) if c.title.startswith("Spending up")] == []


# -------------------------
# Duplicates
# -------------------------

def test_duplicate_same_merchant_and_amount_within_window():
    txns = [
        _txn("n1", "15.99", "Netflix", hours=0),
        _txn("n2", "15.99", "Netflix", hours=10),
    ]

    insights = detect_duplicates(txns)

    assert len(insights) == 1
    dup = insights[0]
    assert dup.type is InsightType.DUPLICATE
    assert dup.severity_score == 5
    assert dup.supporting_transaction_ids == ["n1", "n2"]


def test_duplicate_window_is_inclusive():
    txns = [_txn("n1", "15.99", "Netflix", hours=0), _txn("n2", "15.99", "Netflix", hours=24)]
    assert len(detect_duplicates(txns)) == 1


def test_duplicate_outside_window_not_flagged():
    txns = [_txn("n1", "15.99", "Netflix", hours=0), _txn("n2", "15.99", "Netflix", hours=25)]
    assert detect_duplicates(txns) == []


def test_duplicate_pairs_each_transaction_once():
    txns = [
        _txn("n1", "15.99", "Netflix", hours=0),
        _txn("n2", "15.99", "Netflix", hours=1),
        _txn("n3", "15.99", "Netflix", hours=2),
    ]

    insights = detect_duplicates(txns)

    assert len(insights) == 1
    assert insights[0].supporting_transaction_ids == ["n1", "n2"]


def test_duplicate_needs_matching_amount_and_merchant():
    txns = [
        _txn("a", "15.99", "Netflix", hours=0),
        _txn("b", "16.99", "Netflix", hours=1),
        _txn("c", "15.99", "Hulu", hours=2),
        _txn("d", "9.99", None, hours=3),
        _txn("e", "9.99", None, hours=4),
    ]
    assert detect_duplicates(txns) == []


# -------------------------
# Pipeline
# -------------------------

def test_dedupe_candidates_first_occurrence_wins():
    txns = [_txn(f"s{i}", "18.00", "Starbucks", days=i * 2) for i in range(3)]
    leak = detect_quiet_leaks(txns)[0]
    twin = replace(leak, title="Quiet Leak: duplicate")

    assert dedupe_candidates([leak, twin]) == [leak]


def test_run_detectors_summary_reports_each_detector():
    txns = [
        _txn("s1", "17.00", "Starbucks", days=0),
        _txn("s2", "18.00", "Starbucks", days=2),
        _txn("s3", "19.00", "Starbucks", days=4),
        _txn("e1", "1247.00", "Electronics Store", days=5, tax="115.00"),
    ]

    summary = run_detectors_with_summary(txns)

    by_id = {d.detector_id: d for d in summary.detectors}
    assert [d.insight_type for d in summary.detectors] == sorted(d.insight_type for d in summary.detectors)
    assert by_id["detect_quiet_leaks"].fired is True
    assert by_id["detect_tax_drag"].candidate_count == 1
    assert by_id["detect_duplicates"].fired is False
    assert by_id["detect_deduction_insights"].ran is False
    assert by_id["detect_deduction_insights"].skipped_reason == "disabled"
    assert {c.type for c in summary.candidates} == {
        InsightType.QUIET_LEAK,
        InsightType.TAX_DRAG,
        InsightType.SPIKE,
    }


def test_run_detectors_parallel_matches_sequential():
    txns = [
        _txn("s1", "17.00", "Starbucks", days=0),
        _txn("s2", "18.00", "Starbucks", days=2),
        _txn("s3", "19.00", "Starbucks", days=4),
        _txn("n1", "15.99", "Netflix", days=5),
        _txn("n2", "15.99", "Netflix", days=5, hours=3),
        _txn("e1", "1247.00", "Electronics Store", days=6, tax="115.00"),
    ]

    sequential = run_detectors(txns)
    parallel = run_detectors(txns, max_workers=4)

    assert [c.key for c in parallel] == [c.key for c in sequential]


def test_deduction_detector_runs_only_when_enabled():
    txns = [_txn("u1", "45.00", "Uber", days=1)]
    context = DeductionContext(is_freelancer=True)

    disabled = run_detectors(txns, DEFAULT_CONFIG, context=context)
    enabled = run_detectors(txns, replace(DEFAULT_CONFIG, include_deductions=True), context=context)

    assert all(c.type is not InsightType.DEDUCTION for c in disabled)
    deductions = [c for c in enabled if c.type is InsightType.DEDUCTION]
    assert len(deductions) == 1
    assert deductions[0].grouping_key == "BUSINESS_TRAVEL"
