import os
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[2]))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from backend.app.insights.fingerprint import fingerprint, normalize_merchant  # noqa: E402
from backend.app.insights.reconcile import (  # noqa: E402
    apply_state_update,
    merge_insight_state,
    prior_state_index,
    sort_insights,
)
from backend.app.insights.schema import (  # noqa: E402
    InsightCandidate,
    InsightType,
    ReconciledInsight,
    StoredInsight,
)


def _candidate(insight_type: InsightType, key: str, severity: int = 3, ids=None) -> InsightCandidate:
    return InsightCandidate(
        type=insight_type,
        title=f"{insight_type.value} {key}",
        summary="summary",
        severity_score=severity,
        supporting_transaction_ids=ids or ["t1"],
        grouping_key=key,
        fingerprint=fingerprint(insight_type, key),
    )


def _stored(candidate: InsightCandidate, *, dismissed=False, pinned=False, insight_id="old") -> StoredInsight:
    return StoredInsight(
        id=insight_id,
        type=candidate.type.value,
        title=candidate.title,
        summary=candidate.summary,
        severity_score=candidate.severity_score,
        supporting_transaction_ids=list(candidate.supporting_transaction_ids),
        fingerprint=candidate.fingerprint,
        dismissed=dismissed,
        pinned=pinned,
    )


def test_fingerprint_is_deterministic_and_type_scoped():
    first = fingerprint(InsightType.QUIET_LEAK, "starbucks")

    assert first == fingerprint("QUIET_LEAK", "starbucks")
    assert len(first) == 64
    assert first != fingerprint(InsightType.TAX_DRAG, "starbucks")
    assert first != fingerprint(InsightType.QUIET_LEAK, "dunkin")


def test_normalize_merchant():
    assert normalize_merchant("  Blue   Bottle  Coffee ") == "blue bottle coffee"
    assert normalize_merchant(None) == "unknown"
    assert normalize_merchant("   ") == "unknown"


def test_merge_carries_dismissed_for_matching_fingerprint():
    leak = _candidate(InsightType.QUIET_LEAK, "starbucks", ids=["t1", "t2", "t3"])
    regenerated = _candidate(InsightType.QUIET_LEAK, "starbucks", ids=["t4", "t5", "t6"])

    merged = merge_insight_state([regenerated], [_stored(leak, dismissed=True)])

    assert merged == [ReconciledInsight(candidate=regenerated, dismissed=True, pinned=False)]


def test_merge_new_fingerprint_starts_clean_and_absent_is_dropped():
    pinned_before = _candidate(InsightType.SPIKE, "furniture|2026-03-02|500.00")
    fresh = _candidate(InsightType.QUIET_LEAK, "dunkin")

    merged = merge_insight_state([fresh], [_stored(pinned_before, pinned=True)])

    assert merged == [ReconciledInsight(candidate=fresh)]


def test_merge_matches_on_type_and_fingerprint_pair():
    leak = _candidate(InsightType.QUIET_LEAK, "starbucks")
    drag = _candidate(InsightType.TAX_DRAG, "starbucks")

    merged = merge_insight_state([drag], [_stored(leak, dismissed=True)])

    assert merged[0].dismissed is False


def test_merge_never_returns_both_flags():
    leak = _candidate(InsightType.QUIET_LEAK, "starbucks")

    merged = merge_insight_state([leak], [_stored(leak, dismissed=True, pinned=True)])

    assert (merged[0].dismissed, merged[0].pinned) == (True, False)


def test_prior_index_first_row_wins():
    leak = _candidate(InsightType.QUIET_LEAK, "starbucks")
    index = prior_state_index([_stored(leak, pinned=True, insight_id="a"), _stored(leak, dismissed=True, insight_id="b")])

    assert index[leak.key] == (False, True)


def test_apply_state_update_mutual_exclusion():
    assert apply_state_update(True, False, set_pinned=True) == (False, True)
    assert apply_state_update(False, True, set_dismissed=True) == (True, False)
    assert apply_state_update(True, False, set_dismissed=False) == (False, False)
    assert apply_state_update(False, True, set_pinned=False) == (False, False)
    assert apply_state_update(False, False, set_dismissed=True, set_pinned=True) == (True, False)
    assert apply_state_update(False, True) == (False, True)


def test_sort_insights_orders_by_state_then_severity():
    low = ReconciledInsight(candidate=_candidate(InsightType.TAX_DRAG, "a", severity=1))
    high = ReconciledInsight(candidate=_candidate(InsightType.SPIKE, "b", severity=9))
    pinned_low = ReconciledInsight(candidate=_candidate(InsightType.QUIET_LEAK, "c", severity=0), pinned=True)
    dismissed_high = ReconciledInsight(candidate=_candidate(InsightType.DUPLICATE, "d", severity=10), dismissed=True)

    ordered = sort_insights([low, dismissed_high, high, pinned_low])

    assert ordered == [pinned_low, high, low, dismissed_high]


def test_sort_insights_tie_break_is_stable():
    a = ReconciledInsight(candidate=_candidate(InsightType.SPIKE, "x", severity=5))
    b = ReconciledInsight(candidate=_candidate(InsightType.DUPLICATE, "y", severity=5))

    assert sort_insights([a, b]) == sort_insights([b, a])
    assert sort_insights([a, b])[0] is b


def test_sort_insights_accepts_stored_rows():
    a = _stored(_candidate(InsightType.SPIKE, "x", severity=2), insight_id="a")
    b = _stored(_candidate(InsightType.SPIKE, "y", severity=7), insight_id="b", dismissed=True)
    c = _stored(_candidate(InsightType.SPIKE, "z", severity=1), insight_id="c")

    assert [s.id for s in sort_insights([a, b, c])] == ["a", "c", "b"]
