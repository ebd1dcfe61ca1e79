"""
Reconciliation of regenerated insights against user-applied state.

Every regeneration rebuilds the candidate set from scratch, so nothing in a
candidate identifies it across runs except its (type, fingerprint) pair. The
functions here match new candidates against the previous run on that pair:

* a match carries `dismissed` / `pinned` forward,
* a new pair starts with both False,
* a prior pair with no new candidate is dropped, pinned or not.

Pure and database-free; the lifecycle service feeds it whatever the prior run
held (or nothing, if the prior run could not be read).
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Tuple, TypeVar, Union

from .schema import InsightCandidate, ReconciledInsight, StoredInsight

StateKey = Tuple[str, str]


def prior_state_index(previous: Iterable[StoredInsight]) -> Dict[StateKey, Tuple[bool, bool]]:
    index: Dict[StateKey, Tuple[bool, bool]] = {}
    for insight in previous:
        # First row wins if a corrupt run ever held the same pair twice.
        index.setdefault(insight.key, (bool(insight.dismissed), bool(insight.pinned)))
    return index


def merge_insight_state(
    candidates: Iterable[InsightCandidate],
    previous: Iterable[StoredInsight],
) -> List[ReconciledInsight]:
    index = prior_state_index(previous)
    merged: List[ReconciledInsight] = []
    seen: set[StateKey] = set()
    for candidate in candidates:
        if candidate.key in seen:
            continue
        seen.add(candidate.key)
        dismissed, pinned = index.get(candidate.key, (False, False))
        if dismissed and pinned:
            pinned = False
        merged.append(ReconciledInsight(candidate=candidate, dismissed=dismissed, pinned=pinned))
    return merged


def apply_state_update(
    dismissed: bool,
    pinned: bool,
    *,
    set_dismissed: Union[bool, None] = None,
    set_pinned: Union[bool, None] = None,
) -> Tuple[bool, bool]:
    """
    Resolve a dismiss/pin request into the final pair of flags.

    Turning one flag on turns the other off. If a request turns both on,
    the dismissal wins.
    """
    next_dismissed = dismissed if set_dismissed is None else bool(set_dismissed)
    next_pinned = pinned if set_pinned is None else bool(set_pinned)
    if set_dismissed is True:
        next_pinned = False
    elif set_pinned is True:
        next_dismissed = False
    return next_dismissed, next_pinned


T = TypeVar("T", ReconciledInsight, StoredInsight)


def _sort_key(item: Union[ReconciledInsight, StoredInsight]):
    if isinstance(item, ReconciledInsight):
        c = item.candidate
        return (item.dismissed, not item.pinned, -c.severity_score, c.type.value, c.fingerprint)
    return (item.dismissed, not item.pinned, -item.severity_score, item.type, item.fingerprint)


def sort_insights(items: Iterable[T]) -> List[T]:
    """Active before dismissed, pinned first, then severity descending."""
    return sorted(items, key=_sort_key)
