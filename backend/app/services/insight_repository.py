from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.insights.explain import parse_explanation
from backend.app.insights.schema import ReconciledInsight, StoredInsight
from backend.app.models import Insight, InsightRun


def map_insight(row: Insight) -> StoredInsight:
    """Raises ValueError for rows that cannot be trusted for reconciliation."""
    if not row.type or not row.fingerprint:
        raise ValueError(f"insight {row.id} is missing type or fingerprint")
    supporting = row.supporting_transaction_ids
    if not isinstance(supporting, list) or not all(isinstance(i, str) for i in supporting):
        raise ValueError(f"insight {row.id} has malformed supporting_transaction_ids")
    return StoredInsight(
        id=row.id,
        type=row.type,
        title=row.title,
        summary=row.summary,
        severity_score=int(row.severity_score),
        supporting_transaction_ids=list(supporting),
        fingerprint=row.fingerprint,
        dismissed=bool(row.dismissed),
        pinned=bool(row.pinned),
        explanation=parse_explanation(row.explanation),
    )


def find_latest_run(db: Session, user_id: str, range_days: int) -> Optional[InsightRun]:
    return (
        db.execute(
            select(InsightRun)
            .where(InsightRun.user_id == user_id, InsightRun.range_days == range_days)
            .order_by(InsightRun.created_at.desc(), InsightRun.id.desc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def load_run_insights(run: InsightRun) -> List[StoredInsight]:
    return [map_insight(row) for row in run.insights]


def create_run(
    db: Session,
    *,
    user_id: str,
    range_days: int,
    items: Sequence[ReconciledInsight],
    created_at: datetime,
) -> InsightRun:
    run = InsightRun(user_id=user_id, range_days=range_days, created_at=created_at)
    for position, item in enumerate(items):
        candidate = item.candidate
        run.insights.append(
            Insight(
                position=position,
                type=candidate.type.value,
                fingerprint=candidate.fingerprint,
                grouping_key=candidate.grouping_key,
                title=candidate.title,
                summary=candidate.summary,
                severity_score=candidate.severity_score,
                supporting_transaction_ids=list(candidate.supporting_transaction_ids),
                explanation=candidate.explanation.as_dict() if candidate.explanation else None,
                dismissed=item.dismissed,
                pinned=item.pinned,
            )
        )
    db.add(run)
    db.flush()
    return run


def find_latest_insight(db: Session, user_id: str, insight_id: str) -> Optional[Insight]:
    """
    Owned insight belonging to the newest run of its (user, range).
    Insights of superseded runs are treated as not found.
    """
    row = (
        db.execute(
            select(Insight)
            .join(InsightRun, Insight.run_id == InsightRun.id)
            .where(Insight.id == insight_id, InsightRun.user_id == user_id)
        )
        .scalars()
        .first()
    )
    if row is None:
        return None
    latest = find_latest_run(db, user_id, row.run.range_days)
    if latest is None or latest.id != row.run_id:
        return None
    return row
