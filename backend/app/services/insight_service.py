"""
Insight lifecycle: cached reads, regeneration, reconciliation and
dismiss/pin state.

Each regeneration persists a new run for (user, range); the newest run is both
the cache entry and the only run whose insights can be changed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.api.config import insight_cache_ttl_seconds, insight_config
from backend.app.deductions.types import DeductionContext
from backend.app.insights.cache_policy import can_serve_cached, to_utc
from backend.app.insights.config import InsightConfig
from backend.app.insights.detectors import run_detectors_with_summary
from backend.app.insights.reconcile import apply_state_update, merge_insight_state, sort_insights
from backend.app.insights.schema import StoredInsight
from backend.app.models import InsightRun
from backend.app.services import audit_service, insight_repository
from backend.app.services.transaction_repository import TransactionRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InsightsResult:
    insights: List[Dict[str, Any]]
    run_id: Optional[str]
    generated_at: datetime
    cached: bool


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _load_previous(
    db: Session,
    user_id: str,
    range_days: int,
) -> Tuple[Optional[InsightRun], List[StoredInsight]]:
    try:
        latest = insight_repository.find_latest_run(db, user_id, range_days)
        previous = insight_repository.load_run_insights(latest) if latest else []
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "[insights] prior run unreadable user=%s range=%s error=%s; reconciling against nothing",
            user_id,
            range_days,
            str(exc),
        )
        return None, []
    except (ValueError, TypeError) as exc:
        logger.warning(
            "[insights] prior run malformed user=%s range=%s error=%s; reconciling against nothing",
            user_id,
            range_days,
            str(exc),
        )
        return None, []
    return latest, previous


def get_insights(
    db: Session,
    user_id: str,
    range_days: int = 30,
    *,
    force_refresh: bool = False,
    user_context: Optional[DeductionContext] = None,
    now: Optional[datetime] = None,
    config: Optional[InsightConfig] = None,
    ttl_seconds: Optional[float] = None,
    max_workers: int = 1,
) -> InsightsResult:
    now = to_utc(now or _now())
    ttl = ttl_seconds if ttl_seconds is not None else insight_cache_ttl_seconds()
    config = config or insight_config()
    transactions = TransactionRepository(db)

    latest, previous = _load_previous(db, user_id, range_days)
    if latest is not None and can_serve_cached(
        latest.created_at,
        now,
        ttl_seconds=ttl,
        force_refresh=force_refresh,
        latest_transaction_update=transactions.get_latest_updated_at(user_id),
    ):
        return InsightsResult(
            insights=[insight.as_dict() for insight in sort_insights(previous)],
            run_id=latest.id,
            generated_at=to_utc(latest.created_at),
            cached=True,
        )

    window = transactions.list_by_user_since(user_id, now - timedelta(days=range_days))
    summary = run_detectors_with_summary(
        window,
        config,
        context=user_context,
        max_workers=max_workers,
    )
    reconciled = sort_insights(merge_insight_state(summary.candidates, previous))

    run = insight_repository.create_run(
        db,
        user_id=user_id,
        range_days=range_days,
        items=reconciled,
        created_at=now,
    )
    insights = [insight_repository.map_insight(row).as_dict() for row in run.insights]
    run_id = run.id
    db.commit()

    logger.info(
        "[insights] run created user=%s range=%s run=%s transactions=%s insights=%s",
        user_id,
        range_days,
        run_id,
        len(window),
        len(insights),
    )
    return InsightsResult(insights=insights, run_id=run_id, generated_at=now, cached=False)


def update_insight_state(
    db: Session,
    user_id: str,
    insight_id: str,
    dismissed: Optional[bool] = None,
    pinned: Optional[bool] = None,
    *,
    actor: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Dismiss or pin an insight of the user's latest run.

    Returns None when the insight does not exist, belongs to another user or
    to a superseded run. Never triggers regeneration.
    """
    row = insight_repository.find_latest_insight(db, user_id, insight_id)
    if row is None:
        return None

    before = {"dismissed": bool(row.dismissed), "pinned": bool(row.pinned)}
    row.dismissed, row.pinned = apply_state_update(
        before["dismissed"],
        before["pinned"],
        set_dismissed=dismissed,
        set_pinned=pinned,
    )
    after = {"dismissed": row.dismissed, "pinned": row.pinned}

    audit_service.log_audit_event(
        db,
        user_id=user_id,
        event_type="insight_state_changed",
        actor=actor or user_id,
        reason=row.type,
        before=before,
        after=after,
        insight_id=row.id,
    )
    payload = insight_repository.map_insight(row).as_dict()
    db.commit()
    return payload


def get_insight_transactions(db: Session, user_id: str, insight_id: str) -> Optional[Dict[str, Any]]:
    row = insight_repository.find_latest_insight(db, user_id, insight_id)
    if row is None:
        return None
    records = TransactionRepository(db).list_by_ids(user_id, row.supporting_transaction_ids or [])
    return {
        "insight_id": row.id,
        "transactions": [
            {
                "id": r.id,
                "date": r.date.isoformat(),
                "merchant": r.merchant,
                "description": r.description,
                "total_amount": float(r.total_amount),
                "tax_amount": float(r.tax_amount),
                "type": r.type,
                "currency": r.currency,
            }
            for r in records
        ],
    }
