from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from backend.app.models import AuditLog


def log_audit_event(
    db: Session,
    *,
    user_id: str,
    event_type: str,
    actor: str,
    reason: Optional[str] = None,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    insight_id: Optional[str] = None,
) -> AuditLog:
    row = AuditLog(
        user_id=user_id,
        event_type=event_type,
        actor=actor,
        reason=reason,
        before_state=before,
        after_state=after,
        insight_id=insight_id,
    )
    db.add(row)
    db.flush()
    return row
