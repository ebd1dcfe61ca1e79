from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from backend.app.deductions.summary import build_deduction_summary
from backend.app.deductions.types import DeductionContext, DeductionSummaryResult
from backend.app.models import User
from backend.app.services.transaction_repository import TransactionRepository


def user_context(user: User) -> DeductionContext:
    # A stored 0% rate is a real answer; only a missing one falls back.
    tax_rate = float(user.default_tax_rate) if user.default_tax_rate is not None else None
    return DeductionContext(
        is_freelancer=user.is_freelancer,
        works_from_home=user.works_from_home,
        has_health_insurance=user.has_health_insurance,
        estimated_tax_rate=tax_rate,
    )


def serialize_summary(result: DeductionSummaryResult) -> Dict[str, Any]:
    return {
        "deductions": [
            {
                "category": d.category.value,
                "potential_deduction": d.potential_deduction,
                "estimated_savings": d.estimated_savings,
                "transactions": list(d.transactions),
                "suggestion": d.suggestion,
                "confidence": d.confidence,
            }
            for d in result.deductions
        ],
        "total_potential_deduction": result.total_potential_deduction,
        "estimated_tax_savings": result.estimated_tax_savings,
        "tax_rate_used": result.tax_rate_used,
    }


def get_deductions(
    db: Session,
    user: User,
    range_days: int = 30,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    window = TransactionRepository(db).list_by_user_since(user.id, now - timedelta(days=range_days))
    return serialize_summary(build_deduction_summary(window, user_context(user)))
