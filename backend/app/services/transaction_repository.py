from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.app.insights.schema import TransactionRecord
from backend.app.models import Transaction


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_record(row: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=row.id,
        date=_to_utc(row.date),
        total_amount=Decimal(row.total_amount if row.total_amount is not None else 0),
        tax_amount=Decimal(row.tax_amount if row.tax_amount is not None else 0),
        merchant=row.merchant,
        description=row.description,
        type=row.type or "OTHER",
        currency=row.currency or "USD",
    )


class TransactionRepository:
    """
    Read-only access to a user's transactions. Every query is scoped by user_id.
    """

    def __init__(self, db: Session):
        self.db = db

    def list_by_user_since(self, user_id: str, from_date: datetime) -> List[TransactionRecord]:
        rows = (
            self.db.execute(
                select(Transaction)
                .where(
                    Transaction.user_id == user_id,
                    Transaction.date >= _to_utc(from_date),
                )
                .order_by(Transaction.date.asc(), Transaction.id.asc())
            )
            .scalars()
            .all()
        )
        return [to_record(row) for row in rows]

    def get_latest_updated_at(self, user_id: str) -> Optional[datetime]:
        latest = self.db.execute(
            select(func.max(Transaction.updated_at)).where(Transaction.user_id == user_id)
        ).scalar()
        return _to_utc(latest) if latest is not None else None

    def list_by_ids(self, user_id: str, ids: Iterable[str]) -> List[TransactionRecord]:
        wanted = [i for i in ids if i]
        if not wanted:
            return []
        rows = (
            self.db.execute(
                select(Transaction).where(
                    Transaction.user_id == user_id,
                    Transaction.id.in_(wanted),
                )
            )
            .scalars()
            .all()
        )
        by_id = {row.id: row for row in rows}
        return [to_record(by_id[i]) for i in wanted if i in by_id]
