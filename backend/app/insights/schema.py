from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class InsightType(str, Enum):
    QUIET_LEAK = "QUIET_LEAK"
    TAX_DRAG = "TAX_DRAG"
    SPIKE = "SPIKE"
    DUPLICATE = "DUPLICATE"
    DEDUCTION = "DEDUCTION"


ThresholdValue = Union[int, float, str]


@dataclass(frozen=True)
class TransactionRecord:
    """
    Read-only view of a stored transaction, as handed to detectors and matchers.
    """
    id: str
    date: datetime
    total_amount: Decimal
    tax_amount: Decimal = Decimal("0")
    merchant: Optional[str] = None
    description: Optional[str] = None
    type: str = "OTHER"
    currency: str = "USD"


@dataclass(frozen=True)
class ThresholdCheck:
    name: str
    actual: ThresholdValue
    threshold: ThresholdValue


@dataclass(frozen=True)
class InsightExplanation:
    reason: str
    thresholds: List[ThresholdCheck] = field(default_factory=list)
    suggestion: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "reason": self.reason,
            "thresholds": [
                {"name": t.name, "actual": t.actual, "threshold": t.threshold}
                for t in self.thresholds
            ],
        }
        if self.suggestion is not None:
            payload["suggestion"] = self.suggestion
        return payload


@dataclass(frozen=True)
class InsightCandidate:
    type: InsightType
    title: str
    summary: str
    severity_score: int
    supporting_transaction_ids: List[str]
    grouping_key: str
    fingerprint: str
    explanation: Optional[InsightExplanation] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.type.value, self.fingerprint)


@dataclass(frozen=True)
class StoredInsight:
    """An insight as persisted in a run, carrying user-applied state."""
    id: str
    type: str
    title: str
    summary: str
    severity_score: int
    supporting_transaction_ids: List[str]
    fingerprint: str
    dismissed: bool
    pinned: bool
    explanation: Optional[InsightExplanation] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.fingerprint)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "summary": self.summary,
            "severity_score": self.severity_score,
            "supporting_transaction_ids": list(self.supporting_transaction_ids),
            "fingerprint": self.fingerprint,
            "dismissed": self.dismissed,
            "pinned": self.pinned,
            "explanation": self.explanation.as_dict() if self.explanation else None,
        }


@dataclass(frozen=True)
class ReconciledInsight:
    candidate: InsightCandidate
    dismissed: bool = False
    pinned: bool = False
