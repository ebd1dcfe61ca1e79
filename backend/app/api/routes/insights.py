from __future__ import annotations

from typing import List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from backend.app.api.deps import get_current_user
from backend.app.db import get_db
from backend.app.models import User
from backend.app.services import deduction_service, insight_service

router = APIRouter(prefix="/api/insights", tags=["insights"])

CACHE_CONTROL_CACHED = "private, max-age=60, stale-while-revalidate=300"
CACHE_CONTROL_REFRESH = "no-store"


class ThresholdOut(BaseModel):
    name: str
    actual: Union[int, float, str]
    threshold: Union[int, float, str]


class ExplanationOut(BaseModel):
    reason: str
    thresholds: List[ThresholdOut] = Field(default_factory=list)
    suggestion: Optional[str] = None


class InsightOut(BaseModel):
    id: str
    type: str
    title: str
    summary: str
    severity_score: int
    supporting_transaction_ids: List[str]
    fingerprint: str
    dismissed: bool
    pinned: bool
    explanation: Optional[ExplanationOut] = None


class InsightsResponse(BaseModel):
    insights: List[InsightOut]


class InsightStateUpdateIn(BaseModel):
    dismissed: Optional[bool] = None
    pinned: Optional[bool] = None

    @model_validator(mode="after")
    def require_a_flag(self) -> "InsightStateUpdateIn":
        if self.dismissed is None and self.pinned is None:
            raise ValueError("dismissed or pinned is required")
        return self


class InsightStateUpdateOut(BaseModel):
    insight: InsightOut


class DeductionOut(BaseModel):
    category: str
    potential_deduction: float
    estimated_savings: float
    transactions: List[str]
    suggestion: str
    confidence: float


class DeductionsResponse(BaseModel):
    deductions: List[DeductionOut]
    total_potential_deduction: float
    estimated_tax_savings: float
    tax_rate_used: float


class InsightTransactionOut(BaseModel):
    id: str
    date: str
    merchant: Optional[str] = None
    description: Optional[str] = None
    total_amount: float
    tax_amount: float
    type: str
    currency: str


class InsightTransactionsResponse(BaseModel):
    insight_id: str
    transactions: List[InsightTransactionOut]


@router.get("", response_model=InsightsResponse)
def list_insights(
    response: Response,
    range_days: int = Query(30, alias="range", ge=1, le=365),
    refresh: bool = Query(False),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = insight_service.get_insights(
        db,
        user.id,
        range_days,
        force_refresh=refresh,
        user_context=deduction_service.user_context(user),
    )
    response.headers["Cache-Control"] = CACHE_CONTROL_REFRESH if refresh else CACHE_CONTROL_CACHED
    response.headers["Vary"] = "X-User-Email, X-User-Id"
    return InsightsResponse(insights=result.insights)


# Registered before /{insight_id} routes so "deductions" is never read as an id.
@router.get("/deductions", response_model=DeductionsResponse)
def list_deductions(
    range_days: int = Query(30, alias="range", ge=1, le=365),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return DeductionsResponse(**deduction_service.get_deductions(db, user, range_days))


@router.patch("/{insight_id}", response_model=InsightStateUpdateOut)
def update_insight(
    insight_id: str,
    req: InsightStateUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    updated = insight_service.update_insight_state(
        db,
        user.id,
        insight_id,
        dismissed=req.dismissed,
        pinned=req.pinned,
        actor=user.email,
    )
    if updated is None:
        raise HTTPException(status_code=404, detail="insight not found")
    return InsightStateUpdateOut(insight=updated)


@router.get("/{insight_id}/transactions", response_model=InsightTransactionsResponse)
def list_insight_transactions(
    insight_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = insight_service.get_insight_transactions(db, user.id, insight_id)
    if result is None:
        raise HTTPException(status_code=404, detail="insight not found")
    return InsightTransactionsResponse(**result)
