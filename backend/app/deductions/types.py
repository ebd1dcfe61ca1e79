from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Literal, Optional, Tuple


class DeductionCategory(str, Enum):
    HOME_OFFICE = "HOME_OFFICE"
    BUSINESS_TRAVEL = "BUSINESS_TRAVEL"
    OFFICE_SUPPLIES = "OFFICE_SUPPLIES"
    PROFESSIONAL_DEVELOPMENT = "PROFESSIONAL_DEVELOPMENT"
    HEALTH = "HEALTH"
    CHARITY = "CHARITY"


ContextFlag = Literal["is_freelancer", "works_from_home", "has_health_insurance"]


@dataclass(frozen=True)
class DeductionContext:
    """
    What we know about the user. None means "never answered", which is not
    the same thing as False.
    """
    is_freelancer: Optional[bool] = None
    works_from_home: Optional[bool] = None
    has_health_insurance: Optional[bool] = None
    estimated_tax_rate: Optional[float] = None

    def flag(self, name: ContextFlag) -> Optional[bool]:
        return getattr(self, name)


@dataclass(frozen=True)
class DeductionRule:
    id: str
    category: DeductionCategory
    keywords: Tuple[str, ...]
    deduction_percent: float
    irs_category: str
    base_confidence: float
    requires: Tuple[ContextFlag, ...] = ()


@dataclass(frozen=True)
class DeductionMatch:
    transaction_id: str
    category: DeductionCategory
    rule_id: str
    confidence: float
    deduction_percent: float
    irs_category: str
    matched_keywords: List[str]
    amount: float
    potential_deduction: float
    merchant: Optional[str]
    description: Optional[str]


@dataclass(frozen=True)
class DeductionSummary:
    category: DeductionCategory
    potential_deduction: float
    estimated_savings: float
    transactions: List[str]
    suggestion: str
    confidence: float
    total_spend: float = 0.0


@dataclass(frozen=True)
class DeductionSummaryResult:
    deductions: List[DeductionSummary] = field(default_factory=list)
    total_potential_deduction: float = 0.0
    estimated_tax_savings: float = 0.0
    tax_rate_used: float = 0.25
