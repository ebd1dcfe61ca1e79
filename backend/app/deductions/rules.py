"""
Static deduction rule table plus the per-category context adjustments.

Every DeductionCategory must appear in CONTEXT_ADJUSTMENTS, even when the
category ignores the user context; the rule engine indexes it directly.
"""

from __future__ import annotations

from typing import Callable, Dict, List

from .types import DeductionCategory, DeductionContext, DeductionRule


DEDUCTION_RULES: List[DeductionRule] = [
    DeductionRule(
        id="home_office_internet",
        category=DeductionCategory.HOME_OFFICE,
        keywords=("internet", "comcast", "xfinity", "spectrum", "verizon fios", "broadband"),
        deduction_percent=0.4,
        irs_category="Form 8829 - Utilities",
        base_confidence=0.35,
        requires=("works_from_home",),
    ),
    DeductionRule(
        id="home_office_equipment",
        category=DeductionCategory.HOME_OFFICE,
        keywords=("desk", "office chair", "monitor", "webcam", "keyboard"),
        deduction_percent=1.0,
        irs_category="Schedule C Line 18 - Office expense",
        base_confidence=0.3,
        requires=("works_from_home",),
    ),
    DeductionRule(
        id="business_travel_rideshare",
        category=DeductionCategory.BUSINESS_TRAVEL,
        keywords=("uber", "lyft", "taxi", "rideshare"),
        deduction_percent=1.0,
        irs_category="Schedule C Line 24a - Travel",
        base_confidence=0.45,
    ),
    DeductionRule(
        id="business_travel_lodging",
        category=DeductionCategory.BUSINESS_TRAVEL,
        keywords=("airline", "airlines", "hotel", "airbnb", "marriott", "hilton"),
        deduction_percent=1.0,
        irs_category="Schedule C Line 24a - Travel",
        base_confidence=0.35,
        requires=("is_freelancer",),
    ),
    DeductionRule(
        id="office_supplies",
        category=DeductionCategory.OFFICE_SUPPLIES,
        keywords=("staples", "office depot", "officemax", "printer", "ink", "paper", "toner"),
        deduction_percent=1.0,
        irs_category="Schedule C Line 18 - Office expense",
        base_confidence=0.45,
    ),
    DeductionRule(
        id="professional_development",
        category=DeductionCategory.PROFESSIONAL_DEVELOPMENT,
        keywords=("conference", "course", "udemy", "coursera", "workshop", "seminar"),
        deduction_percent=1.0,
        irs_category="Schedule C Line 27a - Other expenses",
        base_confidence=0.4,
    ),
    DeductionRule(
        id="health_medical",
        category=DeductionCategory.HEALTH,
        keywords=("pharmacy", "cvs", "walgreens", "doctor", "dental", "clinic", "medical"),
        deduction_percent=1.0,
        irs_category="Schedule A - Medical and dental expenses",
        base_confidence=0.35,
    ),
    DeductionRule(
        id="charity_donation",
        category=DeductionCategory.CHARITY,
        keywords=("donation", "charity", "red cross", "unicef", "goodwill", "salvation army"),
        deduction_percent=1.0,
        irs_category="Schedule A - Gifts to charity",
        base_confidence=0.4,
    ),
]


def _home_office(context: DeductionContext) -> float:
    if context.works_from_home is True:
        return 0.05
    if context.works_from_home is None:
        return -0.05
    return 0.0


def _freelance_work(context: DeductionContext) -> float:
    if context.is_freelancer is True:
        return 0.05
    if context.is_freelancer is False:
        return -0.05
    return 0.0


def _health(context: DeductionContext) -> float:
    return 0.05 if context.has_health_insurance is True else 0.0


def _no_adjustment(context: DeductionContext) -> float:
    return 0.0


CONTEXT_ADJUSTMENTS: Dict[DeductionCategory, Callable[[DeductionContext], float]] = {
    DeductionCategory.HOME_OFFICE: _home_office,
    DeductionCategory.BUSINESS_TRAVEL: _freelance_work,
    DeductionCategory.OFFICE_SUPPLIES: _no_adjustment,
    DeductionCategory.PROFESSIONAL_DEVELOPMENT: _freelance_work,
    DeductionCategory.HEALTH: _health,
    DeductionCategory.CHARITY: _no_adjustment,
}
