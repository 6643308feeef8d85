# bursary_matching.py
"""
Static bursary business rules: candidate matching, the eligibility score,
reference numbers and the display helpers used in summaries and emails.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import List, Optional

from db_io import BursaryApplication, BursaryMatch, utcnow

LOW_INCOME_THRESHOLD = 350000
MIDDLE_INCOME_THRESHOLD = 600000
MAX_MATCHES = 3
DEFAULT_AVERAGE = 65.0

# (field_of_study, minimum average or None, match)
FIELD_RULES = [
    (
        "STEM",
        60,
        BursaryMatch(
            name="Siemens Bursary",
            funder="Siemens South Africa",
            match_score=0.92,
            reason="STEM field + strong academics",
            amount="R80,000/year + internship",
            deadline="31 December 2025",
            contact_email="bursaries@siemens.co.za",
        ),
    ),
    (
        "Commerce",
        None,
        BursaryMatch(
            name="Momentum Bursary",
            funder="Momentum Metropolitan",
            match_score=0.85,
            reason="Commerce/Business student",
            amount="Full tuition",
            deadline="15 December 2025",
            contact_email="bursaries@momentum.co.za",
        ),
    ),
    (
        "Health Sciences",
        65,
        BursaryMatch(
            name="Metropolitan Health Bursary",
            funder="Metropolitan Health Group",
            match_score=0.88,
            reason="Health Sciences + good performance",
            amount="R60,000/year",
            deadline="30 November 2025",
            contact_email="bursaries@metropolitanhealth.co.za",
        ),
    ),
]

NEED_BASED_MATCH = BursaryMatch(
    name="General Financial Aid",
    funder="FutureMe Fund",
    match_score=0.7,
    reason="Financial need-based",
    amount="Varies",
    deadline="Ongoing",
    contact_email="support@futureme.co.za",
)


def match_bursaries(application: BursaryApplication) -> List[BursaryMatch]:
    average = application.academic_average if application.academic_average is not None else DEFAULT_AVERAGE
    matches: List[BursaryMatch] = []
    for field_of_study, min_average, match in FIELD_RULES:
        if application.field_of_study != field_of_study:
            continue
        if min_average is not None and average < min_average:
            continue
        matches.append(match)
    income = application.household_income
    if not matches and income is not None and income < LOW_INCOME_THRESHOLD:
        matches.append(NEED_BASED_MATCH)
    return [BursaryMatch(**vars(m)) for m in matches[:MAX_MATCHES]]


def calculate_score(application: BursaryApplication) -> int:
    """Additive eligibility score: base 50, capped at 100."""
    score = 50
    if application.is_sa_citizen:
        score += 10
    average = application.academic_average or 0
    if average >= 75:
        score += 20
    elif average >= 60:
        score += 15
    if application.household_income is not None and application.household_income < LOW_INCOME_THRESHOLD:
        score += 15
    if application.field_of_study == "STEM":
        score += 5
    return min(score, 100)


_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))

def generate_ref(application: BursaryApplication, now: Optional[datetime] = None) -> str:
    """FME-<initials>-<base36 millisecond timestamp>."""
    words = re.findall(r"[A-Za-z]+", application.full_name or "")
    initials = "".join(word[0] for word in words).upper() or "USER"
    millis = int((now or utcnow()).timestamp() * 1000)
    return f"FME-{initials}-{to_base36(millis)}"


def format_matches(matches: List[BursaryMatch]) -> str:
    if not matches:
        return "• We're still analysing your profile for the best matches."
    return "\n".join(f"{idx}. {m.name} ({round(m.match_score * 100)}% match)" for idx, m in enumerate(matches, start=1))

def income_bracket_label(income: Optional[int]) -> str:
    if income is None:
        return "Unknown"
    if income <= LOW_INCOME_THRESHOLD:
        return "Low Income (High Priority)"
    if income <= MIDDLE_INCOME_THRESHOLD:
        return "Middle Income"
    return "High Income"

def performance_badge(average: Optional[float]) -> str:
    if average is None:
        return ""
    if average >= 80:
        return "🌟 Outstanding"
    if average >= 70:
        return "⭐ Excellent"
    if average >= 60:
        return "✅ Good"
    if average >= 50:
        return "👍 Pass"
    return ""

def format_rands(amount: Optional[int]) -> str:
    if amount is None:
        return "R?"
    return "R{:,}".format(int(amount)).replace(",", " ")
