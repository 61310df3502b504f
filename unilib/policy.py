"""Loan policy per user category.

One table drives both the loan duration and the number of outstanding loans a
user may hold. Categories are matched case-insensitively; anything the table
does not know (``librarian`` included) gets the default policy.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from unilib.models import UserCategory


@dataclass(frozen=True)
class LoanPolicy:
    loan_days: int
    max_loans: int


DEFAULT_POLICY = LoanPolicy(loan_days=7, max_loans=3)

LOAN_POLICIES = {
    UserCategory.STUDENT: LoanPolicy(loan_days=7, max_loans=3),
    UserCategory.PROFESSOR: LoanPolicy(loan_days=14, max_loans=5),
    UserCategory.VISITOR: LoanPolicy(loan_days=3, max_loans=1),
}


def normalize_category(value: Union[UserCategory, str, None]) -> Optional[UserCategory]:
    if isinstance(value, UserCategory):
        return value
    if not value:
        return None
    try:
        return UserCategory(str(value).strip().lower())
    except ValueError:
        return None


def policy_for(category: Union[UserCategory, str, None]) -> LoanPolicy:
    return LOAN_POLICIES.get(normalize_category(category), DEFAULT_POLICY)


def loan_limit(category: Union[UserCategory, str, None]) -> int:
    return policy_for(category).max_loans


def compute_due_date(
    category: Union[UserCategory, str, None], loan_date: datetime
) -> datetime:
    """Add the category's loan period to ``loan_date``, keeping the time of day."""
    return loan_date + timedelta(days=policy_for(category).loan_days)
