"""Loan eligibility and lifecycle engine.

The engine is the only writer of ``Loan`` records and the only code that moves
copies between the available and borrowed counters of a catalog item. Every
eligibility check runs before anything is written; the loan record and the
counter move are committed together or not at all.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from unilib.exceptions import (
    DatabaseError,
    ItemNotAvailableError,
    ItemNotFoundError,
    LoanAlreadyReturnedError,
    LoanLimitReachedError,
    LoanNotFoundError,
    UserInactiveError,
    UserNotFoundError,
)
from unilib.models import Loan, LoanStatus, User, utcnow
from unilib.policy import compute_due_date, loan_limit
from unilib.repository import Repository
from unilib.schemas import LoanFilterParams

logger = logging.getLogger(__name__)

RETURN_TRAIL_SEPARATOR = " / returned by: "


class LoanEngine:
    def __init__(
        self, repository: Repository, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self.repository = repository
        self.clock = clock

    def count_outstanding_loans(self, user_id: int) -> int:
        return self.repository.count_outstanding_loans(user_id=user_id)

    def get_loan(self, loan_id: int) -> Loan:
        loan = self.repository.get(Loan, loan_id)
        if loan is None:
            raise LoanNotFoundError(loan_id)
        return loan

    def create_loan(self, user_id: int, item_id: int, librarian: str) -> Loan:
        user = self.repository.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if not user.active:
            raise UserInactiveError(user_id)

        item = self.repository.get_item(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        if item.available_copies <= 0:
            raise ItemNotAvailableError(item_id)

        limit = loan_limit(user.category)
        outstanding = self.count_outstanding_loans(user.id)
        if outstanding >= limit:
            raise LoanLimitReachedError(limit)

        loan_date = self.clock()
        due_date = compute_due_date(user.category, loan_date)

        def checkout() -> Loan:
            if not self.repository.move_copy(item, to_borrowed=True):
                # another request took the last copy after our check
                raise ItemNotAvailableError(item_id)
            return self.repository.create(
                Loan(
                    user_id=user.id,
                    item_id=item.id,
                    loan_date=loan_date,
                    expected_return_date=due_date,
                    status=LoanStatus.ACTIVE,
                    librarian=librarian,
                )
            )

        loan = self.repository.run_atomically(checkout)
        logger.info(
            f"Loan {loan.id} created: user={user.id} item={item.id} "
            f"due={due_date.isoformat()} librarian={librarian}"
        )
        return loan

    def return_loan(self, loan_id: int, librarian: str) -> Loan:
        loan = self.get_loan(loan_id)
        if loan.status == LoanStatus.RETURNED:
            raise LoanAlreadyReturnedError(loan_id)

        returned_at = self.clock()
        trail = f"{loan.librarian}{RETURN_TRAIL_SEPARATOR}{librarian}"

        def check_in() -> Loan:
            if not self.repository.close_loan(loan, returned_at, trail):
                raise LoanAlreadyReturnedError(loan_id)
            if not self.repository.move_copy(loan.item, to_borrowed=False):
                raise DatabaseError(
                    "return", f"item {loan.item_id} has no borrowed copies to restore"
                )
            return loan

        loan = self.repository.run_atomically(check_in)
        logger.info(f"Loan {loan.id} returned: item={loan.item_id} librarian={librarian}")
        return loan

    def query_loans(self, filters: Optional[LoanFilterParams] = None) -> List[Loan]:
        return self.repository.list_loans(filters or LoanFilterParams(), self.clock())

    def sweep_overdue(self, now: Optional[datetime] = None) -> int:
        """Persist ``overdue`` on every active loan whose due date has passed."""
        now = now or self.clock()
        marked = self.repository.run_atomically(
            lambda: self.repository.mark_overdue(now)
        )
        if marked:
            logger.info(f"Marked {marked} loan(s) overdue")
        return marked
