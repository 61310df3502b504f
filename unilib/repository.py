"""Storage boundary for the library engine.

``Repository`` is what the managers and the loan engine depend on. The
``SqlAlchemyRepository`` implementation wraps one ORM session; every
``SQLAlchemyError`` leaving it is re-raised as ``DatabaseError``.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Protocol, Type, TypeVar

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from unilib.exceptions import DatabaseError
from unilib.models import CatalogItem, HistoryEntry, Loan, LoanStatus, User
from unilib.schemas import ItemFilterParams, LoanFilterParams, UserFilterParams

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class Repository(Protocol):
    def get(self, model: Type[T], record_id: int) -> Optional[T]:
        ...

    def get_item(self, item_id: int) -> Optional[CatalogItem]:
        ...

    def find_user_by_national_id(self, national_id: str) -> Optional[User]:
        ...

    def find_item_by_code(self, code: str) -> Optional[CatalogItem]:
        ...

    def find_item_by_isbn(
        self, isbn: str, exclude_id: Optional[int] = None
    ) -> Optional[CatalogItem]:
        ...

    def list_users(self, filters: UserFilterParams) -> List[User]:
        ...

    def list_items(self, filters: ItemFilterParams) -> List[CatalogItem]:
        ...

    def list_loans(self, filters: LoanFilterParams, now: datetime) -> List[Loan]:
        ...

    def count_outstanding_loans(
        self, user_id: Optional[int] = None, item_id: Optional[int] = None
    ) -> int:
        ...

    def create(self, record: T) -> T:
        ...

    def update(self, record: T, changes: dict) -> T:
        ...

    def move_copy(self, item: CatalogItem, to_borrowed: bool) -> bool:
        ...

    def set_total_copies(self, item: CatalogItem, new_total: int) -> bool:
        ...

    def close_loan(self, loan: Loan, returned_at: datetime, librarian: str) -> bool:
        ...

    def mark_overdue(self, now: datetime) -> int:
        ...

    def run_atomically(self, work: Callable[[], R]) -> R:
        ...

    def discard(self) -> None:
        ...


class SqlAlchemyRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    # reads

    def get(self, model, record_id):
        try:
            return self.session.get(model, record_id)
        except SQLAlchemyError as e:
            raise DatabaseError("fetch", str(e))

    def get_item(self, item_id):
        item = self.get(CatalogItem, item_id)
        if item is None or item.removed_at is not None:
            return None
        return item

    def _first(self, statement):
        try:
            return self.session.scalars(statement.limit(1)).first()
        except SQLAlchemyError as e:
            raise DatabaseError("fetch", str(e))

    def _all(self, statement):
        try:
            return list(self.session.scalars(statement).all())
        except SQLAlchemyError as e:
            raise DatabaseError("query", str(e))

    def find_user_by_national_id(self, national_id):
        return self._first(select(User).where(User.national_id == national_id))

    def find_item_by_code(self, code):
        # removed items keep their code reserved
        return self._first(select(CatalogItem).where(CatalogItem.code == code))

    def find_item_by_isbn(self, isbn, exclude_id=None):
        statement = select(CatalogItem).where(
            CatalogItem.isbn == isbn, CatalogItem.removed_at.is_(None)
        )
        if exclude_id is not None:
            statement = statement.where(CatalogItem.id != exclude_id)
        return self._first(statement)

    def list_users(self, filters):
        statement = select(User)
        if filters.name:
            statement = statement.where(User.name.ilike(f"%{filters.name}%"))
        if filters.national_id:
            statement = statement.where(User.national_id == filters.national_id)
        if filters.category is not None:
            statement = statement.where(User.category == filters.category)
        if filters.active is not None:
            statement = statement.where(User.active == filters.active)
        if filters.registration_number:
            statement = statement.where(
                User.registration_number == filters.registration_number
            )
        return self._all(statement.order_by(User.created_at.desc(), User.id.desc()))

    def list_items(self, filters):
        statement = select(CatalogItem).where(CatalogItem.removed_at.is_(None))
        if filters.title:
            statement = statement.where(CatalogItem.title.ilike(f"%{filters.title}%"))
        if filters.author:
            statement = statement.where(CatalogItem.author.ilike(f"%{filters.author}%"))
        if filters.category:
            statement = statement.where(
                CatalogItem.category.ilike(f"%{filters.category}%")
            )
        if filters.code:
            statement = statement.where(CatalogItem.code == filters.code)
        if filters.isbn:
            statement = statement.where(CatalogItem.isbn == filters.isbn)
        if filters.available is True:
            statement = statement.where(CatalogItem.available_copies > 0)
        elif filters.available is False:
            statement = statement.where(CatalogItem.available_copies <= 0)
        return self._all(
            statement.order_by(CatalogItem.created_at.desc(), CatalogItem.id.desc())
        )

    def list_loans(self, filters, now):
        statement = select(Loan).options(
            selectinload(Loan.user), selectinload(Loan.item)
        )
        if filters.user_id is not None:
            statement = statement.where(Loan.user_id == filters.user_id)
        if filters.item_id is not None:
            statement = statement.where(Loan.item_id == filters.item_id)
        if filters.status == LoanStatus.ACTIVE:
            statement = statement.where(
                Loan.status == LoanStatus.ACTIVE, Loan.expected_return_date >= now
            )
        elif filters.status == LoanStatus.OVERDUE:
            statement = statement.where(
                or_(
                    Loan.status == LoanStatus.OVERDUE,
                    and_(
                        Loan.status == LoanStatus.ACTIVE,
                        Loan.expected_return_date < now,
                    ),
                )
            )
        elif filters.status == LoanStatus.RETURNED:
            statement = statement.where(Loan.status == LoanStatus.RETURNED)
        if filters.start is not None:
            statement = statement.where(Loan.loan_date >= filters.start)
        if filters.end is not None:
            statement = statement.where(Loan.loan_date <= filters.end)
        return self._all(statement.order_by(Loan.created_at.desc(), Loan.id.desc()))

    def count_outstanding_loans(self, user_id=None, item_id=None):
        statement = select(func.count(Loan.id)).where(
            Loan.status != LoanStatus.RETURNED
        )
        if user_id is not None:
            statement = statement.where(Loan.user_id == user_id)
        if item_id is not None:
            statement = statement.where(Loan.item_id == item_id)
        try:
            return self.session.scalar(statement) or 0
        except SQLAlchemyError as e:
            raise DatabaseError("count", str(e))

    # writes

    def create(self, record):
        try:
            self.session.add(record)
            self.session.flush()
            return record
        except SQLAlchemyError as e:
            raise DatabaseError("create", str(e))

    def update(self, record, changes):
        try:
            for field, value in changes.items():
                setattr(record, field, value)
            self.session.flush()
            return record
        except SQLAlchemyError as e:
            raise DatabaseError("update", str(e))

    def _execute_guarded(self, operation: str, statement) -> int:
        try:
            result = self.session.execute(
                statement, execution_options={"synchronize_session": False}
            )
            return result.rowcount
        except SQLAlchemyError as e:
            raise DatabaseError(operation, str(e))

    def _refresh(self, record) -> None:
        try:
            self.session.refresh(record)
        except SQLAlchemyError as e:
            raise DatabaseError("refresh", str(e))

    def move_copy(self, item, to_borrowed):
        """Move one copy between the available and borrowed counters.

        The move only happens while the source counter is positive, so two
        concurrent checkouts of the last copy cannot both succeed.
        """
        if to_borrowed:
            statement = (
                update(CatalogItem)
                .where(CatalogItem.id == item.id, CatalogItem.available_copies > 0)
                .values(
                    available_copies=CatalogItem.available_copies - 1,
                    borrowed_copies=CatalogItem.borrowed_copies + 1,
                )
            )
        else:
            statement = (
                update(CatalogItem)
                .where(CatalogItem.id == item.id, CatalogItem.borrowed_copies > 0)
                .values(
                    available_copies=CatalogItem.available_copies + 1,
                    borrowed_copies=CatalogItem.borrowed_copies - 1,
                )
            )
        moved = self._execute_guarded("inventory update", statement) == 1
        self._refresh(item)
        return moved

    def set_total_copies(self, item, new_total):
        statement = (
            update(CatalogItem)
            .where(CatalogItem.id == item.id, CatalogItem.borrowed_copies <= new_total)
            .values(
                total_copies=new_total,
                available_copies=new_total - CatalogItem.borrowed_copies,
            )
        )
        changed = self._execute_guarded("quantity update", statement) == 1
        self._refresh(item)
        return changed

    def close_loan(self, loan, returned_at, librarian):
        statement = (
            update(Loan)
            .where(Loan.id == loan.id, Loan.status != LoanStatus.RETURNED)
            .values(
                status=LoanStatus.RETURNED,
                actual_return_date=returned_at,
                librarian=librarian,
            )
        )
        closed = self._execute_guarded("loan return", statement) == 1
        self._refresh(loan)
        return closed

    def mark_overdue(self, now):
        statement = (
            update(Loan)
            .where(Loan.status == LoanStatus.ACTIVE, Loan.expected_return_date < now)
            .values(status=LoanStatus.OVERDUE)
        )
        return self._execute_guarded("overdue sweep", statement)

    # transactions

    def run_atomically(self, work):
        """Run ``work`` and commit, or roll everything back if it raises."""
        try:
            result = work()
            self.session.commit()
            return result
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DatabaseError("transaction", str(e))
        except Exception:
            self.session.rollback()
            raise

    def discard(self) -> None:
        """End the current transaction without writing anything."""
        try:
            self.session.rollback()
        except SQLAlchemyError as e:
            raise DatabaseError("rollback", str(e))
