"""Caller-facing API of the library engine.

Every method returns a ``ResultEnvelope``. Domain rejections come back with
their message as-is; storage and unexpected failures are logged here and
reported with a generic message only.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from unilib.catalog import CatalogManager
from unilib.exceptions import (
    INTERNAL_ERROR_MESSAGE,
    DatabaseError,
    InternalError,
    LibraryException,
    QueryError,
)
from unilib.loans import LoanEngine
from unilib.models import utcnow
from unilib.repository import Repository
from unilib.schemas import (
    CatalogItemCreate,
    CatalogItemSchema,
    CatalogItemUpdate,
    ItemFilterParams,
    LoanFilterParams,
    LoanSchema,
    ResultEnvelope,
    SweepResult,
    UserCreate,
    UserDetailSchema,
    UserFilterParams,
    UserSchema,
    UserUpdate,
)
from unilib.users import UserManager

logger = logging.getLogger(__name__)


class LibraryService:
    def __init__(
        self, repository: Repository, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self.repository = repository
        self.clock = clock
        self.loans = LoanEngine(repository, clock)
        self.users = UserManager(repository, self.loans, clock)
        self.catalog = CatalogManager(repository, clock)

    def _execute(
        self,
        operation: str,
        work: Callable[[], object],
        status_code: int = 200,
        failure_message: str = INTERNAL_ERROR_MESSAGE,
    ) -> ResultEnvelope:
        try:
            return ResultEnvelope.ok(work(), status_code)
        except (DatabaseError, InternalError) as e:
            logger.error(f"Error during {operation}: {str(e)}")
            if isinstance(e, InternalError):
                failure_message = e.message
            return ResultEnvelope.failure(failure_message, e.status_code)
        except LibraryException as e:
            logger.info(f"{operation} rejected: {e.message}")
            return ResultEnvelope.failure(e.message, e.status_code)
        except Exception:
            logger.exception(f"Unexpected error during {operation}")
            return ResultEnvelope.failure(failure_message, InternalError.status_code)
        finally:
            try:
                self.repository.discard()
            except DatabaseError as e:
                logger.error(f"Error closing transaction after {operation}: {str(e)}")

    # users

    def register_user(self, data: UserCreate) -> ResultEnvelope:
        return self._execute(
            "register user",
            lambda: UserSchema.model_validate(self.users.register(data)),
            status_code=201,
        )

    def query_users(self, filters: Optional[UserFilterParams] = None) -> ResultEnvelope:
        return self._execute(
            "query users",
            lambda: [UserSchema.model_validate(u) for u in self.users.query(filters)],
            failure_message=QueryError("users").message,
        )

    def get_user(self, user_id: int) -> ResultEnvelope:
        return self._execute(
            "get user",
            lambda: UserDetailSchema.model_validate(self.users.get(user_id)),
        )

    def find_user_by_national_id(self, national_id: str) -> ResultEnvelope:
        return self._execute(
            "find user",
            lambda: UserSchema.model_validate(
                self.users.get_by_national_id(national_id)
            ),
        )

    def update_user(self, user_id: int, patch: UserUpdate, actor: str) -> ResultEnvelope:
        return self._execute(
            "update user",
            lambda: UserSchema.model_validate(self.users.update(user_id, patch, actor)),
        )

    def deactivate_user(self, user_id: int, reason: str, actor: str) -> ResultEnvelope:
        return self._execute(
            "deactivate user",
            lambda: UserSchema.model_validate(
                self.users.deactivate(user_id, reason, actor)
            ),
        )

    # loans

    def _loan_schema(self, loan) -> LoanSchema:
        return LoanSchema.from_loan(loan, self.clock())

    def create_loan(self, user_id: int, item_id: int, librarian: str) -> ResultEnvelope:
        return self._execute(
            "create loan",
            lambda: self._loan_schema(
                self.loans.create_loan(user_id, item_id, librarian)
            ),
            status_code=201,
        )

    def return_loan(self, loan_id: int, librarian: str) -> ResultEnvelope:
        return self._execute(
            "return loan",
            lambda: self._loan_schema(self.loans.return_loan(loan_id, librarian)),
        )

    def query_loans(self, filters: Optional[LoanFilterParams] = None) -> ResultEnvelope:
        return self._execute(
            "query loans",
            lambda: [self._loan_schema(l) for l in self.loans.query_loans(filters)],
            failure_message=QueryError("loans").message,
        )

    def sweep_overdue(self) -> ResultEnvelope:
        return self._execute(
            "overdue sweep",
            lambda: SweepResult(marked_overdue=self.loans.sweep_overdue()),
        )

    # catalog

    def add_catalog_item(self, data: CatalogItemCreate) -> ResultEnvelope:
        return self._execute(
            "add catalog item",
            lambda: CatalogItemSchema.model_validate(self.catalog.add_item(data)),
            status_code=201,
        )

    def query_catalog_items(
        self, filters: Optional[ItemFilterParams] = None
    ) -> ResultEnvelope:
        return self._execute(
            "query catalog items",
            lambda: [
                CatalogItemSchema.model_validate(i) for i in self.catalog.query(filters)
            ],
            failure_message=QueryError("items").message,
        )

    def update_catalog_item(self, item_id: int, patch: CatalogItemUpdate) -> ResultEnvelope:
        return self._execute(
            "update catalog item",
            lambda: CatalogItemSchema.model_validate(
                self.catalog.update_details(item_id, patch)
            ),
        )

    def update_catalog_item_quantity(self, item_id: int, new_total: int) -> ResultEnvelope:
        return self._execute(
            "update catalog item quantity",
            lambda: CatalogItemSchema.model_validate(
                self.catalog.update_quantity(item_id, new_total)
            ),
        )

    def remove_catalog_item(self, item_id: int) -> ResultEnvelope:
        return self._execute(
            "remove catalog item",
            lambda: CatalogItemSchema.model_validate(self.catalog.remove_item(item_id)),
        )
