import logging
from datetime import date, datetime
from enum import Enum
from typing import Callable, List, Optional

from unilib.exceptions import (
    DuplicateNationalIdError,
    InvalidEmailError,
    InvalidNationalIdError,
    UserHasActiveLoansError,
    UserNotFoundError,
)
from unilib.loans import LoanEngine
from unilib.models import HistoryEntry, User, utcnow
from unilib.repository import Repository
from unilib.schemas import UserCreate, UserFilterParams, UserUpdate
from unilib.validations import format_national_id, validate_email, validate_national_id

logger = logging.getLogger(__name__)


def _as_text(value) -> str:
    """Render a field value the way it is kept in the change history."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class UserManager:
    def __init__(
        self,
        repository: Repository,
        loans: LoanEngine,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.loans = loans
        self.clock = clock

    def get(self, user_id: int) -> User:
        user = self.repository.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def get_by_national_id(self, national_id: str) -> User:
        user = self.repository.find_user_by_national_id(format_national_id(national_id))
        if user is None:
            raise UserNotFoundError(national_id)
        return user

    def query(self, filters: Optional[UserFilterParams] = None) -> List[User]:
        filters = filters or UserFilterParams()
        if filters.national_id:
            filters = filters.model_copy(
                update={"national_id": format_national_id(filters.national_id)}
            )
        return self.repository.list_users(filters)

    def register(self, data: UserCreate) -> User:
        if not validate_national_id(data.national_id):
            raise InvalidNationalIdError(data.national_id)
        if data.email is not None and not validate_email(data.email):
            raise InvalidEmailError(data.email)

        national_id = format_national_id(data.national_id)
        if self.repository.find_user_by_national_id(national_id) is not None:
            raise DuplicateNationalIdError(national_id)

        fields = data.model_dump(exclude={"national_id"})
        user = self.repository.run_atomically(
            lambda: self.repository.create(
                User(**fields, national_id=national_id, active=True)
            )
        )
        logger.info(f"User {user.id} registered as {user.category.value}")
        return user

    def update(self, user_id: int, patch: UserUpdate, actor: str) -> User:
        changes = patch.model_dump(exclude_unset=True)
        if changes.get("email") is not None and not validate_email(changes["email"]):
            raise InvalidEmailError(changes["email"])

        user = self.get(user_id)
        changed_at = self.clock()
        changed = {}
        entries = []
        for field, new_value in changes.items():
            old_value = getattr(user, field)
            if old_value == new_value:
                continue
            changed[field] = new_value
            entries.append(
                HistoryEntry(
                    user_id=user.id,
                    field=field,
                    old_value=_as_text(old_value),
                    new_value=_as_text(new_value),
                    actor=actor,
                    changed_at=changed_at,
                )
            )

        if not changed:
            return user

        def apply() -> User:
            for entry in entries:
                self.repository.create(entry)
            return self.repository.update(user, changed)

        user = self.repository.run_atomically(apply)
        logger.info(f"User {user.id} updated by {actor}: {', '.join(changed)}")
        return user

    def deactivate(self, user_id: int, reason: str, actor: str) -> User:
        user = self.get(user_id)
        outstanding = self.loans.count_outstanding_loans(user.id)
        if outstanding > 0:
            raise UserHasActiveLoansError(user.id, outstanding)
        if not user.active:
            return user

        def apply() -> User:
            self.repository.create(
                HistoryEntry(
                    user_id=user.id,
                    field="active",
                    old_value=_as_text(True),
                    new_value=_as_text(False),
                    actor=f"{actor} - reason: {reason}",
                    changed_at=self.clock(),
                )
            )
            return self.repository.update(user, {"active": False})

        user = self.repository.run_atomically(apply)
        logger.info(f"User {user.id} deactivated by {actor}")
        return user
