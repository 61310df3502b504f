from datetime import date, datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from unilib.models import LoanStatus, UserCategory
from unilib.policy import normalize_category

T = TypeVar("T")


class ResultEnvelope(BaseModel, Generic[T]):
    """Uniform result returned by every caller-facing operation."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None

    _status_code: int = PrivateAttr(default=200)

    @property
    def status_code(self) -> int:
        return self._status_code

    @classmethod
    def ok(cls, data=None, status_code: int = 200) -> "ResultEnvelope":
        envelope = cls(success=True, data=data)
        envelope._status_code = status_code
        return envelope

    @classmethod
    def failure(cls, error: str, status_code: int = 400) -> "ResultEnvelope":
        envelope = cls(success=False, error=error)
        envelope._status_code = status_code
        return envelope


def _parse_category(value):
    if value is None:
        return value
    category = normalize_category(value)
    if category is None:
        raise ValueError(f"unknown user category: {value}")
    return category


def _reject_null(value, info):
    if value is None:
        raise ValueError(f"{info.field_name} cannot be null")
    return value


def _blank_to_none(value):
    # an empty email clears the field
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Users


class UserBase(BaseModel):
    name: str = Field(min_length=1)
    birth_date: Optional[date] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    category: UserCategory = UserCategory.STUDENT
    email: Optional[str] = None
    registration_number: Optional[str] = None
    department: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def parse_category(cls, value):
        return _parse_category(value)

    @field_validator("email", mode="before")
    @classmethod
    def blank_email(cls, value):
        return _blank_to_none(value)


class UserCreate(UserBase):
    national_id: str


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    birth_date: Optional[date] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    category: Optional[UserCategory] = None
    email: Optional[str] = None
    registration_number: Optional[str] = None
    department: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def parse_category(cls, value):
        return _parse_category(value)

    @field_validator("email", mode="before")
    @classmethod
    def blank_email(cls, value):
        return _blank_to_none(value)

    # optional to allow partial updates, but never clearable
    @field_validator("name", "category")
    @classmethod
    def not_null(cls, value, info):
        return _reject_null(value, info)


class UserUpdateRequest(BaseModel):
    changes: UserUpdate
    actor: str = Field(min_length=1)


class DeactivateRequest(BaseModel):
    reason: str = Field(min_length=1)
    actor: str = Field(min_length=1)


class HistoryEntrySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    field: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    actor: str
    changed_at: datetime


class UserSchema(UserBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    national_id: str
    active: bool
    created_at: datetime
    updated_at: datetime


class UserDetailSchema(UserSchema):
    history: List[HistoryEntrySchema] = []


class UserFilterParams(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    national_id: Optional[str] = None
    category: Optional[UserCategory] = None
    active: Optional[bool] = None
    registration_number: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def parse_category(cls, value):
        return _parse_category(value)


# Catalog


class CatalogItemBase(BaseModel):
    code: str = Field(min_length=1)
    isbn: Optional[str] = None
    title: str = Field(min_length=1)
    author: str
    category: str


class CatalogItemCreate(CatalogItemBase):
    total_copies: int


class CatalogItemUpdate(BaseModel):
    isbn: Optional[str] = None
    title: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = None
    category: Optional[str] = None

    @field_validator("title", "author", "category")
    @classmethod
    def not_null(cls, value, info):
        return _reject_null(value, info)


class QuantityUpdate(BaseModel):
    total_copies: int


class CatalogItemSchema(CatalogItemBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    total_copies: int
    available_copies: int
    borrowed_copies: int
    created_at: datetime
    updated_at: datetime


class ItemFilterParams(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    author: Optional[str] = Field(None, min_length=1, max_length=100)
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    code: Optional[str] = None
    isbn: Optional[str] = None
    available: Optional[bool] = None


# Loans


class LoanCreate(BaseModel):
    user_id: int
    item_id: int
    librarian: str = Field(min_length=1)


class LoanReturn(BaseModel):
    librarian: str = Field(min_length=1)


class LoanSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    item_id: int
    loan_date: datetime
    expected_return_date: datetime
    actual_return_date: Optional[datetime] = None
    status: LoanStatus
    librarian: str
    created_at: datetime
    user: Optional[UserSchema] = None
    item: Optional[CatalogItemSchema] = None

    @classmethod
    def from_loan(cls, loan, now: datetime) -> "LoanSchema":
        schema = cls.model_validate(loan)
        return schema.model_copy(update={"status": loan.effective_status(now)})


class LoanFilterParams(BaseModel):
    user_id: Optional[int] = None
    item_id: Optional[int] = None
    status: Optional[LoanStatus] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class SweepResult(BaseModel):
    marked_overdue: int
