import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class UserCategory(str, enum.Enum):
    STUDENT = "student"
    PROFESSOR = "professor"
    VISITOR = "visitor"
    LIBRARIAN = "librarian"


class LoanStatus(str, enum.Enum):
    ACTIVE = "active"
    RETURNED = "returned"
    OVERDUE = "overdue"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def utcnow():
    # timestamps are stored as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    birth_date = Column(Date, nullable=True)
    national_id = Column(String(14), unique=True, nullable=False, index=True)
    phone = Column(String, nullable=True)
    address = Column(String, nullable=True)
    category = Column(
        Enum(UserCategory, values_callable=_enum_values, native_enum=False),
        nullable=False,
        default=UserCategory.STUDENT,
    )
    email = Column(String, nullable=True)
    registration_number = Column(String, nullable=True, index=True)
    department = Column(String, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class CatalogItem(Base):
    __tablename__ = "catalog_items"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, nullable=False, index=True)
    isbn = Column(String, nullable=True, index=True)
    title = Column(String, nullable=False)
    author = Column(String, nullable=False)
    category = Column(String, nullable=False)
    total_copies = Column(Integer, nullable=False, default=0)
    available_copies = Column(Integer, nullable=False, default=0)
    borrowed_copies = Column(Integer, nullable=False, default=0)
    removed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Loan(Base):
    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey("catalog_items.id"), nullable=False, index=True)
    loan_date = Column(DateTime, nullable=False, default=utcnow)
    expected_return_date = Column(DateTime, nullable=False)
    actual_return_date = Column(DateTime, nullable=True)
    status = Column(
        Enum(LoanStatus, values_callable=_enum_values, native_enum=False),
        nullable=False,
        default=LoanStatus.ACTIVE,
        index=True,
    )
    librarian = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="loans")
    item = relationship("CatalogItem", back_populates="loans")

    @property
    def is_outstanding(self) -> bool:
        return self.status != LoanStatus.RETURNED

    def effective_status(self, now) -> LoanStatus:
        """Status as seen at ``now``: an active loan past its due date reads as overdue."""
        if self.status == LoanStatus.ACTIVE and self.expected_return_date < now:
            return LoanStatus.OVERDUE
        return self.status


class HistoryEntry(Base):
    __tablename__ = "history_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    field = Column(String, nullable=False)
    old_value = Column(String, nullable=True)
    new_value = Column(String, nullable=True)
    actor = Column(String, nullable=False)
    changed_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="history")


User.loans = relationship("Loan", back_populates="user")
User.history = relationship(
    "HistoryEntry", back_populates="user", order_by=HistoryEntry.id.desc()
)
CatalogItem.loans = relationship("Loan", back_populates="item")
