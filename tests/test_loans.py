from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from conftest import FrozenClock
from unilib.exceptions import DatabaseError
from unilib.models import LoanStatus
from unilib.repository import SqlAlchemyRepository
from unilib.schemas import LoanFilterParams
from unilib.service import LibraryService


def item_counters(service, item_id):
    result = service.query_catalog_items()
    item = next(i for i in result.data if i.id == item_id)
    return item.total_copies, item.available_copies, item.borrowed_copies


def test_create_loan(service, test_user, test_item):
    result = service.create_loan(test_user.id, test_item.id, "Ana Librarian")

    assert result.success is True
    assert result.error is None
    assert result.status_code == 201
    loan = result.data
    assert loan.user_id == test_user.id
    assert loan.item_id == test_item.id
    assert loan.status == LoanStatus.ACTIVE
    assert loan.librarian == "Ana Librarian"
    assert loan.actual_return_date is None
    assert loan.expected_return_date == loan.loan_date + timedelta(days=7)
    assert loan.user.national_id == test_user.national_id
    assert loan.item.code == "CC001"


def test_create_loan_moves_one_copy(service, test_user, test_item):
    assert item_counters(service, test_item.id) == (3, 3, 0)

    result = service.create_loan(test_user.id, test_item.id, "Ana")

    assert result.success is True
    assert result.data.item.available_copies == 2
    assert result.data.item.borrowed_copies == 1
    assert item_counters(service, test_item.id) == (3, 2, 1)


@pytest.mark.parametrize("category, days", [("student", 7), ("professor", 14), ("visitor", 3)])
def test_due_date_follows_user_category(service, register_user, test_item, category, days):
    user = register_user(category)
    loan_date = datetime(2024, 1, 29, 10, 0)
    frozen = LibraryService(service.repository, clock=FrozenClock(loan_date))

    result = frozen.create_loan(user.id, test_item.id, "Ana")

    assert result.success is True
    assert result.data.loan_date == loan_date
    assert result.data.expected_return_date == loan_date + timedelta(days=days)


def test_create_loan_user_not_found(service, test_item):
    result = service.create_loan(9999, test_item.id, "Ana")

    assert result.success is False
    assert result.error == "user not found"
    assert result.status_code == 404
    assert result.data is None


def test_create_loan_user_inactive(service, test_user, test_item):
    assert service.deactivate_user(test_user.id, "graduated", "Ana").success

    result = service.create_loan(test_user.id, test_item.id, "Ana")

    assert result.success is False
    assert result.error == "user inactive"
    assert item_counters(service, test_item.id) == (3, 3, 0)


def test_create_loan_item_not_found(service, test_user):
    result = service.create_loan(test_user.id, 9999, "Ana")

    assert result.success is False
    assert result.error == "item not found"


def test_create_loan_item_not_available(service, register_user, add_item):
    item = add_item(total_copies=1)
    first = register_user("student")
    second = register_user("student")
    assert service.create_loan(first.id, item.id, "Ana").success

    result = service.create_loan(second.id, item.id, "Ana")

    assert result.success is False
    assert result.error == "item not available for loan"
    assert item_counters(service, item.id) == (1, 0, 1)


def test_create_loan_item_without_copies(service, test_user, add_item):
    item = add_item(total_copies=0)

    result = service.create_loan(test_user.id, item.id, "Ana")

    assert result.error == "item not available for loan"


@pytest.mark.parametrize("category, limit", [("student", 3), ("professor", 5), ("visitor", 1)])
def test_create_loan_limit_reached(service, register_user, add_item, category, limit):
    user = register_user(category)
    item = add_item(total_copies=10)
    for _ in range(limit):
        assert service.create_loan(user.id, item.id, "Ana").success

    result = service.create_loan(user.id, item.id, "Ana")

    assert result.success is False
    assert result.error == f"limit of {limit} loans reached"
    assert result.status_code == 409
    assert item_counters(service, item.id) == (10, 10 - limit, limit)


def test_returned_loans_free_the_limit(service, register_user, test_item):
    visitor = register_user("visitor")
    loan = service.create_loan(visitor.id, test_item.id, "Ana").data
    assert service.return_loan(loan.id, "Bruno").success

    result = service.create_loan(visitor.id, test_item.id, "Ana")

    assert result.success is True


def test_return_loan(service, test_user, test_item):
    loan = service.create_loan(test_user.id, test_item.id, "Ana").data

    result = service.return_loan(loan.id, "Bruno")

    assert result.success is True
    returned = result.data
    assert returned.status == LoanStatus.RETURNED
    assert returned.actual_return_date is not None
    assert returned.librarian == "Ana / returned by: Bruno"
    assert item_counters(service, test_item.id) == (3, 3, 0)


def test_double_return_is_rejected(service, test_user, test_item):
    loan = service.create_loan(test_user.id, test_item.id, "Ana").data
    service.create_loan(test_user.id, test_item.id, "Ana")
    assert service.return_loan(loan.id, "Bruno").success
    counters = item_counters(service, test_item.id)

    result = service.return_loan(loan.id, "Bruno")

    assert result.success is False
    assert result.error == "loan already returned"
    assert item_counters(service, test_item.id) == counters == (3, 2, 1)


def test_return_loan_not_found(service):
    result = service.return_loan(9999, "Bruno")

    assert result.success is False
    assert result.error == "loan not found"


def test_overdue_is_derived_on_read(service, test_user, test_item):
    past = LibraryService(service.repository, clock=FrozenClock(datetime(2024, 1, 1, 10)))
    loan = past.create_loan(test_user.id, test_item.id, "Ana").data
    assert loan.status == LoanStatus.ACTIVE

    result = service.query_loans(LoanFilterParams(user_id=test_user.id))

    assert [l.status for l in result.data] == [LoanStatus.OVERDUE]
    overdue = service.query_loans(LoanFilterParams(status=LoanStatus.OVERDUE))
    assert [l.id for l in overdue.data] == [loan.id]
    assert service.query_loans(LoanFilterParams(status=LoanStatus.ACTIVE)).data == []


def test_sweep_overdue_persists_status(service, register_user, test_item):
    late = register_user("student")
    on_time = register_user("student")
    past = LibraryService(service.repository, clock=FrozenClock(datetime(2024, 1, 1, 10)))
    late_loan = past.create_loan(late.id, test_item.id, "Ana").data
    on_time_loan = service.create_loan(on_time.id, test_item.id, "Ana").data

    result = service.sweep_overdue()

    assert result.success is True
    assert result.data.marked_overdue == 1
    statuses = {l.id: l.status for l in service.query_loans().data}
    assert statuses == {late_loan.id: LoanStatus.OVERDUE, on_time_loan.id: LoanStatus.ACTIVE}
    assert service.sweep_overdue().data.marked_overdue == 0


def test_overdue_loans_count_towards_the_limit(service, register_user, test_item):
    visitor = register_user("visitor")
    past = LibraryService(service.repository, clock=FrozenClock(datetime(2024, 1, 1, 10)))
    assert past.create_loan(visitor.id, test_item.id, "Ana").success
    service.sweep_overdue()

    result = service.create_loan(visitor.id, test_item.id, "Ana")

    assert result.error == "limit of 1 loans reached"


def test_overdue_loan_can_be_returned(service, test_user, test_item):
    past = LibraryService(service.repository, clock=FrozenClock(datetime(2024, 1, 1, 10)))
    loan = past.create_loan(test_user.id, test_item.id, "Ana").data
    service.sweep_overdue()

    result = service.return_loan(loan.id, "Bruno")

    assert result.success is True
    assert result.data.status == LoanStatus.RETURNED
    assert item_counters(service, test_item.id) == (3, 3, 0)


def test_query_loans_filters(service, register_user, add_item):
    alice = register_user("student")
    bob = register_user("professor")
    book = add_item(total_copies=5)
    journal = add_item(total_copies=5, title="Journal of Algorithms")
    january = LibraryService(service.repository, clock=FrozenClock(datetime(2024, 1, 10, 9)))
    march = LibraryService(service.repository, clock=FrozenClock(datetime(2024, 3, 10, 9)))

    first = january.create_loan(alice.id, book.id, "Ana").data
    second = march.create_loan(alice.id, journal.id, "Ana").data
    third = march.create_loan(bob.id, book.id, "Ana").data
    march.return_loan(third.id, "Bruno")

    def ids(**filters):
        result = service.query_loans(LoanFilterParams(**filters))
        assert result.success is True
        return {l.id for l in result.data}

    assert ids() == {first.id, second.id, third.id}
    assert ids(user_id=alice.id) == {first.id, second.id}
    assert ids(item_id=book.id) == {first.id, third.id}
    assert ids(status=LoanStatus.RETURNED) == {third.id}
    assert ids(start=datetime(2024, 3, 1)) == {second.id, third.id}
    assert ids(end=datetime(2024, 2, 1)) == {first.id}
    assert ids(user_id=alice.id, start=datetime(2024, 1, 1), end=datetime(2024, 1, 31)) == {first.id}


def test_query_loans_includes_user_and_item(service, test_user, test_item):
    service.create_loan(test_user.id, test_item.id, "Ana")

    loan = service.query_loans().data[0]

    assert loan.user.name == "Joao Silva Santos"
    assert loan.item.title == "Clean Code"


def test_failed_loan_insert_rolls_back_inventory(service, test_user, test_item):
    failure = OperationalError("INSERT INTO loans", {}, Exception("disk I/O error"))
    with patch.object(SqlAlchemyRepository, "create", side_effect=failure):
        result = service.create_loan(test_user.id, test_item.id, "Ana")

    assert result.success is False
    assert result.error == "internal error"
    assert result.status_code == 500
    assert "disk" not in result.error
    assert item_counters(service, test_item.id) == (3, 3, 0)
    assert service.query_loans().data == []


def test_unexpected_error_is_reported_as_internal(service, test_user, test_item):
    with patch.object(
        SqlAlchemyRepository, "count_outstanding_loans", side_effect=RuntimeError("boom")
    ):
        result = service.create_loan(test_user.id, test_item.id, "Ana")

    assert result.success is False
    assert result.error == "internal error"


def test_failed_return_keeps_loan_active(service, test_user, test_item):
    loan = service.create_loan(test_user.id, test_item.id, "Ana").data
    with patch.object(
        SqlAlchemyRepository, "move_copy", side_effect=DatabaseError("inventory update", "locked")
    ):
        result = service.return_loan(loan.id, "Bruno")

    assert result.error == "internal error"
    assert service.query_loans().data[0].status == LoanStatus.ACTIVE
    assert item_counters(service, test_item.id) == (3, 2, 1)


def test_query_loans_storage_failure(service):
    with patch.object(
        SqlAlchemyRepository, "list_loans", side_effect=DatabaseError("query", "no such table")
    ):
        result = service.query_loans()

    assert result.success is False
    assert result.error == "error querying loans"
