import itertools
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from unilib.main import app, get_db
from unilib.models import Base
from unilib.repository import SqlAlchemyRepository
from unilib.schemas import CatalogItemCreate, UserCreate
from unilib.service import LibraryService
from unilib.storage import build_engine, build_session_factory


def make_national_id(base: str) -> str:
    """Append the two CPF check digits to a nine digit base."""
    digits = [int(d) for d in base]
    for first_weight in (10, 11):
        total = sum(d * w for d, w in zip(digits, range(first_weight, 1, -1)))
        check = 11 - total % 11
        digits.append(0 if check >= 10 else check)
    return "".join(str(d) for d in digits)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(scope="function")
def engine(tmp_path):
    # A file database so that separate sessions (and threads) see each other
    test_engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}", busy_timeout=30)
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def service(db_session):
    return LibraryService(SqlAlchemyRepository(db_session))


@pytest.fixture(scope="function")
def client(session_factory):
    app.state.testing = True

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.testing = False


@pytest.fixture(scope="function")
def register_user(service):
    bases = itertools.count(100000001)

    def _register(category="student", **overrides):
        data = {
            "name": "Test User",
            "national_id": make_national_id(str(next(bases))),
            "birth_date": "1995-05-15",
            "phone": "(91) 99999-9999",
            "address": "Rua das Flores, 123",
            "category": category,
            "email": "test.user@university.edu",
        }
        data.update(overrides)
        result = service.register_user(UserCreate(**data))
        assert result.success, result.error
        return result.data

    return _register


@pytest.fixture(scope="function")
def add_item(service):
    codes = itertools.count(1)

    def _add(total_copies=1, **overrides):
        code = next(codes)
        data = {
            "code": f"IT{code:03d}",
            "isbn": None,
            "title": "Clean Code",
            "author": "Robert C. Martin",
            "category": "Technology",
            "total_copies": total_copies,
        }
        data.update(overrides)
        result = service.add_catalog_item(CatalogItemCreate(**data))
        assert result.success, result.error
        return result.data

    return _add


@pytest.fixture(scope="function")
def test_user(register_user):
    return register_user("student", name="Joao Silva Santos")


@pytest.fixture(scope="function")
def test_item(add_item):
    return add_item(total_copies=3, code="CC001", isbn="9780132350884")
