import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from unilib.config import settings
from unilib.models import Base

logger = logging.getLogger(__name__)


def _serialize_sqlite_writers(engine: Engine) -> None:
    # every transaction takes the write lock up front; concurrent units of work
    # wait on busy_timeout instead of reading the same inventory counters
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, busy_timeout: float = None) -> Engine:
    if database_url.startswith("sqlite"):
        timeout = settings.sqlite_busy_timeout if busy_timeout is None else busy_timeout
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )
        _serialize_sqlite_writers(engine)
    else:
        engine = create_engine(database_url, pool_pre_ping=True)
    logger.info(f"Database engine created for {engine.url.render_as_string()}")
    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


engine = build_engine(settings.database_url)
SessionLocal = build_session_factory(engine)
