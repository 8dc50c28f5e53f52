from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str) -> Engine:
    is_sqlite = database_url.startswith("sqlite")
    connect_args: dict[str, object] = {}
    options: dict[str, object] = {}
    if is_sqlite:
        connect_args["check_same_thread"] = False
    if database_url.endswith(":memory:"):
        # one connection, otherwise every session sees its own empty database
        options["poolclass"] = StaticPool

    eng = create_engine(database_url, connect_args=connect_args, **options)
    if is_sqlite:
        event.listen(eng, "connect", _sqlite_pragmas)
    return eng


def _sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    # subscription_payments.financial_entry_id is enforced
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def make_sessionmaker(eng: Engine) -> sessionmaker:
    return sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)


def create_schema(eng: Engine) -> None:
    """Create all tables directly; deployed databases go through alembic."""
    import models  # noqa: F401

    Base.metadata.create_all(eng)


engine = build_engine(get_settings().database_url)
SessionLocal = make_sessionmaker(engine)


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    session: Session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
