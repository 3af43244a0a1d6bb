from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from .errors import StorageFault


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        # Request threads share the file; writers queue on SQLite's lock instead of failing fast.
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(database_url, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def storage_guard() -> Iterator[None]:
    """Report lost connectivity and failed transactions as StorageFault."""
    try:
        yield
    except (OperationalError, PoolTimeoutError) as e:
        raise StorageFault(f"storage unavailable: {e.__class__.__name__}") from e
