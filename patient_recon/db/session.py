from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def build_engine(database_url: str) -> Engine:
    return create_engine(database_url, pool_pre_ping=True)


@contextmanager
def session_scope(database_url: str) -> Iterator[Session]:
    """Own one engine and session for the length of a run.

    The session is closed and the pool disposed on every exit path,
    including a fatal error raised inside the block.
    """
    engine = build_engine(database_url)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session: Session = session_factory()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
