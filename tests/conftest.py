"""Shared pytest fixtures for the progress backend tests."""

import os

# Must be set before db.py is imported anywhere.
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from db import Base
from models.user_progress import UserProgress  # noqa: F401


@pytest.fixture
def session_factory(tmp_path):
    """Session factory bound to a fresh file-backed SQLite database.

    A file (not :memory:) so separate sessions get separate connections,
    which the write-conflict tests rely on.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'progress.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
