"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from tally.database.models import Base, Block, User
from tally.services.blocks_service import BlocksService
from tally.services.results import UserSnapshot
from tally.services.user_store import UserStore
from tally.services.users_updater import UsersUpdater

NETWORK_VERSION = 1


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Tally tables.

    Uses StaticPool so every session (and thread) shares the same
    in-memory database.  Not suitable for concurrent writers.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine — one connection per thread, real locking.

    Used by the race tests: the second writer blocks on the database lock
    until the first commits, then hits the unique index.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'tally.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine) -> UserStore:
    return UserStore(db_engine)


@pytest.fixture
def blocks() -> BlocksService:
    return BlocksService(NETWORK_VERSION)


@pytest.fixture
def updater(store, blocks) -> UsersUpdater:
    return UsersUpdater(store, blocks)


def make_user(engine: Engine, **overrides) -> UserSnapshot:
    """Insert a user with random unique handles and return a snapshot."""
    fields = {
        "email": f"{uuid.uuid4().hex[:12]}@example.com",
        "graffiti": uuid.uuid4().hex,
        "country_code": "USA",
        "total_points": 0,
    }
    fields.update(overrides)
    with Session(engine) as session:
        user = User(**fields)
        session.add(user)
        session.commit()
        session.refresh(user)
        return UserSnapshot.from_row(user)


def make_block(
    engine: Engine,
    graffiti: str,
    *,
    main: bool = True,
    network_version: int = NETWORK_VERSION,
    sequence: int = 1,
) -> None:
    """Insert a mined block attributed to *graffiti*."""
    with Session(engine) as session:
        session.add(Block(
            hash=uuid.uuid4().hex,
            sequence=sequence,
            previous_block_hash=uuid.uuid4().hex,
            main=main,
            graffiti=graffiti,
            network_version=network_version,
            timestamp=datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc),
            transactions_count=0,
            difficulty=1000,
            size=512,
        ))
        session.commit()


def load_user(engine: Engine, user_id: int) -> UserSnapshot:
    with Session(engine) as session:
        return UserSnapshot.from_row(session.get(User, user_id))
