"""
tally.database.models — SQLAlchemy 2.0 Data Models
===================================================

Tables:
- users   — Program participants and their unique identity handles
- blocks  — Append-only ledger entries, attributed to a graffiti

Uniqueness of the identity handles is enforced by **named** constraints.
The names are the stable conflict signal the store layer maps back to a
field (see :mod:`tally.services.conflicts`), so renaming one is a schema
migration *and* a classifier change.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Tally ORM models."""


# ---------------------------------------------------------------------------
# Users — one row per program participant
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    graffiti: Mapped[str | None] = mapped_column(String(100), default=None)
    discord: Mapped[str | None] = mapped_column(String(100), default=None)
    telegram: Mapped[str | None] = mapped_column(String(100), default=None)
    country_code: Mapped[str] = mapped_column(String(3), nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        UniqueConstraint("graffiti", name="uq_users_graffiti"),
        UniqueConstraint("discord", name="uq_users_discord"),
        UniqueConstraint("telegram", name="uq_users_telegram"),
        CheckConstraint(
            "total_points >= 0", name="ck_users_total_points_non_negative"
        ),
        Index("ix_users_total_points_desc", "total_points"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} graffiti={self.graffiti!r}>"


# ---------------------------------------------------------------------------
# Blocks — ledger entries (ingested elsewhere, read-only here)
# ---------------------------------------------------------------------------
class Block(Base):
    """A block on the ledger.

    ``main`` is False for orphaned / side-branch blocks; only main-chain
    blocks count toward freezing a graffiti.
    """
    __tablename__ = "blocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_block_hash: Mapped[str | None] = mapped_column(String(64), default=None)
    main: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    graffiti: Mapped[str] = mapped_column(String(100), nullable=False)
    network_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    transactions_count: Mapped[int] = mapped_column(Integer, default=0)
    difficulty: Mapped[int | None] = mapped_column(Integer, default=None)
    size: Mapped[int | None] = mapped_column(Integer, default=None)

    __table_args__ = (
        UniqueConstraint(
            "hash", "network_version",
            name="uq_blocks_on_hash_and_network_version",
        ),
        Index("ix_blocks_graffiti_main_network", "graffiti", "main", "network_version"),
        Index("ix_blocks_sequence", "sequence"),
    )

    def __repr__(self) -> str:
        return f"<Block seq={self.sequence} graffiti={self.graffiti!r} main={self.main}>"
