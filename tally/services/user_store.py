"""
tally.services.user_store — Transactional User Store
=====================================================

The only module that touches the ``users`` table for identity writes.
Every write follows the pattern:
  1. Open a transaction (``with store.transaction() as txn``)
  2. Read / write through ``txn.session``
  3. ``txn.commit()`` — anything else rolls back on exit

Storage-engine errors never leave this module raw.  They are translated
into the small :class:`StoreError` family below:

* :class:`UniqueViolation` — a unique handle collided; ``field`` names it
  when the constraint could be classified.
* :class:`StoreUnavailableError` — connection, pool, lock or deadline
  failure.  Retryable by the caller.
* :class:`UserMissing` — the row being updated no longer exists.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager

from sqlalchemy import Engine, select, text, update
from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from tally.constants import UNIQUE_FIELDS
from tally.database.models import User
from tally.services.conflicts import ConstraintClassifier
from tally.services.results import UserSnapshot

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------
class StoreError(Exception):
    """Base class for translated storage failures."""


class UniqueViolation(StoreError):
    """A unique constraint on a user handle was violated."""

    def __init__(self, field: str | None, detail: str = ""):
        self.field = field
        self.detail = detail
        super().__init__(
            f"Unique constraint violated on {field or 'unknown field'}: {detail}"
        )


class StoreUnavailableError(StoreError):
    """The store could not be reached or did not answer in time."""


class DeadlineExceeded(StoreUnavailableError):
    """The caller-supplied deadline passed before the transaction finished."""


class UserMissing(StoreError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} does not exist")


# ---------------------------------------------------------------------------
# Transaction handle
# ---------------------------------------------------------------------------
class StoreTransaction:
    """One open transaction.  Rolled back on exit unless committed."""

    def __init__(self, session: Session, deadline: float | None) -> None:
        self.session = session
        self.deadline = deadline
        self.committed = False

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check_deadline(self) -> None:
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceeded("deadline exceeded")

    def commit(self) -> None:
        self.check_deadline()
        self.session.commit()
        self.committed = True


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class UserStore:
    """SQLAlchemy-backed store for user identity records."""

    def __init__(
        self,
        engine: Engine,
        *,
        unique_fields: tuple[str, ...] = UNIQUE_FIELDS,
        classifier: ConstraintClassifier | None = None,
    ) -> None:
        self.engine = engine
        self.unique_fields = unique_fields
        # The database enforces every handle constraint whatever the
        # pre-check covers, so the classifier always maps all of them.
        self.classifier = classifier or ConstraintClassifier(User.__table__)

    @contextmanager
    def transaction(self, *, timeout: float | None = None) -> Iterator[StoreTransaction]:
        """Open a transaction bounded by *timeout* seconds (None = unbounded).

        On PostgreSQL the deadline is also enforced server-side through
        ``statement_timeout``.  Elsewhere (SQLite) it is only checked before
        the write and before commit, so the ledger count, the duplicate
        pre-check and a write waiting on the database lock can run past it.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        session = Session(self.engine, expire_on_commit=False)
        txn = StoreTransaction(session, deadline)
        try:
            with self._translate_errors():
                self._apply_statement_timeout(txn)
                yield txn
        finally:
            if not txn.committed:
                session.rollback()
            session.close()

    @contextmanager
    def _translate_errors(self) -> Iterator[None]:
        try:
            yield
        except IntegrityError as exc:
            raise UniqueViolation(self.classifier.classify(exc), str(exc.orig)) from exc
        except (OperationalError, InterfaceError) as exc:
            raise StoreUnavailableError(str(exc.orig)) from exc
        except PoolTimeoutError as exc:
            raise StoreUnavailableError(str(exc)) from exc

    def _apply_statement_timeout(self, txn: StoreTransaction) -> None:
        # Server-side guard so a statement blocked on a row lock cannot
        # outlive the deadline.  SQLite has no equivalent.
        remaining = txn.remaining()
        if remaining is None or self.engine.dialect.name != "postgresql":
            return
        txn.check_deadline()
        txn.session.execute(
            text(f"SET LOCAL statement_timeout = {max(int(remaining * 1000), 1)}")
        )

    # -- reads -------------------------------------------------------------
    def get(self, txn: StoreTransaction, user_id: int) -> User | None:
        return txn.session.get(User, user_id)

    def find_conflicting(
        self,
        txn: StoreTransaction,
        user_id: int,
        changes: Mapping[str, str],
        fields: tuple[str, ...] | None = None,
    ) -> tuple[str, str] | None:
        """Return ``(field, value)`` for the first handle in *changes* that
        another user already holds, checking fields in the order graffiti,
        discord, telegram.

        Only the configured unique fields are checked unless *fields* says
        otherwise.
        """
        for field in fields or self.unique_fields:
            value = changes.get(field)
            if not value:
                continue
            column = getattr(User, field)
            holder = txn.session.scalar(
                select(User.id).where(column == value, User.id != user_id).limit(1)
            )
            if holder is not None:
                return field, value
        return None

    def find_by(self, field: str, value: str) -> UserSnapshot | None:
        """Look up a user by one of its unique handles."""
        if field not in UNIQUE_FIELDS:
            raise ValueError(f"{field!r} is not a unique user handle")
        with self.transaction() as txn:
            row = txn.session.scalar(select(User).where(getattr(User, field) == value))
            return UserSnapshot.from_row(row) if row is not None else None

    def find(self, user_id: int) -> UserSnapshot | None:
        with self.transaction() as txn:
            row = self.get(txn, user_id)
            return UserSnapshot.from_row(row) if row is not None else None

    # -- writes ------------------------------------------------------------
    def update_user(
        self,
        txn: StoreTransaction,
        user_id: int,
        changes: Mapping[str, str],
    ) -> User:
        """Write *changes* to the user row and return the refreshed row.

        Raises :class:`UniqueViolation` when a handle collides and
        :class:`UserMissing` when no row matched.
        """
        session = txn.session
        if changes:
            with self._translate_errors():
                result = session.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(**changes)
                    .execution_options(synchronize_session=False)
                )
            if result.rowcount == 0:
                raise UserMissing(user_id)

        row = session.get(User, user_id, populate_existing=True)
        if row is None:
            raise UserMissing(user_id)
        return row
