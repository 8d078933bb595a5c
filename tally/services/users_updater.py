"""
tally.services.users_updater — Identity Update Coordinator
===========================================================

The single entry point for changing a user's unique handles (graffiti,
Discord, Telegram).  One call is one store transaction:

  1. Re-read the user row inside the transaction.
  2. If the graffiti changes, count main-chain blocks for the **current**
     graffiti.  Any block → :class:`GraffitiLocked`.
  3. Look for another user already holding a requested handle →
     :class:`DuplicateAttribute`.
  4. Write all requested handles; the unique indexes catch racing
     writers that slipped past step 3 → :class:`DuplicateAttribute`.
  5. Commit → :class:`UpdateOk`.

No locks are taken.  Two callers racing for the same handle are settled
by the database's unique index: exactly one commits.

The block count in step 2 and the write in step 4 read two different
tables without serialization against block ingestion.  A block committed
under the old graffiti between the two can slip through; that window is
accepted.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, fields

from tally.config import TallyConfig
from tally.constants import GRAFFITI, UNIQUE_FIELDS
from tally.database.engine import run_db
from tally.services.blocks_service import BlocksService
from tally.services.results import (
    DuplicateAttribute,
    GraffitiLocked,
    StoreUnavailable,
    UpdateOk,
    UpdateResult,
    UserNotFound,
    UserSnapshot,
)
from tally.services.user_store import (
    StoreTransaction,
    StoreUnavailableError,
    UniqueViolation,
    UserMissing,
    UserStore,
)

logger = logging.getLogger(__name__)

_USE_DEFAULT = object()


@dataclass(frozen=True, slots=True)
class UpdateUserOptions:
    """Proposed handle changes.  ``None`` and ``""`` mean "leave as is"."""

    graffiti: str | None = None
    discord: str | None = None
    telegram: str | None = None

    @classmethod
    def coerce(cls, changes: UpdateUserOptions | Mapping[str, str | None]) -> UpdateUserOptions:
        if isinstance(changes, cls):
            return changes
        allowed = {f.name for f in fields(cls)}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unsupported user attribute(s): {', '.join(sorted(unknown))}")
        return cls(**changes)

    def requested(self) -> dict[str, str]:
        return {
            name: value
            for name in UNIQUE_FIELDS
            if (value := getattr(self, name))
        }


class UsersUpdater:
    """Coordinates identity updates against the user store and the ledger."""

    def __init__(
        self,
        store: UserStore,
        blocks: BlocksService,
        *,
        unique_fields: tuple[str, ...] = UNIQUE_FIELDS,
        timeout: float | None = None,
    ) -> None:
        self.store = store
        self.blocks = blocks
        self.unique_fields = unique_fields
        self.timeout = timeout

    @classmethod
    def from_config(cls, engine, cfg: TallyConfig) -> UsersUpdater:
        return cls(
            UserStore(engine, unique_fields=cfg.unique_fields),
            BlocksService(cfg.network_version),
            unique_fields=cfg.unique_fields,
            timeout=cfg.update_timeout_seconds,
        )

    def update(
        self,
        user: UserSnapshot,
        changes: UpdateUserOptions | Mapping[str, str | None],
        *,
        timeout=_USE_DEFAULT,
    ) -> UpdateResult:
        """Apply *changes* to *user* atomically.

        *user* is any object with ``id`` and ``graffiti`` (an ORM row or a
        :class:`UserSnapshot`).  *timeout* overrides the configured
        per-update deadline in seconds; ``None`` disables it.
        """
        requested = UpdateUserOptions.coerce(changes).requested()
        if timeout is _USE_DEFAULT:
            timeout = self.timeout

        try:
            with self.store.transaction(timeout=timeout) as txn:
                current = self.store.get(txn, user.id)
                if current is None:
                    raise UserMissing(user.id)

                rejected = self._check_graffiti_lock(txn, current.graffiti, requested)
                if rejected is None:
                    rejected = self._check_duplicates(txn, user.id, requested)
                if rejected is not None:
                    logger.warning(
                        "Rejected update for user %s: %s", user.id, rejected.code
                    )
                    return rejected

                txn.check_deadline()
                row = self.store.update_user(txn, user.id, requested)
                snapshot = UserSnapshot.from_row(row)
                txn.commit()
        except UniqueViolation as exc:
            return self._duplicate_from_violation(user.id, requested, exc)
        except UserMissing:
            logger.warning("Update for missing user %s", user.id)
            return UserNotFound(user.id)
        except StoreUnavailableError as exc:
            logger.warning("Store unavailable while updating user %s: %s", user.id, exc)
            return StoreUnavailable(str(exc))

        logger.info(
            "Updated user %s handles: %s", user.id, ", ".join(sorted(requested)) or "none"
        )
        return UpdateOk(snapshot)

    async def update_async(
        self,
        user: UserSnapshot,
        changes: UpdateUserOptions | Mapping[str, str | None],
        *,
        timeout=_USE_DEFAULT,
    ) -> UpdateResult:
        """:meth:`update` on a worker thread, for event-loop callers."""
        return await run_db(self.update, user, changes, timeout=timeout)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _check_graffiti_lock(
        self,
        txn: StoreTransaction,
        current_graffiti: str | None,
        requested: dict[str, str],
    ) -> GraffitiLocked | None:
        proposed = requested.get(GRAFFITI)
        if not proposed or proposed == current_graffiti or not current_graffiti:
            return None
        mined = self.blocks.count_by_graffiti(txn.session, current_graffiti)
        if mined > 0:
            logger.debug("Graffiti %r has %d main-chain blocks", current_graffiti, mined)
            return GraffitiLocked(current_graffiti)
        return None

    def _check_duplicates(
        self,
        txn: StoreTransaction,
        user_id: int,
        requested: dict[str, str],
    ) -> DuplicateAttribute | None:
        unique = {f: v for f, v in requested.items() if f in self.unique_fields}
        conflict = self.store.find_conflicting(txn, user_id, unique)
        if conflict is None:
            return None
        field, value = conflict
        return DuplicateAttribute(field, value)

    def _duplicate_from_violation(
        self,
        user_id: int,
        requested: dict[str, str],
        exc: UniqueViolation,
    ) -> UpdateResult:
        """Attribute a write-time unique violation to a field.

        Uses the classified constraint when available, else re-queries the
        proposed values now that the racing writer has committed.
        """
        field = exc.field
        if field is None:
            try:
                with self.store.transaction() as txn:
                    conflict = self.store.find_conflicting(
                        txn, user_id, requested, fields=UNIQUE_FIELDS
                    )
            except StoreUnavailableError as unavailable:
                return StoreUnavailable(str(unavailable))
            if conflict is None:
                logger.error("Unattributable unique violation for user %s: %s", user_id, exc)
                raise exc
            field = conflict[0]

        logger.warning("Lost race for %s on user %s", field, user_id)
        return DuplicateAttribute(field, requested.get(field))
