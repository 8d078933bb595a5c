"""
tally.services.results — Tagged Update Results
===============================================

:meth:`UsersUpdater.update` never raises for a rejected update.  It returns
one of the variants below; callers branch on ``result.outcome``::

    result = updater.update(user, UpdateUserOptions(graffiti="g2"))
    match result.outcome:
        case UpdateOutcome.OK:
            ...
        case UpdateOutcome.DUPLICATE_ATTRIBUTE:
            print(result.field)

``raise_for_error()`` is available for callers that prefer exceptions.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime

from tally.constants import (
    FIELD_LABELS,
    GRAFFITI,
    GRAFFITI_ALREADY_MINED,
    STORE_UNAVAILABLE,
    USER_NOT_FOUND,
    duplicate_code,
)


class UpdateOutcome(enum.StrEnum):
    OK = "ok"
    GRAFFITI_LOCKED = "graffiti_locked"
    DUPLICATE_ATTRIBUTE = "duplicate_attribute"
    STORE_UNAVAILABLE = "store_unavailable"
    USER_NOT_FOUND = "user_not_found"


@dataclass(frozen=True, slots=True)
class UserSnapshot:
    """Detached, immutable copy of a ``users`` row."""

    id: int
    email: str
    graffiti: str | None
    discord: str | None
    telegram: str | None
    country_code: str
    total_points: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row) -> UserSnapshot:
        return cls(
            id=row.id,
            email=row.email,
            graffiti=row.graffiti,
            discord=row.discord,
            telegram=row.telegram,
            country_code=row.country_code,
            total_points=row.total_points,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "graffiti": self.graffiti,
            "discord": self.discord,
            "telegram": self.telegram,
            "country_code": self.country_code,
            "total_points": self.total_points,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class UpdateError(Exception):
    """Exception form of a failed :class:`UpdateResult`."""

    def __init__(self, result: UpdateResult):
        self.result = result
        super().__init__(f"{result.code}: {result.message}")


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------
class _Result:
    outcome: UpdateOutcome
    retryable = False

    @property
    def ok(self) -> bool:
        return self.outcome is UpdateOutcome.OK

    def raise_for_error(self) -> UserSnapshot:
        """Return the updated user, or raise :class:`UpdateError`."""
        if isinstance(self, UpdateOk):
            return self.user
        raise UpdateError(self)


@dataclass(frozen=True, slots=True)
class UpdateOk(_Result):
    user: UserSnapshot
    outcome = UpdateOutcome.OK


@dataclass(frozen=True, slots=True)
class GraffitiLocked(_Result):
    """The user's current graffiti has main-chain blocks; it is frozen."""

    graffiti: str
    field: str = GRAFFITI
    outcome = UpdateOutcome.GRAFFITI_LOCKED
    code = GRAFFITI_ALREADY_MINED

    @property
    def message(self) -> str:
        return "Cannot update graffiti after mining blocks"


@dataclass(frozen=True, slots=True)
class DuplicateAttribute(_Result):
    """Another user already holds *value* for *field*."""

    field: str
    value: str | None = None
    outcome = UpdateOutcome.DUPLICATE_ATTRIBUTE

    @property
    def code(self) -> str:
        return duplicate_code(self.field)

    @property
    def message(self) -> str:
        label = FIELD_LABELS.get(self.field, self.field)
        if self.value is None:
            return f"User with this {label} already exists"
        return f"User with {label} '{self.value}' already exists"


@dataclass(frozen=True, slots=True)
class StoreUnavailable(_Result):
    """Transient infrastructure failure; the whole update may be retried."""

    reason: str
    outcome = UpdateOutcome.STORE_UNAVAILABLE
    code = STORE_UNAVAILABLE
    retryable = True

    @property
    def message(self) -> str:
        return f"User store unavailable: {self.reason}"


@dataclass(frozen=True, slots=True)
class UserNotFound(_Result):
    user_id: int
    outcome = UpdateOutcome.USER_NOT_FOUND
    code = USER_NOT_FOUND

    @property
    def message(self) -> str:
        return f"No user with id {self.user_id}"


UpdateResult = UpdateOk | GraffitiLocked | DuplicateAttribute | StoreUnavailable | UserNotFound
