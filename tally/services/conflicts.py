"""
tally.services.conflicts — Unique-Constraint Classification
============================================================

Databases report a uniqueness violation generically.  PostgreSQL names the
violated constraint (``uq_users_discord``); SQLite names the column
(``UNIQUE constraint failed: users.discord``).  This module turns either
shape into the handle the caller proposed, so API consumers get a
field-scoped error instead of an opaque storage error.

The lookup table is built once from the ``users`` table metadata.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import Table, UniqueConstraint
from sqlalchemy.exc import IntegrityError

from tally.constants import UNIQUE_FIELDS

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)?")


class ConstraintClassifier:
    """Static constraint-identity → field lookup for one table.

    Only single-column unique constraints over *fields* are mapped; a
    violation of anything else (e.g. ``uq_users_email``) classifies as
    ``None``.
    """

    def __init__(self, table: Table, fields: tuple[str, ...] = UNIQUE_FIELDS) -> None:
        self.table_name = table.name
        self._by_identifier: dict[str, str] = {}

        for constraint in table.constraints:
            if not isinstance(constraint, UniqueConstraint):
                continue
            columns = [col.name for col in constraint.columns]
            if len(columns) != 1 or columns[0] not in fields:
                continue
            field = columns[0]
            if constraint.name:
                self._by_identifier[str(constraint.name)] = field
            self._by_identifier[f"{table.name}.{field}"] = field

        missing = [f for f in fields if f not in self._by_identifier.values()]
        if missing:
            raise ValueError(
                f"Table {table.name!r} has no unique constraint for: {', '.join(missing)}"
            )

    @property
    def identifiers(self) -> dict[str, str]:
        return dict(self._by_identifier)

    def classify(self, exc: IntegrityError) -> str | None:
        """Return the field whose constraint *exc* violated, or None."""
        constraint_name = _diag_constraint_name(exc.orig)
        if constraint_name and constraint_name in self._by_identifier:
            return self._by_identifier[constraint_name]

        for token in _IDENTIFIER_RE.findall(str(exc.orig)):
            field = self._by_identifier.get(token)
            if field is not None:
                return field

        logger.debug("Unclassified integrity error: %s", exc.orig)
        return None


def _diag_constraint_name(orig: BaseException | None) -> str | None:
    """Read the constraint name psycopg2 / psycopg attach to the error."""
    diag = getattr(orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    return str(name) if name else None
