"""
tally.constants — Shared Constants
===================================

Single source of truth for the unique handle names and the error codes
returned to API consumers.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Unique identity handles, in the order duplicate checks report them
# ---------------------------------------------------------------------------
GRAFFITI = "graffiti"
DISCORD = "discord"
TELEGRAM = "telegram"

UNIQUE_FIELDS: tuple[str, ...] = (GRAFFITI, DISCORD, TELEGRAM)


# ---------------------------------------------------------------------------
# Error codes (stable, machine-readable)
# ---------------------------------------------------------------------------
GRAFFITI_ALREADY_MINED = "user_graffiti_already_mined"
STORE_UNAVAILABLE = "store_unavailable"
USER_NOT_FOUND = "user_not_found"


def duplicate_code(field: str) -> str:
    """Error code for a uniqueness violation on *field*."""
    return f"duplicate_user_{field}"


FIELD_LABELS: dict[str, str] = {
    GRAFFITI: "graffiti",
    DISCORD: "Discord",
    TELEGRAM: "Telegram",
}
