"""
tally.api.routes.users — Identity handle updates
=================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from tally.api.deps import get_users_updater
from tally.services.results import UpdateOutcome
from tally.services.user_store import StoreUnavailableError
from tally.services.users_updater import UpdateUserOptions, UsersUpdater

router = APIRouter(prefix="/users", tags=["users"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class UserUpdate(BaseModel):
    graffiti: str | None = Field(default=None, max_length=100)
    discord: str | None = Field(default=None, max_length=100)
    telegram: str | None = Field(default=None, max_length=100)


_REJECTED = {UpdateOutcome.GRAFFITI_LOCKED, UpdateOutcome.DUPLICATE_ATTRIBUTE}


@router.put("/{user_id}")
def update_user(
    user_id: int,
    body: UserUpdate,
    updater: UsersUpdater = Depends(get_users_updater),
):
    """Change a user's graffiti / Discord / Telegram handles."""
    try:
        user = updater.store.find(user_id)
    except StoreUnavailableError as exc:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
    if user is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found")

    result = updater.update(user, UpdateUserOptions(**body.model_dump()))

    if result.outcome is UpdateOutcome.OK:
        return result.user.to_dict()
    if result.outcome in _REJECTED:
        raise HTTPException(
            422,
            {"code": result.code, "message": result.message, "field": result.field},
        )
    if result.outcome is UpdateOutcome.USER_NOT_FOUND:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found")
    raise HTTPException(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        {"code": result.code, "message": result.message},
    )
