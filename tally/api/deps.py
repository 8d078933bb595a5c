"""
tally.api.deps — FastAPI dependency injection
==============================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy import Engine

from tally.config import TallyConfig, load_config
from tally.database.engine import create_db_engine
from tally.services.users_updater import UsersUpdater


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> TallyConfig:
    return load_config(os.getenv("TALLY_CONFIG", "config.yaml"))


def get_users_updater(
    engine: Annotated[Engine, Depends(get_engine)],
    cfg: Annotated[TallyConfig, Depends(get_config)],
) -> UsersUpdater:
    return UsersUpdater.from_config(engine, cfg)
