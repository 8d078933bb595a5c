"""
tally.services.blocks_service — Ledger Queries
===============================================

Read-only queries over the ``blocks`` table.  Blocks are ingested by a
separate pipeline; this module only counts them.

Only **main-chain** blocks on the configured network version count.
Orphaned / side-branch blocks (``main = false``) and blocks from other
networks never freeze a graffiti.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tally.database.models import Block

logger = logging.getLogger(__name__)


class BlocksService:
    """Ledger query service bound to one network version."""

    def __init__(self, network_version: int) -> None:
        self.network_version = network_version

    def count_by_graffiti(self, session: Session, graffiti: str) -> int:
        """Number of main-chain blocks mined under *graffiti*.

        Runs on *session* so the count is read inside the caller's
        transaction.
        """
        count = session.scalar(
            select(func.count())
            .select_from(Block)
            .where(
                Block.graffiti == graffiti,
                Block.main.is_(True),
                Block.network_version == self.network_version,
            )
        )
        return count or 0

