"""
Final-submission lock for devices.

made_final_submission only ever moves from 0 to 1. Nothing in this module (or
anywhere else) writes 0 back; the row disappears only when its team is
deleted.
"""

import logging
from typing import Any

import aiosqlite

from .errors import NotFound

logger = logging.getLogger(__name__)


async def is_finalized_in(
    db: aiosqlite.Connection,
    user_id: int,
) -> bool:
    """Read the lock flag on an open connection. Unknown users raise NotFound."""
    cursor = await db.execute(
        "SELECT made_final_submission FROM users WHERE id = ?", (user_id,)
    )
    row = await cursor.fetchone()
    if row is None:
        raise NotFound(f"User {user_id} not found")
    return bool(row["made_final_submission"])


async def finalize_in(
    db: aiosqlite.Connection,
    user_id: int,
) -> bool:
    """
    Set the lock flag on an open connection, inside the caller's transaction.

    @return: True if the flag changed, False if it was already set
    """
    cursor = await db.execute(
        "UPDATE users SET made_final_submission = 1 "
        "WHERE id = ? AND made_final_submission = 0",
        (user_id,),
    )
    return cursor.rowcount > 0


class SubmissionLock:
    """Per-device final-submission flag."""

    def __init__(
        self,
        db_manager: Any,
    ) -> None:
        self.db = db_manager

    async def is_finalized(
        self,
        user_id: int,
    ) -> bool:
        """
        Check whether a device has made its final submission.

        @param user_id: Device (user) id
        @return: True once the device is finalized
        """
        async with self.db.connect() as db:
            return await is_finalized_in(db, user_id)

    async def finalize(
        self,
        user_id: int,
    ) -> None:
        """
        Finalize a device. Finalizing an already finalized device is a no-op.

        @param user_id: Device (user) id
        """
        async with self.db.transaction() as db:
            # raises NotFound for unknown ids before any write
            await is_finalized_in(db, user_id)
            if await finalize_in(db, user_id):
                logger.info("User %d made final submission", user_id)

    async def force_finalize(
        self,
        user_id: int,
    ) -> None:
        """
        Administrative finalize for lost or offline devices.

        Works regardless of the device's current state.

        @param user_id: Device (user) id
        """
        async with self.db.transaction() as db:
            await is_finalized_in(db, user_id)
            changed = await finalize_in(db, user_id)

        if changed:
            logger.info("User %d force-finalized by admin", user_id)
        else:
            logger.info("Force-finalize of user %d: already finalized", user_id)
