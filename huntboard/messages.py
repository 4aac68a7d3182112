"""
Message fanout and pull-based delivery tracking.

Sending a message materializes one delivery row per recipient device. A
device's fetch returns its pending rows and marks them delivered in the same
write transaction, so each device sees each message once.
"""

import logging
from typing import Any, Dict, Optional, Union

from .database import ms_to_iso, now_ms
from .errors import NotFound, ValidationError
from .models import Device, require_int

logger = logging.getLogger(__name__)

BROADCAST = "all"
MAX_MESSAGE_LENGTH = 2000


class MessageCenter:
    """Admin broadcasts, team messages and team chat."""

    def __init__(
        self,
        db_manager: Any,
    ) -> None:
        self.db = db_manager

    async def send_message(
        self,
        target: Union[str, int],
        content: Any,
    ) -> int:
        """
        Store a message and fan it out to every targeted device.

        @param target: "all" for a broadcast, otherwise a team id
        @param content: Message text
        @return: New message id
        """
        team_id = None
        if target != BROADCAST:
            if isinstance(target, str) and target.isdigit():
                target = int(target)
            if not isinstance(target, int) or isinstance(target, bool):
                raise ValidationError("teamId must be 'all' or a team id")
            team_id = require_int(target, "teamId")

        return await self._fan_out(team_id, content)

    async def send_team_message(
        self,
        device: Device,
        content: Any,
    ) -> int:
        """
        Team chat: deliver a device's message to the rest of its team.

        The sender keeps its own copy, so it gets no delivery row.

        @param device: Authenticated sending device
        @param content: Message text
        @return: New message id
        """
        return await self._fan_out(device.team_id, content, sender_id=device.id)

    async def _fan_out(
        self,
        team_id: Optional[int],
        content: Any,
        sender_id: Optional[int] = None,
    ) -> int:
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content cannot be empty")
        if len(content) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message too long (max {MAX_MESSAGE_LENGTH} characters)")

        async with self.db.transaction() as db:
            if team_id is not None:
                cursor = await db.execute("SELECT 1 FROM teams WHERE id = ?", (team_id,))
                if await cursor.fetchone() is None:
                    raise NotFound(f"Team {team_id} not found")

            cursor = await db.execute(
                "INSERT INTO messages (team_id, content, created_at) VALUES (?, ?, ?)",
                (team_id, content, now_ms()),
            )
            message_id = cursor.lastrowid

            if team_id is None:
                cursor = await db.execute("SELECT id FROM users")
            else:
                cursor = await db.execute("SELECT id FROM users WHERE team_id = ?", (team_id,))
            recipients = [
                row["id"] for row in await cursor.fetchall() if row["id"] != sender_id
            ]

            await db.executemany(
                "INSERT INTO message_delivery (message_id, user_id) VALUES (?, ?)",
                [(message_id, user_id) for user_id in recipients],
            )

        logger.info(
            "Message %d sent to %s%s: %d deliveries",
            message_id,
            "all teams" if team_id is None else f"team {team_id}",
            "" if sender_id is None else f" by user {sender_id}",
            len(recipients),
        )
        return message_id

    async def fetch_and_mark_delivered(
        self,
        device: Device,
    ) -> Dict[str, Any]:
        """
        Return the device's undelivered messages and mark them delivered.

        @param device: Authenticated device
        @return: Dictionary with messages (oldest first) and serverTime
        """
        async with self.db.transaction() as db:
            cursor = await db.execute(
                """
                SELECT md.id AS delivery_id, m.id, m.content, m.created_at
                FROM message_delivery md
                JOIN messages m ON m.id = md.message_id
                WHERE md.user_id = ? AND md.delivered = 0
                ORDER BY m.created_at ASC, m.id ASC
                """,
                (device.id,),
            )
            pending = await cursor.fetchall()

            server_time = now_ms()
            await db.executemany(
                "UPDATE message_delivery SET delivered = 1, delivered_at = ? "
                "WHERE id = ? AND delivered = 0",
                [(server_time, row["delivery_id"]) for row in pending],
            )
            await db.execute(
                "UPDATE users SET last_active = ? WHERE id = ?",
                (server_time, device.id),
            )

        if pending:
            logger.debug("Delivered %d messages to user %d", len(pending), device.id)

        return {
            "messages": [
                {
                    "id": row["id"],
                    "content": row["content"],
                    "createdAt": ms_to_iso(row["created_at"]),
                }
                for row in pending
            ],
            "serverTime": server_time,
        }
