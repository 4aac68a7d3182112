"""
Authentication boundary: device bearer tokens and admin sessions.

Handlers resolve the caller once per request through this module and pass the
resulting Device (or admin id) explicitly into the services.
"""

import logging
import secrets
from typing import Any, Optional, Tuple

from .database import now_ms
from .errors import Unauthenticated
from .models import Device

logger = logging.getLogger(__name__)


def generate_token() -> str:
    """Opaque 256-bit token, hex encoded."""
    return secrets.token_hex(32)


class AuthManager:
    """Resolves device tokens and manages admin session cookies."""

    def __init__(
        self,
        db_manager: Any,
        credentials: Any,
        config: Any,
    ) -> None:
        self.db = db_manager
        self.credentials = credentials
        self.config = config

    async def authenticate_device(
        self,
        device_token: Optional[str],
    ) -> Device:
        """
        Resolve a device token to its user row.

        @param device_token: Bearer token presented by the device
        @return: The authenticated Device
        """
        if not device_token or not isinstance(device_token, str):
            raise Unauthenticated("Missing device token")

        async with self.db.connect() as db:
            cursor = await db.execute(
                "SELECT id, team_id, username, made_final_submission, last_active "
                "FROM users WHERE device_token = ?",
                (device_token,),
            )
            row = await cursor.fetchone()

        if row is None:
            raise Unauthenticated("Invalid device token")
        return Device.from_row(row)

    async def logout_device(
        self,
        device: Device,
    ) -> None:
        """
        Revoke a device's token. The device row and its solves are kept.

        @param device: Authenticated device
        """
        async with self.db.transaction() as db:
            await db.execute(
                "UPDATE users SET device_token = NULL, last_active = ? WHERE id = ?",
                (now_ms(), device.id),
            )
        logger.info("Device %s (user %d) logged out", device.username, device.id)

    async def admin_login(
        self,
        username: Any,
        password: Any,
    ) -> Tuple[str, int]:
        """
        Verify admin credentials and open a session.

        @param username: Admin username
        @param password: Admin password
        @return: Tuple of (session token, session lifetime in seconds)
        """
        if not isinstance(username, str) or not username:
            raise Unauthenticated("Invalid credentials")

        async with self.db.connect() as db:
            cursor = await db.execute(
                "SELECT id, password FROM admins WHERE username = ?", (username,)
            )
            admin = await cursor.fetchone()

        if admin is None or not await self.credentials.verify_password(
            admin["password"], password
        ):
            logger.warning("Failed admin login for '%s'", username)
            raise Unauthenticated("Invalid credentials")

        lifetime = int(self.config.get("security", "admin_session_hours") * 3600)
        token = generate_token()
        async with self.db.transaction() as db:
            await db.execute(
                "UPDATE admins SET session_token = ?, session_expires_at = ? WHERE id = ?",
                (token, now_ms() + lifetime * 1000, admin["id"]),
            )

        logger.info("Admin '%s' logged in", username)
        return token, lifetime

    async def authenticate_admin(
        self,
        session_token: Optional[str],
    ) -> int:
        """
        Resolve an admin session cookie.

        @param session_token: Value of the admin session cookie
        @return: The admin id
        """
        if not session_token:
            raise Unauthenticated("Missing admin session")

        async with self.db.connect() as db:
            cursor = await db.execute(
                "SELECT id, session_expires_at FROM admins WHERE session_token = ?",
                (session_token,),
            )
            admin = await cursor.fetchone()

        if admin is None or (admin["session_expires_at"] or 0) < now_ms():
            raise Unauthenticated("Invalid or expired admin session")
        return admin["id"]

    async def admin_logout(
        self,
        admin_id: int,
    ) -> None:
        async with self.db.transaction() as db:
            await db.execute(
                "UPDATE admins SET session_token = NULL, session_expires_at = NULL WHERE id = ?",
                (admin_id,),
            )
