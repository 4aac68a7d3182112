"""
Password hashing for team and admin accounts.
"""

import asyncio
import logging
from typing import Any

import bcrypt

from .errors import ValidationError

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes and newer releases refuse longer input
MAX_PASSWORD_BYTES = 72


class CredentialVerifier:
    """Hashes and verifies passwords with bcrypt, off the event loop."""

    def __init__(
        self,
        config: Any,
    ) -> None:
        self.rounds = config.get("security", "bcrypt_rounds")

    def _hash(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("ascii")

    def _verify(self, stored_hash: str, password: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), stored_hash.encode("ascii"))
        except ValueError:
            # Malformed stored hash or over-long password
            logger.warning("Password verification failed on malformed input")
            return False

    async def hash_password(
        self,
        password: str,
    ) -> str:
        """
        Hash a password for storage.

        @param password: Plain-text password
        @return: bcrypt hash as text
        """
        if not isinstance(password, str) or not password:
            raise ValidationError("Password cannot be empty")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError(f"Password too long (max {MAX_PASSWORD_BYTES} bytes)")

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._hash, password)

    async def verify_password(
        self,
        stored_hash: str,
        password: Any,
    ) -> bool:
        """
        Check a plain-text password against a stored hash.

        @param stored_hash: Hash previously produced by hash_password
        @param password: Candidate password from the request
        @return: True if the password matches
        """
        if not isinstance(password, str) or not password:
            return False

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._verify, stored_hash, password)
