"""
Team registry: device login and admin team management.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List

import aiosqlite

from .auth import generate_token
from .database import now_ms
from .errors import (
    AccountLimitReached,
    Conflict,
    NotFound,
    ValidationError,
    WrongCredentials,
)
from .models import UNSET, Device, require_int

logger = logging.getLogger(__name__)

MAX_DEVICE_NAME_LENGTH = 50


@dataclass
class TeamUpdate:
    """Partial team update. Fields left as UNSET are not written."""

    password: Any = UNSET
    max_members: Any = UNSET

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TeamUpdate":
        update = cls()
        if payload.get("password") is not None:
            if not isinstance(payload["password"], str) or not payload["password"]:
                raise ValidationError("password must be a non-empty string")
            update.password = payload["password"]
        if payload.get("maxMembers") is not None:
            update.max_members = _require_max_members(payload["maxMembers"])
        if update.password is UNSET and update.max_members is UNSET:
            raise ValidationError("No fields to update")
        return update


def _require_max_members(value: Any) -> int:
    return require_int(value, "maxMembers", minimum=1)


class TeamRegistry:
    """Team accounts and the devices logged into them."""

    def __init__(
        self,
        db_manager: Any,
        credentials: Any,
        config: Any,
    ) -> None:
        self.db = db_manager
        self.credentials = credentials
        self.config = config

    async def _unique_device_name(
        self,
        db: aiosqlite.Connection,
        device_name: Any,
    ) -> str:
        if isinstance(device_name, str) and device_name.strip():
            name = device_name.strip()[:MAX_DEVICE_NAME_LENGTH]
        else:
            name = f"Device_{secrets.token_hex(4)}"

        while True:
            cursor = await db.execute("SELECT 1 FROM users WHERE username = ?", (name,))
            if await cursor.fetchone() is None:
                return name
            name = f"{name}_{secrets.token_hex(2)}"

    async def login_device(
        self,
        team_name: Any,
        password: Any,
        device_name: Any = None,
    ) -> Dict[str, Any]:
        """
        Log a new device into a team.

        The member-count check and the insert run in one write transaction so
        concurrent logins cannot exceed the team's max_members.

        @param team_name: Team name
        @param password: Team password
        @param device_name: Optional device label, generated when missing
        @return: Dictionary with deviceToken, userId and username
        """
        if not isinstance(team_name, str) or not team_name:
            raise WrongCredentials("Invalid team credentials")

        async with self.db.connect() as db:
            cursor = await db.execute(
                "SELECT id, password FROM teams WHERE name = ?", (team_name,)
            )
            team = await cursor.fetchone()

        if team is None or not await self.credentials.verify_password(
            team["password"], password
        ):
            logger.warning("Failed team login for '%s'", team_name)
            raise WrongCredentials("Invalid team credentials")

        device_token = generate_token()
        async with self.db.transaction() as db:
            cursor = await db.execute(
                "SELECT t.max_members, COUNT(u.id) AS members "
                "FROM teams t LEFT JOIN users u ON u.team_id = t.id "
                "WHERE t.id = ? GROUP BY t.id",
                (team["id"],),
            )
            counts = await cursor.fetchone()
            if counts is None:
                raise WrongCredentials("Invalid team credentials")
            if counts["members"] >= counts["max_members"]:
                raise AccountLimitReached(
                    f"Team already has {counts['members']} devices"
                )

            username = await self._unique_device_name(db, device_name)
            timestamp = now_ms()
            cursor = await db.execute(
                "INSERT INTO users (team_id, username, device_token, last_active, registered_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (team["id"], username, device_token, timestamp, timestamp),
            )
            user_id = cursor.lastrowid

        logger.info("Device '%s' (user %d) joined team '%s'", username, user_id, team_name)
        return {"deviceToken": device_token, "userId": user_id, "username": username}

    async def get_team_members(
        self,
        device: Device,
    ) -> List[Dict[str, Any]]:
        """
        List the devices of the caller's team with the solves each holds.

        @param device: Authenticated device
        @return: List of member dictionaries
        """
        async with self.db.connect() as db:
            cursor = await db.execute(
                "SELECT id, username, last_active, made_final_submission "
                "FROM users WHERE team_id = ? ORDER BY id",
                (device.team_id,),
            )
            members = await cursor.fetchall()
            cursor = await db.execute(
                """
                SELECT s.user_id, s.challenge_id, s.solved_at, c.name
                FROM solves s
                JOIN users u ON s.user_id = u.id
                JOIN challenges c ON s.challenge_id = c.id
                WHERE u.team_id = ?
                ORDER BY s.solved_at ASC
                """,
                (device.team_id,),
            )
            solves = await cursor.fetchall()

        solved_by_user: Dict[int, List[Dict[str, Any]]] = {}
        for user_id, challenge_id, solved_at, challenge_name in solves:
            solved_by_user.setdefault(user_id, []).append(
                {
                    "challengeId": challenge_id,
                    "challengeName": challenge_name,
                    "solvedAt": solved_at,
                }
            )

        return [
            {
                "username": m["username"],
                "lastActive": m["last_active"],
                "hasSubmitted": bool(m["made_final_submission"]),
                "isCurrentUser": m["id"] == device.id,
                "solvedChallenges": solved_by_user.get(m["id"], []),
            }
            for m in members
        ]

    async def list_teams(self) -> List[Dict[str, Any]]:
        """
        Get all teams with their member counts.

        @return: List of team dictionaries
        """
        async with self.db.connect() as db:
            cursor = await db.execute("""
                SELECT
                    t.id,
                    t.name,
                    t.max_members,
                    t.created_at,
                    COUNT(u.id) AS member_count
                FROM teams t
                LEFT JOIN users u ON t.id = u.team_id
                GROUP BY t.id
                ORDER BY t.id
            """)
            rows = await cursor.fetchall()

        return [
            {
                "id": row["id"],
                "name": row["name"],
                "maxMembers": row["max_members"],
                "createdAt": row["created_at"],
                "memberCount": row["member_count"],
            }
            for row in rows
        ]

    async def create_team(
        self,
        payload: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Create a team from an admin request body.

        @param payload: JSON body with name, password and maxMembers
        @return: The created team
        """
        name = payload.get("name")
        password = payload.get("password")
        max_members = payload.get("maxMembers", self.config.get("teams", "default_max_members"))

        if not isinstance(name, str) or not name.strip() or not password:
            raise ValidationError("Missing required fields")
        name = name.strip()
        max_members = _require_max_members(max_members)
        password_hash = await self.credentials.hash_password(password)

        async with self.db.transaction() as db:
            cursor = await db.execute("SELECT 1 FROM teams WHERE name = ?", (name,))
            if await cursor.fetchone() is not None:
                raise Conflict("Team name already exists")

            created_at = now_ms()
            cursor = await db.execute(
                "INSERT INTO teams (name, password, max_members, created_at) VALUES (?, ?, ?, ?)",
                (name, password_hash, max_members, created_at),
            )
            team_id = cursor.lastrowid

        logger.info("Created team %d '%s'", team_id, name)
        return {
            "id": team_id,
            "name": name,
            "maxMembers": max_members,
            "createdAt": created_at,
            "memberCount": 0,
        }

    async def get_team_detail(
        self,
        team_id: int,
    ) -> Dict[str, Any]:
        """
        Get a team with its devices and per-challenge solve state.

        @param team_id: Team id
        @return: Dictionary with team, members and solves
        """
        async with self.db.connect() as db:
            cursor = await db.execute(
                "SELECT id, name, max_members, created_at FROM teams WHERE id = ?",
                (team_id,),
            )
            team = await cursor.fetchone()
            if team is None:
                raise NotFound(f"Team {team_id} not found")

            cursor = await db.execute(
                """
                SELECT id, username, last_active, registered_at, made_final_submission
                FROM users
                WHERE team_id = ?
                ORDER BY id
                """,
                (team_id,),
            )
            members = await cursor.fetchall()

            cursor = await db.execute(
                """
                SELECT c.id, c.name, c.short_name, s.solved_at, u.username
                FROM challenges c
                LEFT JOIN solves s ON s.id = (
                    SELECT s2.id
                    FROM solves s2
                    JOIN users u2 ON s2.user_id = u2.id
                    WHERE u2.team_id = ? AND s2.challenge_id = c.id
                    ORDER BY s2.solved_at ASC, s2.id ASC
                    LIMIT 1
                )
                LEFT JOIN users u ON s.user_id = u.id
                ORDER BY c.id
                """,
                (team_id,),
            )
            solves = await cursor.fetchall()

        return {
            "team": {
                "id": team["id"],
                "name": team["name"],
                "maxMembers": team["max_members"],
                "createdAt": team["created_at"],
            },
            "members": [
                {
                    "id": m["id"],
                    "username": m["username"],
                    "lastActive": m["last_active"],
                    "registeredAt": m["registered_at"],
                    "hasSubmitted": bool(m["made_final_submission"]),
                }
                for m in members
            ],
            "solves": [
                {
                    "id": s["id"],
                    "name": s["name"],
                    "shortName": s["short_name"],
                    "solvedAt": s["solved_at"],
                    "solvedBy": s["username"],
                }
                for s in solves
            ],
        }

    async def update_team(
        self,
        team_id: int,
        update: TeamUpdate,
    ) -> Dict[str, Any]:
        """
        Change a team's password and/or member limit.

        Lowering max_members below the current member count keeps existing
        devices; it only blocks new logins.

        @param team_id: Team id
        @param update: Fields to change
        @return: The updated team
        """
        assignments = []
        if update.password is not UNSET:
            assignments.append(("password", await self.credentials.hash_password(update.password)))
        if update.max_members is not UNSET:
            assignments.append(("max_members", update.max_members))

        set_clause = ", ".join(f"{column} = ?" for column, _ in assignments)
        params = tuple(value for _, value in assignments) + (team_id,)

        async with self.db.transaction() as db:
            cursor = await db.execute(f"UPDATE teams SET {set_clause} WHERE id = ?", params)
            if cursor.rowcount == 0:
                raise NotFound(f"Team {team_id} not found")

        logger.info(
            "Updated team %d: %s", team_id, ", ".join(column for column, _ in assignments)
        )
        teams = await self.list_teams()
        updated = next((team for team in teams if team["id"] == team_id), None)
        if updated is None:
            raise NotFound(f"Team {team_id} not found")
        return updated

    async def delete_team(
        self,
        team_id: int,
    ) -> None:
        """Delete a team with its devices, solves, messages and deliveries."""
        async with self.db.transaction() as db:
            cursor = await db.execute("DELETE FROM teams WHERE id = ?", (team_id,))
            if cursor.rowcount == 0:
                raise NotFound(f"Team {team_id} not found")
        logger.info("Deleted team %d", team_id)
