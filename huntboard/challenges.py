"""
Challenge catalog and admin CRUD.
"""

import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite

from .database import now_ms
from .errors import NotFound, ValidationError
from .models import UNSET, require_int

logger = logging.getLogger(__name__)

CHALLENGE_COLUMNS = """
    id, name, short_name, points,
    location_top_left_lat, location_top_left_lng,
    location_bottom_right_lat, location_bottom_right_lng,
    key_hash
"""


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} must be a non-empty string")
    return value.strip()


def _require_points(value: Any) -> int:
    return require_int(value, "points", minimum=1)


def _optional_coordinate(value: Any, field_name: str) -> Optional[float]:
    if value is None:
        return None
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    return float(value)


def _corner(location: Dict[str, Any], corner: str) -> Dict[str, Any]:
    value = location.get(corner, {})
    if not isinstance(value, dict):
        raise ValidationError(f"location.{corner} must be an object")
    return value


def format_challenge(row: Any) -> Dict[str, Any]:
    """
    Convert a challenges row into the JSON shape the clients expect.

    Devices get keyHash so they can check tags while offline.

    @param row: Row selected with CHALLENGE_COLUMNS
    @return: Challenge dictionary
    """
    return {
        "id": row["id"],
        "name": row["name"],
        "shortName": row["short_name"],
        "points": row["points"],
        "location": {
            "topLeft": {
                "lat": row["location_top_left_lat"],
                "lng": row["location_top_left_lng"],
            },
            "bottomRight": {
                "lat": row["location_bottom_right_lat"],
                "lng": row["location_bottom_right_lng"],
            },
        },
        "keyHash": row["key_hash"],
    }


@dataclass
class ChallengeUpdate:
    """
    Partial challenge update. Fields left as UNSET are not written.

    Field names are the challenges table columns.
    """

    name: Any = UNSET
    short_name: Any = UNSET
    points: Any = UNSET
    location_top_left_lat: Any = UNSET
    location_top_left_lng: Any = UNSET
    location_bottom_right_lat: Any = UNSET
    location_bottom_right_lng: Any = UNSET
    key_hash: Any = UNSET

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChallengeUpdate":
        update = cls()

        if "name" in payload:
            update.name = _require_text(payload["name"], "name")
        if "shortName" in payload:
            update.short_name = _require_text(payload["shortName"], "shortName")
        if "points" in payload:
            update.points = _require_points(payload["points"])
        if "keyHash" in payload:
            update.key_hash = _require_text(payload["keyHash"], "keyHash")

        location = payload.get("location")
        if location is not None:
            if not isinstance(location, dict):
                raise ValidationError("location must be an object")
            for corner, prefix in (
                ("topLeft", "location_top_left"),
                ("bottomRight", "location_bottom_right"),
            ):
                point = _corner(location, corner)
                for axis in ("lat", "lng"):
                    if axis in point:
                        setattr(
                            update,
                            f"{prefix}_{axis}",
                            _optional_coordinate(point[axis], f"location.{corner}.{axis}"),
                        )
        return update

    def assignments(self) -> List[Tuple[str, Any]]:
        """Present (column, value) pairs in declaration order."""
        return [
            (f.name, getattr(self, f.name))
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        ]

    def build_sql(self, challenge_id: int) -> Tuple[str, Tuple[Any, ...]]:
        """
        Build the UPDATE statement for the present fields.

        Column names come from the dataclass fields, never from the request.
        """
        assignments = self.assignments()
        if not assignments:
            raise ValidationError("No fields to update")
        set_clause = ", ".join(f"{column} = ?" for column, _ in assignments)
        params = tuple(value for _, value in assignments) + (challenge_id,)
        return f"UPDATE challenges SET {set_clause} WHERE id = ?", params


class ChallengeCatalog:
    """Reads and admin edits of the challenge table."""

    def __init__(
        self,
        db_manager: Any,
    ) -> None:
        self.db = db_manager

    async def _fetch(
        self,
        db: aiosqlite.Connection,
        challenge_id: int,
    ) -> Any:
        cursor = await db.execute(
            f"SELECT {CHALLENGE_COLUMNS} FROM challenges WHERE id = ?", (challenge_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise NotFound(f"Challenge {challenge_id} not found")
        return row

    async def list_challenges(self) -> List[Dict[str, Any]]:
        """
        Get all challenges.

        @return: List of challenge dictionaries ordered by id
        """
        async with self.db.connect() as db:
            cursor = await db.execute(f"SELECT {CHALLENGE_COLUMNS} FROM challenges ORDER BY id")
            rows = await cursor.fetchall()
        return [format_challenge(row) for row in rows]

    async def get_challenge(
        self,
        challenge_id: int,
    ) -> Dict[str, Any]:
        async with self.db.connect() as db:
            row = await self._fetch(db, challenge_id)
        return format_challenge(row)

    async def create_challenge(
        self,
        payload: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Create a challenge from an admin request body.

        @param payload: JSON body with name, shortName, points, location and keyHash
        @return: The created challenge
        """
        missing = [
            key
            for key in ("name", "shortName", "points", "location", "keyHash")
            if payload.get(key) in (None, "")
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        name = _require_text(payload["name"], "name")
        short_name = _require_text(payload["shortName"], "shortName")
        points = _require_points(payload["points"])
        key_hash = _require_text(payload["keyHash"], "keyHash")

        location = payload["location"]
        if not isinstance(location, dict):
            raise ValidationError("location must be an object")
        top_left = _corner(location, "topLeft")
        bottom_right = _corner(location, "bottomRight")
        coordinates = (
            _optional_coordinate(top_left.get("lat"), "location.topLeft.lat"),
            _optional_coordinate(top_left.get("lng"), "location.topLeft.lng"),
            _optional_coordinate(bottom_right.get("lat"), "location.bottomRight.lat"),
            _optional_coordinate(bottom_right.get("lng"), "location.bottomRight.lng"),
        )

        async with self.db.transaction() as db:
            cursor = await db.execute(
                """
                INSERT INTO challenges (
                    name, short_name, points,
                    location_top_left_lat, location_top_left_lng,
                    location_bottom_right_lat, location_bottom_right_lng,
                    key_hash, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (name, short_name, points, *coordinates, key_hash, now_ms()),
            )
            row = await self._fetch(db, cursor.lastrowid)

        logger.info("Created challenge %d '%s' (%d points)", row["id"], name, points)
        return format_challenge(row)

    async def update_challenge(
        self,
        challenge_id: int,
        update: ChallengeUpdate,
    ) -> Dict[str, Any]:
        """
        Apply a partial update to a challenge.

        @param challenge_id: Challenge id
        @param update: Fields to change
        @return: The updated challenge
        """
        sql, params = update.build_sql(challenge_id)

        async with self.db.transaction() as db:
            await self._fetch(db, challenge_id)
            await db.execute(sql, params)
            row = await self._fetch(db, challenge_id)

        logger.info(
            "Updated challenge %d: %s",
            challenge_id,
            ", ".join(column for column, _ in update.assignments()),
        )
        return format_challenge(row)

    async def delete_challenge(
        self,
        challenge_id: int,
    ) -> None:
        """Delete a challenge and, by cascade, its solves."""
        async with self.db.transaction() as db:
            await self._fetch(db, challenge_id)
            await db.execute("DELETE FROM challenges WHERE id = ?", (challenge_id,))
        logger.info("Deleted challenge %d", challenge_id)
