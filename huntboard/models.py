"""
Typed records passed between the web layer and the services.
"""

from dataclasses import dataclass
from typing import Any, List, Optional

from .errors import ValidationError


class _Unset:
    """Marker for a partial-update field that was not supplied."""

    _instance = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()

# SQLite stores INTEGER as a signed 64-bit value
MAX_SQLITE_INT = 2**63 - 1


@dataclass(frozen=True)
class Device:
    """An authenticated device (a row of the users table)."""

    id: int
    team_id: int
    username: str
    made_final_submission: bool
    last_active: Optional[int] = None

    @classmethod
    def from_row(cls, row: Any) -> "Device":
        return cls(
            id=row["id"],
            team_id=row["team_id"],
            username=row["username"],
            made_final_submission=bool(row["made_final_submission"]),
            last_active=row["last_active"],
        )


@dataclass(frozen=True)
class SolveClaim:
    """One (challengeId, solvedAt) claim from a device's submission batch."""

    challenge_id: int
    solved_at: int

    @classmethod
    def from_payload(cls, payload: Any) -> "SolveClaim":
        if not isinstance(payload, dict):
            raise ValidationError("Each solve must be an object")

        challenge_id = payload.get("challengeId")
        solved_at = payload.get("solvedAt")

        return cls(
            challenge_id=require_int(challenge_id, "challengeId"),
            solved_at=require_int(solved_at, "solvedAt"),
        )


def parse_claims(payload: Any) -> List[SolveClaim]:
    """
    Validate the solves list of an update-leaderboard request.

    @param payload: Raw "solves" value from the JSON body (None means no solves)
    @return: List of SolveClaim in submission order
    """
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise ValidationError("solves must be a list")
    return [SolveClaim.from_payload(item) for item in payload]


def require_int(
    value: Any,
    field_name: str,
    minimum: int = 0,
) -> int:
    """
    Check that a JSON value is an integer SQLite can store.

    @param value: Decoded JSON value
    @param field_name: Field name used in the error message
    @param minimum: Smallest accepted value
    @return: The value, unchanged
    """
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer")
    if not minimum <= value <= MAX_SQLITE_INT:
        raise ValidationError(f"{field_name} must be between {minimum} and {MAX_SQLITE_INT}")
    return value
