"""
Solve reconciliation for team submissions.

Several devices of one team may scan the same NFC tag and report it whenever
they are back online. All of a team's rows for one challenge form a single
logical solve, and the earliest reported solved_at wins: a later batch
carrying an earlier time moves the row to that time and credits the device
that reported it.
"""

import logging
import secrets
from typing import Any, Dict, List, Sequence, Tuple

import aiosqlite

from .database import now_ms
from .errors import AlreadyFinalized, NotFound, ValidationError
from .models import Device, SolveClaim
from .submissions import finalize_in, is_finalized_in

logger = logging.getLogger(__name__)

INSERTED = "inserted"
OVERWRITTEN = "overwritten"
IGNORED = "ignored"
SKIPPED = "skipped"


class SolveReconciler:
    """Applies solve batches to the team-wide solve set."""

    def __init__(
        self,
        db_manager: Any,
    ) -> None:
        self.db = db_manager

    async def _teammate_ids(
        self,
        db: aiosqlite.Connection,
        team_id: int,
    ) -> List[int]:
        cursor = await db.execute("SELECT id FROM users WHERE team_id = ?", (team_id,))
        return [row["id"] for row in await cursor.fetchall()]

    async def _apply_claim(
        self,
        db: aiosqlite.Connection,
        device: Device,
        teammates: Sequence[int],
        claim: SolveClaim,
    ) -> str:
        """
        Apply one claim against the team's solve set.

        @param db: Connection inside the batch transaction
        @param device: Submitting device
        @param teammates: User ids of the device's team, including the device
        @param claim: Claim to apply
        @return: One of INSERTED, OVERWRITTEN, IGNORED, SKIPPED
        """
        cursor = await db.execute(
            "SELECT 1 FROM challenges WHERE id = ?", (claim.challenge_id,)
        )
        if await cursor.fetchone() is None:
            logger.warning(
                "User %d claimed unknown challenge %d, skipping",
                device.id,
                claim.challenge_id,
            )
            return SKIPPED

        placeholders = ", ".join("?" for _ in teammates)
        cursor = await db.execute(
            f"""
            SELECT id, user_id, solved_at
            FROM solves
            WHERE challenge_id = ? AND user_id IN ({placeholders})
            ORDER BY solved_at ASC, id ASC
            LIMIT 1
            """,
            (claim.challenge_id, *teammates),
        )
        existing = await cursor.fetchone()

        if existing is None:
            await db.execute(
                "INSERT INTO solves (user_id, challenge_id, solved_at) VALUES (?, ?, ?)",
                (device.id, claim.challenge_id, claim.solved_at),
            )
            logger.debug(
                "Team %d solved challenge %d at %d (user %d)",
                device.team_id,
                claim.challenge_id,
                claim.solved_at,
                device.id,
            )
            return INSERTED

        if existing["solved_at"] > claim.solved_at:
            await db.execute(
                "UPDATE solves SET solved_at = ?, user_id = ? WHERE id = ?",
                (claim.solved_at, device.id, existing["id"]),
            )
            logger.info(
                "Team %d challenge %d moved earlier: %d -> %d, credit user %d -> %d",
                device.team_id,
                claim.challenge_id,
                existing["solved_at"],
                claim.solved_at,
                existing["user_id"],
                device.id,
            )
            return OVERWRITTEN

        return IGNORED

    async def _apply_batch(
        self,
        db: aiosqlite.Connection,
        device: Device,
        claims: Sequence[SolveClaim],
        is_final_submission: bool,
    ) -> Tuple[Dict[str, int], int]:
        """
        Apply claims, refresh last_active and set the lock, on an open transaction.

        @return: Tuple of (per-outcome counts, server time)
        """
        outcomes = {INSERTED: 0, OVERWRITTEN: 0, IGNORED: 0, SKIPPED: 0}

        teammates = await self._teammate_ids(db, device.team_id)
        for claim in claims:
            outcome = await self._apply_claim(db, device, teammates, claim)
            outcomes[outcome] += 1

        server_time = now_ms()
        await db.execute(
            "UPDATE users SET last_active = ? WHERE id = ?",
            (server_time, device.id),
        )

        if is_final_submission:
            await finalize_in(db, device.id)

        return outcomes, server_time

    async def reconcile_solves(
        self,
        device: Device,
        claims: Sequence[SolveClaim],
        is_final_submission: bool = False,
    ) -> Dict[str, Any]:
        """
        Apply a batch of solve claims from one device, atomically.

        Each claim is handled independently against the team's shared solve
        set: missing solves are inserted, later solves are moved to the
        earlier claimed time and credited to this device, and equal or
        earlier solves are left alone. The device's last_active is refreshed
        and, for a final submission, its lock is set last. Any failure rolls
        back the whole batch.

        @param device: Authenticated submitting device
        @param claims: Claims in submission order
        @param is_final_submission: Lock the device after applying the batch
        @return: Dictionary with success flag, serverTime and per-outcome counts
        """
        async with self.db.transaction() as db:
            if await is_finalized_in(db, device.id):
                raise AlreadyFinalized("Already made final submission")

            outcomes, server_time = await self._apply_batch(
                db, device, claims, is_final_submission
            )

        logger.info(
            "User %d (team %d) submitted %d solves: %d new, %d moved earlier, "
            "%d ignored, %d skipped%s",
            device.id,
            device.team_id,
            len(claims),
            outcomes[INSERTED],
            outcomes[OVERWRITTEN],
            outcomes[IGNORED],
            outcomes[SKIPPED],
            " (final submission)" if is_final_submission else "",
        )

        return {"success": True, "serverTime": server_time, "outcomes": outcomes}

    async def submit_solve(
        self,
        device: Device,
        challenge_id: int,
        key_hash: Any,
    ) -> Dict[str, Any]:
        """
        Record a single online scan, checked against the challenge's NFC key.

        The scan is timestamped with the server clock and then reconciled
        like any other claim.

        @param device: Authenticated submitting device
        @param challenge_id: Scanned challenge
        @param key_hash: Key hash read from the tag
        @return: Dictionary with success flag, serverTime and the claim outcome
        """
        if not isinstance(key_hash, str) or not key_hash:
            raise ValidationError("keyHash is required")

        async with self.db.transaction() as db:
            if await is_finalized_in(db, device.id):
                raise AlreadyFinalized("Already made final submission")

            cursor = await db.execute(
                "SELECT key_hash FROM challenges WHERE id = ?", (challenge_id,)
            )
            challenge = await cursor.fetchone()
            if challenge is None:
                raise NotFound(f"Challenge {challenge_id} not found")
            if not secrets.compare_digest(
                challenge["key_hash"].encode("utf-8"), key_hash.encode("utf-8")
            ):
                logger.warning(
                    "User %d sent a wrong key for challenge %d", device.id, challenge_id
                )
                raise ValidationError("Invalid key for challenge")

            claim = SolveClaim(challenge_id, now_ms())
            outcomes, server_time = await self._apply_batch(db, device, [claim], False)

        outcome = next(name for name, count in outcomes.items() if count)
        logger.info(
            "User %d (team %d) scanned challenge %d: %s",
            device.id,
            device.team_id,
            challenge_id,
            outcome,
        )
        return {"success": True, "serverTime": server_time, "outcome": outcome}

    async def get_team_solves(
        self,
        team_id: int,
    ) -> List[Dict[str, Any]]:
        """
        Get the team's logical solves with the credited device.

        @param team_id: Team id
        @return: List of dictionaries with challengeId, solvedAt and solvedBy
        """
        async with self.db.connect() as db:
            cursor = await db.execute(
                """
                SELECT s.challenge_id, s.solved_at, u.username
                FROM solves s
                JOIN users u ON s.user_id = u.id
                WHERE u.team_id = ?
                ORDER BY s.challenge_id ASC, s.solved_at ASC, s.id ASC
                """,
                (team_id,),
            )
            rows = await cursor.fetchall()

        solves: Dict[int, Dict[str, Any]] = {}
        for challenge_id, solved_at, username in rows:
            # first row per challenge is the earliest
            if challenge_id not in solves:
                solves[challenge_id] = {
                    "challengeId": challenge_id,
                    "solvedAt": solved_at,
                    "solvedBy": username,
                }
        return list(solves.values())
