"""
Public leaderboard aggregation.
"""

import logging
from typing import Any, Dict, List

from .database import now_ms

logger = logging.getLogger(__name__)

LEADERBOARD_CACHE_KEY = "leaderboard"


class LeaderboardAggregator:
    """Builds the public leaderboard snapshot from the solve table."""

    def __init__(
        self,
        db_manager: Any,
    ) -> None:
        self.db = db_manager

    async def get_leaderboard(self) -> Dict[str, Any]:
        """
        Compute team totals, first-solve times and the competition-ended flag.

        Runs without a transaction and is served from the store's TTL cache;
        every committed write invalidates it.

        @return: Dictionary with challenges, teamSolves, competitionEnded and serverTime
        """
        cached = self.db.get_cached(LEADERBOARD_CACHE_KEY)
        if cached is not None:
            return dict(cached, serverTime=now_ms())

        async with self.db.connect() as db:
            # One logical solve per (team, challenge), however many rows exist.
            # Ties keep natural row order (team id).
            cursor = await db.execute("""
                SELECT
                    t.id,
                    t.name,
                    COALESCE(SUM(c.points), 0) AS total_points,
                    COUNT(c.id) AS solved_count
                FROM teams t
                LEFT JOIN (
                    SELECT DISTINCT u.team_id, s.challenge_id
                    FROM solves s
                    JOIN users u ON s.user_id = u.id
                ) ts ON ts.team_id = t.id
                LEFT JOIN challenges c ON c.id = ts.challenge_id
                GROUP BY t.id, t.name
                ORDER BY total_points DESC, t.id ASC
            """)
            teams = await cursor.fetchall()

            cursor = await db.execute("""
                SELECT
                    u.team_id,
                    s.challenge_id,
                    MIN(s.solved_at) AS first_solved_at
                FROM solves s
                JOIN users u ON s.user_id = u.id
                GROUP BY u.team_id, s.challenge_id
                ORDER BY u.team_id, s.challenge_id
            """)
            first_solves = await cursor.fetchall()

            cursor = await db.execute(
                "SELECT id, name, short_name, points FROM challenges ORDER BY id"
            )
            challenges = await cursor.fetchall()

            cursor = await db.execute(
                "SELECT COUNT(*) FROM users WHERE made_final_submission = 0"
            )
            pending_devices = (await cursor.fetchone())[0]

        solves_by_team: Dict[int, List[Dict[str, Any]]] = {}
        for team_id, challenge_id, first_solved_at in first_solves:
            solves_by_team.setdefault(team_id, []).append(
                {
                    "challengeId": challenge_id,
                    "timestamp": first_solved_at,
                    "solved": True,
                }
            )

        team_solves = []
        for rank, team in enumerate(teams, 1):
            team_solves.append(
                {
                    "rank": rank,
                    "teamId": team["id"],
                    "name": team["name"],
                    "totalPoints": team["total_points"],
                    "solvedChallenges": team["solved_count"],
                    "solves": solves_by_team.get(team["id"], []),
                }
            )

        result = {
            "challenges": [
                {
                    "id": c["id"],
                    "name": c["name"],
                    "shortName": c["short_name"],
                    "points": c["points"],
                }
                for c in challenges
            ],
            "teamSolves": team_solves,
            "competitionEnded": pending_devices == 0,
        }

        self.db.set_cached(LEADERBOARD_CACHE_KEY, result)
        return dict(result, serverTime=now_ms())
