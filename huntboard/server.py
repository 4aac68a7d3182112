"""
Main HuntServer class that wires the services to the web application.
"""

import logging
from typing import Optional

from aiohttp import web, web_runner
import aiohttp_cors

from .auth import AuthManager
from .challenges import ChallengeCatalog
from .config import HuntConfig
from .credentials import CredentialVerifier
from .database import DatabaseManager
from .leaderboard import LeaderboardAggregator
from .messages import MessageCenter
from .solves import SolveReconciler
from .submissions import SubmissionLock
from .teams import TeamRegistry
from .web_handlers import WebHandlers, error_middleware

logger = logging.getLogger(__name__)


class HuntServer:
    """Leaderboard server: owns the database, the services and the web app."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 3000,
        db_path: str = "hunt.db",
        config_path: str = "hunt_config.json",
    ) -> None:
        self.host = host
        self.port = port
        self.db_path = db_path

        # Load configuration
        self.config = HuntConfig(config_path)
        # Initialize components
        self.db = DatabaseManager(db_path, self.config)
        self.credentials = CredentialVerifier(self.config)
        self.auth = AuthManager(self.db, self.credentials, self.config)
        self.teams = TeamRegistry(self.db, self.credentials, self.config)
        self.challenges = ChallengeCatalog(self.db)
        self.solves = SolveReconciler(self.db)
        self.submissions = SubmissionLock(self.db)
        self.leaderboard = LeaderboardAggregator(self.db)
        self.messages = MessageCenter(self.db)
        self.web_handlers = WebHandlers(self, self.config)

    async def init_db(self) -> None:
        """
        Initialize the database.

        Creates tables, runs migrations and seeds the admin account.
        """
        await self.db.init_db()
        await self.db.seed_defaults(self.credentials)

    def build_app(self) -> web.Application:
        """
        Create the aiohttp application with all routes and CORS.

        @return: Configured web.Application
        """
        app = web.Application(middlewares=[error_middleware])
        handlers = self.web_handlers

        cors = aiohttp_cors.setup(
            app,
            defaults={
                self.config.get("server", "cors_origin"): aiohttp_cors.ResourceOptions(
                    allow_credentials=True,
                    expose_headers="*",
                    allow_headers="*",
                    allow_methods="*",
                )
            },
        )

        # Public routes
        app.router.add_get("/", handlers.web_index)
        app.router.add_get("/api/leaderboard", handlers.web_api_leaderboard)

        # Device routes
        app.router.add_post("/api/team/login", handlers.team_login)
        app.router.add_post("/api/team/logout", handlers.team_logout)
        app.router.add_get("/api/team/solves", handlers.team_solves)
        app.router.add_get("/api/team/members", handlers.team_members)
        app.router.add_post("/api/team/solve", handlers.team_solve)
        app.router.add_post("/api/team/emergency-lock", handlers.team_emergency_lock)
        app.router.add_post("/api/update-leaderboard", handlers.update_leaderboard)
        app.router.add_get("/api/messages", handlers.get_messages)
        app.router.add_post("/api/messages", handlers.send_team_message)

        # Admin routes
        app.router.add_post("/api/admin/login", handlers.admin_login)
        app.router.add_post("/api/admin/logout", handlers.admin_logout)
        app.router.add_post("/api/admin/send-message", handlers.admin_send_message)
        app.router.add_post(
            "/api/admin/users/{id}/force-submit", handlers.admin_force_submit
        )
        app.router.add_get("/api/admin/teams", handlers.admin_list_teams)
        app.router.add_post("/api/admin/teams", handlers.admin_create_team)
        app.router.add_get("/api/admin/teams/{id}", handlers.admin_get_team)
        app.router.add_put("/api/admin/teams/{id}", handlers.admin_update_team)
        app.router.add_delete("/api/admin/teams/{id}", handlers.admin_delete_team)
        app.router.add_get("/api/admin/challenges", handlers.admin_list_challenges)
        app.router.add_post("/api/admin/challenges", handlers.admin_create_challenge)
        app.router.add_get("/api/admin/challenges/{id}", handlers.admin_get_challenge)
        app.router.add_put("/api/admin/challenges/{id}", handlers.admin_update_challenge)
        app.router.add_delete(
            "/api/admin/challenges/{id}", handlers.admin_delete_challenge
        )

        # Add CORS to all routes
        for route in list(app.router.routes()):
            cors.add(route)

        return app

    async def start_web_server(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> web_runner.AppRunner:
        """
        Start the web server.

        @param host: Host address to bind the server to (default uses configured host)
        @param port: Port number to use (default uses configured port)
        @return: AppRunner instance for the web server
        """
        if host is None:
            host = self.host
        if port is None:
            port = self.port

        app_runner = web_runner.AppRunner(self.build_app())
        await app_runner.setup()

        site = web_runner.TCPSite(app_runner, host, port)
        await site.start()

        logger.info("Web server running on http://%s:%d", host, port)
        return app_runner

    async def log_summary(self) -> None:
        """Log what the database currently holds."""
        await self.db.log_summary()
