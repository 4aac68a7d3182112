"""
NFC Hunt leaderboard server - backend for NFC treasure-hunt competitions.

This package provides:
- Team login for mobile devices with per-team device limits
- Solve reconciliation across a team's devices (earliest scan wins)
- Irreversible per-device final submissions
- Public leaderboard with first-solve times and a competition-ended flag
- Pull-based admin messages delivered once per device
- Admin API for teams and challenges
"""

from .config import HuntConfig
from .database import DatabaseManager
from .web_handlers import WebHandlers
from .server import HuntServer

__version__ = "1.0.0"
__author__ = "NFC Hunt Contributors"

__all__ = [
    "HuntConfig",
    "DatabaseManager",
    "WebHandlers",
    "HuntServer",
]
