#!/usr/bin/env python3
"""
NFC Hunt leaderboard server.
Accepts solve batches from team devices, serves the public leaderboard and
delivers admin messages over a JSON HTTP API.
"""

import argparse
import asyncio
import logging
import os
from pathlib import Path

from huntboard.server import HuntServer

logger = logging.getLogger("huntboard")


async def main():
    """Main function with command line interface."""

    parser = argparse.ArgumentParser(
        description="NFC Hunt leaderboard server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("WEB_PORT", "3000")),
        help="HTTP server port (env: WEB_PORT)"
    )
    parser.add_argument(
        "--db",
        default=os.getenv("DB_PATH", "hunt.db"),
        help="SQLite database file path (env: DB_PATH)"
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "hunt_config.json"),
        help="Configuration file path (env: CONFIG_PATH)"
    )
    parser.add_argument(
        "--host",
        default=os.getenv("HOST", "0.0.0.0"),
        help="Host to bind the server to (env: HOST)"
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (env: LOG_LEVEL)"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config_path = Path(args.config)

    if config_path.exists() and not config_path.is_file():
        logger.error("%s exists but is not a file", args.config)
        return

    server = HuntServer(
        host=args.host,
        port=args.port,
        db_path=args.db,
        config_path=args.config,
    )

    await server.init_db()
    await server.log_summary()

    runner = await server.start_web_server()
    logger.info("Press Ctrl+C to stop")

    try:
        await asyncio.Event().wait()
    finally:
        logger.info("Shutting down server")
        await runner.cleanup()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
