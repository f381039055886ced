#!/usr/bin/env python3
"""
Timezone API - store and share a user's timezone behind OAuth2 login.
"""

import argparse
import logging
import sys
from typing import List, Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

logger = logging.getLogger("tzapi")


def serve() -> int:
    from tzapi.config import load_config
    from tzapi.errors import ConfigError

    try:
        cfg = load_config()
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    from tzapi.api.server import run

    run(host=cfg.server.host, port=cfg.server.port, log_level=cfg.log_level)
    return 0


def migrate() -> int:
    from tzapi.storage.migrate import main as migrate_main

    return migrate_main([])


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Timezone API server")
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "migrate"],
        help="serve: run the HTTP API (default); migrate: apply pending database migrations",
    )
    args = parser.parse_args(argv)

    if args.command == "migrate":
        return migrate()
    return serve()


if __name__ == "__main__":
    sys.exit(main())
