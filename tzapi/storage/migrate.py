"""
Schema migrations for the preference store.

Plain `.sql` files under `migrations/` are applied in filename order. Each applied
version is recorded in `schema_migrations` together with the file's sha256, so editing
a file after it shipped is caught instead of leaving replicas on different schemas.
"""

from __future__ import annotations

import argparse
import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import psycopg

from tzapi.config import DatabaseConfig

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Session-level advisory lock shared by every replica running migrations.
MIGRATION_LOCK_KEY = 7305119020251

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version TEXT PRIMARY KEY,
    checksum TEXT NOT NULL,
    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path
    checksum: str
    sql: str


def load_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    """Read every migration file, ordered by version."""
    if not directory.is_dir():
        return []
    out: List[Migration] = []
    for path in sorted(directory.glob("*.sql")):
        body = path.read_bytes()
        out.append(
            Migration(
                version=path.stem,
                path=path,
                checksum=hashlib.sha256(body).hexdigest(),
                sql=body.decode("utf-8"),
            )
        )
    return out


def _connect(dsn: str, *, connect_timeout: int = 30) -> psycopg.Connection:
    # Autocommit: each migration opens its own top-level transaction below.
    return psycopg.connect(dsn, autocommit=True, connect_timeout=connect_timeout)


def _recorded_versions(conn) -> Dict[str, str]:
    conn.execute(_CREATE_LEDGER)
    rows = conn.execute("SELECT version, checksum FROM schema_migrations").fetchall()
    return {str(version): str(checksum) for version, checksum in rows}


def _pending(migrations: Iterable[Migration], recorded: Dict[str, str]) -> List[Migration]:
    pending: List[Migration] = []
    for m in migrations:
        seen = recorded.get(m.version)
        if seen is None:
            pending.append(m)
        elif seen != m.checksum:
            raise RuntimeError(
                f"Migration checksum mismatch for {m.version}: recorded {seen[:12]}, file {m.checksum[:12]}"
            )
    return pending


def apply_migrations(conn, migrations: Optional[Iterable[Migration]] = None) -> List[str]:
    """
    Apply whatever has not been recorded yet and return the versions applied.

    Runs under an advisory lock; the ledger row is written in the same transaction
    as the migration body.
    """
    available = list(migrations) if migrations is not None else load_migrations()

    conn.execute("SELECT pg_advisory_lock(%s);", (MIGRATION_LOCK_KEY,))
    try:
        applied: List[str] = []
        for m in _pending(available, _recorded_versions(conn)):
            with conn.transaction():
                conn.execute(m.sql)
                conn.execute(
                    "INSERT INTO schema_migrations (version, checksum) VALUES (%s, %s)",
                    (m.version, m.checksum),
                )
            logger.info("Applied migration %s", m.version)
            applied.append(m.version)
        return applied
    finally:
        conn.execute("SELECT pg_advisory_unlock(%s);", (MIGRATION_LOCK_KEY,))


def migrate_database(cfg: DatabaseConfig) -> List[str]:
    with _connect(cfg.url, connect_timeout=cfg.connect_timeout_seconds) as conn:
        return apply_migrations(conn)


def maybe_auto_migrate(cfg: DatabaseConfig) -> Tuple[bool, str]:
    """
    Startup hook. Returns (did_attempt, message).

    Errors are not caught here: the server should not come up on a schema it
    cannot use.
    """
    if not cfg.auto_migrate:
        return False, "DB_AUTO_MIGRATE is disabled"
    versions = migrate_database(cfg)
    if not versions:
        return True, "No pending migrations"
    return True, f"Applied {len(versions)} migration(s): {', '.join(versions)}"


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="tzapi-migrate", description="Apply pending database migrations")
    parser.add_argument("--list", action="store_true", help="only list bundled migrations, don't connect")
    args = parser.parse_args(argv)

    if args.list:
        for m in load_migrations():
            print(f"{m.version} {m.checksum[:12]}")
        return 0

    dsn = (os.getenv("DATABASE_URL") or "").strip()
    if not dsn:
        logger.error("DATABASE_URL is not set; nothing to migrate")
        return 2
    with _connect(dsn) as conn:
        versions = apply_migrations(conn)
    logger.info("Applied %d migration(s)%s", len(versions), f": {', '.join(versions)}" if versions else "")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    raise SystemExit(main())
