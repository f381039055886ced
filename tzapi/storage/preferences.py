from __future__ import annotations

import logging
from typing import List, Optional

import psycopg
from psycopg_pool import ConnectionPool

from tzapi.errors import StorageError
from tzapi.storage.models import PreferenceRecord
from tzapi.timezones import validate_timezone

logger = logging.getLogger(__name__)

_COLUMNS = "user_id, username, timezone, created_at, updated_at"


def _row_to_record(row) -> PreferenceRecord:
    user_id, username, timezone, created_at, updated_at = row
    return PreferenceRecord(
        user_id=str(user_id),
        username=str(username),
        timezone=str(timezone) if timezone else None,
        created_at=created_at,
        updated_at=updated_at,
    )


class PreferenceStore:
    """Durable user_id -> timezone records in the Postgres `timezones` table."""

    def __init__(self, pool: ConnectionPool):
        self._pool = pool

    def get(self, user_id: str) -> Optional[PreferenceRecord]:
        try:
            with self._pool.connection() as conn:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM timezones WHERE user_id = %s",
                    (user_id,),
                ).fetchone()
        except psycopg.Error as e:
            logger.error("Preference lookup failed for user %s: %s", user_id, type(e).__name__)
            raise StorageError() from e
        return _row_to_record(row) if row else None

    def upsert(self, user_id: str, username: str, timezone: str) -> PreferenceRecord:
        """
        Insert or update the user's record.

        The timezone is validated before any connection is taken, so an invalid value
        raises ValidationError and leaves the stored record untouched. `created_at` is
        kept from the first insert.
        """
        tz = validate_timezone(timezone)
        try:
            with self._pool.connection() as conn:
                row = conn.execute(
                    f"""
                    INSERT INTO timezones (user_id, username, timezone)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (user_id) DO UPDATE
                    SET username = EXCLUDED.username,
                        timezone = EXCLUDED.timezone,
                        updated_at = NOW()
                    RETURNING {_COLUMNS}
                    """,
                    (user_id, username, tz),
                ).fetchone()
        except psycopg.Error as e:
            logger.error("Preference upsert failed for user %s: %s", user_id, type(e).__name__)
            raise StorageError() from e
        if row is None:
            raise StorageError()
        logger.info("Saved timezone %s for user %s", tz, user_id)
        return _row_to_record(row)

    def delete(self, user_id: str) -> None:
        try:
            with self._pool.connection() as conn:
                cur = conn.execute("DELETE FROM timezones WHERE user_id = %s", (user_id,))
                deleted = cur.rowcount
        except psycopg.Error as e:
            logger.error("Preference delete failed for user %s: %s", user_id, type(e).__name__)
            raise StorageError() from e
        logger.info("Deleted timezone for user %s (rows=%d)", user_id, max(deleted, 0))

    def list_all(self) -> List[PreferenceRecord]:
        try:
            with self._pool.connection() as conn:
                rows = conn.execute(f"SELECT {_COLUMNS} FROM timezones ORDER BY user_id").fetchall()
        except psycopg.Error as e:
            logger.error("Preference listing failed: %s", type(e).__name__)
            raise StorageError() from e
        return [_row_to_record(r) for r in rows]

    def ping(self) -> bool:
        try:
            with self._pool.connection() as conn:
                conn.execute("SELECT 1")
            return True
        except psycopg.Error as e:
            logger.warning("Postgres health check failed: %s", type(e).__name__)
            return False

    def close(self) -> None:
        self._pool.close()
