"""
Bounded connection pools for Postgres and Redis.

Both pools block callers up to the configured timeout when exhausted instead of
opening extra connections; the timeout surfaces as StorageError in the stores.
"""

from __future__ import annotations

import logging

import redis
from psycopg_pool import ConnectionPool

from tzapi.config import DatabaseConfig, RedisConfig

logger = logging.getLogger(__name__)


def create_db_pool(cfg: DatabaseConfig) -> ConnectionPool:
    timeout = cfg.connect_timeout_seconds
    pool = ConnectionPool(
        conninfo=cfg.url,
        min_size=1,
        max_size=cfg.max_connections,
        timeout=float(timeout),
        max_idle=600.0,
        max_lifetime=1800.0,
        kwargs={
            "connect_timeout": timeout,
            # Bound every query, not just the connect.
            "options": f"-c statement_timeout={timeout * 1000}",
        },
        name="tzapi-postgres",
        open=False,
    )
    # Don't block startup on the first connection; /health reports reachability.
    pool.open(wait=False)
    logger.info("Postgres pool opened (max_size=%d, timeout=%ds)", cfg.max_connections, timeout)
    return pool


def create_redis_client(cfg: RedisConfig) -> redis.Redis:
    timeout = cfg.connect_timeout_seconds
    pool = redis.BlockingConnectionPool.from_url(
        cfg.url,
        max_connections=cfg.pool_size,
        timeout=timeout,
        socket_connect_timeout=timeout,
        socket_timeout=timeout,
        decode_responses=True,
    )
    logger.info("Redis pool created (max_connections=%d, timeout=%ds)", cfg.pool_size, timeout)
    return redis.Redis(connection_pool=pool)
