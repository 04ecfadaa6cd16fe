"""Connection management for the Pgpool-II admin interface.

The exporter owns exactly one psycopg2 connection. It is probed before every
scrape and replaced wholesale when the probe fails.
"""
from __future__ import annotations
import logging
import time
from typing import Any, Callable, Optional

import psycopg2

logger = logging.getLogger(__name__)

PING_QUERY = "SHOW POOL_VERSION;"


class PgpoolConnectionError(Exception):
    pass


def connect(dsn: str) -> Any:
    """Open a new autocommit connection to Pgpool-II."""
    try:
        conn = psycopg2.connect(dsn)
        conn.autocommit = True
    except psycopg2.Error as e:
        raise PgpoolConnectionError(f"error connecting to Pgpool-II: {e}") from e
    return conn


def probe(conn: Any) -> None:
    """Run the liveness query; raise PgpoolConnectionError if it fails."""
    if conn is None:
        raise PgpoolConnectionError("error connecting to Pgpool-II: no open connection")
    try:
        with conn.cursor() as cur:
            cur.execute(PING_QUERY)
            cur.fetchall()
    except psycopg2.Error as e:
        raise PgpoolConnectionError(f"error connecting to Pgpool-II: {e}") from e


class ConnectionManager:
    """Holds the single live connection for one DSN."""

    def __init__(self, dsn: str, connect_fn: Callable[[str], Any] = connect):
        self.dsn = dsn
        self._connect = connect_fn
        self.connection: Optional[Any] = None

    def open(self) -> None:
        """Connect and probe. The previous connection must already be closed."""
        conn = self._connect(self.dsn)
        self.connection = conn
        probe(conn)

    def open_with_retry(self, interval: float, max_attempts: Optional[int] = None,
                        sleep: Callable[[float], None] = time.sleep) -> None:
        """Keep trying to open the connection with a fixed backoff.

        Retries forever unless ``max_attempts`` is given, in which case the last
        PgpoolConnectionError is raised once attempts are exhausted.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                self.open()
                return
            except PgpoolConnectionError as e:
                self.close()
                if max_attempts is not None and attempt >= max_attempts:
                    raise
                logger.error(f"Error connecting to Pgpool-II (attempt {attempt}), retrying in {interval}s: {e}")
                sleep(interval)

    def ensure_live(self) -> None:
        """Probe the connection, reconnecting once if the probe fails."""
        try:
            probe(self.connection)
            return
        except PgpoolConnectionError as e:
            logger.error(f"Error pinging Pgpool-II: {e}")

        self.close()
        logger.info("Reconnecting to Pgpool-II")
        try:
            self.open()
        except PgpoolConnectionError as e:
            logger.error(f"Error pinging Pgpool-II: {e}")
            self.close()
            raise

    def close(self) -> None:
        conn, self.connection = self.connection, None
        if conn is None:
            return
        try:
            conn.close()
        except psycopg2.Error as e:
            logger.error(f"Error while closing non-pinging connection: {e}")
