"""Pgpool-II version detection."""
from __future__ import annotations
import logging
import re
from typing import Any

import psycopg2
from packaging.version import InvalidVersion, Version

logger = logging.getLogger(__name__)

VERSION_QUERY = "SHOW POOL_VERSION;"
VERSION_COLUMN = "pool_version"

PGPOOL_VERSION_RE = re.compile(r"^((\d+)(\.\d+)(\.\d+)?)")


class VersionDetectionError(Exception):
    pass


def parse_pool_version(text: str) -> Version:
    """Parse the leading ``major.minor[.patch]`` of a pool_version string."""
    match = PGPOOL_VERSION_RE.match(text or "")
    if not match:
        raise VersionDetectionError(f"Error retrieving Pgpool-II version: {text!r}")
    try:
        return Version(match.group(1))
    except InvalidVersion as e:
        raise VersionDetectionError(f"Error parsing Pgpool-II version: {e}") from e


def query_version(conn: Any) -> Version:
    logger.debug("Querying Pgpool-II version")
    try:
        with conn.cursor() as cur:
            cur.execute(VERSION_QUERY)
            columns = [d[0] for d in cur.description or ()]
            if columns != [VERSION_COLUMN]:
                raise VersionDetectionError(f"Unexpected columns returned for version: {columns}")
            rows = cur.fetchall()
    except psycopg2.Error as e:
        raise VersionDetectionError(f"Error querying SHOW POOL_VERSION: {e}") from e

    # the last row wins
    text = rows[-1][0] if rows else ""
    if isinstance(text, (bytes, bytearray)):
        text = text.decode("utf-8", errors="replace")
    version = parse_pool_version(str(text))
    logger.debug(f"pgpool_version={version}")
    return version
