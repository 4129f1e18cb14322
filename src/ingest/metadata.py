"""Metadata publisher: the catalog's "last updated" stamp.

Clients compare ``questions_last_updated`` against the value they cached to
decide whether to drop their cached query results. The record is a single
key in the metadata table, upserted after every batch that wrote something.
"""

import logging
import sqlite3
import time

from src.core.db import get_metadata, set_metadata

logger = logging.getLogger(__name__)

QUESTIONS_LAST_UPDATED = "questions_last_updated"


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class MetadataPublisher:
    """Stamps the catalog's last-updated timestamp.

    Usage::

        publisher = MetadataPublisher(conn)
        publisher.publish()            # stamp "now"
        publisher.last_updated()       # -> epoch ms, 0 if never published
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def publish(self, timestamp: int | None = None) -> int:
        """Upsert the timestamp (epoch ms, default now). Returns the value written."""
        value = now_ms() if timestamp is None else timestamp
        set_metadata(self._conn, QUESTIONS_LAST_UPDATED, value)
        logger.debug("Published %s=%d", QUESTIONS_LAST_UPDATED, value)
        return value

    def safe_publish(self, timestamp: int | None = None) -> int | None:
        """Publish, logging instead of raising on storage failure.

        Used after a successful write: the data is already committed, so a
        failed stamp must not turn the batch into a failure.
        """
        try:
            return self.publish(timestamp)
        except sqlite3.Error:
            logger.warning("Failed to update %s", QUESTIONS_LAST_UPDATED, exc_info=True)
            return None

    def last_updated(self) -> int:
        """Return the last published timestamp, or 0 if never published."""
        value = get_metadata(self._conn, QUESTIONS_LAST_UPDATED)
        return int(value) if value is not None else 0


def read_last_updated(conn: sqlite3.Connection) -> dict[str, int]:
    """Metadata read contract: ``{"lastUpdated": <epoch ms or 0>}``."""
    return {"lastUpdated": MetadataPublisher(conn).last_updated()}
