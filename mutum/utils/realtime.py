"""
Realtime change feed over PostgreSQL LISTEN/NOTIFY

Table triggers publish JSON payloads {"table", "event", "record"} on a
single channel. "record" is not the full row: it holds the row id plus
the filter columns (user_id, product_id, tool_id, status) the table has,
as strings. Subscribers receive a bare invalidation callback and are
expected to re-fetch the whole collection.
"""

import json
import logging
import select
from typing import Any, Callable, Optional

from mutum.utils.config import settings
from mutum.utils.database import db

logger = logging.getLogger(__name__)


class RealtimeChannel:
    """Subscription to insert/update events of one table"""

    def __init__(
        self,
        table: str,
        callback: Callable[[], None],
        column: Optional[str] = None,
        value: Any = None,
        events: tuple = ("INSERT", "UPDATE"),
        connection=None,
    ):
        self.table = table
        self.callback = callback
        self.column = column
        self.value = value
        self.events = tuple(e.upper() for e in events)
        self.channel = settings.REALTIME_CHANNEL
        self._conn = connection
        self.subscribed = False

    def subscribe(self) -> "RealtimeChannel":
        if self._conn is None:
            self._conn = db.connect()
        with self._conn.cursor() as cursor:
            cursor.execute(f'LISTEN "{self.channel}"')
        self.subscribed = True
        logger.info(f"Subscribed to {self.table} changes on channel {self.channel}")
        return self

    def matches(self, payload: str) -> bool:
        """Check a notification payload against table, event and column filter"""
        try:
            message = json.loads(payload)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed notification payload: {payload!r}")
            return False

        if message.get("table") != self.table:
            return False
        if str(message.get("event", "")).upper() not in self.events:
            return False
        if self.column is not None:
            record = message.get("record") or {}
            return record.get(self.column) == self.value
        return True

    def dispatch(self, payload: str) -> bool:
        """Invoke the callback for a matching payload; returns whether it fired"""
        if not self.matches(payload):
            return False
        try:
            self.callback()
        except Exception as e:
            logger.warning(f"Realtime callback for {self.table} failed: {e}")
        return True

    def poll(self, timeout: Optional[float] = None) -> int:
        """
        Wait for notifications and dispatch them

        Returns:
            Number of callbacks fired
        """
        if not self.subscribed:
            raise RuntimeError("Channel is not subscribed")

        wait = settings.REALTIME_POLL_SECONDS if timeout is None else timeout
        if select.select([self._conn], [], [], wait) == ([], [], []):
            return 0

        self._conn.poll()
        fired = 0
        while self._conn.notifies:
            notify = self._conn.notifies.pop(0)
            if self.dispatch(notify.payload):
                fired += 1
        return fired

    def unsubscribe(self):
        if self._conn is None:
            return
        try:
            if self.subscribed:
                with self._conn.cursor() as cursor:
                    cursor.execute(f'UNLISTEN "{self.channel}"')
        finally:
            self._conn.close()
            self._conn = None
            self.subscribed = False
            logger.info(f"Unsubscribed from {self.table} changes")
