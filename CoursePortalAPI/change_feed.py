import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

logger = logging.getLogger(__name__)

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")

HEARTBEAT_INTERVAL = 25  # seconds; must stay under proxy idle timeouts


class Subscription:
    """
    A listener on one table, optionally narrowed to an event type and a
    `column=eq.value` filter.

    Attributes:
        table (str): Table name to listen on.
        event (str): INSERT, UPDATE, DELETE or "*".
        column (str): Filter column, or None.
        value (str): Filter value, or None.
        queue (asyncio.Queue): Pending change payloads.
    """
    def __init__(self, table: str, event: str = "*", filter: Optional[str] = None, maxsize: int = 100):
        if event != "*" and event not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event}")
        self.table = table
        self.event = event
        self.column, self.value = _parse_filter(filter)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    def matches(self, change: Dict[str, Any]) -> bool:
        if change.get("table") != self.table:
            return False
        if self.event != "*" and change.get("eventType") != self.event:
            return False
        if self.column is None:
            return True
        row = change.get("new") or change.get("old") or {}
        return str(row.get(self.column)) == self.value


def _parse_filter(filter: Optional[str]):
    if not filter:
        return None, None
    column, sep, rest = filter.partition("=eq.")
    if not sep or not column:
        raise ValueError(f"Unsupported filter: {filter}")
    return column, rest


class ChangeFeed:
    """
    Best-effort change notifications for Server-Sent Events.

    Publishing never blocks and may happen from a worker thread: delivery is
    handed to the subscriber's event loop. A subscriber whose queue is full
    misses the event and only catches up on its next full refresh.
    """
    def __init__(self):
        self.listeners: Set[Subscription] = set()

    async def subscribe(self, table: str, event: str = "*", filter: Optional[str] = None):
        """
        Subscribe to changes on a table.

        Yields:
            dict: Change payloads {table, eventType, new, old}.
        """
        sub = self._register(table, event, filter)
        try:
            while True:
                item = await sub.queue.get()
                yield item
        finally:
            self.listeners.discard(sub)

    async def sse_events(self, table: str, event: str = "*", filter: Optional[str] = None, heartbeat: float = HEARTBEAT_INTERVAL):
        """
        Subscribe to changes on a table and yield them as Server-Sent Events frames.

        A `: keep-alive` comment goes out whenever nothing changed for
        `heartbeat` seconds; clients ignore it.

        Yields:
            str: `data:` frames with the JSON change payload, or keep-alive comments.
        """
        sub = self._register(table, event, filter)
        try:
            while True:
                try:
                    change = await asyncio.wait_for(sub.queue.get(), timeout=heartbeat)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {json.dumps(change, default=str)}\n\n"
        except asyncio.CancelledError:
            logger.debug("%s change stream closed by client", table)
            raise
        finally:
            self.listeners.discard(sub)

    def _register(self, table: str, event: str, filter: Optional[str]) -> Subscription:
        sub = Subscription(table, event, filter)
        sub.loop = asyncio.get_running_loop()
        self.listeners.add(sub)
        return sub

    def publish_nowait(self, table: str, event_type: str, new: Optional[Dict[str, Any]] = None, old: Optional[Dict[str, Any]] = None) -> int:
        """
        Publish a change to every matching subscriber without waiting.

        Returns:
            int: Number of subscribers the change was handed to.
        """
        change = {"table": table, "eventType": event_type, "new": new or {}, "old": old or {}}
        current = _running_loop()
        delivered = 0
        for sub in list(self.listeners):
            if not sub.matches(change):
                continue
            if sub.loop is None or sub.loop is current:
                _deliver(sub, change)
            else:
                try:
                    sub.loop.call_soon_threadsafe(_deliver, sub, change)
                except RuntimeError:
                    # loop already closed
                    self.listeners.discard(sub)
                    continue
            delivered += 1
        return delivered


def _running_loop():
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _deliver(sub: Subscription, change: Dict[str, Any]) -> None:
    try:
        sub.queue.put_nowait(change)
    except asyncio.QueueFull:
        logger.warning("Dropping %s %s change for a slow subscriber", change["table"], change["eventType"])


change_feed = ChangeFeed()
