"""
Server-Sent Events connection registry.

Keeps, per user id, the set of event streams currently open by that user's
browser tabs. Each stream is backed by an unbounded ``asyncio.Queue`` drained
by the ``EventSourceResponse`` of the request that opened it, so pushing an
event never blocks the caller.

The registry is process local: with several server workers a notification
only reaches the streams held by the worker that emits it.

Events sent on the streams:

- ``{"status": "connection_slots_available", "max": int, "current": int}``
  when a stream of the user closes and the user is below the limit again.
- ``{"status": <reason>}`` right before the registry closes every stream of a
  user (``unauthenticated`` on sign out or when a new session replaces the
  current one).
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Set

from sse_starlette.sse import ServerSentEvent

from evaldesk.core.logging_config import get_logger
from evaldesk.server.core.config import settings

logger = get_logger(__name__)


class TooManyConnectionsError(Exception):
    """Raised when a user already holds the maximum number of streams."""

    def __init__(self, user_id: str, max_connections: int) -> None:
        super().__init__(f"User {user_id} already has {max_connections} open event streams")
        self.user_id = user_id
        self.max_connections = max_connections


@dataclass(eq=False)
class SSEConnection:
    """One open event stream."""

    user_id: str
    queue: "asyncio.Queue[Optional[ServerSentEvent]]" = field(default_factory=asyncio.Queue)
    closed: bool = False

    def send(self, data: Any, event: Optional[str] = None, event_id: Optional[str] = None) -> bool:
        """Queue a JSON event. Returns False when the stream is already closed."""
        if self.closed:
            return False
        self.queue.put_nowait(ServerSentEvent(data=json.dumps(data), event=event, id=event_id))
        return True

    def comment(self, text: str) -> bool:
        """Queue a comment line (ignored by EventSource clients)."""
        if self.closed:
            return False
        self.queue.put_nowait(ServerSentEvent(comment=text))
        return True

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.queue.put_nowait(None)


class SSERegistry:
    """In-memory map of user id to open event streams."""

    def __init__(self, max_connections: int = 5) -> None:
        self.max_connections = max_connections
        self._clients: Dict[str, Set[SSEConnection]] = {}

    def count(self, user_id: str) -> int:
        return len(self._clients.get(user_id, ()))

    def add(self, user_id: str) -> SSEConnection:
        """Register a new stream for a user.

        Raises:
            TooManyConnectionsError: The user already holds ``max_connections`` streams.
        """
        connections = self._clients.setdefault(user_id, set())
        if len(connections) >= self.max_connections:
            if not connections:
                del self._clients[user_id]
            raise TooManyConnectionsError(user_id, self.max_connections)
        connection = SSEConnection(user_id=user_id)
        connections.add(connection)
        logger.debug(f"SSE stream added for user {user_id} ({len(connections)}/{self.max_connections})")
        return connection

    def remove(self, connection: SSEConnection) -> None:
        """Unregister a stream; idempotent.

        When the user still has streams and is below the limit, they are told
        that a slot is available again.
        """
        connection.close()
        connections = self._clients.get(connection.user_id)
        if connections is None or connection not in connections:
            return
        connections.discard(connection)
        if not connections:
            del self._clients[connection.user_id]
            return
        if len(connections) < self.max_connections:
            self.notify(
                connection.user_id,
                {"status": "connection_slots_available", "max": self.max_connections, "current": len(connections)},
            )

    def notify(self, user_id: str, payload: Any, event: Optional[str] = None) -> int:
        """Send an event to every live stream of a user, dropping dead ones.

        Returns:
            Number of streams that received the event
        """
        connections = self._clients.get(user_id)
        if not connections:
            return 0
        delivered = 0
        for connection in list(connections):
            if connection.send(payload, event=event):
                delivered += 1
            else:
                connections.discard(connection)
        if not connections:
            del self._clients[user_id]
        return delivered

    def invalidate(self, user_id: str, reason: str = "unauthenticated") -> int:
        """Tell every stream of a user why it ends, close them and forget the user.

        Returns:
            Number of streams closed
        """
        connections = self._clients.pop(user_id, set())
        for connection in connections:
            connection.send({"status": reason})
            connection.close()
        if connections:
            logger.info(f"Invalidated {len(connections)} SSE stream(s) of user {user_id}: {reason}")
        return len(connections)

    async def events(self, connection: SSEConnection) -> AsyncIterator[ServerSentEvent]:
        """Drain a stream's queue until it is closed, then unregister it."""
        try:
            while True:
                item = await connection.queue.get()
                if item is None:
                    break
                yield item
        finally:
            self.remove(connection)


sse_registry = SSERegistry(max_connections=settings.sse.max_connections_per_user)


def get_sse_registry() -> SSERegistry:
    """Dependency returning the process-wide registry."""
    return sse_registry
