import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, Optional

from .framing import encode_frame

"""
registry.py: who is connected right now, and fan-out to them.

How delivery works:
- Every connection owns a bounded FIFO outbox (asyncio.Queue).
- broadcast_except_sender() never awaits a recipient; it only put_nowait()s.
  A slow or dead client can fill its own outbox but cannot stall anyone else.
- A per-connection task (Connection.drain) pulls from the outbox and writes to
  the socket, so frames from one sender reach a given recipient in order.

Overflow policy when an outbox is full:
- "drop":       lose this one frame for that recipient (counted in .dropped)
- "disconnect": unregister the recipient; its drain task stops and the
                channel gets closed by whoever owns the socket.
"""

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE = 256
OVERFLOW_DROP = "drop"
OVERFLOW_DISCONNECT = "disconnect"
OVERFLOW_POLICIES = (OVERFLOW_DROP, OVERFLOW_DISCONNECT)


class Connection:
    """One live participant channel: id, liveness flag, outbox."""
    def __init__(self, connection_id: str, max_queue: int = DEFAULT_MAX_QUEUE) -> None:
        self.connection_id = connection_id
        self.outbox: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue(maxsize=max_queue)
        self.connected = True
        self.dropped = 0

    def offer(self, frame: Dict[str, Any]) -> bool:
        """Enqueue without waiting. False if closed or the outbox is full."""
        if not self.connected:
            return False
        try:
            self.outbox.put_nowait(frame)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    def close(self) -> None:
        self.connected = False
        # Wake a drain parked on an empty outbox; a non-empty one wakes anyway.
        if self.outbox.empty():
            self.outbox.put_nowait(None)

    async def drain(self, send: Callable[[str], Awaitable[None]]) -> None:
        """
        Forward queued frames to `send` until the connection is closed.
        A frame that cannot be encoded is logged and skipped. Send errors
        propagate; the caller treats that as a disconnect.
        """
        while True:
            frame = await self.outbox.get()
            if frame is None or not self.connected:
                return
            try:
                text = encode_frame(frame)
            except (TypeError, ValueError):
                logger.exception("Skipping unencodable frame for %s", self.connection_id)
                continue
            await send(text)

    def __repr__(self) -> str:
        state = "connected" if self.connected else "disconnected"
        return f"<Connection {self.connection_id} {state} queued={self.outbox.qsize()}>"


class ConnectionRegistry:
    """
    Membership set of live connections.

    The lock only guards the dict; delivery happens on a snapshot taken under
    it, so register/unregister never wait on a broadcast.
    """
    def __init__(self, max_queue: int = DEFAULT_MAX_QUEUE, overflow: str = OVERFLOW_DROP) -> None:
        if max_queue < 1:
            raise ValueError("max_queue must be >= 1")
        if overflow not in OVERFLOW_POLICIES:
            raise ValueError(f"overflow must be one of {OVERFLOW_POLICIES}")
        self.max_queue = max_queue
        self.overflow = overflow
        self._lock = threading.Lock()
        self._conns: Dict[str, Connection] = {}

    def register(self, connection_id: str) -> Connection:
        """Add a connection. Registering an id twice returns the existing one."""
        with self._lock:
            conn = self._conns.get(connection_id)
            if conn is None:
                conn = Connection(connection_id, self.max_queue)
                self._conns[connection_id] = conn
        return conn

    def unregister(self, connection_id: str) -> None:
        """Remove a connection; unknown ids are ignored."""
        with self._lock:
            conn = self._conns.pop(connection_id, None)
        if conn is not None:
            conn.close()

    def get(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            return self._conns.get(connection_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._conns)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._conns

    def broadcast_except_sender(self, sender_id: Optional[str], frame: Dict[str, Any]) -> int:
        """
        Best-effort enqueue to every connection except `sender_id`.
        sender_id=None means everyone. Returns how many outboxes took it.
        """
        with self._lock:
            targets = [c for cid, c in self._conns.items() if cid != sender_id]

        delivered = 0
        for conn in targets:
            try:
                if conn.offer(frame):
                    delivered += 1
                elif conn.connected:
                    self._on_overflow(conn)
            except Exception:
                # One bad recipient must not take the rest down with it.
                logger.exception("Delivery to %s failed", conn.connection_id)
        return delivered

    def _on_overflow(self, conn: Connection) -> None:
        if self.overflow == OVERFLOW_DISCONNECT:
            logger.warning("Outbox full for %s; disconnecting", conn.connection_id)
            self.unregister(conn.connection_id)
        else:
            logger.warning("Outbox full for %s; dropped frame (%d so far)",
                           conn.connection_id, conn.dropped)
