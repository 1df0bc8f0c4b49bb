"""Broadcast coordinator pushing batch snapshots to live channels."""

import asyncio
import logging
import uuid
from typing import Dict, Optional, Set

from models.connection import Connection
from models.message import BatchUpdateMessage, WelcomeMessage, encode_message
from core.storage import BatchStore

logger = logging.getLogger(__name__)

WELCOME_TEXT = "Connected to batch inventory live updates"


class BroadcastCoordinator:
    """
    Owns the connection registry and the pending broadcast window.

    Mutations call ``notify_mutation()``; the first call opens a window and
    arms a timer, later calls inside the window are absorbed. When the timer
    fires the full table is read once and pushed to every registered
    connection, so one burst of mutations produces one push.

    Registry and window are only touched from the event loop thread.
    """

    def __init__(self, store: BatchStore, throttle_seconds: float = 2.0,
                 welcome_text: str = WELCOME_TEXT):
        """
        Initialize the coordinator.

        Args:
            store: Store the snapshots are read from
            throttle_seconds: Delay between the first notification and the push
            welcome_text: Text of the welcome message sent on registration
        """
        self.store = store
        self.throttle_seconds = throttle_seconds
        self.welcome_text = welcome_text
        self.connections: Dict[uuid.UUID, Connection] = {}
        self.broadcast_count = 0
        self._pending_window: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    @property
    def is_broadcast_pending(self) -> bool:
        return self._pending_window is not None

    def is_registered(self, connection: Connection) -> bool:
        return connection.id in self.connections

    async def register(self, connection: Connection) -> None:
        """
        Add a connection and bring it up to date.

        Sends the welcome message followed by one snapshot to this connection
        only. Never raises: a failed send drops the connection, a failed
        store read leaves it registered to wait for the next broadcast.

        Args:
            connection: Newly opened live channel
        """
        self.connections[connection.id] = connection
        logger.info(f"Connection {connection.id} registered ({self.connection_count} open)")

        if not await self._send(connection, encode_message(WelcomeMessage(self.welcome_text))):
            return

        try:
            snapshot = await self.store.get_all_snapshot()
            frame = encode_message(BatchUpdateMessage(snapshot))
        except Exception as e:
            logger.error(f"Initial snapshot for {connection.id} failed: {str(e)}")
            return
        await self._send(connection, frame)

    def unregister(self, connection: Connection) -> None:
        """Remove a connection; safe to call more than once."""
        connection.mark_closed()
        if self.connections.pop(connection.id, None) is not None:
            logger.info(f"Connection {connection.id} unregistered ({self.connection_count} open)")

    def notify_mutation(self) -> None:
        """
        Record that the store changed.

        Opens a broadcast window when none is pending and returns at once.
        The snapshot is read when the window closes, so every mutation that
        arrives while it is open is covered by that single push.
        """
        if self._pending_window is not None:
            logger.debug("Broadcast already pending, mutation absorbed")
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("notify_mutation called without a running event loop, skipping broadcast")
            return

        task = loop.create_task(self._run_window())
        self._pending_window = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(f"Broadcast window opened ({self.throttle_seconds}s)")

    async def _run_window(self) -> None:
        try:
            await asyncio.sleep(self.throttle_seconds)
        finally:
            # Cleared before the read so later mutations open a new window.
            self._pending_window = None
        await self.broadcast_now()

    async def broadcast_now(self) -> int:
        """
        Read the current snapshot and push it to every registered connection.

        Connections that fail the send are unregistered; the rest still
        receive the frame. A store read failure abandons the cycle.

        Returns:
            Number of connections the snapshot was delivered to
        """
        try:
            snapshot = await self.store.get_all_snapshot()
            frame = encode_message(BatchUpdateMessage(snapshot))
        except Exception as e:
            logger.error(f"Broadcast cycle abandoned, snapshot read failed: {str(e)}")
            return 0

        delivered = 0
        for connection in list(self.connections.values()):
            # Skip connections dropped while an earlier send was awaited.
            if connection.id not in self.connections:
                continue
            if await self._send(connection, frame):
                delivered += 1

        self.broadcast_count += 1
        logger.info(f"Broadcast {len(snapshot)} batches to {delivered} connections")
        return delivered

    async def wait_idle(self) -> None:
        """Wait until no broadcast window is pending or running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding windows and drop every connection on shutdown."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._pending_window = None
        for connection in list(self.connections.values()):
            self.unregister(connection)

    async def _send(self, connection: Connection, frame: str) -> bool:
        if not connection.is_open:
            self.unregister(connection)
            return False
        try:
            await connection.send(frame)
            return True
        except Exception as e:
            logger.warning(f"Failed to send to {connection.id}, dropping connection: {str(e)}")
            self.unregister(connection)
            return False
