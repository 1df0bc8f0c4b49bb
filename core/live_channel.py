"""Live channel client keeping a local view in sync with pushed snapshots."""

import asyncio
import inspect
import json
import logging
from enum import IntEnum
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlsplit

import websockets

from models.message import LiveMessage, parse_message
from core.config import Settings
from core.exceptions import ChannelError, MessageFormatError

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class ReadyState(IntEnum):
    """Channel states, numbered like the browser WebSocket readyState."""
    CONNECTING = 0
    OPEN = 1
    CLOSING = 2
    CLOSED = 3


async def websocket_connector(url: str) -> Any:
    """Open a channel with the websockets asyncio client."""
    return await websockets.connect(url)


def resolve_channel_url(target: str, base_url: str) -> str:
    """
    Turn a channel target into a full ws:// or wss:// URL.

    Args:
        target: Either a full channel URL or a path such as ``/ws``
        base_url: URL of the page the client runs on; ``https`` pages get a
            secure channel, anything else an insecure one

    Raises:
        ChannelError: If the target is a path and base_url has no host
    """
    if target.startswith(("ws://", "wss://")):
        return target

    page = urlsplit(base_url)
    if not page.netloc:
        raise ChannelError(f"Cannot resolve {target!r} against base URL {base_url!r}")
    scheme = "wss" if page.scheme == "https" else "ws"
    path = target if target.startswith("/") else "/" + target
    return f"{scheme}://{page.netloc}{path}"


async def _close_quietly(socket: Any) -> None:
    try:
        await socket.close()
    except Exception as e:
        logger.debug(f"Ignoring error while closing channel: {str(e)}")


class LiveChannelClient:
    """
    Maintains one best-effort channel to the broadcast coordinator.

    After a close the client waits ``reconnect_interval`` seconds and tries
    again, at most ``reconnect_attempts`` times in a row. A successful open
    restores the full budget. When the budget runs out the client stays
    CLOSED until ``connect()`` is called again, and ``on_give_up`` is
    invoked if one was given.

    Callbacks may be plain functions or coroutine functions. Exceptions
    raised by callbacks are logged and never close the channel.
    """

    def __init__(self, base_url: str = "http://localhost:8000",
                 connector: Optional[Connector] = None,
                 on_open: Optional[Callable] = None,
                 on_message: Optional[Callable] = None,
                 on_close: Optional[Callable] = None,
                 on_error: Optional[Callable] = None,
                 on_give_up: Optional[Callable] = None,
                 reconnect_interval: float = 10.0,
                 reconnect_attempts: int = 5,
                 should_reconnect: bool = True):
        self.base_url = base_url
        self.connector = connector or websocket_connector
        self.on_open = on_open
        self.on_message = on_message
        self.on_close = on_close
        self.on_error = on_error
        self.on_give_up = on_give_up
        self.reconnect_interval = reconnect_interval
        self.reconnect_attempts = reconnect_attempts
        self.should_reconnect = should_reconnect

        self.ready_state = ReadyState.CONNECTING
        self.url: Optional[str] = None
        self.attempts = 0
        self.channels_opened = 0
        self.last_message: Optional[LiveMessage] = None
        self._socket: Any = None
        self._reader: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._torn_down = False
        self._open_generation = 0

    @classmethod
    def from_settings(cls, settings: Settings, base_url: str,
                      connector: Optional[Connector] = None,
                      **callbacks: Callable) -> 'LiveChannelClient':
        """
        Create a client with the reconnect policy from settings.

        Args:
            settings: Service configuration supplying the reconnect interval
                and attempt budget
            base_url: URL of the page the client runs on
            connector: Channel factory, the websockets client when omitted
            **callbacks: on_open, on_message, on_close, on_error, on_give_up
        """
        return cls(
            base_url=base_url,
            connector=connector,
            reconnect_interval=settings.reconnect_interval,
            reconnect_attempts=settings.reconnect_attempts,
            **callbacks
        )

    @property
    def is_open(self) -> bool:
        return self.ready_state == ReadyState.OPEN and self._socket is not None

    async def connect(self, target: str) -> None:
        """
        Open a channel to target unless one to the same URL is already open.

        An explicit connect replaces any channel to another target and
        restores the full reconnect budget.
        """
        url = resolve_channel_url(target, self.base_url)
        if self.is_open and url == self.url:
            logger.debug(f"Channel to {url} already open, reusing it")
            return

        self._torn_down = False
        self._cancel_reconnect()
        self.url = url
        self.attempts = 0
        await self._open()

    async def send(self, payload: Any) -> bool:
        """
        Write payload to the channel.

        Dicts and lists are JSON-encoded, str and bytes are sent as is.

        Returns:
            True if the write was accepted, False if the channel is not open
            or the write failed
        """
        socket = self._socket
        if socket is None or self.ready_state != ReadyState.OPEN:
            return False
        data = json.dumps(payload) if isinstance(payload, (dict, list)) else payload
        try:
            await socket.send(data)
            return True
        except Exception as e:
            logger.warning(f"Send on {self.url} failed: {str(e)}")
            return False

    async def close(self) -> None:
        """Tear the client down: cancel reconnects and close the channel."""
        self._torn_down = True
        self._open_generation += 1
        self._cancel_reconnect()
        if self._socket is not None:
            self.ready_state = ReadyState.CLOSING
        await self._detach()
        self.ready_state = ReadyState.CLOSED

    async def _open(self) -> None:
        # Only the most recent open may install a channel.
        self._open_generation += 1
        generation = self._open_generation
        await self._detach()
        self.ready_state = ReadyState.CONNECTING
        try:
            socket = await self.connector(self.url)
        except Exception as e:
            if generation != self._open_generation:
                return
            logger.warning(f"Could not connect to {self.url}: {str(e)}")
            await self._emit(self.on_error, e)
            await self._handle_close()
            return

        if self._torn_down or generation != self._open_generation:
            logger.debug(f"Discarding superseded channel to {self.url}")
            await _close_quietly(socket)
            return

        self._socket = socket
        self.channels_opened += 1
        self.ready_state = ReadyState.OPEN
        self.attempts = 0
        logger.info(f"Live channel connected to {self.url}")
        await self._emit(self.on_open)
        self._reader = asyncio.create_task(self._read(socket))

    async def _read(self, socket: Any) -> None:
        try:
            async for raw in socket:
                try:
                    message = parse_message(raw)
                except MessageFormatError as e:
                    logger.error(f"Dropping malformed message on {self.url}: {str(e)}")
                    continue
                self.last_message = message
                await self._emit(self.on_message, message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Live channel {self.url} failed: {str(e)}")
            await self._emit(self.on_error, e)

        # A replaced channel must not drive the state of the current one.
        if socket is not self._socket:
            return
        self.ready_state = ReadyState.CLOSING
        self._socket = None
        self._reader = None
        await _close_quietly(socket)
        await self._handle_close()

    async def _handle_close(self) -> None:
        self.ready_state = ReadyState.CLOSED
        await self._emit(self.on_close)
        if self._torn_down or not self.should_reconnect:
            return
        if self.attempts >= self.reconnect_attempts:
            logger.warning(f"Giving up on {self.url} after {self.attempts} reconnect attempts")
            await self._emit(self.on_give_up)
            return

        self.attempts += 1
        self._reconnect_task = asyncio.create_task(self._reconnect_later())

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self.reconnect_interval)
        self._reconnect_task = None
        logger.info(f"Reconnecting to {self.url} (attempt {self.attempts}/{self.reconnect_attempts})")
        await self._open()

    async def _detach(self) -> None:
        reader, socket = self._reader, self._socket
        self._reader = None
        self._socket = None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        if socket is not None:
            await _close_quietly(socket)

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _emit(self, callback: Optional[Callable], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Live channel callback {callback!r} failed: {str(e)}")
