"""Connection model for live channels held by the broadcast coordinator."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ConnectionState(Enum):
    """Lifecycle of a registered live channel."""
    OPEN = "open"
    CLOSED = "closed"


@dataclass(eq=False)
class Connection:
    """Represents one open live channel to one browser tab.

    ``transport`` is anything exposing an async ``send_text(str)``; in the
    running service it is the FastAPI ``WebSocket``. Connections compare by
    identity so the registry can hold them in a set.
    """

    transport: Any
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    state: ConnectionState = ConnectionState.OPEN
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    async def send(self, text: str) -> None:
        """Write one text frame; transport errors propagate to the caller."""
        await self.transport.send_text(text)

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, state={self.state.value!r})"
