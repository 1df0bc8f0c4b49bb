"""Message models for frames pushed over the live channel."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Union

from models.batch import Batch
from core.exceptions import MessageFormatError


class MessageType(Enum):
    """Types of messages the coordinator pushes to clients."""
    WELCOME = "welcome"
    BATCH_UPDATE = "batch_update"


@dataclass
class WelcomeMessage:
    """Control message sent once when a connection is registered."""

    message: str
    type: MessageType = field(default=MessageType.WELCOME, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type.value, 'message': self.message}


@dataclass
class BatchUpdateMessage:
    """Full snapshot of the batch table at broadcast time."""

    data: List[Batch]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    type: MessageType = field(default=MessageType.BATCH_UPDATE, init=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert message to its JSON-ready representation."""
        return {
            'type': self.type.value,
            'data': [batch.to_dict() for batch in self.data],
            'timestamp': self.timestamp.isoformat()
        }

    def __repr__(self) -> str:
        return f"BatchUpdateMessage(rows={len(self.data)!r}, timestamp={self.timestamp.isoformat()!r})"


LiveMessage = Union[WelcomeMessage, BatchUpdateMessage]


def encode_message(message: LiveMessage) -> str:
    """Serialize a message into a JSON text frame."""
    return json.dumps(message.to_dict())


def parse_message(text: Union[str, bytes]) -> LiveMessage:
    """
    Parse a JSON text frame into a message object.

    Args:
        text: Raw frame received from the channel

    Returns:
        WelcomeMessage or BatchUpdateMessage

    Raises:
        MessageFormatError: If the frame is not a well-formed message
    """
    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MessageFormatError(f"Invalid JSON frame: {str(e)}") from e

    if not isinstance(payload, dict):
        raise MessageFormatError("Message frame must be a JSON object")

    try:
        message_type = MessageType(payload.get('type'))
    except ValueError as e:
        raise MessageFormatError(f"Unknown message type: {payload.get('type')!r}") from e

    if message_type == MessageType.WELCOME:
        message = payload.get('message')
        if not isinstance(message, str):
            raise MessageFormatError("Welcome message requires a string 'message'")
        return WelcomeMessage(message=message)

    rows = payload.get('data')
    if not isinstance(rows, list):
        raise MessageFormatError("Batch update requires a list 'data'")
    try:
        data = [Batch.from_dict(row) for row in rows]
        timestamp = datetime.fromisoformat(payload['timestamp'].replace('Z', '+00:00'))
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MessageFormatError(f"Malformed batch update: {str(e)}") from e
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return BatchUpdateMessage(data=data, timestamp=timestamp)
