"""Batch model for the warehouse inventory table."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional


class BatchStatus(Enum):
    """Inventory progress of a single batch."""
    NOT_STARTED = "not_started"
    PARTIALLY_COMPLETED = "partially_completed"
    COMPLETED = "completed"


@dataclass
class NewBatch:
    """Fields supplied when a batch is created or imported."""

    batch_number: str
    article_number: str
    description: str
    total_weight: int
    location: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NewBatch':
        """Create NewBatch instance from a camelCase dictionary."""
        return cls(
            batch_number=data['batchNumber'],
            article_number=data['articleNumber'],
            description=data['description'],
            total_weight=data['totalWeight'],
            location=data.get('location')
        )


@dataclass
class Batch:
    """Represents one batch row as stored and as pushed to clients."""

    id: int
    batch_number: str
    article_number: str
    description: str
    total_weight: int
    location: Optional[str] = None
    inventored_weight: Optional[int] = None
    status: BatchStatus = BatchStatus.NOT_STARTED
    updated_at: Optional[str] = None
    user_id: Optional[int] = None
    user_name: Optional[str] = None

    def copy(self) -> 'Batch':
        """Return a detached copy safe to hand out of the store."""
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert batch to its wire representation."""
        return {
            'id': self.id,
            'batchNumber': self.batch_number,
            'articleNumber': self.article_number,
            'description': self.description,
            'location': self.location,
            'totalWeight': self.total_weight,
            'inventoredWeight': self.inventored_weight,
            'status': self.status.value,
            'updatedAt': self.updated_at,
            'userId': self.user_id,
            'userName': self.user_name
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Batch':
        """Create Batch instance from its wire representation."""
        return cls(
            id=data['id'],
            batch_number=data['batchNumber'],
            article_number=data['articleNumber'],
            description=data['description'],
            total_weight=data['totalWeight'],
            location=data.get('location'),
            inventored_weight=data.get('inventoredWeight'),
            status=BatchStatus(data.get('status', BatchStatus.NOT_STARTED.value)),
            updated_at=data.get('updatedAt'),
            user_id=data.get('userId'),
            user_name=data.get('userName')
        )

    def __repr__(self) -> str:
        return f"Batch(id={self.id!r}, batch_number={self.batch_number!r}, status={self.status.value!r})"
