"""User model used to stamp who last touched a batch."""

from dataclasses import dataclass
from typing import Dict, Any


@dataclass
class User:
    """Represents a warehouse user as seen by the inventory service."""

    id: int
    username: str
    name: str
    role: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert user to dictionary representation."""
        return {
            'id': self.id,
            'username': self.username,
            'name': self.name,
            'role': self.role
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        """Create User instance from dictionary."""
        return cls(
            id=data['id'],
            username=data['username'],
            name=data['name'],
            role=data['role']
        )

    def __repr__(self) -> str:
        return f"User(id={self.id!r}, username={self.username!r}, role={self.role!r})"
