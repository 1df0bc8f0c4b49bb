"""Local batch view fed by the live channel client."""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from models.batch import Batch
from models.message import BatchUpdateMessage, LiveMessage, WelcomeMessage

logger = logging.getLogger(__name__)


class BatchView:
    """
    Client-side copy of the batch table.

    Pass ``view.apply`` as the client's ``on_message`` callback. Every
    snapshot replaces the whole list; nothing is merged.
    """

    def __init__(self):
        self.batches: List[Batch] = []
        self.last_updated: Optional[datetime] = None
        self.welcome: Optional[str] = None
        self.updates_applied = 0

    def apply(self, message: LiveMessage) -> None:
        if isinstance(message, BatchUpdateMessage):
            self.batches = list(message.data)
            self.last_updated = message.timestamp
            self.updates_applied += 1
            logger.debug(f"Local view replaced with {len(self.batches)} batches")
        elif isinstance(message, WelcomeMessage):
            self.welcome = message.message

    def get(self, batch_id: int) -> Optional[Batch]:
        for batch in self.batches:
            if batch.id == batch_id:
                return batch
        return None

    def is_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        """Whether the last snapshot is older than max_age, or missing."""
        if self.last_updated is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now - self.last_updated > max_age

    def __len__(self) -> int:
        return len(self.batches)
