"""Batch and user stores for inventory data and post-commit notification."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from models.batch import Batch, BatchStatus, NewBatch
from models.user import User
from core.exceptions import BatchNotFoundError, DuplicateBatchError, InvalidWeightError, UserNotFoundError

logger = logging.getLogger(__name__)

CommitHook = Callable[[], None]

SAMPLE_BATCHES = [
    NewBatch("BAT-2023-1001", "KP-45", "Kopplingsdon KP-45", 250, "A-12-5"),
    NewBatch("BAT-2023-1002", "SK-100", "Skruvset SK-100", 500, "B-04-2"),
    NewBatch("BAT-2023-1003", "KH-25", "Kabelhållare KH-25", 120, "A-08-1"),
    NewBatch("BAT-2023-1004", "M-200", "Motordelar M-200", 45, "C-02-4"),
    NewBatch("BAT-2023-1005", "P-55", "Packning P-55", 300, "B-10-3"),
]

DEFAULT_USERS = [
    {"id": 1, "username": "john", "name": "John Doe", "role": "Lageransvarig"},
]


def utc_timestamp() -> str:
    """Current time in the ISO 8601 form stored in ``updated_at``."""
    return datetime.now(timezone.utc).isoformat()


class BatchStore:
    """
    In-memory store for warehouse batches.

    All writes go through one asyncio lock. Every mutation runs the registered
    commit hooks exactly once, after its write is applied and the lock is
    released, so a snapshot read from a hook always reflects the change.
    """

    def __init__(self, initial_data: Optional[Iterable[NewBatch]] = None):
        """
        Initialize store with optional initial data.

        Args:
            initial_data: Batches to insert without running commit hooks
        """
        self.batches: Dict[int, Batch] = {}
        self.id_counter = 0
        self._mutex = asyncio.Lock()
        self._commit_hooks: List[CommitHook] = []

        for item in initial_data or []:
            self._insert(item)

    def add_commit_hook(self, hook: CommitHook) -> None:
        """Register a callback invoked after every committed mutation."""
        self._commit_hooks.append(hook)

    def remove_commit_hook(self, hook: CommitHook) -> None:
        if hook in self._commit_hooks:
            self._commit_hooks.remove(hook)

    def seed_sample_data(self) -> None:
        """Load demonstration batches with a few inventories already done."""
        for item in SAMPLE_BATCHES:
            if self._find_by_number(item.batch_number) is None:
                self._insert(item)
        first = self._find_by_number("BAT-2023-1001")
        if first is not None and first.status == BatchStatus.NOT_STARTED:
            first.status = BatchStatus.COMPLETED
            first.inventored_weight = 253
            first.updated_at = "2023-09-12T14:32:00+00:00"
        second = self._find_by_number("BAT-2023-1002")
        if second is not None and second.status == BatchStatus.NOT_STARTED:
            second.status = BatchStatus.PARTIALLY_COMPLETED
            second.inventored_weight = 180
            second.updated_at = "2023-09-12T10:15:00+00:00"

    async def get_all_snapshot(self) -> List[Batch]:
        """Get the full batch table ordered by id."""
        async with self._mutex:
            return [self.batches[batch_id].copy() for batch_id in sorted(self.batches)]

    async def get_batch(self, batch_id: int) -> Batch:
        """
        Get a single batch.

        Raises:
            BatchNotFoundError: If no batch has this id
        """
        async with self._mutex:
            return self._require(batch_id).copy()

    async def create_batch(self, new_batch: NewBatch, user: Optional[User] = None) -> Batch:
        """
        Create a batch in the not-started state.

        Raises:
            DuplicateBatchError: If the batch number already exists
        """
        async with self._mutex:
            if self._find_by_number(new_batch.batch_number) is not None:
                raise DuplicateBatchError(new_batch.batch_number)
            batch = self._insert(new_batch)
            if user is not None:
                self._stamp(batch, user)
            result = batch.copy()
        self._run_commit_hooks()
        return result

    async def update_batch(self, batch_id: int, location: Optional[str] = None,
                           inventored_weight: Optional[int] = None,
                           status: Optional[BatchStatus] = None,
                           user: Optional[User] = None) -> Batch:
        """
        Apply field changes to an existing batch.

        Only the arguments that are not None are written; ``updated_at`` is
        always refreshed.
        """
        async with self._mutex:
            batch = self._require(batch_id)
            if location is not None:
                batch.location = location
            if inventored_weight is not None:
                _check_weight(inventored_weight)
                batch.inventored_weight = inventored_weight
            if status is not None:
                batch.status = status
            self._stamp(batch, user)
            result = batch.copy()
        self._run_commit_hooks()
        return result

    async def mark_inventoried(self, batch_id: int, location: Optional[str] = None,
                               user: Optional[User] = None) -> Batch:
        """Mark a batch fully inventoried at its total weight."""
        async with self._mutex:
            batch = self._require(batch_id)
            if location:
                batch.location = location
            batch.status = BatchStatus.COMPLETED
            batch.inventored_weight = batch.total_weight
            self._stamp(batch, user)
            result = batch.copy()
        self._run_commit_hooks()
        return result

    async def mark_partially_inventoried(self, batch_id: int, weight: int,
                                         location: Optional[str] = None,
                                         user: Optional[User] = None) -> Batch:
        """
        Mark a batch partially inventoried with the weight counted so far.

        Raises:
            InvalidWeightError: If weight is negative
        """
        _check_weight(weight)
        async with self._mutex:
            batch = self._require(batch_id)
            if location:
                batch.location = location
            batch.status = BatchStatus.PARTIALLY_COMPLETED
            batch.inventored_weight = weight
            self._stamp(batch, user)
            result = batch.copy()
        self._run_commit_hooks()
        return result

    async def undo_inventory(self, batch_id: int, user: Optional[User] = None) -> Batch:
        """Reset a batch to not started and forget its counted weight."""
        async with self._mutex:
            batch = self._require(batch_id)
            batch.status = BatchStatus.NOT_STARTED
            batch.inventored_weight = None
            self._stamp(batch, user)
            result = batch.copy()
        self._run_commit_hooks()
        return result

    async def import_batches(self, rows: List[NewBatch], overwrite: bool) -> List[Batch]:
        """
        Import many batches as one mutation.

        Args:
            rows: Parsed spreadsheet rows
            overwrite: Replace the descriptive fields of existing batch numbers
                instead of skipping them

        Returns:
            Batches that were created or overwritten
        """
        results = []
        async with self._mutex:
            for row in rows:
                existing = self._find_by_number(row.batch_number)
                if existing is None:
                    results.append(self._insert(row).copy())
                elif overwrite:
                    existing.article_number = row.article_number
                    existing.description = row.description
                    existing.location = row.location
                    existing.total_weight = row.total_weight
                    results.append(existing.copy())
        logger.info(f"Imported {len(results)} of {len(rows)} batches (overwrite={overwrite})")
        self._run_commit_hooks()
        return results

    async def clear_all(self) -> int:
        """Remove every batch and return how many were removed."""
        async with self._mutex:
            removed = len(self.batches)
            self.batches.clear()
        self._run_commit_hooks()
        return removed

    def _insert(self, new_batch: NewBatch) -> Batch:
        self.id_counter += 1
        batch = Batch(
            id=self.id_counter,
            batch_number=new_batch.batch_number,
            article_number=new_batch.article_number,
            description=new_batch.description,
            total_weight=new_batch.total_weight,
            location=new_batch.location
        )
        self.batches[batch.id] = batch
        return batch

    def _require(self, batch_id: int) -> Batch:
        batch = self.batches.get(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    def _find_by_number(self, batch_number: str) -> Optional[Batch]:
        for batch in self.batches.values():
            if batch.batch_number == batch_number:
                return batch
        return None

    @staticmethod
    def _stamp(batch: Batch, user: Optional[User]) -> None:
        batch.updated_at = utc_timestamp()
        if user is not None:
            batch.user_id = user.id
            batch.user_name = user.name

    def _run_commit_hooks(self) -> None:
        """Run post-commit hooks; a failing hook never fails the mutation."""
        for hook in list(self._commit_hooks):
            try:
                hook()
            except Exception as e:
                logger.error(f"Commit hook {hook!r} failed: {str(e)}")


def _check_weight(weight) -> None:
    if isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight < 0:
        raise InvalidWeightError(f"Weight must be a number >= 0, got {weight!r}")


class UserStore:
    """
    In-memory user directory.

    Users are managed elsewhere; this store only resolves the user whose id
    and name are stamped onto mutated batches.
    """

    def __init__(self, users: Optional[Iterable[User]] = None):
        if users is None:
            users = [User.from_dict(row) for row in DEFAULT_USERS]
        self.users: Dict[int, User] = {user.id: user for user in users}
        self.current_user_id: Optional[int] = min(self.users) if self.users else None

    async def get_user(self, user_id: int) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def get_all_users(self) -> List[User]:
        return [self.users[user_id] for user_id in sorted(self.users)]

    async def get_current_user(self) -> Optional[User]:
        """The selected user, or None when the directory is empty."""
        if self.current_user_id is None:
            return None
        return self.users.get(self.current_user_id)

    async def select_user(self, user_id: int) -> User:
        """
        Make user_id the user stamped onto subsequent mutations.

        Raises:
            UserNotFoundError: If no user has that id
        """
        user = await self.get_user(user_id)
        self.current_user_id = user.id
        logger.info(f"Selected user {user.username} ({user.id})")
        return user
