"""Custom exceptions for the application."""


class InventoryError(Exception):
    """Base exception for batch inventory errors."""
    pass


class ConfigError(InventoryError):
    """Exception raised for invalid configuration values."""
    pass


class StoreError(InventoryError):
    """Exception raised for batch store operation errors."""
    pass


class BatchNotFoundError(StoreError):
    """Exception raised when a batch id does not exist."""

    def __init__(self, batch_id: int):
        super().__init__(f"Batch with id {batch_id} not found")
        self.batch_id = batch_id


class DuplicateBatchError(StoreError):
    """Exception raised when a batch number is already taken."""

    def __init__(self, batch_number: str):
        super().__init__(f"Batch number {batch_number!r} already exists")
        self.batch_number = batch_number


class InvalidWeightError(StoreError):
    """Exception raised for negative or non-numeric weights."""
    pass


class UserNotFoundError(StoreError):
    """Exception raised when a user id does not exist."""

    def __init__(self, user_id: int):
        super().__init__(f"User with id {user_id} not found")
        self.user_id = user_id


class ChannelError(InventoryError):
    """Exception raised for live channel transport errors."""
    pass


class MessageFormatError(InventoryError):
    """Exception raised for malformed live channel messages."""
    pass
