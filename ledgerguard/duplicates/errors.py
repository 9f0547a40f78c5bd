"""Exceptions raised by the duplicate subsystem."""

from __future__ import annotations


class DedupError(Exception):
    """Base class for duplicate-subsystem errors."""


class NotFoundError(DedupError):
    """Raised when a record is missing or belongs to another user."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} '{entity_id}' not found")


class InvalidChoiceError(DedupError):
    """Raised when a resolution choice is outside the known set."""

    def __init__(self, choice: object):
        self.choice = choice
        super().__init__(f"Invalid duplicate choice: {choice!r}")


class ConcurrentScanError(DedupError):
    """Raised when a batch scan is requested while another is running."""

    def __init__(self):
        super().__init__(
            "Duplicate detection is already running. Wait for it to complete."
        )
