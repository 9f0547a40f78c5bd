"""Duplicate transaction detection and resolution."""

from ledgerguard.duplicates.errors import (
    ConcurrentScanError,
    DedupError,
    InvalidChoiceError,
    NotFoundError,
)
from ledgerguard.duplicates.resolution import DuplicateChoice
from ledgerguard.duplicates.scanner import ScanGuard
from ledgerguard.duplicates.service import DuplicateService

__all__ = [
    "ConcurrentScanError",
    "DedupError",
    "DuplicateChoice",
    "DuplicateService",
    "InvalidChoiceError",
    "NotFoundError",
    "ScanGuard",
]
