"""Exceptions raised by the sync layer and the batch pipeline."""

from __future__ import annotations

from typing import Any, Optional


class ParallelSyncError(Exception):
    """Base exception for all custom errors."""


class LockTimeoutError(ParallelSyncError):
    """Raised when a named lock cannot be acquired within its timeout."""


class BackupError(ParallelSyncError):
    """Raised when the dataset backup cannot be created. No merge happens."""

    def __init__(self, message: str, report: Optional[Any] = None) -> None:
        super().__init__(message)
        self.report = report


class DatasetWriteError(ParallelSyncError):
    """Raised when the dataset file cannot be replaced."""


class MissingApiKeyError(RuntimeError):
    """Raised when a required provider API key is missing."""


class MergeError(ParallelSyncError):
    """Raised when a batch merge aborts. Carries the partial report."""

    def __init__(self, message: str, report: Optional[Any] = None) -> None:
        super().__init__(message)
        self.report = report
