"""Exceptions raised by the database accessors and the coordinator."""

from __future__ import annotations


class DataUsageError(Exception):
    """Base exception for the data usage service."""


class NoRowsError(DataUsageError):
    """A query that should return a row returned nothing."""


class TransactionFinalizedError(DataUsageError):
    """The transaction has already been committed or rolled back."""

    def __init__(self, message: str = "transaction has already been committed or rolled back"):
        super().__init__(message)


class BackendConnectionError(DataUsageError):
    """A transaction could not be started on a backend."""


class NotFoundError(DataUsageError):
    """A required record (usually a user) does not exist."""


class UpstreamWriteError(DataUsageError):
    """The publisher failed to record or publish a usage update."""


class CommitError(DataUsageError):
    """Committing a backend transaction failed."""
