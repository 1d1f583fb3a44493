"""Exception types raised by the specgraph core."""

from __future__ import annotations


class SpecGraphError(Exception):
    """Base class for every error surfaced to callers."""


class NotFoundError(SpecGraphError, LookupError):
    """A node identifier named by the caller is not in the snapshot."""


class InvalidInputError(SpecGraphError, ValueError):
    """Empty query, out-of-range confidence, or an unknown enum value."""


class IndexCorruptionError(SpecGraphError):
    """Persisted index content cannot be decoded."""


class IndexTransactionError(SpecGraphError):
    """A reindex transaction was aborted and rolled back."""
