"""Error taxonomy shared by the ingestion, rollup and query paths."""

from __future__ import annotations


class ClientInputError(ValueError):
    """Query parameters are missing or invalid."""


class MessageValidationError(ValueError):
    """An inbound sensor message cannot be turned into a reading."""


class DependencyError(RuntimeError):
    """The store or transport failed while serving an operation."""
