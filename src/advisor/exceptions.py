"""Custom exceptions for the strategy advisor.

Every failure a caller can observe is one of these types, so callers can
branch on the failure kind instead of parsing messages.
"""

from enum import Enum


class AdvisorError(Exception):
    """Base exception for all advisor errors."""


class FetchFailureKind(str, Enum):
    """Classification of a failed fetch attempt."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"


class TransientFetchError(AdvisorError):
    """Raised when a single fetch attempt fails. Retried on a later cycle."""

    def __init__(
        self,
        source_key: str,
        kind: FetchFailureKind,
        message: str,
        status: int | None = None,
    ) -> None:
        super().__init__(f"{source_key}: {kind.value}: {message}")
        self.source_key = source_key
        self.kind = kind
        self.status = status


class ParseError(AdvisorError):
    """Raised when a payload for a known source kind cannot be normalized."""

    def __init__(self, source_key: str, message: str) -> None:
        super().__init__(f"{source_key}: {message}")
        self.source_key = source_key


class ConfigError(AdvisorError):
    """Raised for invalid source configuration. Fatal at configuration load."""


class ConflictError(AdvisorError):
    """Raised when a create would overwrite an existing (owner, key) entry."""


class NoDataError(AdvisorError):
    """Raised when a recommendation is requested for a token with no history."""

    def __init__(self, token: str) -> None:
        super().__init__(f"no price history for {token}")
        self.token = token


class DocumentValidationError(AdvisorError):
    """Raised when an imported document violates the entry invariants."""
