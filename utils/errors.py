"""
utils/errors.py
Exception taxonomy for the decision engine.

NotReady is deliberately absent: an incomplete context is a normal result
(see contracts.decision.NotReady), not an error.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class EngineError(Exception):
    """Base class for all engine errors."""

    error_type = "ENGINE_ERROR"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to structured dict for JSON logging."""
        return {
            "error_type": self.error_type,
            "message": str(self),
        }


class ValidationError(EngineError):
    """
    Raised when a context fragment is malformed.

    The fragment is rejected as a whole; nothing is merged.
    """

    error_type = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []

    def to_dict(self):
        d = super().to_dict()
        d["errors"] = self.errors
        return d


class ConfigurationInvalid(EngineError):
    """
    Raised when the engine configuration fails validation.

    Fatal: the process must not start with a partially valid config.
    """

    error_type = "CONFIGURATION_INVALID"

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = problems or []

    def to_dict(self):
        d = super().to_dict()
        d["problems"] = self.problems
        return d


class ProviderErrorKind(str, Enum):
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    API_ERROR = "API_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    DISABLED = "DISABLED"


class ProviderUnavailable(EngineError):
    """
    A market data provider could not serve a category.

    Raised inside providers and absorbed by the aggregator, which records it
    in the snapshot. Never escapes a decision attempt.
    """

    error_type = "PROVIDER_UNAVAILABLE"

    def __init__(
        self,
        provider: str,
        kind: ProviderErrorKind,
        message: str,
        retryable: bool = False
    ):
        super().__init__(f"{provider} {kind.value}: {message}")
        self.provider = provider
        self.kind = kind
        self.retryable = retryable

    def to_dict(self):
        d = super().to_dict()
        d.update({
            "provider": self.provider,
            "kind": self.kind.value,
            "retryable": self.retryable,
        })
        return d


class ConcurrencyViolation(EngineError):
    """
    A partially merged state was observed.

    Correct locking makes this structurally impossible, so it is treated as a
    fatal internal consistency failure.
    """

    error_type = "CONCURRENCY_VIOLATION"


class LedgerError(EngineError):
    """Raised when an append would rewrite or duplicate an existing record."""

    error_type = "LEDGER_ERROR"
