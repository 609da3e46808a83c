"""Custom exception hierarchy for the reconciliation engine."""

from __future__ import annotations


class ReconcileError(Exception):
    """Base exception for all engine errors."""


class ConfigError(ReconcileError):
    """Invalid or missing configuration."""


class ValidationError(ReconcileError):
    """Bad declaration set; fails the cycle before any provider call."""


class CycleError(ValidationError):
    """The declared references form a cycle."""

    def __init__(self, message: str, cycle: list[str] | None = None):
        super().__init__(message)
        self.cycle = cycle or []


class UnresolvedReferenceError(ValidationError):
    """A reference or depends_on entry names a resource that is not declared."""

    def __init__(self, message: str, source: str | None = None, target: str | None = None):
        super().__init__(message)
        self.source = source
        self.target = target


class ProviderError(ReconcileError):
    """Error returned by a resource provider."""

    def __init__(self, message: str, status_code: int | None = None, response_body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class TransientProviderError(ProviderError):
    """Rate limiting, eventual-consistency lag, or connectivity; safe to retry."""


class PermanentProviderError(ProviderError):
    """Invalid attribute, quota exceeded and similar; never retried."""


class StateStoreUnavailable(ReconcileError):
    """The state backend cannot be read or written; the cycle fails closed."""
