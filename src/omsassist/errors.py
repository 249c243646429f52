"""Error taxonomy shared by the OMS Assist components."""

from __future__ import annotations


class OMSAssistError(RuntimeError):
    """Base class for all OMS Assist failures."""


class ValidationError(OMSAssistError):
    """Raised when a caller supplies a missing or malformed request."""


class DependencyError(OMSAssistError):
    """Raised when a downstream service (OMS API, vector DB, embeddings, LLM) fails."""

    def __init__(self, message: str, *, component: str) -> None:
        super().__init__(message)
        self.component = component


class NotFoundError(OMSAssistError):
    """Raised when a lookup by key yields nothing."""

    def __init__(self, key: str) -> None:
        super().__init__(f"{key} not found")
        self.key = key


class ConfigurationError(OMSAssistError):
    """Raised when required credentials or settings are missing."""


__all__ = [
    "ConfigurationError",
    "DependencyError",
    "NotFoundError",
    "OMSAssistError",
    "ValidationError",
]
