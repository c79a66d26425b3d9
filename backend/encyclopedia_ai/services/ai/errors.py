"""Exceptions raised across the agent core's collaborator boundaries."""
from typing import Optional


class CompletionError(Exception):
    """The upstream provider call failed (network, status, or unparseable body)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LLMConfigurationError(CompletionError):
    """The provider cannot be called at all, e.g. the API key is missing."""


class ContentStoreUnavailableError(Exception):
    """The article database is not connected."""
