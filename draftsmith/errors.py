"""Error taxonomy shared by the generation pipeline and the workflow.

Every error carries the call kind it originated from (``"outline"``,
``"edit"``, ``"search"`` ...) and whether retrying the same call later can
reasonably succeed. Callers decide per call kind whether an error is
absorbed into degraded output or surfaced to the user.
"""

from typing import Optional


class DraftsmithError(Exception):
    """Base class for all errors raised by draftsmith."""

    retryable: bool = False

    def __init__(self, message: str, kind: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind


class RateLimited(DraftsmithError):
    """The provider signalled backoff (HTTP 429 or equivalent)."""

    retryable = True


class GenerationTimeout(DraftsmithError):
    """No response arrived within the configured bound."""

    retryable = True


class MalformedResponse(DraftsmithError):
    """The provider answered but the payload was empty or unusable."""


class ProviderUnavailable(DraftsmithError):
    """Network failure, 5xx, or any other provider-side error."""

    retryable = True


class ValidationError(DraftsmithError):
    """The caller passed invalid input (e.g. an empty edit instruction)."""


class InvalidTransition(ValidationError):
    """An event is not allowed in the current workflow stage."""
