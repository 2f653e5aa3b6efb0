"""Exception hierarchy shared by providers, the pipeline and the API.

Backend failures (``GenerationError`` subclasses) are absorbed by the
providers: retried, handed to a fallback backend, or degraded to a
placeholder. Everything else is fatal and reaches the caller unchanged.
"""

from typing import Optional


class PromoreelError(Exception):
    """Base class for all promoreel errors."""


class GenerationError(PromoreelError):
    """A backend call failed.

    ``category`` is matched by the retry policy alongside the message, so a
    vendor status such as ``RESOURCE_EXHAUSTED`` or an HTTP code can make an
    otherwise terse error retryable.
    """

    def __init__(self, message: str, category: Optional[str] = None):
        super().__init__(message)
        self.category = category


class TransientBackendError(GenerationError):
    """Network reset, timeout, rate limit or 5xx from a backend."""


class TerminalBackendError(GenerationError):
    """Auth failure, malformed request or content policy rejection.

    Never retried; the provider moves straight on to its fallback backend.
    """


class PollTimeoutError(TerminalBackendError):
    """A long-running operation was still processing after the last poll."""

    def __init__(self, operation: str, attempts: int):
        super().__init__(
            f"Operation {operation} still processing after {attempts} polls",
            category="poll-exhausted",
        )
        self.operation = operation
        self.attempts = attempts


class ScriptValidationError(GenerationError):
    """A text backend answered without all four script sections."""

    def __init__(self, message: str):
        super().__init__(message, category="processing")


class ResourceMissingError(PromoreelError):
    """A required input is absent (output path, credentials, input frame)."""


class ProjectNotFoundError(PromoreelError):
    """No project is stored under the requested id."""


class StylePackNotFoundError(PromoreelError):
    """No style pack is stored under the requested id."""


class ShotNotFoundError(PromoreelError):
    """The project has no shot with the requested id."""


class VersionNotFoundError(PromoreelError):
    """Rollback target is not present in the shot's history."""


class NoClipsAvailableError(PromoreelError):
    """Export was requested but no shot has a ready clip."""
