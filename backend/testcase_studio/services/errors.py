"""
Domain errors raised by the generation lifecycle.

Routers translate these into HTTP responses. Store failures are NOT
wrapped here — they propagate untouched and end up as a generic 500.
"""

from __future__ import annotations

import enum


class GenerationError(Exception):
    """Base class for every error the lifecycle reports to its caller."""


class ValidationError(GenerationError):
    """A required field is missing or malformed. Never retried."""


class NotFoundOrForbidden(GenerationError):
    """The generation does not exist OR the actor may not touch it.

    Both cases share one error so callers cannot probe for existence.
    """

    def __init__(self, message: str = "Generation not found.") -> None:
        super().__init__(message)


class InvalidStateError(GenerationError):
    """The operation is not allowed in the generation's current status."""


class FetchFailureReason(str, enum.Enum):
    AUTH = "auth"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not-found"
    INVALID_KEY = "invalid-key"
    NETWORK = "network"
    OTHER = "other"


class UpstreamFailure(GenerationError):
    """The issue fetch or content generation failed after retries.

    By the time this is raised the generation has been marked `failed`.
    `reason` is None when the content generator (not JIRA) failed.
    """

    def __init__(
        self,
        message: str,
        reason: FetchFailureReason | None = None,
        generation_id: object | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.generation_id = generation_id
