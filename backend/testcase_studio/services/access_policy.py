"""
Access policy for generations.

Pure functions, no I/O. Two questions are answered separately:

  1. May this actor touch this generation at all?   (is_allowed)
     A "no" is reported exactly like a missing record.
  2. Does the generation's status permit the action? (requires_completed)
     Only asked once (1) passed, so non-owners never learn anything
     about unpublished records.
"""

from __future__ import annotations

import enum

from testcase_studio.models.generation import Generation, GenerationStatus
from testcase_studio.services.errors import InvalidStateError, NotFoundOrForbidden


class Action(str, enum.Enum):
    VIEW = "view"
    DOWNLOAD = "download"
    EDIT = "edit"
    PUBLISH = "publish"
    DELETE = "delete"


# Blocking-condition messages for the status check.
_NOT_COMPLETED_MESSAGES: dict[Action, str] = {
    Action.VIEW: "Generation not completed yet.",
    Action.DOWNLOAD: "Generation not completed yet.",
    Action.EDIT: "Only completed generations can be updated.",
    Action.PUBLISH: "Only completed generations can be published.",
}


def is_owner(actor: str, generation: Generation) -> bool:
    return actor == generation.owner_email


def is_publicly_visible(generation: Generation) -> bool:
    return generation.published and generation.status is GenerationStatus.COMPLETED


def is_allowed(actor: str, generation: Generation, action: Action) -> bool:
    """Whether `actor` may perform `action` on `generation` (ignoring status)."""
    match action:
        case Action.VIEW | Action.DOWNLOAD:
            return is_owner(actor, generation) or is_publicly_visible(generation)
        case Action.EDIT | Action.PUBLISH | Action.DELETE:
            return is_owner(actor, generation)
    raise ValueError(f"Unknown action: {action!r}")


def requires_completed(action: Action) -> bool:
    """Delete is the only action allowed regardless of status."""
    return action is not Action.DELETE


def authorize(actor: str, generation: Generation | None, action: Action) -> Generation:
    """
    Enforce the policy, returning the generation when permitted.

    Raises:
        NotFoundOrForbidden: Record missing or actor denied.
        InvalidStateError:   Actor allowed but status is not `completed`.
    """
    if generation is None or not is_allowed(actor, generation, action):
        raise NotFoundOrForbidden()

    if requires_completed(action) and generation.status is not GenerationStatus.COMPLETED:
        raise InvalidStateError(_NOT_COMPLETED_MESSAGES[action])

    return generation
