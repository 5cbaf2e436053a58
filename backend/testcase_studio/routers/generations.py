"""
Generations router — create, read, revise, publish and delete test cases.

Every route requires a verified bearer token. Engine errors map to HTTP:
  NotFoundOrForbidden → 404 (denial looks exactly like absence)
  ValidationError     → 400
  InvalidStateError   → 400
  UpstreamFailure     → 403 / 404 / 400 / 500 by JIRA failure reason,
                        502 when the content generator gave up
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from testcase_studio.auth.dependencies import Actor, get_current_actor
from testcase_studio.core.dependencies import (
    get_content_generator,
    get_generation_lifecycle,
    get_issue_fetcher,
)
from testcase_studio.models.generation import Generation, GenerationMode
from testcase_studio.schemas.generation import (
    ContentUpdateRequest,
    ContentUpdateResponse,
    GenerateRequest,
    GenerationListResponse,
    GenerationResult,
    GenerationSummary,
    GenerationView,
    Pagination,
    PreflightRequest,
    PreflightResponse,
    PublishRequest,
    PublishResponse,
    VersionOut,
)
from testcase_studio.services.cost_calculator import estimate_generation
from testcase_studio.services.errors import (
    FetchFailureReason,
    GenerationError,
    InvalidStateError,
    NotFoundOrForbidden,
    UpstreamFailure,
    ValidationError,
)
from testcase_studio.services.generation_lifecycle import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    GenerationFilter,
    GenerationLifecycle,
    IssueFetcher,
)
from testcase_studio.services.jira_client import IssueFetchError
from testcase_studio.services.project_registry import extract_project_key

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Generations"])

# Type aliases for cleaner signatures
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Lifecycle = Annotated[GenerationLifecycle, Depends(get_generation_lifecycle)]
Fetcher = Annotated[IssueFetcher, Depends(get_issue_fetcher)]

FETCH_FAILURE_STATUS: dict[FetchFailureReason, int] = {
    FetchFailureReason.AUTH: status.HTTP_403_FORBIDDEN,
    FetchFailureReason.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    FetchFailureReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FetchFailureReason.INVALID_KEY: status.HTTP_400_BAD_REQUEST,
    FetchFailureReason.NETWORK: status.HTTP_500_INTERNAL_SERVER_ERROR,
    FetchFailureReason.OTHER: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _to_http(exc: GenerationError) -> HTTPException:
    if isinstance(exc, NotFoundOrForbidden):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (ValidationError, InvalidStateError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, UpstreamFailure):
        code = (
            FETCH_FAILURE_STATUS[exc.reason]
            if exc.reason is not None
            else status.HTTP_502_BAD_GATEWAY
        )
        return HTTPException(status_code=code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _to_view(generation: Generation) -> GenerationView:
    latest = generation.versions[-1] if generation.versions else None
    return GenerationView(
        id=generation.id,
        owner_email=generation.owner_email,
        issue_key=generation.issue_key,
        project_key=extract_project_key(generation.issue_key),
        content=generation.result_content or "",
        filename=generation.result_filename or "output.md",
        updated_at=generation.updated_at,
        published=generation.published,
        published_at=generation.published_at,
        published_by=generation.published_by,
        current_version=generation.current_version,
        versions=[VersionOut.model_validate(v) for v in generation.versions],
        last_updated_by=latest.updated_by if latest else generation.owner_email,
        last_updated_at=latest.created_at if latest else generation.updated_at,
    )


# ── List ────────────────────────────────────────────────────
@router.get(
    "",
    response_model=GenerationListResponse,
    summary="List generations visible to the caller",
    description=(
        "filter=all: own generations plus everything published. "
        "filter=mine: own generations only. "
        "filter=published: published, completed generations from all users."
    ),
)
async def list_generations(
    actor: CurrentActor,
    lifecycle: Lifecycle,
    filter_type: GenerationFilter = Query(default=GenerationFilter.ALL, alias="filter"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
) -> GenerationListResponse:
    result = await lifecycle.list_generations(actor.email, filter_type, page, limit)
    return GenerationListResponse(
        generations=[GenerationSummary.model_validate(g) for g in result.items],
        pagination=Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            pages=result.pages,
        ),
    )


# ── Preflight ───────────────────────────────────────────────
@router.post(
    "/preflight",
    response_model=PreflightResponse,
    summary="Inspect an issue and estimate generation cost",
)
async def preflight(
    payload: PreflightRequest,
    actor: CurrentActor,
    fetcher: Fetcher,
) -> PreflightResponse:
    """Fetches the issue only — no generation record is created."""
    if not payload.issue_key.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="issue_key is required.")

    try:
        issue = await fetcher.fetch_issue(payload.issue_key)
    except IssueFetchError as exc:
        raise HTTPException(status_code=FETCH_FAILURE_STATUS[exc.reason], detail=str(exc)) from exc

    estimate = estimate_generation(
        f"{issue.title}\n\n{issue.description}",
        image_count=issue.image_attachment_count,
    )
    logger.info(
        "Preflight for %s by %s: ~%d tokens, ~$%s",
        issue.key, actor.email, estimate.estimated_tokens, estimate.estimated_cost,
    )
    return PreflightResponse(
        issue_key=issue.key,
        title=issue.title or "N/A",
        description=issue.description,
        attachments=issue.attachment_count,
        estimated_tokens=estimate.estimated_tokens,
        estimated_cost=estimate.estimated_cost,
    )


# ── Create ──────────────────────────────────────────────────
@router.post(
    "/testcases",
    response_model=GenerationResult,
    summary="Generate test cases for a JIRA issue",
    dependencies=[Depends(get_issue_fetcher), Depends(get_content_generator)],
)
async def generate_test_cases(
    payload: GenerateRequest,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> GenerationResult:
    """
    Creates a pending record, fetches the issue, generates with retries,
    and returns the completed result. On upstream failure the record is
    kept as `failed` and the proximate cause is returned.
    """
    mode = GenerationMode.AUTO if payload.auto_mode else GenerationMode.MANUAL
    try:
        generation = await lifecycle.run_generation(payload.issue_key, actor.email, mode)
    except GenerationError as exc:
        raise _to_http(exc) from exc

    return GenerationResult(
        generation_id=generation.id,
        issue_key=generation.issue_key,
        filename=generation.result_filename,
        content=generation.result_content,
        generation_time_seconds=generation.generation_time_seconds,
        cost=generation.cost_usd,
    )


# ── Read ────────────────────────────────────────────────────
@router.get(
    "/{generation_id}/view",
    response_model=GenerationView,
    summary="View a generation with its version history",
)
async def view_generation(
    generation_id: str,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> GenerationView:
    try:
        generation = await lifecycle.get_view(generation_id, actor.email)
    except GenerationError as exc:
        raise _to_http(exc) from exc
    return _to_view(generation)


@router.get(
    "/{generation_id}/download",
    summary="Download the current content as a markdown file",
    response_class=Response,
)
async def download_generation(
    generation_id: str,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> Response:
    try:
        generation = await lifecycle.get_download(generation_id, actor.email)
    except GenerationError as exc:
        raise _to_http(exc) from exc

    filename = generation.result_filename or "output.md"
    return Response(
        content=generation.result_content or "",
        media_type="text/markdown",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ── Edit ────────────────────────────────────────────────────
@router.put(
    "/{generation_id}/content",
    response_model=ContentUpdateResponse,
    summary="Replace the content, archiving the previous version",
)
async def update_content(
    generation_id: str,
    payload: ContentUpdateRequest,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> ContentUpdateResponse:
    try:
        generation = await lifecycle.revise_content(generation_id, actor.email, payload.content)
    except GenerationError as exc:
        raise _to_http(exc) from exc
    return ContentUpdateResponse(
        content=generation.result_content,
        current_version=generation.current_version,
    )


@router.put(
    "/{generation_id}/publish",
    response_model=PublishResponse,
    summary="Publish or unpublish a generation",
)
async def update_published(
    generation_id: str,
    payload: PublishRequest,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> PublishResponse:
    try:
        generation = await lifecycle.set_published(generation_id, actor.email, payload.published)
    except GenerationError as exc:
        raise _to_http(exc) from exc
    return PublishResponse(
        published=generation.published,
        published_at=generation.published_at,
        published_by=generation.published_by,
    )


# ── Delete ──────────────────────────────────────────────────
@router.delete(
    "/{generation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a generation",
    description="Owner only. Published generations can be deleted too.",
    responses={404: {"description": "Generation not found"}},
)
async def delete_generation(
    generation_id: str,
    actor: CurrentActor,
    lifecycle: Lifecycle,
) -> Response:
    try:
        await lifecycle.delete(generation_id, actor.email)
    except GenerationError as exc:
        raise _to_http(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
