"""Lifecycle engine against an in-memory database."""

import uuid

import httpx
import pytest
from sqlalchemy import func, select

from conftest import (
    DEFAULT_CONTENT,
    OTHER,
    OWNER,
    FakeContentGenerator,
    FakeIssueFetcher,
)
from testcase_studio.models.generation import (
    GenerationMode,
    GenerationStatus,
    GenerationVersion,
)
from testcase_studio.models.project import Project
from testcase_studio.services import generation_lifecycle as lifecycle_module
from testcase_studio.services.errors import (
    FetchFailureReason,
    InvalidStateError,
    NotFoundOrForbidden,
    UpstreamFailure,
    ValidationError,
)
from testcase_studio.services.generation_lifecycle import (
    GenerationFilter,
    GenerationLifecycle,
)
from testcase_studio.services.jira_client import IssueFetchError, JiraClient
from testcase_studio.services.llm_client import ContentGenerationError
from testcase_studio.services.retry import RetryPolicy


def _engine(session, fetcher=None, generator=None) -> GenerationLifecycle:
    return GenerationLifecycle(
        session=session,
        issue_fetcher=fetcher or FakeIssueFetcher(),
        content_generator=generator or FakeContentGenerator(),
        retry_policy=RetryPolicy(max_attempts=3),
    )


# ── create ──────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_create_starts_pending_with_no_versions(lifecycle):
    generation = await lifecycle.create("  TES-1 ", OWNER)

    assert generation.status is GenerationStatus.PENDING
    assert generation.issue_key == "TES-1"
    assert generation.owner_email == OWNER
    assert generation.mode is GenerationMode.MANUAL
    assert generation.published is False
    assert generation.current_version == 1
    assert generation.versions == []
    assert generation.started_at is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("issue_key", ["", "   "])
async def test_create_rejects_blank_issue_key(lifecycle, issue_key):
    with pytest.raises(ValidationError):
        await lifecycle.create(issue_key, OWNER)


@pytest.mark.asyncio
async def test_create_attaches_project_and_counts(lifecycle, session):
    first = await lifecycle.create("TES-1", OWNER)
    second = await lifecycle.create("tes-2", OTHER)

    project = (
        await session.execute(select(Project).where(Project.project_key == "TES"))
    ).scalar_one()
    assert first.project_id == project.id
    assert second.project_id == project.id
    assert project.total_generations == 2
    assert project.created_by == OWNER


@pytest.mark.asyncio
async def test_create_without_project_prefix_has_no_project(lifecycle, session):
    generation = await lifecycle.create("1234", OWNER)

    assert generation.project_id is None
    count = (await session.execute(select(func.count()).select_from(Project))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_registry_failure_does_not_block_create(lifecycle, monkeypatch):
    async def _broken(*args, **kwargs):
        raise RuntimeError("registry down")

    monkeypatch.setattr(lifecycle_module, "find_or_create_project", _broken)

    generation = await lifecycle.create("TES-1", OWNER)

    assert generation.status is GenerationStatus.PENDING
    assert generation.project_id is None


# ── complete / fail ─────────────────────────────────────────
@pytest.mark.asyncio
async def test_complete_moves_pending_to_completed(lifecycle):
    generation = await lifecycle.create("TES-1", OWNER)

    await lifecycle.complete(generation, "# Cases", "TES-1_testcases.md", elapsed_seconds=1.234)

    assert generation.status is GenerationStatus.COMPLETED
    assert generation.result_content == "# Cases"
    assert generation.result_filename == "TES-1_testcases.md"
    assert generation.completed_at is not None
    assert generation.generation_time_seconds == 1.23
    assert generation.current_version == 1
    assert generation.versions == []


@pytest.mark.asyncio
async def test_fail_records_cause(lifecycle):
    generation = await lifecycle.create("TES-1", OWNER)

    await lifecycle.fail(generation, "JIRA unreachable")

    assert generation.status is GenerationStatus.FAILED
    assert generation.error == "JIRA unreachable"
    assert generation.completed_at is not None


@pytest.mark.asyncio
async def test_status_changes_only_once(lifecycle):
    completed = await lifecycle.create("TES-1", OWNER)
    await lifecycle.complete(completed, "# A", "a.md")
    failed = await lifecycle.create("TES-2", OWNER)
    await lifecycle.fail(failed, "boom")

    with pytest.raises(InvalidStateError):
        await lifecycle.complete(completed, "# B", "b.md")
    with pytest.raises(InvalidStateError):
        await lifecycle.fail(completed, "late failure")
    with pytest.raises(InvalidStateError):
        await lifecycle.complete(failed, "# B", "b.md")
    with pytest.raises(InvalidStateError):
        await lifecycle.fail(failed, "again")

    assert completed.status is GenerationStatus.COMPLETED
    assert completed.result_content == "# A"
    assert failed.status is GenerationStatus.FAILED
    assert failed.error == "boom"


# ── run_generation ──────────────────────────────────────────
@pytest.mark.asyncio
async def test_run_generation_completes_first_version(completed_generation, generator):
    generation = completed_generation

    assert generation.status is GenerationStatus.COMPLETED
    assert generation.issue_title == "Login page"
    assert generation.result_content == DEFAULT_CONTENT
    assert generation.result_filename == f"TES-1_testcases_{generation.id}.md"
    assert generation.current_version == 1
    assert generation.versions == []
    assert generation.total_tokens == 2000
    assert generation.cost_usd is not None
    assert len(generator.calls) == 1

    context, issue_key, mode = generator.calls[0]
    assert issue_key == "TES-1"
    assert mode is GenerationMode.MANUAL
    assert context.startswith("Title: Login page")


@pytest.mark.asyncio
async def test_run_generation_adds_heading_when_missing(session):
    engine = _engine(session, generator=FakeContentGenerator("- TC-1 login works"))

    generation = await engine.run_generation("tes-7", OWNER, GenerationMode.AUTO)

    assert generation.mode is GenerationMode.AUTO
    assert generation.result_content.startswith("# Test Cases for TES-7: Login page\n\n")
    assert generation.result_content.endswith("- TC-1 login works")


@pytest.mark.asyncio
async def test_run_generation_retries_then_succeeds(session):
    generator = FakeContentGenerator(
        ContentGenerationError("rate limited"),
        ContentGenerationError("timeout"),
        DEFAULT_CONTENT,
    )
    engine = _engine(session, generator=generator)

    generation = await engine.run_generation("TES-1", OWNER)

    assert generation.status is GenerationStatus.COMPLETED
    assert len(generator.calls) == 3


@pytest.mark.asyncio
async def test_run_generation_fails_after_exhausting_retries(session):
    generator = FakeContentGenerator(
        ContentGenerationError("first"),
        ContentGenerationError("second"),
        ContentGenerationError("Empty response from OpenAI"),
    )
    engine = _engine(session, generator=generator)

    with pytest.raises(UpstreamFailure) as exc_info:
        await engine.run_generation("TES-1", OWNER)

    assert exc_info.value.reason is None
    assert len(generator.calls) == 3

    generation = await engine.get(exc_info.value.generation_id)
    assert generation.status is GenerationStatus.FAILED
    assert generation.error == "Test case generation failed: Empty response from OpenAI"
    assert generation.result_content is None


@pytest.mark.asyncio
async def test_run_generation_fetch_failure_marks_failed(session):
    fetcher = FakeIssueFetcher(
        error=IssueFetchError(FetchFailureReason.NOT_FOUND, "Issue TES-404 not found.")
    )
    generator = FakeContentGenerator()
    engine = _engine(session, fetcher=fetcher, generator=generator)

    with pytest.raises(UpstreamFailure) as exc_info:
        await engine.run_generation("TES-404", OWNER)

    assert exc_info.value.reason is FetchFailureReason.NOT_FOUND
    assert generator.calls == []

    generation = await engine.get(exc_info.value.generation_id)
    assert generation.status is GenerationStatus.FAILED
    assert generation.error == "Issue TES-404 not found."


@pytest.mark.asyncio
async def test_run_generation_malformed_jira_payload_marks_failed(session):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["unexpected"])

    jira = JiraClient(
        base_url="https://example.atlassian.net",
        email="bot@example.com",
        api_token="token",
        transport=httpx.MockTransport(handler),
    )
    generator = FakeContentGenerator()
    engine = _engine(session, fetcher=jira, generator=generator)

    with pytest.raises(UpstreamFailure) as exc_info:
        await engine.run_generation("TES-1", OWNER)

    assert exc_info.value.reason is FetchFailureReason.OTHER
    assert generator.calls == []

    generation = await engine.get(exc_info.value.generation_id)
    assert generation.status is GenerationStatus.FAILED
    assert "unexpected payload" in generation.error


@pytest.mark.asyncio
async def test_run_generation_untyped_fetch_error_marks_failed(session):
    fetcher = FakeIssueFetcher(error=AttributeError("'list' object has no attribute 'get'"))
    engine = _engine(session, fetcher=fetcher)

    with pytest.raises(UpstreamFailure) as exc_info:
        await engine.run_generation("TES-1", OWNER)

    assert exc_info.value.reason is FetchFailureReason.OTHER

    generation = await engine.get(exc_info.value.generation_id)
    assert generation.status is GenerationStatus.FAILED
    assert generation.error == (
        "Failed to fetch JIRA issue: 'list' object has no attribute 'get'"
    )


# ── revise_content ──────────────────────────────────────────
@pytest.mark.asyncio
async def test_revise_archives_previous_content(lifecycle, completed_generation):
    generation = await lifecycle.revise_content(completed_generation.id, OWNER, "# B")

    assert generation.result_content == "# B"
    assert generation.current_version == 2
    assert [v.version_number for v in generation.versions] == [1]
    assert generation.versions[0].content == DEFAULT_CONTENT
    assert generation.versions[0].updated_by == OWNER


@pytest.mark.asyncio
async def test_revise_with_identical_content_is_noop(lifecycle, completed_generation):
    await lifecycle.revise_content(completed_generation.id, OWNER, "# B")

    generation = await lifecycle.revise_content(completed_generation.id, OWNER, "# B")

    assert generation.current_version == 2
    assert len(generation.versions) == 1


@pytest.mark.asyncio
async def test_revisions_keep_versions_contiguous(lifecycle, completed_generation, session):
    for text in ("# B", "# C", "# D"):
        await lifecycle.revise_content(completed_generation.id, OWNER, text)

    generation = await lifecycle.get(completed_generation.id)
    assert generation.current_version == 4
    assert [v.version_number for v in generation.versions] == [1, 2, 3]
    assert [v.content for v in generation.versions] == [DEFAULT_CONTENT, "# B", "# C"]

    stored = (
        await session.execute(
            select(func.count())
            .select_from(GenerationVersion)
            .where(GenerationVersion.generation_id == completed_generation.id)
        )
    ).scalar_one()
    assert stored == 3


@pytest.mark.asyncio
async def test_revise_skips_archive_when_version_already_stored(
    lifecycle, completed_generation, session
):
    # A previous attempt archived v1 but never bumped current_version.
    completed_generation.versions.append(
        GenerationVersion(version_number=1, content=DEFAULT_CONTENT, updated_by=OWNER)
    )
    await session.commit()

    generation = await lifecycle.revise_content(completed_generation.id, OWNER, "# B")

    assert generation.current_version == 2
    assert [v.version_number for v in generation.versions] == [1]


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   \n\t"])
async def test_revise_rejects_blank_content(lifecycle, completed_generation, content):
    with pytest.raises(ValidationError):
        await lifecycle.revise_content(completed_generation.id, OWNER, content)

    assert completed_generation.current_version == 1


@pytest.mark.asyncio
async def test_revise_by_non_owner_is_hidden(lifecycle, completed_generation):
    await lifecycle.set_published(completed_generation.id, OWNER, True)

    with pytest.raises(NotFoundOrForbidden):
        await lifecycle.revise_content(completed_generation.id, OTHER, "# Hijack")

    assert completed_generation.result_content == DEFAULT_CONTENT


@pytest.mark.asyncio
async def test_revise_pending_generation_is_invalid_state(lifecycle):
    generation = await lifecycle.create("TES-1", OWNER)

    with pytest.raises(InvalidStateError, match="Only completed generations can be updated"):
        await lifecycle.revise_content(generation.id, OWNER, "# B")


# ── publish ─────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_publish_and_unpublish(lifecycle, completed_generation):
    published = await lifecycle.set_published(completed_generation.id, OWNER, True)

    assert published.published is True
    assert published.published_by == OWNER
    assert published.published_at is not None

    unpublished = await lifecycle.set_published(completed_generation.id, OWNER, False)

    assert unpublished.published is False
    assert unpublished.published_by is None
    assert unpublished.published_at is None


@pytest.mark.asyncio
async def test_republish_restamps(lifecycle, completed_generation):
    first = await lifecycle.set_published(completed_generation.id, OWNER, True)
    first_stamp = first.published_at
    await lifecycle.set_published(completed_generation.id, OWNER, False)

    again = await lifecycle.set_published(completed_generation.id, OWNER, True)

    assert again.published is True
    assert again.published_by == OWNER
    assert again.published_at > first_stamp


@pytest.mark.asyncio
async def test_publish_failed_generation_is_invalid_state(session):
    engine = _engine(session, generator=FakeContentGenerator(ContentGenerationError("nope")))
    with pytest.raises(UpstreamFailure) as exc_info:
        await engine.run_generation("TES-1", OWNER)

    with pytest.raises(InvalidStateError, match="Only completed generations can be published"):
        await engine.set_published(exc_info.value.generation_id, OWNER, True)


@pytest.mark.asyncio
async def test_published_generation_visible_to_others(lifecycle, completed_generation):
    with pytest.raises(NotFoundOrForbidden):
        await lifecycle.get_view(completed_generation.id, OTHER)

    await lifecycle.set_published(completed_generation.id, OWNER, True)

    viewed = await lifecycle.get_view(completed_generation.id, OTHER)
    downloaded = await lifecycle.get_download(completed_generation.id, OTHER)
    assert viewed.id == completed_generation.id
    assert downloaded.id == completed_generation.id

    with pytest.raises(NotFoundOrForbidden):
        await lifecycle.set_published(completed_generation.id, OTHER, False)


# ── delete ──────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_delete_removes_generation_and_versions(lifecycle, completed_generation, session):
    generation_id = completed_generation.id
    await lifecycle.revise_content(generation_id, OWNER, "# B")
    await lifecycle.set_published(generation_id, OWNER, True)

    await lifecycle.delete(generation_id, OWNER)

    assert await lifecycle.get(generation_id) is None
    with pytest.raises(NotFoundOrForbidden):
        await lifecycle.get_view(generation_id, OWNER)
    with pytest.raises(NotFoundOrForbidden):
        await lifecycle.get_view(generation_id, OTHER)

    remaining = (
        await session.execute(select(func.count()).select_from(GenerationVersion))
    ).scalar_one()
    assert remaining == 0


@pytest.mark.asyncio
async def test_delete_allowed_for_failed_generation(session):
    engine = _engine(session, generator=FakeContentGenerator(ContentGenerationError("nope")))
    with pytest.raises(UpstreamFailure) as exc_info:
        await engine.run_generation("TES-1", OWNER)

    await engine.delete(exc_info.value.generation_id, OWNER)

    assert await engine.get(exc_info.value.generation_id) is None


@pytest.mark.asyncio
async def test_delete_by_non_owner_is_hidden(lifecycle, completed_generation):
    with pytest.raises(NotFoundOrForbidden):
        await lifecycle.delete(completed_generation.id, OTHER)

    assert await lifecycle.get(completed_generation.id) is not None


@pytest.mark.asyncio
async def test_unknown_or_malformed_id_is_hidden(lifecycle):
    with pytest.raises(NotFoundOrForbidden):
        await lifecycle.get_view(uuid.uuid4(), OWNER)
    with pytest.raises(NotFoundOrForbidden):
        await lifecycle.delete("not-a-uuid", OWNER)


# ── list ────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_list_filters(lifecycle):
    mine_private = await lifecycle.run_generation("TES-1", OWNER)
    mine_public = await lifecycle.run_generation("TES-2", OWNER)
    theirs_private = await lifecycle.run_generation("TES-3", OTHER)
    theirs_public = await lifecycle.run_generation("TES-4", OTHER)
    await lifecycle.set_published(mine_public.id, OWNER, True)
    await lifecycle.set_published(theirs_public.id, OTHER, True)

    async def ids(filter_type):
        page = await lifecycle.list_generations(OWNER, filter_type)
        return {g.id for g in page.items}

    assert await ids(GenerationFilter.MINE) == {mine_private.id, mine_public.id}
    assert await ids(GenerationFilter.PUBLISHED) == {mine_public.id, theirs_public.id}
    assert await ids(GenerationFilter.ALL) == {
        mine_private.id,
        mine_public.id,
        theirs_public.id,
    }
    assert theirs_private.id not in await ids(GenerationFilter.ALL)


@pytest.mark.asyncio
async def test_list_paginates_newest_first(lifecycle):
    created = [await lifecycle.create(f"TES-{n}", OWNER) for n in range(1, 6)]

    first = await lifecycle.list_generations(OWNER, GenerationFilter.MINE, page=1, limit=2)
    last = await lifecycle.list_generations(OWNER, GenerationFilter.MINE, page=3, limit=2)

    assert first.total == 5
    assert first.pages == 3
    assert [g.id for g in first.items] == [created[4].id, created[3].id]
    assert [g.id for g in last.items] == [created[0].id]


@pytest.mark.asyncio
async def test_list_clamps_page_and_limit(lifecycle):
    await lifecycle.create("TES-1", OWNER)

    page = await lifecycle.list_generations(OWNER, GenerationFilter.MINE, page=0, limit=500)

    assert page.page == 1
    assert page.limit == 50
    assert page.total == 1


@pytest.mark.asyncio
async def test_list_pages_are_stable_when_timestamps_tie(lifecycle, session):
    created = [await lifecycle.create(f"TES-{n}", OWNER) for n in range(1, 5)]
    same_instant = created[0].created_at
    for generation in created:
        generation.created_at = same_instant
    await session.commit()

    seen = []
    for page in range(1, 5):
        result = await lifecycle.list_generations(OWNER, GenerationFilter.MINE, page=page, limit=1)
        seen.extend(g.id for g in result.items)

    assert len(set(seen)) == 4
    assert seen == sorted((g.id for g in created), key=lambda u: u.hex, reverse=True)
