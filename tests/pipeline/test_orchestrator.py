from __future__ import annotations

import json
from datetime import datetime, timedelta

import pytest

from commit_translator.crawlers.contracts import FetchResult, FetchState
from commit_translator.exceptions import GitHubFetchError, LLMError, RepositoryAccessError, RepositoryNotFoundError
from commit_translator.models.repository import AnalysisStatus
from commit_translator.models.repository_analysis import AnalysisType
from commit_translator.orchestrator import CommitTranslatorOrchestrator
from commit_translator.services.chat_responder import RepositoryChatService
from commit_translator.services.commit_translator import CommitTranslatorService
from commit_translator.services.events import RepositoryUpdated

from fakes import FakeGitHubClient, FakeLLMClient, github_commit, github_repo_payload

COMMITS = [
    github_commit("c3", "Fix login bug", "2024-05-03T09:00:00Z"),
    github_commit("c2", "Add export button", "2024-05-02T09:00:00Z"),
    github_commit("c1", "Tidy dashboard spacing", "2024-05-01T09:00:00Z"),
]

MODEL_REPLY = json.dumps(
    {
        "commits": [
            {"original_message": "Fix login bug", "plain_english": "Login works again", "type": "fix"},
            {"original_message": "Add export button", "plain_english": "Export added", "type": "feature"},
            {"original_message": "Tidy dashboard spacing", "plain_english": "Cleaner dashboard", "type": "improvement"},
        ],
        "project_health": {"status": "healthy", "summary": "Good", "recent_activity": "Active"},
        "overview": {"summary": "Demo app", "quality_score": 8},
    }
)


def _orchestrator(store, github: FakeGitHubClient, llm: FakeLLMClient) -> CommitTranslatorOrchestrator:
    return CommitTranslatorOrchestrator(
        store=store,
        github_client_factory=github,
        translator=CommitTranslatorService(llm),
        chat_service=RepositoryChatService(store, llm),
    )


@pytest.mark.asyncio
async def test_run_analysis_moves_through_statuses_and_writes_both_rows(store, event_bus) -> None:
    repository = store.connect_repository("user-a", github_repo_payload())
    statuses: list[str] = []
    event_bus.subscribe(
        lambda event: statuses.append(event.fields["analysis_status"]) if "analysis_status" in event.fields else None,
        event_type=RepositoryUpdated,
    )
    github = FakeGitHubClient(commits=COMMITS, readme="# Demo")
    orchestrator = _orchestrator(store, github, FakeLLMClient([MODEL_REPLY]))
    started = datetime.utcnow()

    result = await orchestrator.run_analysis(repository.id, github_token="ghp_user")

    assert result["success"] is True
    assert result["degraded"] is False
    assert [c["type"] for c in result["commits"]["recent_commits"]] == ["fix", "feature", "improvement"]
    assert statuses[0] == AnalysisStatus.ANALYZING.value
    assert statuses[-1] == AnalysisStatus.COMPLETED.value

    stored = store.require_repository(repository.id)
    assert stored.analysis_status == "completed"
    assert stored.last_analyzed_at >= started
    assert store.latest_analysis(repository.id, AnalysisType.OVERVIEW).content["overview"] == "Demo app"
    assert store.latest_analysis(repository.id, AnalysisType.COMMITS).content["total_commits"] == 3
    assert github.tokens == ["ghp_user"]


@pytest.mark.asyncio
async def test_run_analysis_records_degraded_output_as_completed(store) -> None:
    repository = store.connect_repository("user-a", github_repo_payload())
    orchestrator = _orchestrator(store, FakeGitHubClient(commits=COMMITS), FakeLLMClient(["not json at all"]))

    result = await orchestrator.run_analysis(repository.id)

    assert result["success"] is True
    assert result["degraded"] is True
    assert result["overview"]["degraded"] is True
    assert store.require_repository(repository.id).analysis_status == "completed"
    assert store.latest_analysis(repository.id, AnalysisType.COMMITS) is not None


@pytest.mark.asyncio
async def test_run_analysis_failure_marks_failed_and_returns_error(store) -> None:
    repository = store.connect_repository("user-a", github_repo_payload())
    orchestrator = _orchestrator(store, FakeGitHubClient(commits=COMMITS), FakeLLMClient([LLMError("model endpoint down")]))

    result = await orchestrator.run_analysis(repository.id)

    assert result["success"] is False
    assert "model endpoint down" in result["error"]
    stored = store.require_repository(repository.id)
    assert stored.analysis_status == "failed"
    assert stored.last_analyzed_at is None
    assert store.latest_analysis(repository.id, AnalysisType.OVERVIEW) is None


@pytest.mark.asyncio
async def test_run_analysis_for_unknown_repository_returns_error(store) -> None:
    orchestrator = _orchestrator(store, FakeGitHubClient(), FakeLLMClient())

    result = await orchestrator.run_analysis(12345)

    assert result["success"] is False
    assert "12345" in result["error"]


@pytest.mark.asyncio
async def test_sync_without_changes_or_new_commits_does_nothing(store) -> None:
    repository = store.connect_repository("user-a", github_repo_payload())
    llm = FakeLLMClient()
    github = FakeGitHubClient()
    orchestrator = _orchestrator(store, github, llm)

    result = await orchestrator.sync_repository(repository.id, user_id="user-a")

    assert result["has_changes"] is False
    assert result["new_commit_count"] == 0
    assert result["analysis"] is None
    assert llm.prompts == []
    assert store.require_repository(repository.id).analysis_status == "pending"


@pytest.mark.asyncio
async def test_sync_uses_default_window_before_first_analysis(store) -> None:
    repository = store.connect_repository("user-a", github_repo_payload())
    github = FakeGitHubClient()
    now = datetime(2024, 6, 1, 12, 0, 0)
    orchestrator = CommitTranslatorOrchestrator(
        store=store,
        github_client_factory=github,
        translator=CommitTranslatorService(FakeLLMClient()),
        clock=lambda: now,
    )

    await orchestrator.sync_repository(repository.id)

    list_call = next(kwargs for name, kwargs in github.calls if name == "list_commits")
    assert list_call["since"] == now - timedelta(hours=24)
    assert list_call["per_page"] == 10
    assert list_call["page"] == 1


@pytest.mark.asyncio
async def test_sync_persists_changes_and_reanalyzes_new_commits(store) -> None:
    repository = store.connect_repository("user-a", github_repo_payload())
    store.set_analysis_status(repository.id, AnalysisStatus.COMPLETED, datetime(2024, 5, 1))
    github = FakeGitHubClient(
        repo=FetchResult(
            state=FetchState.OK,
            data=github_repo_payload(stargazers_count=25, updated_at="2024-05-05T00:00:00Z"),
        ),
        recent=FetchResult(state=FetchState.OK, data=COMMITS[:2]),
        commits=COMMITS,
    )
    orchestrator = _orchestrator(store, github, FakeLLMClient([MODEL_REPLY]))

    result = await orchestrator.sync_repository(repository.id)

    assert result["has_changes"] is True
    assert result["new_commit_count"] == 2
    assert result["analysis"]["success"] is True
    assert result["repository"]["stargazers_count"] == 25
    assert result["repository"]["analysis_status"] == "completed"
    list_call = next(kwargs for name, kwargs in github.calls if name == "list_commits")
    assert list_call["since"] == datetime(2024, 5, 1)

    again = await orchestrator.sync_repository(repository.id)
    assert again["has_changes"] is False


@pytest.mark.asyncio
async def test_sync_raises_when_metadata_fetch_fails(store) -> None:
    repository = store.connect_repository("user-a", github_repo_payload())
    github = FakeGitHubClient(repo=FetchResult(state=FetchState.FAILED, status_code=404, error="Not Found"))
    orchestrator = _orchestrator(store, github, FakeLLMClient())

    with pytest.raises(GitHubFetchError) as excinfo:
        await orchestrator.sync_repository(repository.id)

    assert excinfo.value.status_code == 404
    with pytest.raises(RepositoryNotFoundError):
        await orchestrator.sync_repository(repository.id, user_id="user-b")


@pytest.mark.asyncio
async def test_connect_repository_fetches_metadata_first(store) -> None:
    github = FakeGitHubClient(repo=FetchResult(state=FetchState.OK, data=github_repo_payload("octocat/hello")))
    orchestrator = _orchestrator(store, github, FakeLLMClient())

    repository = await orchestrator.connect_repository("user-a", " octocat/hello ", "ghp_user")

    assert repository.full_name == "octocat/hello"
    assert github.calls[0] == ("get_repo", "octocat/hello")
    assert github.tokens == ["ghp_user"]


@pytest.mark.asyncio
async def test_private_repository_needs_the_callers_own_token(store) -> None:
    github = FakeGitHubClient(
        repo=FetchResult(state=FetchState.OK, data=github_repo_payload("octocat/secret", private=True))
    )
    orchestrator = _orchestrator(store, github, FakeLLMClient())

    with pytest.raises(RepositoryAccessError) as exc_info:
        await orchestrator.connect_repository("user-a", "octocat/secret")

    assert exc_info.value.http_status == 403
    assert store.list_repositories("user-a") == []

    repository = await orchestrator.connect_repository("user-a", "octocat/secret", "ghp_user")
    assert repository.full_name == "octocat/secret"
    assert github.tokens == [None, "ghp_user"]


@pytest.mark.asyncio
async def test_answer_query_delegates_to_chat_service(store) -> None:
    repository = store.connect_repository("user-a", github_repo_payload())
    orchestrator = _orchestrator(store, FakeGitHubClient(), FakeLLMClient(["All quiet."]))

    answer = await orchestrator.answer_query(repository.id, "what changed?", user_id="user-a")

    assert answer.answer == "All quiet."
