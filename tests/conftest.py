"""Shared pytest fixtures and configuration for all tests."""

import os
import shutil
from pathlib import Path

import pytest
from _pytest.config import Config

from backlog_migrate.clients.content_gateway import ProjectInfo, RemoteDocument
from backlog_migrate.clients.exceptions import ClientError, ResourceNotFoundError
from backlog_migrate.clients.git_client import GitClient
from backlog_migrate.models.migrate_item import MigrateItem
from backlog_migrate.settings import Settings
from backlog_migrate.type_definitions import ID_KEYED_TYPES, Decision
from backlog_migrate.utils.workspace import Workspace


def pytest_configure(config: Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark a test as a unit test")
    config.addinivalue_line(
        "markers",
        "integration: mark a test as an integration test",
    )
    config.addinivalue_line("markers", "requires_git: test requires a git executable")


def _env_flag(name: str, default: bool = False) -> bool:
    """Read boolean environment flag (true/false)."""
    val = os.environ.get(name, "true" if default else "false").strip().lower()
    return val in {"1", "true", "yes", "on"}


def pytest_collection_modifyitems(config: Config, items: list[pytest.Item]) -> None:
    """Apply default skipping for integration, git-dependent and unmarked tests.

    - Integration tests are skipped unless BACKLOG_MIGRATE_RUN_INTEGRATION is true.
    - Tests marked requires_git are skipped when no git executable is on PATH.
    - Unmarked tests are skipped unless BACKLOG_MIGRATE_RUN_ALL_TESTS is true.
    """
    run_all = _env_flag("BACKLOG_MIGRATE_RUN_ALL_TESTS", False)
    run_integration = _env_flag("BACKLOG_MIGRATE_RUN_INTEGRATION", False) or run_all
    git_available = shutil.which("git") is not None

    skip_integration = pytest.mark.skip(
        reason="Integration tests disabled by default. Set BACKLOG_MIGRATE_RUN_INTEGRATION=true to enable.",
    )
    skip_git = pytest.mark.skip(reason="git executable not found on PATH")
    skip_unmarked = pytest.mark.skip(
        reason="Unmarked test skipped by default. Mark with unit/integration or set BACKLOG_MIGRATE_RUN_ALL_TESTS=true.",
    )

    for item in items:
        kws = item.keywords
        if "integration" in kws and not run_integration:
            item.add_marker(skip_integration)
            continue
        if "requires_git" in kws and not git_available:
            item.add_marker(skip_git)
            continue
        if not run_all and not any(m in kws for m in ("unit", "integration")):
            item.add_marker(skip_unmarked)


def document_identity(document: RemoteDocument) -> tuple[str, str]:
    """Identity of a remote document, matching MigrateItem.identity."""
    if document.item_type in ID_KEYED_TYPES:
        return (document.item_type, str(document.item_id))
    return (document.item_type, document.item_key)


class FakeGateway:
    """In-memory remote system implementing the ContentGateway protocol."""

    def __init__(self, project: ProjectInfo, documents: list[RemoteDocument] | None = None) -> None:
        self.project = project
        self.documents: dict[tuple[str, str], RemoteDocument] = {}
        self.pushes: list[tuple[str, str, str]] = []
        self.fail_push: set[str] = set()
        for document in documents or []:
            self.add(document)

    def add(self, document: RemoteDocument) -> None:
        self.documents[document_identity(document)] = document

    def content_of(self, item_type: str, key: str) -> str:
        return self.documents[(item_type, key)].content

    def set_content(self, item_type: str, key: str, content: str) -> None:
        self.documents[(item_type, key)].content = content

    def _of_type(self, item_type: str) -> list[RemoteDocument]:
        return [document for document in self.documents.values() if document.item_type == item_type]

    def get_project(self, project_key: str) -> ProjectInfo:
        if project_key != self.project.key:
            msg = f"Resource not found: /projects/{project_key}"
            raise ResourceNotFoundError(msg)
        return self.project

    def list_issues(self, project: ProjectInfo) -> list[RemoteDocument]:
        return self._of_type("issue")

    def list_comments(self, issue: RemoteDocument) -> list[RemoteDocument]:
        return [document for document in self._of_type("comment") if document.parent_id == issue.item_id]

    def list_wikis(self, project: ProjectInfo) -> list[RemoteDocument]:
        return self._of_type("wiki")

    def list_issue_types(self, project: ProjectInfo) -> list[RemoteDocument]:
        return self._of_type("issue_type_description")

    def fetch_current(self, item: MigrateItem) -> RemoteDocument:
        document = self.documents.get(item.identity)
        if document is None:
            msg = f"Resource not found: {item.item_key}"
            raise ResourceNotFoundError(msg)
        return document.model_copy()

    def push(self, item: MigrateItem, content: str) -> str | None:
        if item.item_key in self.fail_push:
            msg = f"HTTP 500 for {item.item_key}: boom"
            raise ClientError(msg)
        self.documents[item.identity].content = content
        self.pushes.append((item.item_type, item.item_key, content))
        return "2024-06-01T00:00:00Z"


class ScriptedDecisions:
    """Decision callback returning queued answers, then a default."""

    def __init__(self, *answers: Decision, default: Decision = Decision.APPROVE) -> None:
        self.answers = list(answers)
        self.default = default
        self.calls: list[tuple[str, str, str]] = []

    def __call__(self, item_type: str, item_key: str, diff: str) -> Decision:
        self.calls.append((item_type, item_key, diff))
        if self.answers:
            return self.answers.pop(0)
        return self.default


@pytest.fixture
def project() -> ProjectInfo:
    return ProjectInfo(id=10, key="PROJ", name="Project")


@pytest.fixture
def remote_documents() -> list[RemoteDocument]:
    """A small project: two legacy issues, one Markdown issue, a comment, a wiki page and an issue type."""
    return [
        RemoteDocument(
            item_type="issue",
            item_id=1,
            item_key="PROJ-1",
            url="https://space.backlog.com/view/PROJ-1",
            content="* Title\n''bold'' text\n{code}\nx = 1\n{/code}",
            updated_at="2024-01-01T00:00:00Z",
        ),
        RemoteDocument(
            item_type="issue",
            item_id=2,
            item_key="PROJ-2",
            url="https://space.backlog.com/view/PROJ-2",
            content="''one'' and %%two%%",
            updated_at="2024-01-01T00:00:00Z",
        ),
        RemoteDocument(
            item_type="issue",
            item_id=3,
            item_key="PROJ-3",
            url="https://space.backlog.com/view/PROJ-3",
            content="```\ncode\n```\n- [x] done",
            updated_at="2024-01-01T00:00:00Z",
        ),
        RemoteDocument(
            item_type="comment",
            item_id=100,
            parent_id=1,
            item_key="PROJ-1#comment-100",
            url="https://space.backlog.com/view/PROJ-1#comment-100",
            content="** Note\n&br;''done''",
        ),
        RemoteDocument(
            item_type="wiki",
            item_id=7,
            item_key="Home",
            url="https://space.backlog.com/alias/wiki/7",
            content="* Home\n#contents\n''welcome''",
        ),
        RemoteDocument(
            item_type="issue_type_description",
            item_id=5,
            item_key="Bug",
            url="https://space.backlog.com/EditIssueType.action?projectKey=PROJ",
            content="** Steps\n''describe'' the bug\n{code}\nlog\n{/code}",
        ),
    ]


@pytest.fixture
def gateway(project: ProjectInfo, remote_documents: list[RemoteDocument]) -> FakeGateway:
    return FakeGateway(project, remote_documents)


@pytest.fixture
def settings() -> Settings:
    return Settings(base_branch="main", max_line_bytes=1024 * 1024)


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    return Workspace(tmp_path / "workspace")


@pytest.fixture
def git_client(workspace: Workspace, settings: Settings) -> GitClient:
    return GitClient(
        workspace.root,
        executable=settings.git_executable,
        author_name=settings.git_author_name,
        author_email=settings.git_author_email,
    )


@pytest.fixture
def scripted_decisions() -> type[ScriptedDecisions]:
    """Factory for decision callbacks with queued answers."""
    return ScriptedDecisions
