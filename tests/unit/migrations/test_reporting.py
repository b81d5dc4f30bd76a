"""Tests for the read-only workspace reports."""

import pytest

from backlog_migrate.clients.git_client import GitClient
from backlog_migrate.migrations.markdown_migration import MarkdownMigration
from backlog_migrate.migrations.reporting import WorkspaceReport, needs_attention
from backlog_migrate.models.migrate_item import MigrateItem
from backlog_migrate.settings import Settings
from backlog_migrate.utils.workspace import Workspace

pytestmark = [pytest.mark.unit, pytest.mark.requires_git]


@pytest.fixture
def migration(workspace: Workspace, gateway, settings: Settings, git_client: GitClient) -> MarkdownMigration:
    migration = MarkdownMigration(workspace, gateway=gateway, settings=settings, git=git_client)
    migration.init("PROJ")
    return migration


@pytest.fixture
def report(workspace: Workspace, settings: Settings, git_client: GitClient) -> WorkspaceReport:
    return WorkspaceReport(workspace, settings=settings, git=git_client)


class TestWorkspaceReport:
    """Listing, diffs, logs and status counts."""

    def test_list_items(self, migration: MarkdownMigration, report: WorkspaceReport) -> None:
        assert [item.item_key for item in report.list_items()] == ["PROJ-1", "PROJ-2", "Home", "Bug"]
        assert len(report.list_items(show_all=True)) == 5
        assert [item.item_key for item in report.list_items(types=["wiki"])] == ["Home"]

    def test_status_before_and_after_apply(self, migration: MarkdownMigration, report: WorkspaceReport) -> None:
        before = report.status()

        assert before["issue"] == {"total": 3, "changed": 2, "applied": 0, "pending": 2, "errors": 0}
        assert before["comment"]["total"] == 0

        migration.apply(types=["wiki"], auto=True)
        after = report.status()

        assert after["wiki"] == {"total": 1, "changed": 1, "applied": 1, "pending": 0, "errors": 0}

    def test_item_diff(self, migration: MarkdownMigration, report: WorkspaceReport) -> None:
        item = next(item for item in report.list_items() if item.item_key == "Home")
        assert report.item_diff(item) == ""

        migration.apply(types=["wiki"], auto=True)
        diff = report.item_diff(item)

        assert "-* Home" in diff
        assert "+# Home" in diff

    def test_logs(self, migration: MarkdownMigration, report: WorkspaceReport) -> None:
        migration.apply(auto=True)

        assert len(report.logs(show_all=True)) == 5
        assert [entry.item_key for entry in report.logs(limit=2)] == ["Home", "Bug"]
        assert report.metadata().project_key == "PROJ"


class TestNeedsAttention:
    """Default listing filter."""

    def test_flags(self) -> None:
        item = MigrateItem(item_type="issue", item_key="PROJ-1", path="issues/PROJ-1/content.md")

        assert not needs_attention(item)
        assert needs_attention(item.model_copy(update={"changed": True}))
        assert needs_attention(item.model_copy(update={"apply_error": "boom"}))
