"""Tests for the migration engine: init, snapshot, apply, rollback and clean.

These run against a real git repository in a temporary directory and an
in-memory remote.
"""

from datetime import UTC, datetime

import pytest

from backlog_migrate.clients.content_gateway import RemoteDocument
from backlog_migrate.clients.exceptions import ResourceNotFoundError
from backlog_migrate.clients.git_client import GitClient
from backlog_migrate.migrations.markdown_migration import MarkdownMigration, working_branch_name
from backlog_migrate.models.migrate_item import MigrateItem
from backlog_migrate.models.migration_error import LockError, WorkspaceError
from backlog_migrate.settings import Settings
from backlog_migrate.type_definitions import Decision
from backlog_migrate.utils.audit_log import AuditLog
from backlog_migrate.utils.item_store import ItemStore
from backlog_migrate.utils.workspace import Workspace

pytestmark = [pytest.mark.unit, pytest.mark.requires_git]

PROJ_1_CONVERTED = "# Title\n**bold** text\n```\nx = 1\n```"


@pytest.fixture
def make_migration(workspace: Workspace, gateway, settings: Settings, git_client: GitClient, scripted_decisions):
    """Build an engine over the shared workspace with a scripted decision callback."""

    def factory(*answers: Decision, confirm_clean=None) -> MarkdownMigration:
        return MarkdownMigration(
            workspace,
            gateway=gateway,
            settings=settings,
            git=git_client,
            decide=scripted_decisions(*answers),
            confirm_clean=confirm_clean,
        )

    return factory


@pytest.fixture
def initialized(make_migration) -> MarkdownMigration:
    migration = make_migration()
    migration.init("PROJ")
    return migration


def stored_items(workspace: Workspace) -> dict[str, MigrateItem]:
    return {item.item_key: item for item in ItemStore(workspace.items_path).read_all()}


def branches(git: GitClient, pattern: str) -> list[str]:
    output = git.run("branch", "--list", pattern, "--format=%(refname:short)").stdout.decode("utf-8")
    return output.split()


def commit_subjects(git: GitClient) -> list[str]:
    return git.run("log", "--format=%s").stdout.decode("utf-8").splitlines()


class TestInit:
    """Creating a workspace."""

    def test_snapshots_every_item(self, make_migration, workspace: Workspace, git_client: GitClient) -> None:
        result = make_migration().init("PROJ")

        assert result.success
        assert result.total_count == 5
        assert result.commits == 1
        assert (workspace.root / "issues/PROJ-1/content.md").read_text(encoding="utf-8") == (
            "* Title\n''bold'' text\n{code}\nx = 1\n{/code}"
        )
        assert (workspace.root / "wikis/7/metadata.json").exists()
        assert (workspace.root / "issue_types/5/content.md").exists()
        assert workspace.load_metadata().project_key == "PROJ"
        assert git_client.current_branch() == "main"
        assert not git_client.has_changes()
        assert not workspace.lock_path.exists()

    def test_records_diagnostics(self, initialized: MarkdownMigration, workspace: Workspace) -> None:
        items = stored_items(workspace)

        assert items["PROJ-1"].detected_mode == "backlog"
        assert items["PROJ-1"].changed
        assert "heading_asterisk" in items["PROJ-1"].rules
        assert items["PROJ-3"].detected_mode == "markdown"
        assert not items["PROJ-3"].changed
        assert items["PROJ-1"].input_hash == items["PROJ-1"].output_hash

    def test_include_comments(self, make_migration, workspace: Workspace) -> None:
        result = make_migration().init("PROJ", include_comments=True)

        assert result.total_count == 6
        comment = stored_items(workspace)["PROJ-1#comment-100"]
        assert comment.path == "comments/PROJ-1_comment-100/content.md"
        assert comment.parent_id == 1

    def test_refuses_initialized_workspace(self, initialized: MarkdownMigration) -> None:
        with pytest.raises(WorkspaceError, match="snapshot --append"):
            initialized.init("PROJ")

    def test_unknown_project_releases_lock(self, make_migration, workspace: Workspace) -> None:
        with pytest.raises(ResourceNotFoundError):
            make_migration().init("NOPE")

        assert not workspace.lock_path.exists()


class TestSnapshotAppend:
    """Adding newly created remote items."""

    def test_appends_only_new_items(self, initialized: MarkdownMigration, gateway, workspace: Workspace) -> None:
        gateway.add(
            RemoteDocument(item_type="issue", item_id=4, item_key="PROJ-4", content="''new''"),
        )

        result = initialized.snapshot_append()
        again = initialized.snapshot_append()

        assert result.total_count == 1
        assert result.commits == 1
        assert again.total_count == 0
        assert again.commits == 0
        assert len(stored_items(workspace)) == 6

    def test_requires_init(self, make_migration) -> None:
        with pytest.raises(WorkspaceError):
            make_migration().snapshot_append()


class TestApply:
    """Converting and pushing items."""

    def test_auto_apply(self, initialized: MarkdownMigration, gateway, workspace: Workspace, git_client: GitClient) -> None:
        result = initialized.apply(auto=True)

        assert result.applied == 4
        assert result.skipped == 1
        assert result.status_counts == {"applied": 4, "no_change": 1}
        assert result.commits == 4
        assert gateway.content_of("issue", "PROJ-1") == PROJ_1_CONVERTED
        assert gateway.content_of("issue", "PROJ-3") == "```\ncode\n```\n- [x] done"
        assert (workspace.root / "issues/PROJ-1/content.md").read_text(encoding="utf-8") == PROJ_1_CONVERTED
        assert git_client.current_branch() == "main"
        assert len(branches(git_client, "migrate/apply-*")) == 1

        items = stored_items(workspace)
        assert items["PROJ-1"].applied
        assert items["PROJ-1"].applied_at is not None
        assert not items["PROJ-3"].applied

    def test_second_apply_is_a_no_op(self, initialized: MarkdownMigration, git_client: GitClient) -> None:
        initialized.apply(auto=True)
        head = git_client.run("rev-parse", "HEAD").stdout

        result = initialized.apply(auto=True)

        assert result.commits == 0
        assert result.applied == 0
        assert result.status_counts == {"no_change": 5}
        assert git_client.run("rev-parse", "HEAD").stdout == head
        assert len(branches(git_client, "migrate/apply-*")) == 1

    def test_remote_drift_is_snapshotted(self, initialized: MarkdownMigration, gateway, git_client: GitClient) -> None:
        gateway.set_content("issue", "PROJ-2", "''three''")

        result = initialized.apply(types=["issue"], auto=True)

        assert result.applied == 2
        assert gateway.content_of("issue", "PROJ-2") == "**three**"
        assert "Snapshot issue PROJ-2 (remote changed)" in commit_subjects(git_client)

    def test_renamed_wiki_keeps_its_identity(
        self, initialized: MarkdownMigration, gateway, workspace: Workspace,
    ) -> None:
        gateway.documents[("wiki", "7")].item_key = "Start"

        initialized.apply(types=["wiki"], auto=True)

        items = stored_items(workspace)
        assert "Start" in items
        assert "Home" not in items
        assert '"name": "Start"' in (workspace.root / "wikis/7/metadata.json").read_text(encoding="utf-8")

    def test_dry_run_does_not_push_or_merge(
        self, initialized: MarkdownMigration, gateway, workspace: Workspace, git_client: GitClient,
    ) -> None:
        result = initialized.apply(auto=True, dry_run=True)

        assert result.dry_run
        assert result.applied == 4
        assert result.status_counts["dry_run"] == 4
        assert gateway.pushes == []
        assert git_client.current_branch() == "main"
        assert len(branches(git_client, "migrate/dry-run-*")) == 1
        assert not stored_items(workspace)["PROJ-1"].applied
        assert (workspace.root / "issues/PROJ-1/content.md").read_text(encoding="utf-8").startswith("* Title")

    def test_reject_and_skip(self, make_migration, workspace: Workspace) -> None:
        migration = make_migration(Decision.REJECT, Decision.SKIP)
        migration.init("PROJ")

        result = migration.apply()

        assert result.applied == 2
        assert result.status_counts == {"rejected": 1, "skipped": 1, "no_change": 1, "applied": 2}
        calls = migration.decide.calls
        assert [key for _, key, _ in calls] == ["PROJ-1", "PROJ-2", "Home", "Bug"]
        assert "-* Title" in calls[0][2]
        assert "+# Title" in calls[0][2]
        assert not stored_items(workspace)["PROJ-1"].applied

    def test_quit_stops_and_resumes(self, make_migration, gateway) -> None:
        migration = make_migration(Decision.APPROVE, Decision.QUIT)
        migration.init("PROJ")

        result = migration.apply()

        assert result.quit
        assert result.applied == 1
        assert gateway.content_of("issue", "PROJ-2") == "''one'' and %%two%%"

        resumed = migration.apply(auto=True)

        assert resumed.applied == 3
        assert resumed.status_counts["no_change"] == 2

    def test_quit_before_any_change_removes_branch(self, make_migration, git_client: GitClient) -> None:
        migration = make_migration(Decision.QUIT)
        migration.init("PROJ")

        result = migration.apply()

        assert result.quit
        assert result.commits == 0
        assert git_client.current_branch() == "main"
        assert branches(git_client, "migrate/*") == []

    def test_failed_push_is_isolated(self, initialized: MarkdownMigration, gateway, workspace: Workspace) -> None:
        gateway.fail_push.add("PROJ-1")

        result = initialized.apply(auto=True)

        assert result.applied == 3
        assert result.status_counts["error"] == 1
        assert len(result.errors) == 1
        item = stored_items(workspace)["PROJ-1"]
        assert "boom" in item.apply_error
        assert not item.applied
        assert gateway.content_of("issue", "PROJ-1").startswith("* Title")
        errors = [entry for entry in AuditLog(workspace.logs_path).read_all() if entry.status == "error"]
        assert [entry.item_key for entry in errors] == ["PROJ-1"]

    def test_without_branch(self, initialized: MarkdownMigration, git_client: GitClient) -> None:
        result = initialized.apply(types=["wiki"], auto=True, use_branch=False)

        assert result.applied == 1
        assert branches(git_client, "migrate/*") == []
        assert commit_subjects(git_client)[0] == "Apply wiki Home"

    def test_locked_workspace(self, initialized: MarkdownMigration, workspace: Workspace) -> None:
        workspace.lock_path.write_text("{}", encoding="utf-8")

        with pytest.raises(LockError):
            initialized.apply(auto=True)
        assert workspace.lock_path.exists()

        result = initialized.apply(types=["wiki"], auto=True, force_lock=True)
        assert result.applied == 1
        assert not workspace.lock_path.exists()

    def test_requires_init(self, make_migration) -> None:
        with pytest.raises(WorkspaceError):
            make_migration().apply(auto=True)

    def test_branch_name(self) -> None:
        assert working_branch_name("apply", datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)) == (
            "migrate/apply-20240102-030405"
        )


class TestRollback:
    """Restoring applied items."""

    def test_restores_first_snapshot(
        self, initialized: MarkdownMigration, gateway, workspace: Workspace,
    ) -> None:
        initialized.apply(auto=True)

        result = initialized.rollback(auto=True)

        assert result.rolled_back == 4
        assert result.status_counts == {"rolled_back": 4}
        assert gateway.content_of("issue", "PROJ-1") == "* Title\n''bold'' text\n{code}\nx = 1\n{/code}"
        item = stored_items(workspace)["PROJ-1"]
        assert not item.applied
        assert item.rollback_at is not None
        assert initialized.rollback(auto=True).total_count == 0

    def test_restores_exact_bytes(
        self, make_migration, gateway, workspace: Workspace,
    ) -> None:
        gateway.set_content("issue", "PROJ-2", "''one''\r\n%%two%%")
        migration = make_migration()
        migration.init("PROJ")
        migration.apply(types=["issue"], auto=True)

        migration.rollback(targets=["PROJ-2"], auto=True)

        assert gateway.content_of("issue", "PROJ-2") == "''one''\r\n%%two%%"
        assert (workspace.root / "issues/PROJ-2/content.md").read_bytes() == b"''one''\r\n%%two%%"

    def test_rollback_after_drift_restores_init_snapshot(
        self, initialized: MarkdownMigration, gateway,
    ) -> None:
        """The first snapshot wins over a later drift snapshot."""
        original = gateway.content_of("issue", "PROJ-2")
        gateway.set_content("issue", "PROJ-2", "''three''")
        initialized.apply(types=["issue"], auto=True)

        result = initialized.rollback(targets=["PROJ-2"], auto=True)

        assert result.rolled_back == 1
        assert gateway.content_of("issue", "PROJ-2") == original
        assert gateway.content_of("issue", "PROJ-2") != "''three''"

    def test_targets_by_key_or_id(self, initialized: MarkdownMigration, gateway) -> None:
        initialized.apply(auto=True)

        result = initialized.rollback(targets=["PROJ-2", "7"], auto=True)

        assert result.rolled_back == 2
        assert gateway.content_of("wiki", "7") == "* Home\n#contents\n''welcome''"
        assert gateway.content_of("issue", "PROJ-1") == PROJ_1_CONVERTED

    def test_rejected_rollback(self, make_migration, gateway) -> None:
        migration = make_migration()
        migration.init("PROJ")
        migration.apply(types=["wiki"], auto=True)
        migration.decide.answers = [Decision.REJECT]

        result = migration.rollback()

        assert result.rolled_back == 0
        assert result.status_counts == {"rejected": 1}
        assert gateway.content_of("wiki", "7") == "# Home\n[toc]\n**welcome**"


class TestClean:
    """Removing workspace contents."""

    def test_keeps_only_metadata(self, initialized: MarkdownMigration, workspace: Workspace) -> None:
        result = initialized.clean(force=True)

        assert result.success
        assert sorted(path.name for path in workspace.root.iterdir()) == ["logs.jsonl", "metadata.json"]
        entries = AuditLog(workspace.logs_path).read_all()
        assert [entry.status for entry in entries] == ["cleanup"]

    def test_declined_confirmation(self, make_migration, workspace: Workspace) -> None:
        migration = make_migration(confirm_clean=lambda message: False)
        migration.init("PROJ")

        result = migration.clean()

        assert not result.success
        assert workspace.items_path.exists()

    def test_init_after_clean(self, initialized: MarkdownMigration) -> None:
        initialized.clean(force=True)

        assert initialized.init("PROJ").total_count == 5

    def test_requires_init(self, make_migration) -> None:
        with pytest.raises(WorkspaceError):
            make_migration().clean(force=True)
