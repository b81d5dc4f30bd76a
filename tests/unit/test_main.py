"""Tests for the command line interface."""

import argparse
from pathlib import Path

import pytest

from backlog_migrate import config
from backlog_migrate.main import build_parser, item_types, main, split_csv
from backlog_migrate.models.migrate_item import MigrateItem, WorkspaceMetadata
from backlog_migrate.utils.audit_log import AuditLog
from backlog_migrate.utils.item_store import ItemStore
from backlog_migrate.utils.workspace import Workspace

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def restore_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Undo settings changes made by ``--dir`` and ``--log-level``."""
    monkeypatch.setattr(config.settings, "workspace_dir", config.settings.workspace_dir)
    monkeypatch.setattr(config.settings, "log_level", config.settings.log_level)


@pytest.fixture
def initialized(tmp_path: Path) -> Workspace:
    workspace = Workspace(tmp_path / "ws")
    workspace.create()
    workspace.save_metadata(WorkspaceMetadata(project_key="PROJ", project_name="Project"))
    item = MigrateItem(
        item_type="issue",
        item_id=1,
        item_key="PROJ-1",
        path="issues/PROJ-1/content.md",
        changed=True,
    )
    ItemStore(workspace.items_path).write_all([item])
    AuditLog(workspace.logs_path).record("apply", "applied", item)
    return workspace


class TestArgumentParsing:
    """Option parsing and validation."""

    def test_split_csv(self) -> None:
        assert split_csv(" PROJ-1, ,7,") == ["PROJ-1", "7"]

    def test_item_types(self) -> None:
        assert item_types("issue,wiki") == ["issue", "wiki"]
        with pytest.raises(argparse.ArgumentTypeError, match="unknown item type"):
            item_types("issue,page")

    def test_apply_options(self) -> None:
        args = build_parser().parse_args(["apply", "--auto", "--types", "comment", "--no-branch"])

        assert args.command == "apply"
        assert args.auto
        assert args.types == ["comment"]
        assert args.use_branch is False
        assert args.dry_run is False

    def test_rollback_targets(self) -> None:
        args = build_parser().parse_args(["rollback", "--targets", "PROJ-1,7"])

        assert args.targets == ["PROJ-1", "7"]
        assert args.types is None

    def test_global_options(self) -> None:
        args = build_parser().parse_args(["--dir", "ws", "--log-level", "debug", "status"])

        assert args.dir == "ws"
        assert args.log_level == "DEBUG"

    def test_invalid_types_exit_with_usage_error(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["apply", "--types", "bogus"])

        assert exc_info.value.code == 2

    def test_snapshot_requires_append(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["snapshot"])


class TestMain:
    """Running commands end to end without a Backlog connection."""

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([]) == 1
        assert "usage:" in capsys.readouterr().out

    def test_status(self, initialized: Workspace, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["--dir", str(initialized.root), "status"]) == 0

        output = capsys.readouterr().out
        assert "PROJ" in output
        assert "issue" in output

    def test_list(self, initialized: Workspace, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["--dir", str(initialized.root), "list"]) == 0
        assert "PROJ-1" in capsys.readouterr().out

    def test_logs(self, initialized: Workspace, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["--dir", str(initialized.root), "logs", "--all"]) == 0
        assert "PROJ-1" in capsys.readouterr().out

    @pytest.mark.parametrize("command", [["status"], ["list"], ["apply", "--auto"], ["snapshot", "--append"]])
    def test_uninitialized_workspace_fails(self, tmp_path: Path, command: list[str]) -> None:
        assert main(["--dir", str(tmp_path / "empty"), *command]) == 1

    def test_missing_config_file_fails(self, tmp_path: Path) -> None:
        assert main(["--config", str(tmp_path / "missing.yaml"), "status"]) == 1
