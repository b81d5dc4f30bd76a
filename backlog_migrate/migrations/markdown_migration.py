"""Snapshot, apply, rollback and clean for a migration workspace.

The workspace is a git working tree holding one content file per remote
item. ``init`` and ``snapshot --append`` record the raw remote content,
``apply`` converts Backlog notation to Markdown and pushes it back item by
item, and ``rollback`` restores the content of the first commit that
touched an item's file. State is persisted and committed after every item,
so an interrupted run can simply be started again.
"""

import shutil
from collections.abc import Callable, Collection, Iterator
from datetime import UTC, datetime

from backlog_migrate import config
from backlog_migrate.clients.content_gateway import ContentGateway, ProjectInfo, RemoteDocument
from backlog_migrate.clients.exceptions import ClientError
from backlog_migrate.clients.git_client import GitClient, GitCommandError
from backlog_migrate.display import ProgressTracker, confirm, prompt_decision
from backlog_migrate.models.component_results import ComponentResult
from backlog_migrate.models.migrate_item import MigrateItem, WorkspaceMetadata, utc_now
from backlog_migrate.models.migration_error import MigrationError, WorkspaceError
from backlog_migrate.settings import Settings
from backlog_migrate.type_definitions import ID_KEYED_TYPES, AuditAction, AuditStatus, Decision
from backlog_migrate.utils import lock_manager
from backlog_migrate.utils.audit_log import AuditLog
from backlog_migrate.utils.change_detector import content_hash, has_drifted
from backlog_migrate.utils.item_store import ItemStore
from backlog_migrate.utils.markdown_converter import ConversionOptions, ConversionResult, MarkdownConverter
from backlog_migrate.utils.text_diff import unified_diff
from backlog_migrate.utils.workspace import (
    GITIGNORE_FILE,
    ITEMS_FILE,
    LOCK_FILE,
    METADATA_FILE,
    Workspace,
    content_path,
)

logger = config.logger

type DecisionCallback = Callable[[str, str, str], Decision]

# Failures that are recorded against a single item instead of aborting the run
ITEM_ERRORS = (ClientError, GitCommandError, MigrationError, OSError, ValueError)

BRANCH_PREFIX = "migrate"


def auto_approve(item_type: str, item_key: str, diff: str) -> Decision:
    """Decision callback used in full-auto mode."""
    return Decision.APPROVE


def working_branch_name(mode: str, now: datetime | None = None) -> str:
    """Name of a dedicated branch such as ``migrate/apply-20240101-120000``."""
    now = now or datetime.now(tz=UTC)
    return f"{BRANCH_PREFIX}/{mode}-{now:%Y%m%d-%H%M%S}"


class MarkdownMigration:
    """Runs migration commands against one workspace directory."""

    def __init__(
        self,
        workspace: Workspace,
        gateway: ContentGateway | None = None,
        settings: Settings | None = None,
        git: GitClient | None = None,
        converter: MarkdownConverter | None = None,
        decide: DecisionCallback | None = None,
        confirm_clean: Callable[[str], bool] | None = None,
    ) -> None:
        """Initialize the migration.

        Args:
            workspace: Workspace to operate on
            gateway: Remote content gateway, required by init, snapshot, apply
                and rollback
            settings: Settings, defaults to the configured settings
            git: Git client for the workspace
            converter: Notation converter
            decide: Callback asked for every proposed change unless running
                in full-auto mode, defaults to an interactive prompt
            confirm_clean: Callback confirming ``clean``, defaults to an
                interactive prompt

        """
        self.workspace = workspace
        self.gateway = gateway
        self.settings = settings or config.settings
        self.git = git or GitClient(
            workspace.root,
            executable=self.settings.git_executable,
            author_name=self.settings.git_author_name,
            author_email=self.settings.git_author_email,
        )
        self.converter = converter or MarkdownConverter()
        self.decide = decide or prompt_decision
        self.confirm_clean = confirm_clean or confirm
        self.store = ItemStore(workspace.items_path, self.settings.max_line_bytes)
        self.audit = AuditLog(workspace.logs_path, self.settings.max_line_bytes)

    # ---------------------------------------------------------------- helpers

    def _require_gateway(self) -> ContentGateway:
        if self.gateway is None:
            msg = "No remote content gateway configured"
            raise MigrationError(msg)
        return self.gateway

    def _acquire(self, force: bool = False) -> lock_manager.WorkspaceLock:
        return lock_manager.acquire(self.workspace.lock_path, force=force)

    def _options(self, item: MigrateItem, attachment_names: Collection[str], force: bool) -> ConversionOptions:
        return ConversionOptions(
            force=force,
            line_break=self.settings.line_break,
            item_type=item.item_type,
            item_key=item.item_key,
            attachment_names=frozenset(attachment_names),
            unsafe_rules=frozenset(self.settings.unsafe_rules),
        )

    def _convert(
        self, item: MigrateItem, content: str, attachment_names: Collection[str], force: bool,
    ) -> ConversionResult:
        """Convert content and record the diagnostics on the item."""
        conversion = self.converter.convert(content, self._options(item, attachment_names, force))
        item.detected_mode = conversion.mode
        item.score = conversion.score
        item.rules = list(conversion.rules)
        item.warnings = dict(conversion.warnings)
        item.warning_lines = {name: list(lines) for name, lines in conversion.warning_lines.items()}
        item.changed = conversion.changed
        return conversion

    def _commit(self, message: str, *paths: str) -> bool:
        self.git.add(*paths)
        return self.git.commit(message)

    def _record(
        self,
        result: ComponentResult,
        action: AuditAction,
        status: AuditStatus,
        item: MigrateItem,
        message: str = "",
    ) -> None:
        self.audit.record(action, status, item, message)
        result.count_status(status)

    # ------------------------------------------------------------- snapshots

    def _remote_documents(self, project: ProjectInfo, include_comments: bool) -> Iterator[RemoteDocument]:
        """Yield every remote item of a project: issues (and comments), wikis, issue types."""
        gateway = self._require_gateway()
        for issue in gateway.list_issues(project):
            yield issue
            if include_comments:
                yield from gateway.list_comments(issue)
        yield from gateway.list_wikis(project)
        yield from gateway.list_issue_types(project)

    def _snapshot_item(self, document: RemoteDocument, force_convert: bool) -> MigrateItem:
        """Create an item from remote content and write its files."""
        item = MigrateItem(
            item_type=document.item_type,
            item_id=document.item_id,
            parent_id=document.parent_id,
            item_key=document.item_key,
            url=document.url,
            path=content_path(document.item_type, document.item_key, document.item_id),
            fetched_at=utc_now(),
            updated_at=document.updated_at,
        )
        self.workspace.write_content(item, document.content)
        self.workspace.write_sidecar(item)
        self._convert(item, document.content, document.attachment_names, force_convert)
        item.input_hash = item.output_hash = content_hash(document.content)
        return item

    def _item_paths(self, item: MigrateItem) -> list[str]:
        paths = [item.path]
        if item.item_type in ID_KEYED_TYPES:
            paths.append(self.workspace.sidecar_path(item))
        return paths

    def _snapshot(
        self,
        project: ProjectInfo,
        items: list[MigrateItem],
        include_comments: bool,
        force_convert: bool,
    ) -> list[MigrateItem]:
        """Snapshot remote items whose identity is not yet in the workspace."""
        known = {item.identity for item in items}
        added: list[MigrateItem] = []
        with ProgressTracker(f"Snapshotting {project.key}") as progress:
            for document in self._remote_documents(project, include_comments):
                item = MigrateItem(
                    item_type=document.item_type,
                    item_id=document.item_id,
                    item_key=document.item_key,
                    path="",
                )
                if item.identity in known:
                    continue
                snapshot = self._snapshot_item(document, force_convert)
                known.add(snapshot.identity)
                added.append(snapshot)
                progress.increment(description=f"{document.item_type} {document.item_key}")
        return added

    def init(
        self,
        project_key: str,
        include_comments: bool = False,
        force_convert: bool = False,
        force_lock: bool = False,
    ) -> ComponentResult:
        """Create the workspace and snapshot every remote item of a project.

        Args:
            project_key: Backlog project key
            include_comments: Also snapshot issue comments
            force_convert: Convert documents whose dialect is undecided
            force_lock: Remove an existing lock first

        Returns:
            ComponentResult with the number of snapshotted items

        Raises:
            WorkspaceError: If the workspace already holds items
            LockError: If the workspace is locked
            ClientError: If the project cannot be fetched

        """
        gateway = self._require_gateway()
        self.workspace.create()
        with self._acquire(force_lock):
            if self.store.read_if_exists():
                msg = f"Workspace {self.workspace.root} already holds items, use 'snapshot --append' to add new ones"
                raise WorkspaceError(msg)

            project = gateway.get_project(project_key)

            if self.git.init(self.settings.base_branch):
                base_branch = self.settings.base_branch
            else:
                base_branch = self.git.current_branch()
                logger.info("Reusing existing repository on branch %s", base_branch)
            self.workspace.ensure_gitignore()

            metadata = WorkspaceMetadata(
                project_key=project.key,
                project_name=project.name,
                project_id=project.id,
                base_branch=base_branch,
                include_comments=include_comments,
                force_convert=force_convert,
            )
            self.workspace.save_metadata(metadata)

            items = self._snapshot(project, [], include_comments, force_convert)
            self.store.write_all(items)

            paths = [GITIGNORE_FILE, METADATA_FILE, ITEMS_FILE]
            for item in items:
                paths.extend(self._item_paths(item))
            committed = self._commit(f"Snapshot {project.key}: {len(items)} items", *paths)

        message = f"Initialized workspace for {project.key} with {len(items)} items"
        logger.success(message)
        return ComponentResult(
            success=True, message=message, total_count=len(items), commits=int(committed),
        )

    def snapshot_append(self, force_lock: bool = False) -> ComponentResult:
        """Snapshot remote items created since the last snapshot.

        Items already in the workspace, matched by identity, are left alone.

        Raises:
            WorkspaceError: If the workspace is not initialized
            LockError: If the workspace is locked

        """
        gateway = self._require_gateway()
        metadata = self.workspace.load_metadata()
        with self._acquire(force_lock):
            items = self.store.read_if_exists()
            project = gateway.get_project(metadata.project_key)
            added = self._snapshot(project, items, metadata.include_comments, metadata.force_convert)

            committed = False
            if added:
                items.extend(added)
                self.store.write_all(items)
                metadata.updated_at = utc_now()
                self.workspace.save_metadata(metadata)
                paths = [METADATA_FILE, ITEMS_FILE]
                for item in added:
                    paths.extend(self._item_paths(item))
                committed = self._commit(f"Append snapshot {project.key}: {len(added)} items", *paths)

        message = f"Added {len(added)} new items ({len(items)} total)"
        logger.success(message)
        return ComponentResult(
            success=True, message=message, total_count=len(added), commits=int(committed),
        )

    # ------------------------------------------------------------------ apply

    def _enter_branch(self, mode: str) -> tuple[str, bool]:
        """Switch to a dedicated working branch for this run.

        A run that is already on a branch of the same mode keeps using it.

        Returns:
            The working branch and whether it was created by this run

        """
        current = self.git.current_branch()
        if current.startswith(f"{BRANCH_PREFIX}/{mode}-"):
            logger.info("Reusing working branch %s", current)
            return current, False

        name = base_name = working_branch_name(mode)
        suffix = 1
        while self.git.branch_exists(name):
            suffix += 1
            name = f"{base_name}-{suffix}"
        self.git.checkout(name, create=True)
        logger.info("Working on branch %s", name)
        return name, True

    def _leave_branch(
        self,
        branch: str,
        created: bool,
        original: str,
        base: str,
        commits: int,
        dry_run: bool,
    ) -> None:
        """Merge the working branch back and return to the original branch.

        Dry-run branches are never merged. A branch without commits that was
        created by this run is deleted.
        """
        if commits == 0:
            if created:
                self.git.checkout(original)
                self.git.delete_branch(branch, force=True)
            return

        if not dry_run and branch != base and self.git.branch_exists(base):
            self.git.checkout(base)
            self.git.merge(branch, f"Merge {branch}")
            logger.info("Merged %s into %s", branch, base)

        if self.git.current_branch() != original:
            self.git.checkout(original)

    def _record_item_error(
        self,
        result: ComponentResult,
        action: AuditAction,
        item: MigrateItem,
        items: list[MigrateItem],
        error: Exception,
    ) -> int:
        """Record a per-item failure on the item and in the audit log.

        Returns:
            Number of commits made while persisting the failure

        """
        message = str(error)
        logger.error("%s failed for %s %s: %s", action.capitalize(), item.item_type, item.item_key, message)
        if action == "apply":
            item.apply_error = message
        else:
            item.rollback_error = message
        self._record(result, action, "error", item, message)
        result.skipped += 1
        result.add_error(f"{item.item_type} {item.item_key}: {message}")
        try:
            self.store.write_all(items)
            return int(self._commit(f"Record {action} error for {item.item_type} {item.item_key}", ITEMS_FILE))
        except ITEM_ERRORS:
            logger.exception("Could not persist the error state of %s", item.item_key)
            return 0

    def _refresh_snapshot(self, item: MigrateItem, items: list[MigrateItem], remote: RemoteDocument) -> int:
        """Persist drift and renames detected in the remote content.

        Returns:
            Number of commits made

        """
        commits = 0
        if has_drifted(remote.content, item.input_hash):
            logger.notice("Remote content of %s %s changed since the last snapshot", item.item_type, item.item_key)
            self.workspace.write_content(item, remote.content)
            item.input_hash = item.output_hash = content_hash(remote.content)
            item.updated_at = remote.updated_at
            item.fetched_at = utc_now()
            self.store.write_all(items)
            commits += self._commit(
                f"Snapshot {item.item_type} {item.item_key} (remote changed)", item.path, ITEMS_FILE,
            )

        if item.item_type in ID_KEYED_TYPES and (remote.item_key != item.item_key or remote.url != item.url):
            logger.info("%s %s is now named %s", item.item_type, item.item_key, remote.item_key)
            item.item_key = remote.item_key
            item.url = remote.url
            sidecar = self.workspace.write_sidecar(item) or item.path
            self.store.write_all(items)
            commits += self._commit(
                f"Rename {item.item_type} {item.item_id} to {item.item_key}", sidecar, ITEMS_FILE,
            )
        return commits

    def _apply_item(
        self,
        item: MigrateItem,
        items: list[MigrateItem],
        decide: DecisionCallback,
        dry_run: bool,
        force_convert: bool,
        result: ComponentResult,
    ) -> tuple[Decision | None, int]:
        """Convert, confirm and push one item.

        Returns:
            The decision taken (None when nothing needed deciding) and the
            number of commits made

        """
        gateway = self._require_gateway()
        remote = gateway.fetch_current(item)
        commits = self._refresh_snapshot(item, items, remote)

        conversion = self._convert(item, remote.content, remote.attachment_names, force_convert)
        if conversion.output == remote.content:
            self._record(result, "apply", "no_change", item)
            result.skipped += 1
            return None, commits

        diff = unified_diff(remote.content, conversion.output, f"remote/{item.path}", f"converted/{item.path}")
        decision = decide(item.item_type, item.item_key, diff)
        match decision:
            case Decision.QUIT:
                logger.info("Stopping at %s %s", item.item_type, item.item_key)
                return decision, commits
            case Decision.REJECT:
                self._record(result, "apply", "rejected", item)
                result.skipped += 1
                return decision, commits
            case Decision.SKIP:
                self._record(result, "apply", "skipped", item)
                result.skipped += 1
                return decision, commits

        if not dry_run:
            updated_at = gateway.push(item, conversion.output)
            item.updated_at = updated_at or item.updated_at
            item.input_hash = content_hash(conversion.output)
            item.applied = True
            item.applied_at = utc_now()
            item.apply_error = None
        self.workspace.write_content(item, conversion.output)
        item.output_hash = content_hash(conversion.output)
        self.store.write_all(items)

        label = "Dry run" if dry_run else "Apply"
        commits += self._commit(f"{label} {item.item_type} {item.item_key}", item.path, ITEMS_FILE)
        self._record(result, "apply", "dry_run" if dry_run else "applied", item)
        result.applied += 1
        return decision, commits

    def apply(
        self,
        types: Collection[str] | None = None,
        auto: bool = False,
        dry_run: bool = False,
        force_lock: bool = False,
        use_branch: bool = True,
    ) -> ComponentResult:
        """Convert items and push the converted content.

        Args:
            types: Item types to process, all when empty
            auto: Approve every change without asking
            dry_run: Convert and commit locally without pushing
            force_lock: Remove an existing lock first
            use_branch: Work on a dedicated branch merged back at the end

        Returns:
            ComponentResult with applied and skipped counts

        Raises:
            WorkspaceError: If the workspace is not initialized
            LockError: If the workspace is locked

        """
        metadata = self.workspace.load_metadata()
        decide = auto_approve if auto else self.decide
        result = ComponentResult(dry_run=dry_run)

        with self._acquire(force_lock):
            items = self.store.read_if_exists()
            original = self.git.current_branch()
            branch, created = self._enter_branch("dry-run" if dry_run else "apply") if use_branch else ("", False)
            commits = 0
            try:
                for item in items:
                    if types and item.item_type not in types:
                        continue
                    result.total_count += 1
                    try:
                        decision, item_commits = self._apply_item(
                            item, items, decide, dry_run, metadata.force_convert, result,
                        )
                    except ITEM_ERRORS as e:
                        commits += self._record_item_error(result, "apply", item, items, e)
                        continue
                    commits += item_commits
                    if decision is Decision.QUIT:
                        result.quit = True
                        break
            finally:
                result.commits = commits
                if use_branch:
                    self._leave_branch(branch, created, original, metadata.base_branch, commits, dry_run)

        result.success = True
        result.message = f"Applied: {result.applied}, Skipped: {result.skipped}"
        logger.success(result.message)
        return result

    # --------------------------------------------------------------- rollback

    def _rollback_item(
        self,
        item: MigrateItem,
        items: list[MigrateItem],
        decide: DecisionCallback,
        result: ComponentResult,
    ) -> tuple[Decision | None, int]:
        """Restore one item to its pristine snapshot and push it."""
        commit = self.git.first_commit_for(item.path)
        if commit is None:
            self._record(result, "rollback", "no_snapshot", item)
            result.skipped += 1
            return None, 0

        pristine = self.git.show_file(commit, item.path)
        gateway = self._require_gateway()
        remote = gateway.fetch_current(item)
        path = self.workspace.absolute(item.path)
        on_disk = self.workspace.read_content(item) if path.exists() else None

        if pristine == remote.content and pristine == on_disk:
            self._record(result, "rollback", "no_change", item)
            result.skipped += 1
            return None, 0

        diff = unified_diff(remote.content, pristine, f"remote/{item.path}", f"snapshot/{item.path}")
        decision = decide(item.item_type, item.item_key, diff)
        match decision:
            case Decision.QUIT:
                return decision, 0
            case Decision.REJECT:
                self._record(result, "rollback", "rejected", item)
                result.skipped += 1
                return decision, 0
            case Decision.SKIP:
                self._record(result, "rollback", "skipped", item)
                result.skipped += 1
                return decision, 0

        updated_at = gateway.push(item, pristine)
        self.workspace.write_content(item, pristine)
        item.updated_at = updated_at or item.updated_at
        item.input_hash = item.output_hash = content_hash(pristine)
        item.applied = False
        item.rollback_at = utc_now()
        item.rollback_error = None
        self.store.write_all(items)
        commits = int(self._commit(f"Rollback {item.item_type} {item.item_key}", item.path, ITEMS_FILE))
        self._record(result, "rollback", "rolled_back", item)
        result.rolled_back += 1
        return decision, commits

    def rollback(
        self,
        types: Collection[str] | None = None,
        targets: Collection[str] | None = None,
        auto: bool = False,
        force_lock: bool = False,
    ) -> ComponentResult:
        """Restore applied items to the content of their first snapshot.

        Args:
            types: Item types to process, all when empty
            targets: Item keys or ids to process, all when empty
            auto: Approve every change without asking
            force_lock: Remove an existing lock first

        Returns:
            ComponentResult with rolled back and skipped counts

        Raises:
            WorkspaceError: If the workspace is not initialized
            LockError: If the workspace is locked

        """
        self.workspace.load_metadata()
        decide = auto_approve if auto else self.decide
        result = ComponentResult()
        wanted = set(targets or ())

        with self._acquire(force_lock):
            items = self.store.read_if_exists()
            for item in items:
                if not item.applied:
                    continue
                if types and item.item_type not in types:
                    continue
                if wanted and item.item_key not in wanted and str(item.item_id) not in wanted:
                    continue
                result.total_count += 1
                try:
                    decision, commits = self._rollback_item(item, items, decide, result)
                except ITEM_ERRORS as e:
                    result.commits += self._record_item_error(result, "rollback", item, items, e)
                    continue
                result.commits += commits
                if decision is Decision.QUIT:
                    result.quit = True
                    break

        result.success = True
        result.message = f"Rolled back: {result.rolled_back}, Skipped: {result.skipped}"
        logger.success(result.message)
        return result

    # ------------------------------------------------------------------ clean

    def clean(self, force: bool = False) -> ComponentResult:
        """Remove every workspace entry except the metadata.

        The git repository is removed too. A ``cleanup`` entry is written to
        a fresh audit log afterwards.

        Args:
            force: Skip the confirmation

        Raises:
            WorkspaceError: If the workspace is not initialized
            LockError: If the workspace is locked

        """
        self.workspace.load_metadata()
        prompt = f"Remove all contents of {self.workspace.root} except {METADATA_FILE}?"
        if not force and not self.confirm_clean(prompt):
            logger.info("Clean aborted")
            return ComponentResult(success=False, message="Clean aborted")

        removed = 0
        with self._acquire():
            for entry in sorted(self.workspace.root.iterdir()):
                if entry.name in (METADATA_FILE, LOCK_FILE):
                    continue
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
                removed += 1
            self.audit.record("clean", "cleanup", message=f"Removed {removed} entries from {self.workspace.root}")

        message = f"Removed {removed} entries"
        logger.success(message)
        return ComponentResult(success=True, message=message, total_count=removed)

