"""Git client for the migration workspace.

The workspace directory is a git working tree used as an audit trail and
point-in-time content store. Every content mutation is committed, and
rollback restores a file from the first commit that touched it.
"""

import subprocess
from pathlib import Path

from backlog_migrate import config

logger = config.logger


class GitCommandError(Exception):
    """Exception raised when a git command fails."""

    def __init__(
        self,
        command: str,
        returncode: int,
        stdout: str,
        stderr: str,
        message: str = "git command failed",
    ) -> None:
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.message = f"{message} ({command}): {stderr.strip()}" if stderr.strip() else f"{message} ({command})"
        super().__init__(self.message)


class GitClient:
    """Runs git commands inside one workspace directory."""

    def __init__(
        self,
        repo_dir: Path,
        executable: str = "git",
        author_name: str = "backlog-migrate",
        author_email: str = "backlog-migrate@localhost",
    ) -> None:
        """Initialize the git client.

        Args:
            repo_dir: Root of the working tree
            executable: Git executable to run
            author_name: Name recorded on commits
            author_email: Email recorded on commits

        """
        self.repo_dir = Path(repo_dir)
        self.executable = executable
        self.author_name = author_name
        self.author_email = author_email

    def run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[bytes]:
        """Run a git command in the working tree.

        Output is captured as bytes so file content read from history keeps
        its exact line endings.

        Args:
            *args: Git arguments
            check: Raise GitCommandError on a non-zero exit status

        Returns:
            The completed process

        Raises:
            GitCommandError: If the command fails and ``check`` is set, or the
                executable cannot be started

        """
        cmd = [
            self.executable,
            "-c", f"user.name={self.author_name}",
            "-c", f"user.email={self.author_email}",
            "-c", "commit.gpgsign=false",
            *args,
        ]
        command = " ".join(["git", *args])
        logger.debug("Executing git command: %s", command)

        try:
            result = subprocess.run(
                cmd,
                cwd=self.repo_dir,
                capture_output=True,
                check=False,
            )
        except OSError as e:
            raise GitCommandError(command, -1, "", str(e), "cannot run git") from e

        if check and result.returncode != 0:
            raise GitCommandError(
                command=command,
                returncode=result.returncode,
                stdout=result.stdout.decode("utf-8", errors="replace"),
                stderr=result.stderr.decode("utf-8", errors="replace"),
            )
        return result

    def _output(self, *args: str) -> str:
        return self.run(*args).stdout.decode("utf-8", errors="replace").strip()

    def is_repository(self) -> bool:
        """Return True if the workspace directory is itself a repository root."""
        return (self.repo_dir / ".git").exists()

    def init(self, base_branch: str) -> bool:
        """Initialize a repository unless one already exists.

        Args:
            base_branch: Name of the initial branch of a new repository

        Returns:
            True if a repository was created

        """
        if self.is_repository():
            return False
        self.run("init", "--quiet")
        self.run("symbolic-ref", "HEAD", f"refs/heads/{base_branch}")
        logger.debug("Initialized git repository in %s on %s", self.repo_dir, base_branch)
        return True

    def add(self, *paths: str) -> None:
        """Stage the given workspace relative paths."""
        if paths:
            self.run("add", "--all", "--", *paths)

    def has_staged_changes(self) -> bool:
        return self.run("diff", "--cached", "--quiet", check=False).returncode != 0

    def commit(self, message: str) -> bool:
        """Commit staged changes.

        Returns:
            True if a commit was created, False if nothing was staged

        """
        if not self.has_staged_changes():
            return False
        self.run("commit", "--quiet", "--no-verify", "-m", message)
        return True

    def has_changes(self) -> bool:
        """Return True if the working tree has uncommitted changes."""
        return bool(self._output("status", "--porcelain"))

    def has_commits(self) -> bool:
        return self.run("rev-parse", "--verify", "--quiet", "HEAD", check=False).returncode == 0

    def current_branch(self) -> str:
        """Name of the checked out branch."""
        return self._output("symbolic-ref", "--short", "HEAD")

    def branch_exists(self, name: str) -> bool:
        return (
            self.run("rev-parse", "--verify", "--quiet", f"refs/heads/{name}", check=False).returncode
            == 0
        )

    def checkout(self, name: str, create: bool = False, start_point: str | None = None) -> None:
        """Check out a branch, optionally creating it from a start point."""
        if create:
            args = ["checkout", "--quiet", "-b", name]
            if start_point:
                args.append(start_point)
            self.run(*args)
        else:
            self.run("checkout", "--quiet", name)

    def first_commit_for(self, path: str) -> str | None:
        """Hash of the first commit that touched a path, None if there is none."""
        result = self.run("log", "--reverse", "--format=%H", "--", path, check=False)
        if result.returncode != 0:
            return None
        lines = result.stdout.decode("utf-8").split()
        return lines[0] if lines else None

    def show_file(self, commit: str, path: str) -> str:
        """Content of a path at a commit.

        Raises:
            GitCommandError: If the path does not exist at that commit

        """
        return self.run("show", f"{commit}:{path}").stdout.decode("utf-8")

    def merge(self, branch: str, message: str) -> None:
        """Merge a branch into the current branch, always creating a merge commit."""
        self.run("merge", "--no-ff", "--quiet", "-m", message, branch)

    def delete_branch(self, name: str, force: bool = False) -> None:
        self.run("branch", "-D" if force else "-d", name)
