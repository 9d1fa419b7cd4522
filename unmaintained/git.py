"""git subprocess wrappers used by the repository cache."""

import logging
import os
import subprocess
import tomllib
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

# Make credential prompts fail immediately instead of hanging
NONINTERACTIVE_ENV = {
    "GCM_INTERACTIVE": "never",
    "GIT_ASKPASS": "echo",
    "GIT_TERMINAL_PROMPT": "0",
}

# `git status --porcelain` in a no-checkout clone lists every file as deleted
DELETED_PREFIX = "D  "


class GitError(Exception):
    """A git command exited unsuccessfully."""

    def __init__(self, args: list[str], stderr: str):
        self.command = ["git", *args]
        self.stderr = stderr
        super().__init__(f"`git {' '.join(args)}` failed: {stderr.strip()}")


def is_missing_remote_branch(stderr: str) -> bool:
    """Check whether git reported that the requested remote branch is gone.

    This happens when a fetch names a branch that was renamed or deleted
    upstream after the clone was made.
    """
    return "couldn't find remote ref" in stderr


def run_git(args: list[str], cwd: Path | None = None) -> str:
    """Run git non-interactively and return its stdout.

    Raises:
        GitError: If git exits with a non-zero status
    """
    logger.debug(f"Running git {' '.join(args)} in {cwd or os.getcwd()}")
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            env={**os.environ, **NONINTERACTIVE_ENV},
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError as e:
        raise GitError(args, f"git not found: {e}") from e
    if result.returncode != 0:
        raise GitError(args, result.stderr)
    return result.stdout


def clone_shallow(url: str, repo_dir: Path) -> None:
    """Clone ``url`` with depth 1 and no working-tree checkout."""
    run_git(["clone", "--depth=1", "--no-checkout", "--quiet", url, str(repo_dir)])


def current_branch(repo_dir: Path) -> str:
    """Return the branch HEAD points at."""
    return run_git(["symbolic-ref", "--short", "HEAD"], cwd=repo_dir).strip()


def fetch_current_branch(repo_dir: Path) -> None:
    """Move the current branch of an existing clone to the remote's tip.

    Only that one branch is fetched, shallowly; nothing is checked out.
    """
    branch = current_branch(repo_dir)
    run_git(
        ["fetch", "--depth=1", "--quiet", "--update-head-ok", "origin", f"+{branch}:{branch}"],
        cwd=repo_dir,
    )


def latest_commit_timestamp(repo_dir: Path) -> int:
    """Return the committer time of HEAD in seconds since the epoch."""
    return int(run_git(["log", "-1", "--pretty=format:%ct"], cwd=repo_dir).strip())


def show(repo_dir: Path, path: str) -> str:
    """Return the contents of ``path`` at HEAD."""
    return run_git(["show", f"HEAD:{path}"], cwd=repo_dir)


def is_member(repo_dir: Path, package_name: str) -> bool:
    """Check whether any Cargo.toml at HEAD declares the named package."""
    # -z leaves paths unquoted, whatever characters they contain
    output = run_git(["status", "--porcelain", "-z"], cwd=repo_dir)
    for record in output.split("\0"):
        if not record:
            continue
        if not record.startswith(DELETED_PREFIX):
            raise RuntimeError(f"cache is corrupt at {repo_dir}: unexpected status line {record!r}")
        path = record[len(DELETED_PREFIX):]
        if PurePosixPath(path).name != "Cargo.toml":
            continue
        try:
            manifest = tomllib.loads(show(repo_dir, path))
        except (GitError, tomllib.TOMLDecodeError):
            continue
        package = manifest.get("package")
        if isinstance(package, dict) and package.get("name") == package_name:
            return True
    return False
