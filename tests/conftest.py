"""Shared fixtures: throwaway upstream git repositories."""

import os
import subprocess
from pathlib import Path

import pytest

GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


def git(*args: str, cwd: Path) -> str:
    """Run git in ``cwd`` and return stdout."""
    result = subprocess.run(
        ["git", "-c", "commit.gpgsign=false", *args],
        cwd=cwd,
        env={**os.environ, **GIT_ENV},
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout


def commit_file(repo: Path, name: str, contents: str, message: str) -> None:
    (repo / name).parent.mkdir(parents=True, exist_ok=True)
    (repo / name).write_text(contents)
    git("add", name, cwd=repo)
    git("commit", "--quiet", "-m", message, cwd=repo)


def make_upstream(path: Path, package_name: str = "anyhow", branch: str = "main") -> str:
    """Create a repository with one commit containing a Cargo.toml.

    Returns:
        The file:// URL of the repository
    """
    path.mkdir(parents=True)
    git("init", "--quiet", cwd=path)
    git("symbolic-ref", "HEAD", f"refs/heads/{branch}", cwd=path)
    commit_file(
        path,
        "Cargo.toml",
        f'[package]\nname = "{package_name}"\nversion = "1.0.0"\n',
        "initial",
    )
    return path.as_uri()


@pytest.fixture
def upstream(tmp_path):
    """An upstream repository for the package `anyhow` on branch `main`."""
    path = tmp_path / "upstream" / "anyhow"
    url = make_upstream(path)
    return path, url
