"""Configuration loading and validation."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

DEFAULT_MAX_AGE = 365

TOKEN_FILE_NAME = "token.txt"
APP_DIR_NAME = "cargo-unmaintained"


@dataclass
class Config:
    """Application configuration."""

    max_age: int = DEFAULT_MAX_AGE
    no_cache: bool = False
    purge: bool = False
    json_output: bool = False
    no_exit_code: bool = False
    fail_fast: bool = False
    no_warnings: bool = False
    save_token: bool = False
    package: str | None = None
    manifest_path: Path | None = None
    verbose: bool = False
    github_token: str | None = None
    cache_home: Path = field(default_factory=lambda: default_cache_home())


def _xdg_dir(environ: Mapping[str, str], key: str, fallback: str) -> Path:
    value = environ.get(key)
    if value:
        return Path(value)
    return Path.home() / fallback


def default_cache_home(environ: Mapping[str, str] | None = None) -> Path:
    """Return $XDG_CACHE_HOME, or ~/.cache when it is unset."""
    return _xdg_dir(os.environ if environ is None else environ, "XDG_CACHE_HOME", ".cache")


def token_path(environ: Mapping[str, str] | None = None) -> Path:
    """Return the default location of a saved GitHub token."""
    environ = os.environ if environ is None else environ
    return _xdg_dir(environ, "XDG_CONFIG_HOME", ".config") / APP_DIR_NAME / TOKEN_FILE_NAME


def load_token(environ: Mapping[str, str] | None = None) -> str | None:
    """Find a GitHub personal access token.

    Looks at the file named by GITHUB_TOKEN_PATH, then GITHUB_TOKEN, then the
    saved token file. Returns None if none is available.

    Raises:
        FileNotFoundError: If GITHUB_TOKEN_PATH names a missing file
    """
    environ = os.environ if environ is None else environ

    path = environ.get("GITHUB_TOKEN_PATH")
    if path:
        if not Path(path).exists():
            raise FileNotFoundError(f"Token file not found: {path}")
        token = Path(path).read_text()
    elif environ.get("GITHUB_TOKEN"):
        token = environ["GITHUB_TOKEN"]
    elif token_path(environ).exists():
        token = token_path(environ).read_text()
    else:
        return None

    return token.rstrip() or None


def load_config(args, environ: Mapping[str, str] | None = None) -> Config:
    """Build configuration from parsed command-line arguments and the environment."""
    environ = os.environ if environ is None else environ

    if args.max_age < 0:
        raise ValueError(f"--max-age must not be negative: {args.max_age}")

    return Config(
        max_age=args.max_age,
        no_cache=args.no_cache,
        purge=args.purge,
        json_output=args.json,
        no_exit_code=args.no_exit_code,
        fail_fast=args.fail_fast,
        no_warnings=args.no_warnings,
        save_token=args.save_token,
        package=args.package,
        manifest_path=Path(args.manifest_path) if args.manifest_path else None,
        verbose=args.verbose,
        github_token=None if args.purge or args.save_token else load_token(environ),
        cache_home=default_cache_home(environ),
    )


def save_token(token: str, environ: Mapping[str, str] | None = None) -> Path:
    """Write a GitHub token to the saved token file, readable only by its owner.

    Returns:
        The path written
    """
    path = token_path(environ)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(mode=0o600)
    path.chmod(0o600)
    path.write_text(token)
    return path
