"""Packages as reported by `cargo metadata`."""

import json
import logging
import re
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from unmaintained.urls import candidate_urls

logger = logging.getLogger(__name__)

CRATES_IO_SOURCE = "registry+https://github.com/rust-lang/crates.io-index"

VERSION_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)")


@dataclass
class Package:
    """A package in the dependency graph."""

    name: str
    version: str
    id: str = ""
    repository: str | None = None
    source: str | None = None

    @classmethod
    def from_metadata(cls, data: dict) -> "Package":
        """Create Package from a `cargo metadata` package object."""
        return cls(
            name=data["name"],
            version=data["version"],
            id=data.get("id") or "",
            repository=data.get("repository") or None,
            source=data.get("source"),
        )

    @property
    def urls(self) -> list[str]:
        return candidate_urls(self.repository)

    @property
    def is_from_crates_io(self) -> bool:
        return self.source == CRATES_IO_SOURCE


def version_key(version: str) -> tuple:
    """Sort key for a semantic version; prereleases sort below their release."""
    match = VERSION_RE.match(version)
    if not match:
        return (0, 0, 0, 0, version)
    core = tuple(int(part) for part in match.groups())
    is_release = 0 if "-" in version.split("+", 1)[0] else 1
    return (*core, is_release, version)


def ignored_packages(metadata: dict) -> set[str]:
    """Read ``[workspace.metadata.unmaintained] ignore`` from `cargo metadata` output.

    Raises:
        ValueError: If the table is present but malformed
    """
    workspace_metadata = metadata.get("metadata")
    if not isinstance(workspace_metadata, dict):
        return set()
    table = workspace_metadata.get("unmaintained")
    if table is None:
        return set()
    ignore = table.get("ignore", []) if isinstance(table, dict) else None
    if not isinstance(ignore, list) or not all(isinstance(name, str) for name in ignore):
        raise ValueError(f"`workspace.metadata.unmaintained` must hold an `ignore` list of names: {table!r}")
    return set(ignore)


def select_packages(metadata: dict, package: str | None = None) -> list[Package]:
    """Pick the packages to check from parsed `cargo metadata` output.

    Workspace members and packages the workspace says to ignore are skipped,
    and when a package appears at several versions only the highest one is
    kept.

    Raises:
        ValueError: If ``package`` is given but matches no package
    """
    workspace_members = set(metadata.get("workspace_members", []))
    ignored = ignored_packages(metadata)
    names = {item["name"] for item in metadata.get("packages", [])}
    for name in sorted(ignored - names):
        logger.warning(f"workspace metadata says to ignore `{name}`, but workspace does not depend upon `{name}`")

    latest: dict[str, Package] = {}

    for item in metadata.get("packages", []):
        pkg = Package.from_metadata(item)
        if pkg.id in workspace_members or pkg.name in ignored:
            continue
        if package is not None and pkg.name != package:
            continue
        current = latest.get(pkg.name)
        if current is None or version_key(current.version) < version_key(pkg.version):
            latest[pkg.name] = pkg

    if package is not None and not latest:
        raise ValueError(f"Found no packages matching `{package}`")

    return sorted(latest.values(), key=lambda p: p.name)


def cargo_metadata(manifest_path: Path | None = None, cwd: Path | None = None) -> dict:
    """Run `cargo metadata` and return its parsed output.

    Raises:
        RuntimeError: If cargo is missing or fails
    """
    cmd = ["cargo", "metadata", "--format-version=1"]
    if manifest_path is not None:
        cmd.append(f"--manifest-path={manifest_path}")
    return json.loads(_run_cargo(cmd, cwd))


def _run_cargo(cmd: list[str], cwd: Path | None = None) -> str:
    try:
        result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as e:
        raise RuntimeError(f"`{' '.join(cmd)}` failed: {e.stderr.strip()}") from e
    except FileNotFoundError as e:
        raise RuntimeError(f"Command not found: {cmd[0]}") from e
    return result.stdout


def load_packages(manifest_path: Path | None = None, package: str | None = None) -> list[Package]:
    """Run `cargo metadata` and return the packages to check."""
    packages = select_packages(cargo_metadata(manifest_path), package)
    logger.debug(f"Selected {len(packages)} packages from cargo metadata")
    return packages


def load_latest_package(name: str) -> Package:
    """Resolve the newest release of ``name`` through a throwaway package.

    The throwaway package depends on ``name = "*"``, so cargo picks the
    highest compatible release from the registry.
    """
    with tempfile.TemporaryDirectory() as tempdir:
        _run_cargo(["cargo", "init", f"--name={name}-temp-package", "--quiet", "--vcs=none"], Path(tempdir))
        manifest = Path(tempdir) / "Cargo.toml"
        with open(manifest, "a") as f:
            f.write(f'{name} = "*"\n')
        metadata = cargo_metadata(cwd=Path(tempdir))
    return select_packages(metadata, package=name)[0]
