"""cargo-unmaintained - Main entry point."""

import argparse
import json
import logging
import sys
from contextlib import contextmanager
from typing import Iterator

from unmaintained.cache import CacheError
from unmaintained.config import DEFAULT_MAX_AGE, Config, load_config, save_token
from unmaintained.git import GitError
from unmaintained.lifecycle import CacheManager, purge_cache
from unmaintained.lock import LockError
from unmaintained.package import load_packages
from unmaintained.scan import Scanner, UnmaintainedPackage
from unmaintained.status import create_checker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNMAINTAINED = 1
EXIT_ERROR = 2


class DemoteWarnings(logging.Filter):
    """Turns warnings into debug messages, dropping them unless verbose."""

    def __init__(self, verbose: bool):
        super().__init__()
        self.verbose = verbose

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno != logging.WARNING:
            return True
        if not self.verbose:
            return False
        record.levelno = logging.DEBUG
        record.levelname = logging.getLevelName(logging.DEBUG)
        return True


@contextmanager
def warnings_demoted(enabled: bool, verbose: bool) -> Iterator[None]:
    """Install DemoteWarnings on the root handlers for the duration of the block."""
    if not enabled:
        yield
        return

    log_filter = DemoteWarnings(verbose)
    handlers = list(logging.getLogger().handlers)
    for handler in handlers:
        handler.addFilter(log_filter)
    try:
        yield
    finally:
        for handler in handlers:
            handler.removeFilter(log_filter)


def print_report(unmaintained: list[UnmaintainedPackage], json_output: bool) -> None:
    """Print unmaintained packages as text lines or as a JSON array."""
    if json_output:
        print(json.dumps([u.to_dict() for u in unmaintained], indent=2))
        return

    for u in unmaintained:
        print(u.describe())
    if any(u.newer_version_available for u in unmaintained):
        print("\n* a newer (though still seemingly unmaintained) version of the package is available")


def run(config: Config) -> list[UnmaintainedPackage]:
    """Scan the project's dependencies.

    Returns:
        The packages found to be unmaintained
    """
    packages = load_packages(config.manifest_path, config.package)
    logger.info(f"Scanning {len(packages)} packages")

    checker = create_checker(config.github_token)
    logger.debug(f"Using {checker.name} checks")

    try:
        with CacheManager(
            temporary=config.no_cache,
            max_age=config.max_age,
            cache_home=config.cache_home,
        ) as cache_manager:
            scanner = Scanner(cache_manager, checker, config.max_age)
            return scanner.scan(packages, fail_fast=config.fail_fast)
    finally:
        checker.close()


def read_and_save_token() -> None:
    """Read a personal access token from stdin and save it."""
    print("Please paste a personal access token below. The token needs no scopes.")
    path = save_token(sys.stdin.readline())
    print(f"Personal access token written to `{path}`")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cargo-unmaintained",
        description="Find unmaintained packages in Rust projects",
    )
    parser.add_argument(
        "--max-age",
        type=int,
        default=DEFAULT_MAX_AGE,
        metavar="DAYS",
        help="Age in days that a repository's last commit must not exceed for the repository to be considered current",
    )
    parser.add_argument("--no-cache", action="store_true", help="Do not cache data on disk for future runs")
    parser.add_argument("--purge", action="store_true", help="Remove all cached data from disk and exit")
    parser.add_argument("--json", action="store_true", help="Output JSON")
    parser.add_argument("-p", "--package", type=str, metavar="NAME", help="Check only whether package NAME is unmaintained")
    parser.add_argument("--manifest-path", type=str, help="Path to Cargo.toml")
    exit_status = parser.add_mutually_exclusive_group()
    exit_status.add_argument("--fail-fast", action="store_true", help="Exit as soon as an unmaintained package is found")
    exit_status.add_argument("--no-exit-code", action="store_true", help="Do not set exit status when unmaintained packages are found")
    parser.add_argument("--no-warnings", action="store_true", help="Do not show warnings")
    parser.add_argument(
        "--save-token",
        action="store_true",
        help="Read a personal access token from standard input and save it to $HOME/.config/cargo-unmaintained/token.txt",
    )
    parser.add_argument("--verbose", action="store_true", help="Show information about what is being done")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run cargo-unmaintained."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    with warnings_demoted(args.no_warnings, args.verbose):
        try:
            config = load_config(args)

            if config.save_token:
                read_and_save_token()
                return EXIT_OK

            if config.purge:
                if not purge_cache(config.cache_home):
                    logger.info("No cache to purge")
                return EXIT_OK

            unmaintained = run(config)
        except (FileNotFoundError, ValueError) as e:
            logger.error(str(e))
            return EXIT_ERROR
        except (LockError, CacheError, GitError, OSError, RuntimeError) as e:
            logger.error(f"Error: {e}")
            return EXIT_ERROR

    if not unmaintained:
        if config.json_output:
            print_report(unmaintained, json_output=True)
        logger.info("No unmaintained packages found")
        return EXIT_OK

    print_report(unmaintained, config.json_output)
    return EXIT_OK if config.no_exit_code else EXIT_UNMAINTAINED


if __name__ == "__main__":
    sys.exit(main())
