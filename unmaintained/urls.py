"""Repository URL helpers and content addressing."""

import hashlib
import re

SHORTENED_URL_RE = re.compile(r"^https://[^/]*/[^/]*/[^/]*")


def url_digest(url: str) -> str:
    """Return the hex SHA-1 of a URL, used as a cache file/directory name."""
    return hashlib.sha1(url.encode("utf-8")).hexdigest()


def trim_trailing_slash(url: str) -> str:
    """Strip a single trailing slash."""
    return url[:-1] if url.endswith("/") else url


def shorten(url: str) -> str | None:
    """Truncate a URL to its scheme://host/owner/repo prefix, if it has one."""
    match = SHORTENED_URL_RE.match(url)
    return match.group(0) if match else None


def candidate_urls(repository: str | None) -> list[str]:
    """Return the URLs to try when cloning a package's repository.

    The declared URL comes first (trailing slash trimmed), followed by its
    shortened form when that differs. Different spellings of one repository
    thereby converge on the same cache entry.
    """
    if not repository:
        return []

    url = trim_trailing_slash(repository)
    urls = [url]

    shortened = shorten(url)
    if shortened is not None and shortened != url:
        urls.append(shortened)

    return urls
