"""URL normalization and crawl-scope checks."""

from urllib.parse import urljoin, urlparse, urlunparse

_SKIP_SCHEMES = ("#", "mailto:", "tel:", "javascript:")


def normalize_url(url: str) -> str:
    """Strip the fragment and drop a trailing slash (except for the root path)."""
    parsed = urlparse(url)
    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return urlunparse(parsed._replace(path=path, fragment=""))


def seed_url(domain: str) -> str:
    """Turn a configured domain ("example.com" or a full URL) into a start URL."""
    domain = domain.strip()
    base = domain if domain.startswith(("http://", "https://")) else f"https://{domain}"
    return normalize_url(base)


def resolve_link(href: str | None, base_url: str) -> str | None:
    """Resolve an href found on ``base_url`` to a normalized absolute http(s) URL.

    Returns None for empty, in-page, mailto/tel/javascript and non-http links.
    """
    if not href:
        return None
    href = href.strip()
    if not href or href.startswith(_SKIP_SCHEMES):
        return None

    if href.startswith("//"):
        absolute = "https:" + href
    else:
        absolute = urljoin(base_url, href)

    parsed = urlparse(absolute)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return normalize_url(absolute)


def _bare_host(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    return host.removeprefix("www.")


def is_same_domain(url: str, base_url: str) -> bool:
    """True when both hostnames match after stripping an optional "www." prefix."""
    host = _bare_host(url)
    return bool(host) and host == _bare_host(base_url)


def is_path_allowed(url: str, allowed_paths: list[str], excluded_paths: list[str]) -> bool:
    """Apply path-prefix rules. Exclusions win; a non-empty allow-list must match."""
    path = urlparse(url).path or "/"

    if any(path.startswith(excluded) for excluded in excluded_paths):
        return False
    if allowed_paths:
        return any(path.startswith(allowed) for allowed in allowed_paths)
    return True
