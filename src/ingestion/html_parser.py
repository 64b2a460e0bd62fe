"""HTML parser for crawled site pages.

Extracts title, description, main body text, headings, images, same-site
links and a coarse content-type classification from a fetched page.
"""

import logging
import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from src.db.models import ContentType, ImageRef, Page, PageMetadata
from src.ingestion.urls import is_same_domain, resolve_link

logger = logging.getLogger(__name__)

MAX_TITLE_CHARS = 200
MAX_DESCRIPTION_CHARS = 500
MAX_CONTENT_CHARS = 200_000
MAX_HEADINGS = 10
MAX_LINKS = 100

# Content wrapper selectors in priority order
_CONTENT_SELECTORS = [
    "main",
    "article",
    '[role="main"]',
    ".content",
    "#content",
    ".post-content",
    ".entry-content",
    ".page-content",
    ".main-content",
    '[class*="content"]',
    ".container",
    ".wrapper",
    ".body-content",
    ".site-content",
    ".article-body",
    ".text-content",
    "section",
    ".section-content",
    'div[class*="main"]',
    'div[id*="main"]',
]

# Removed before any text is read
_ALWAYS_STRIP = ["script", "style", "noscript", "iframe"]

# Removed for the block-level fallback only
_CHROME_SELECTORS = [
    "header",
    "nav",
    "footer",
    ".header",
    ".footer",
    ".navigation",
    ".nav",
    ".menu",
    ".sidebar",
    ".cookie-notice",
    ".popup",
]

_BLOCK_TAGS = ["p", "div", "section", "article", "li", "td", "th", "blockquote", "pre"]

_MIN_SELECTOR_TEXT = 100  # chars an element needs to count as content
_ENOUGH_CONTENT = 500  # stop trying selectors once this much was collected
_MIN_MAIN_CONTENT = 200  # below this the block-level fallback kicks in
_MIN_BLOCK_TEXT = 20

_WHITESPACE = re.compile(r"\s+")


def _squash(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str | None:
    tag = soup.find("meta", attrs=attrs)
    if isinstance(tag, Tag):
        content = tag.get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
    return None


def _extract_title(soup: BeautifulSoup) -> str:
    """<title> text, falling back to the first <h1>."""
    title_tag = soup.find("title")
    title = _squash(title_tag.get_text()) if title_tag else ""
    if not title:
        h1 = soup.find("h1")
        title = _squash(h1.get_text()) if h1 else ""
    return title[:MAX_TITLE_CHARS]


def _extract_description(soup: BeautifulSoup) -> str:
    description = (
        _meta_content(soup, name="description")
        or _meta_content(soup, property="og:description")
        or ""
    )
    return description[:MAX_DESCRIPTION_CHARS]


def _extract_from_selectors(soup: BeautifulSoup) -> str:
    """Accumulate text from semantic containers until enough was found."""
    content = ""
    for selector in _CONTENT_SELECTORS:
        found = False
        for element in soup.select(selector):
            text = _squash(element.get_text(" "))
            if len(text) > _MIN_SELECTOR_TEXT and text not in content:
                content += " " + text
                found = True
        if found and len(content) > _ENOUGH_CONTENT:
            logger.debug("Main content found via selector %s", selector)
            break
    return content.strip()


def _extract_from_blocks(html: str) -> str:
    """Fallback: drop page chrome and concatenate block-level text."""
    clean = BeautifulSoup(html, "lxml")
    for selector in _ALWAYS_STRIP + _CHROME_SELECTORS:
        for element in clean.select(selector):
            element.decompose()

    parts: list[str] = []
    for element in clean.find_all(_BLOCK_TAGS):
        text = _squash(element.get_text(" "))
        if len(text) > _MIN_BLOCK_TEXT:
            parts.append(text)

    if parts:
        return " ".join(parts)
    body = clean.find("body")
    return _squash(body.get_text(" ")) if body else ""


def extract_main_content(soup: BeautifulSoup, html: str) -> str:
    """Best-effort main body text of a page, whitespace-collapsed and capped."""
    content = _extract_from_selectors(soup)
    if len(content) < _MIN_MAIN_CONTENT:
        content = _extract_from_blocks(html)
    return _squash(content)[:MAX_CONTENT_CHARS]


def detect_content_type(soup: BeautifulSoup, path: str) -> ContentType:
    """Classify a page by URL path, then by schema.org itemtype markup."""
    if "/blog/" in path or "/news/" in path or "/article/" in path:
        return ContentType.ARTICLE
    if "/product/" in path or "/shop/" in path:
        return ContentType.PRODUCT
    if path in ("/", "", "/index"):
        return ContentType.HOMEPAGE
    if "/about" in path:
        return ContentType.ABOUT
    if "/contact" in path:
        return ContentType.CONTACT
    if "/faq" in path or "/help" in path:
        return ContentType.SUPPORT

    if soup.select_one('[itemtype*="Article"]'):
        return ContentType.ARTICLE
    if soup.select_one('[itemtype*="Product"]'):
        return ContentType.PRODUCT
    return ContentType.PAGE


def _extract_headings(soup: BeautifulSoup) -> list[str]:
    headings: list[str] = []
    for element in soup.find_all(["h1", "h2", "h3", "h4"]):
        text = _squash(element.get_text(" "))
        if text:
            headings.append(text)
    return headings[:MAX_HEADINGS]


def _extract_links(soup: BeautifulSoup, url: str, site_url: str) -> list[str]:
    """Same-site links, resolved and normalized, deduplicated in page order."""
    links: list[str] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        absolute = resolve_link(anchor.get("href"), url)
        if absolute and absolute not in seen and is_same_domain(absolute, site_url):
            seen.add(absolute)
            links.append(absolute)
    return links[:MAX_LINKS]


def _extract_images(soup: BeautifulSoup, url: str) -> list[ImageRef]:
    images: list[ImageRef] = []
    for img in soup.find_all("img", src=True):
        src = resolve_link(img.get("src"), url)
        if src:
            alt = img.get("alt")
            images.append(ImageRef(src=src, alt=alt if isinstance(alt, str) else ""))
    return images


def _extract_metadata(soup: BeautifulSoup) -> PageMetadata:
    html_tag = soup.find("html")
    lang = html_tag.get("lang") if isinstance(html_tag, Tag) else None
    keywords = _meta_content(soup, name="keywords")
    return PageMetadata(
        author=_meta_content(soup, name="author"),
        publish_date=_meta_content(soup, property="article:published_time"),
        last_modified=_meta_content(soup, property="article:modified_time"),
        language=lang if isinstance(lang, str) and lang else "en",
        keywords=[k.strip() for k in keywords.split(",") if k.strip()] if keywords else [],
    )


def parse_page(html: str, url: str, tenant_id: str, site_url: str | None = None) -> Page:
    """Parse a fetched HTML page into a Page (without content hash).

    Args:
        html: Raw HTML.
        url: Final URL of the page; relative links resolve against it.
        tenant_id: Owning tenant.
        site_url: Seed URL of the crawl; only links on the same site are kept.
            Defaults to ``url``.

    Returns:
        Page with extracted fields. ``content_hash`` is left for the caller.
    """
    soup = BeautifulSoup(html, "lxml")

    title = _extract_title(soup)
    description = _extract_description(soup)
    metadata = _extract_metadata(soup)

    for selector in _ALWAYS_STRIP:
        for element in soup.select(selector):
            element.decompose()

    content = extract_main_content(soup, html)
    parsed = urlparse(url)
    path = parsed.path or "/"

    page = Page(
        tenant_id=tenant_id,
        url=url,
        domain=parsed.hostname or "",
        path=path,
        title=title,
        description=description,
        content=content,
        content_type=detect_content_type(soup, path),
        headings=_extract_headings(soup),
        images=_extract_images(soup, url),
        links=_extract_links(soup, url, site_url or url),
        metadata=metadata,
    )
    logger.debug(
        "Parsed %s: %d chars, %d links, type=%s",
        url, len(content), len(page.links), page.content_type,
    )
    return page
