"""Tests for the site page HTML parser."""

from bs4 import BeautifulSoup

from src.db.models import ContentType
from src.ingestion.html_parser import detect_content_type, parse_page

_BODY_TEXT = (
    "Acme Realty helps families find homes across the valley. "
    "Our agents have twenty years of local experience and answer every call. "
    "We list houses, apartments and land, and we manage rentals for owners. "
)

_PAGE = f"""
<html lang="en-NZ">
<head>
  <title>  About   Acme </title>
  <meta name="description" content="Who we are">
  <meta name="author" content="Jo Smith">
  <meta name="keywords" content="homes, rentals , ">
  <script>var tracking = 1;</script>
  <style>body {{ color: red; }}</style>
</head>
<body>
  <nav><a href="/">Home</a> <a href="/listings/">Listings</a></nav>
  <main>
    <h1>About us</h1>
    <h2>Our team</h2>
    <p>{_BODY_TEXT}</p>
    <img src="/img/team.jpg" alt="The team">
    <a href="https://www.acme.example/contact#form">Contact</a>
    <a href="https://elsewhere.example/">Partner</a>
    <a href="mailto:hi@acme.example">Email</a>
    <a href="/listings">Listings again</a>
  </main>
  <footer>Copyright Acme</footer>
</body>
</html>
"""


def test_parse_page_fields() -> None:
    page = parse_page(_PAGE, "https://acme.example/about", "acme", "https://acme.example/")

    assert page.tenant_id == "acme"
    assert page.title == "About Acme"
    assert page.description == "Who we are"
    assert page.domain == "acme.example"
    assert page.path == "/about"
    assert page.content_type == ContentType.ABOUT
    assert "twenty years of local experience" in page.content
    assert "tracking" not in page.content
    assert page.headings == ["About us", "Our team"]
    assert page.images[0].src == "https://acme.example/img/team.jpg"
    assert page.images[0].alt == "The team"
    assert page.metadata.author == "Jo Smith"
    assert page.metadata.language == "en-NZ"
    assert page.metadata.keywords == ["homes", "rentals"]


def test_parse_page_keeps_same_site_links_once() -> None:
    page = parse_page(_PAGE, "https://acme.example/about", "acme", "https://acme.example/")

    assert page.links == [
        "https://acme.example/",
        "https://acme.example/listings",
        "https://www.acme.example/contact",
    ]


def test_title_falls_back_to_h1() -> None:
    html = f"<html><body><h1>Listings</h1><p>{_BODY_TEXT}</p></body></html>"
    page = parse_page(html, "https://acme.example/listings", "acme")
    assert page.title == "Listings"


def test_block_fallback_drops_chrome() -> None:
    html = (
        "<html><body><header>Site header with a long menu of many links</header>"
        f"<p>{_BODY_TEXT}</p><footer>Footer text that is long enough</footer></body></html>"
    )
    page = parse_page(html, "https://acme.example/x", "acme")
    assert "twenty years" in page.content
    assert "Site header" not in page.content


class TestDetectContentType:
    def _soup(self, html: str = "<html></html>") -> BeautifulSoup:
        return BeautifulSoup(html, "lxml")

    def test_by_path(self) -> None:
        assert detect_content_type(self._soup(), "/") == ContentType.HOMEPAGE
        assert detect_content_type(self._soup(), "/blog/new-listing") == ContentType.ARTICLE
        assert detect_content_type(self._soup(), "/shop/item") == ContentType.PRODUCT
        assert detect_content_type(self._soup(), "/contact-us") == ContentType.CONTACT
        assert detect_content_type(self._soup(), "/help/faq") == ContentType.SUPPORT

    def test_by_schema_markup(self) -> None:
        soup = self._soup('<div itemtype="https://schema.org/Product"></div>')
        assert detect_content_type(soup, "/widgets") == ContentType.PRODUCT

    def test_default(self) -> None:
        assert detect_content_type(self._soup(), "/listings") == ContentType.PAGE
