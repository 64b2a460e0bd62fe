"""Tests for URL normalization and crawl-scope rules."""

from src.ingestion.urls import (
    is_path_allowed,
    is_same_domain,
    normalize_url,
    resolve_link,
    seed_url,
)


def test_normalize_strips_fragment_and_trailing_slash() -> None:
    assert normalize_url("https://acme.example/about/#team") == "https://acme.example/about"


def test_normalize_keeps_root_slash() -> None:
    assert normalize_url("https://acme.example/") == "https://acme.example/"
    assert normalize_url("https://acme.example") == "https://acme.example/"


def test_normalize_keeps_query() -> None:
    assert normalize_url("https://acme.example/s/?q=1") == "https://acme.example/s?q=1"


def test_seed_url_adds_scheme() -> None:
    assert seed_url("acme.example") == "https://acme.example/"
    assert seed_url("http://acme.example/") == "http://acme.example/"


class TestResolveLink:
    def test_relative(self) -> None:
        assert (
            resolve_link("../contact", "https://acme.example/about/team")
            == "https://acme.example/contact"
        )

    def test_protocol_relative(self) -> None:
        assert resolve_link("//acme.example/x/", "https://acme.example/") == "https://acme.example/x"

    def test_skips_non_navigational(self) -> None:
        for href in ("#top", "mailto:a@b.c", "tel:123", "javascript:void(0)", "", None):
            assert resolve_link(href, "https://acme.example/") is None

    def test_skips_non_http_schemes(self) -> None:
        assert resolve_link("ftp://acme.example/file", "https://acme.example/") is None


def test_same_domain_ignores_www() -> None:
    assert is_same_domain("https://www.acme.example/a", "https://acme.example/")
    assert not is_same_domain("https://other.example/a", "https://acme.example/")
    assert not is_same_domain("https://blog.acme.example/a", "https://acme.example/")


class TestPathRules:
    def test_no_rules_allows_everything(self) -> None:
        assert is_path_allowed("https://acme.example/any", [], [])

    def test_exclusion_wins(self) -> None:
        assert not is_path_allowed(
            "https://acme.example/blog/private", ["/blog"], ["/blog/private"]
        )

    def test_allow_list_must_match(self) -> None:
        assert is_path_allowed("https://acme.example/blog/post", ["/blog"], [])
        assert not is_path_allowed("https://acme.example/shop", ["/blog"], [])
