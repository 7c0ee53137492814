"""Tests for aumai_siteseal.headers — default response header policy."""

from __future__ import annotations

import pytest
from starlette.datastructures import MutableHeaders

from aumai_siteseal.headers import HTML_CSP, apply_security_headers


def _apply(filename: str) -> MutableHeaders:
    headers = MutableHeaders()
    apply_security_headers(headers, filename)
    return headers


class TestApplySecurityHeaders:
    def test_html_gets_csp_and_no_cache(self) -> None:
        headers = _apply("about/index.html")
        assert headers["Content-Security-Policy"] == HTML_CSP
        assert "no-store" in headers["Cache-Control"]

    def test_fingerprinted_asset_is_immutable(self) -> None:
        headers = _apply("css/site.3f2a9c1e.css")
        assert headers["Cache-Control"] == "public, max-age=31536000, immutable"
        assert "Content-Security-Policy" not in headers

    def test_plain_asset_gets_short_cache(self) -> None:
        assert _apply("img/logo.png")["Cache-Control"] == "public, max-age=3600"

    @pytest.mark.parametrize("filename", ["index.html", "img/logo.png"])
    def test_hardening_headers_always_present(self, filename: str) -> None:
        headers = _apply(filename)
        assert headers["X-Content-Type-Options"] == "nosniff"
        assert headers["X-Frame-Options"] == "DENY"
        assert headers["Referrer-Policy"] == "no-referrer"

    def test_existing_values_are_replaced_not_duplicated(self) -> None:
        headers = MutableHeaders({"Cache-Control": "private"})
        apply_security_headers(headers, "img/logo.png")
        assert headers.getlist("Cache-Control") == ["public, max-age=3600"]
