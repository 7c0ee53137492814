"""Default response header policy applied to verified responses."""

from __future__ import annotations

import re

from starlette.datastructures import MutableHeaders

_HASHED_ASSET = re.compile(r"\.[0-9a-f]{8,}\.")

HTML_CSP = (
    "default-src 'none'; "
    "img-src 'self' data:; "
    "style-src 'self'; "
    "font-src 'self'; "
    "base-uri 'none'; "
    "form-action 'none'; "
    "frame-ancestors 'none'; "
    "upgrade-insecure-requests"
)

PERMISSIONS_POLICY = (
    "accelerometer=(), camera=(), display-capture=(), geolocation=(), "
    "gyroscope=(), magnetometer=(), microphone=(), midi=(), payment=(), usb=()"
)

_COMMON = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": PERMISSIONS_POLICY,
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains; preload",
}


def apply_security_headers(headers: MutableHeaders, filename: str) -> None:
    """Set CSP, caching and hardening headers for *filename* in place."""
    if filename.endswith(".html"):
        headers["Content-Security-Policy"] = HTML_CSP
        headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    elif _HASHED_ASSET.search(filename):
        headers["Cache-Control"] = "public, max-age=31536000, immutable"
    else:
        headers["Cache-Control"] = "public, max-age=3600"

    for name, value in _COMMON.items():
        headers[name] = value


__all__ = ["HTML_CSP", "apply_security_headers"]
