"""Request-time verification in front of the serving backend.

For every request the gate loads the manifest pair from the backend, checks
the signature against the keyring, resolves the requested path, fetches the
object and compares its size and digest with the manifest entry.  Only after
all of that succeeds does a response carry any object bytes.  Failures never
expose internal detail to the client; they are logged server side and, when
an incident sink is configured, recorded as :class:`SecurityIncident`.
"""

from __future__ import annotations

import logging
import mimetypes
import os
import threading
import uuid
from collections import OrderedDict
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, unquote

from starlette.applications import Starlette
from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from aumai_siteseal.config import SiteSealConfig
from aumai_siteseal.errors import (
    BackendUnavailable,
    ContentMismatch,
    IOFailure,
    SiteSealError,
    TrustChainBroken,
)
from aumai_siteseal.hashing import digest, digests_equal
from aumai_siteseal.headers import apply_security_headers
from aumai_siteseal.keyring import KeyRing
from aumai_siteseal.manifest import parse_manifest
from aumai_siteseal.models import (
    FileEntry,
    IncidentType,
    Manifest,
    SecurityIncident,
    is_canonical_path,
)

logger = logging.getLogger(__name__)

HeaderPolicy = Callable[[MutableHeaders, str], None]
IncidentSink = Callable[[SecurityIncident], None]

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

_FAILURE_BODIES = {
    404: b"Not Found",
    405: b"Method Not Allowed",
    500: b"Integrity Check Failed",
    503: b"Service Unavailable",
}


# ---------------------------------------------------------------------------
# Serving backends
# ---------------------------------------------------------------------------


class ObjectStore(Protocol):
    """Key-value view of the deployed site."""

    def get(self, path: str) -> bytes | None:
        """Return the object stored at *path*, or None if absent."""


class MemoryStore:
    """In-memory object store, mostly useful for tests and previews."""

    def __init__(self, objects: Mapping[str, bytes] | None = None) -> None:
        self.objects: dict[str, bytes] = dict(objects or {})

    def get(self, path: str) -> bytes | None:
        return self.objects.get(path)

    def put(self, path: str, data: bytes) -> None:
        self.objects[path] = data


class DirectoryStore:
    """Object store backed by a directory, such as the live deployment slot."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def get(self, path: str) -> bytes | None:
        if not is_canonical_path(path):
            return None
        try:
            resolved = (self.root / path).resolve(strict=True)
            if not resolved.is_relative_to(self.root) or not resolved.is_file():
                return None
            return resolved.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise BackendUnavailable(f"Backend read failed for {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Security incidents
# ---------------------------------------------------------------------------


class DirectoryIncidentSink:
    """Write each incident as its own JSON document under *root*."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def __call__(self, incident: SecurityIncident) -> None:
        stamp = incident.timestamp.strftime("%Y%m%dT%H%M%S%fZ")
        target = self.root / f"{stamp}-{uuid.uuid4().hex}.json"
        tmp = target.with_name(f".{target.name}.tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp.write_text(incident.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp, target)
        except OSError as exc:
            raise IOFailure(f"Cannot record incident in {self.root}: {exc}", str(target)) from exc


# ---------------------------------------------------------------------------
# Verified manifest cache
# ---------------------------------------------------------------------------


class VerifiedManifestCache:
    """Manifests whose signature already verified, keyed by the exact bytes.

    The key covers both the manifest and the signature bytes, which the gate
    re-fetches on every request, so any change to either is a cache miss.
    Each entry remembers the id of the key that verified it so that a hit can
    be refused once that key is no longer trusted.  Safe to share between
    threads.
    """

    def __init__(self, max_entries: int = 4) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, tuple[Manifest, str]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def key_for(manifest_bytes: bytes, signature_bytes: bytes) -> str:
        return f"{digest(manifest_bytes)}:{digest(signature_bytes)}"

    def get(self, key: str) -> tuple[Manifest, str] | None:
        """Return ``(manifest, key_id)`` for *key*, or None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
            return entry

    def put(self, key: str, manifest: Manifest, key_id: str) -> None:
        with self._lock:
            self._entries[key] = (manifest, key_id)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def discard(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


def normalize_request_path(path: str, index_document: str = "index.html") -> str | None:
    """Map a request path onto a canonical manifest key.

    Query strings and fragments are dropped, percent-escapes decoded, and a
    directory path gets *index_document* appended.  Returns None for paths
    that can never name a manifest entry (traversal segments, backslashes).
    """
    decoded = unquote(path.split("#", 1)[0].split("?", 1)[0])
    if "\\" in decoded or "\x00" in decoded:
        return None
    key = decoded.lstrip("/")
    if key == "" or key.endswith("/"):
        key += index_document
    return key if is_canonical_path(key) else None


class EdgeGate:
    """Serve only objects whose bytes match a validly signed manifest."""

    def __init__(
        self,
        store: ObjectStore,
        keyring: KeyRing,
        config: SiteSealConfig | None = None,
        header_policy: HeaderPolicy = apply_security_headers,
        cache: VerifiedManifestCache | None = None,
        incident_sink: IncidentSink | None = None,
    ) -> None:
        self.store = store
        self.keyring = keyring
        self.config = config or SiteSealConfig()
        self.header_policy = header_policy
        if cache is None and self.config.cache_verified_manifest:
            cache = VerifiedManifestCache(self.config.cache_size)
        self.cache = cache
        self.incident_sink = incident_sink

    def handle(self, method: str, path: str) -> Response:
        """Run the full verification sequence for one request."""
        method = method.upper()
        if method not in ("GET", "HEAD"):
            response = self._failure(405)
            response.headers["Allow"] = "GET, HEAD"
            return response

        try:
            manifest = self._trusted_manifest()
        except TrustChainBroken as exc:
            logger.error("Refusing %s %s, trust chain broken: %s", method, path, exc)
            self._report(IncidentType.trust_chain_broken, path=path, detail=str(exc))
            return self._failure(503)

        status = 200
        key = normalize_request_path(path, self.config.index_document)
        entry = manifest.files.get(key) if key else None
        if key is None or entry is None:
            logger.warning("Request for path not in manifest: %r", path)
            key = self.config.not_found_document
            entry = manifest.files.get(key) if key else None
            if key is None or entry is None:
                return self._failure(404)
            status = 404

        try:
            body = self._fetch_verified(key, entry)
        except ContentMismatch as exc:
            logger.error("Integrity check failed for %s: %s", key, exc)
            self._report(
                IncidentType.integrity_failure,
                path=key,
                expected=exc.expected,
                actual=exc.actual,
                detail=str(exc),
            )
            return self._failure(404 if status == 404 else 500)
        except TrustChainBroken as exc:
            logger.error("Backend failure while serving %s: %s", key, exc)
            self._report(IncidentType.trust_chain_broken, path=key, detail=str(exc))
            return self._failure(503)

        response = Response(
            body,
            status_code=status,
            media_type=mimetypes.guess_type(key)[0] or "application/octet-stream",
        )
        response.headers["X-Content-Hash"] = entry.digest
        response.headers["X-Manifest-Version"] = manifest.version
        self.header_policy(response.headers, key)
        if method == "HEAD":
            # Content-Length keeps describing the verified object.
            response.body = b""
        return response

    def asgi_app(self) -> Starlette:
        """ASGI application routing every path and method through :meth:`handle`."""
        return Starlette(
            routes=[Route("/{path:path}", self._endpoint, methods=_ALL_METHODS)]
        )

    def _endpoint(self, request: Request) -> Response:
        return self.handle(request.method, quote(request.scope["path"]))

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _fetch(self, path: str) -> bytes | None:
        try:
            return self.store.get(path)
        except BackendUnavailable:
            raise
        except OSError as exc:
            raise BackendUnavailable(f"Backend fetch failed for {path}: {exc}") from exc

    def _trusted_manifest(self) -> Manifest:
        manifest_bytes = self._fetch(self.config.manifest_name)
        signature_bytes = self._fetch(self.config.signature_name)
        if manifest_bytes is None or signature_bytes is None:
            raise TrustChainBroken("manifest or signature missing from backend")

        cache_key = None
        if self.cache is not None:
            cache_key = VerifiedManifestCache.key_for(manifest_bytes, signature_bytes)
            cached = self.cache.get(cache_key)
            if cached is not None:
                manifest, key_id = cached
                if self.keyring.get_key(key_id) is not None:
                    return manifest
                self.cache.discard(cache_key)

        signature = self.keyring.require_valid(manifest_bytes, signature_bytes)
        manifest = parse_manifest(manifest_bytes)
        if self.cache is not None and cache_key is not None:
            self.cache.put(cache_key, manifest, signature.key_id)
        return manifest

    def _fetch_verified(self, key: str, entry: FileEntry) -> bytes:
        body = self._fetch(key)
        if body is None:
            raise ContentMismatch(
                f"{key} listed in manifest but absent", key, expected=entry.digest
            )
        actual = digest(body)
        if len(body) != entry.size:
            raise ContentMismatch(
                f"{key} size {len(body)} != expected {entry.size}",
                key,
                expected=entry.digest,
                actual=actual,
            )
        if not digests_equal(entry.digest, actual):
            raise ContentMismatch(
                f"{key} digest mismatch", key, expected=entry.digest, actual=actual
            )
        return body

    def _report(self, kind: IncidentType, **fields: str | None) -> None:
        if self.incident_sink is None:
            return
        incident = SecurityIncident(type=kind, timestamp=datetime.now(tz=UTC), **fields)
        try:
            self.incident_sink(incident)
        except (SiteSealError, OSError) as exc:
            logger.error("Could not record %s incident: %s", kind.value, exc)

    def _failure(self, status: int) -> Response:
        response = Response(
            _FAILURE_BODIES[status],
            status_code=status,
            media_type="text/plain",
        )
        response.headers["Cache-Control"] = "no-store"
        return response


__all__ = [
    "DirectoryIncidentSink",
    "DirectoryStore",
    "EdgeGate",
    "HeaderPolicy",
    "IncidentSink",
    "MemoryStore",
    "ObjectStore",
    "VerifiedManifestCache",
    "normalize_request_path",
]
