"""Manifest generation, canonical serialisation and persistence."""

from __future__ import annotations

import json
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from aumai_siteseal.errors import IOFailure, InvalidManifest
from aumai_siteseal.hashing import digest_file
from aumai_siteseal.models import FileEntry, Manifest, is_canonical_path

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_NAME = "integrity-manifest.json"
DEFAULT_SIGNATURE_SUFFIX = ".sig"


def signature_name(
    manifest_name: str = DEFAULT_MANIFEST_NAME,
    suffix: str = DEFAULT_SIGNATURE_SUFFIX,
) -> str:
    """Name of the detached signature file that accompanies *manifest_name*."""
    return manifest_name + suffix


def normalize_relative_path(path: str) -> str:
    """Convert an OS-relative path to a canonical manifest key.

    Raises:
        ValueError: if the result would not be canonical.
    """
    key = path.replace(os.sep, "/")
    if not is_canonical_path(key):
        raise ValueError(f"Cannot canonicalise path: {path!r}")
    return key


def canonical_bytes(manifest: Manifest) -> bytes:
    """Deterministic JSON serialisation of the manifest; the signing target."""
    data = manifest.model_dump(mode="json", by_alias=True)
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


def parse_manifest(raw: bytes) -> Manifest:
    """Parse manifest bytes, raising :class:`InvalidManifest` on bad input."""
    try:
        return Manifest.model_validate_json(raw)
    except ValidationError as exc:
        raise InvalidManifest(f"Malformed manifest: {exc}") from exc


def write_manifest(manifest: Manifest, path: str | Path) -> bytes:
    """Persist the canonical bytes of *manifest* to *path* and return them."""
    payload = canonical_bytes(manifest)
    try:
        Path(path).write_bytes(payload)
    except OSError as exc:
        raise IOFailure(f"Cannot write manifest {path}: {exc}", str(path)) from exc
    return payload


def load_manifest(path: str | Path) -> tuple[Manifest, bytes]:
    """Read a persisted manifest; returns the parsed value and the raw bytes."""
    try:
        raw = Path(path).read_bytes()
    except OSError as exc:
        raise IOFailure(f"Cannot read manifest {path}: {exc}", str(path)) from exc
    return parse_manifest(raw), raw


def _build_timestamp() -> datetime:
    epoch = os.environ.get("SOURCE_DATE_EPOCH")
    if epoch:
        return datetime.fromtimestamp(int(epoch), tz=UTC)
    return datetime.now(tz=UTC).replace(microsecond=0)


def iter_tree_files(root: Path, excluded: set[str]) -> list[tuple[str, Path]]:
    """List ``(canonical_key, absolute_path)`` for every regular file under *root*.

    Symlinks are neither followed nor listed.  Keys in *excluded* (relative to
    the root) are skipped.  The result is sorted by key.
    """
    found: list[tuple[str, Path]] = []

    def _raise(exc: OSError) -> None:
        raise exc

    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames.sort()
        for name in filenames:
            file_path = Path(dirpath) / name
            if file_path.is_symlink() or not file_path.is_file():
                continue
            key = normalize_relative_path(os.path.relpath(file_path, root))
            if key in excluded:
                continue
            found.append((key, file_path))
    found.sort(key=lambda item: item[0])
    return found


class ManifestBuilder:
    """Walk a build output tree and produce a :class:`Manifest`."""

    def __init__(
        self,
        manifest_name: str = DEFAULT_MANIFEST_NAME,
        signature_suffix: str = DEFAULT_SIGNATURE_SUFFIX,
        workers: int = 1,
    ) -> None:
        self.manifest_name = manifest_name
        self.signature_name = signature_name(manifest_name, signature_suffix)
        self.workers = max(1, workers)

    @property
    def excluded(self) -> set[str]:
        return {self.manifest_name, self.signature_name}

    def build(self, root: str | Path, generated_at: datetime | None = None) -> Manifest:
        """Hash every regular file under *root*.

        The operation is all-or-nothing: any read failure raises
        :class:`IOFailure` and no manifest is returned.
        """
        root_path = Path(root)
        if not root_path.is_dir():
            raise IOFailure(
                f"Output root does not exist or is not a directory: {root}", str(root)
            )

        try:
            files = iter_tree_files(root_path, self.excluded)
        except OSError as exc:
            raise IOFailure(f"Cannot walk {root}: {exc}", exc.filename) from exc
        except ValueError as exc:
            raise IOFailure(f"Unsupported file name under {root}: {exc}") from exc

        def _hash(item: tuple[str, Path]) -> tuple[str, FileEntry]:
            key, file_path = item
            try:
                hex_digest, size = digest_file(file_path)
            except OSError as exc:
                raise IOFailure(f"Cannot read {key}: {exc}", key) from exc
            return key, FileEntry(digest=hex_digest, size=size)

        if self.workers > 1 and len(files) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                hashed = list(pool.map(_hash, files))
        else:
            hashed = [_hash(item) for item in files]

        hashed.sort(key=lambda item: item[0])
        manifest = Manifest(
            generated_at=generated_at or _build_timestamp(),
            files=dict(hashed),
        )
        logger.info(
            "Built manifest for %s: %d files, %d bytes",
            root_path, len(manifest.files), manifest.total_size,
        )
        return manifest


__all__ = [
    "DEFAULT_MANIFEST_NAME",
    "DEFAULT_SIGNATURE_SUFFIX",
    "ManifestBuilder",
    "canonical_bytes",
    "iter_tree_files",
    "load_manifest",
    "normalize_relative_path",
    "parse_manifest",
    "signature_name",
]
