"""Two-directional verification of a site tree against its manifest."""

from __future__ import annotations

import logging
from pathlib import Path

from aumai_siteseal.errors import IOFailure, TrustChainBroken
from aumai_siteseal.hashing import digest_file, digests_equal
from aumai_siteseal.keyring import KeyRing
from aumai_siteseal.manifest import (
    DEFAULT_MANIFEST_NAME,
    DEFAULT_SIGNATURE_SUFFIX,
    iter_tree_files,
    parse_manifest,
    signature_name,
)
from aumai_siteseal.models import (
    Manifest,
    VerificationReport,
    Violation,
    ViolationKind,
)

logger = logging.getLogger(__name__)


class BuildVerifier:
    """Check every file of a tree against a manifest, in both directions.

    A manifest that under-lists files is as dangerous as a stale one, so files
    present in the tree but absent from the manifest are reported too.
    """

    def __init__(
        self,
        manifest_name: str = DEFAULT_MANIFEST_NAME,
        signature_suffix: str = DEFAULT_SIGNATURE_SUFFIX,
    ) -> None:
        self.manifest_name = manifest_name
        self.signature_name = signature_name(manifest_name, signature_suffix)

    def verify_all(self, tree: str | Path, manifest: Manifest) -> VerificationReport:
        """Return every violation found; an empty report means success.

        Raises:
            IOFailure: if the tree cannot be walked or a file cannot be read.
        """
        root = Path(tree)
        if not root.is_dir():
            raise IOFailure(f"Tree does not exist or is not a directory: {tree}", str(tree))

        try:
            on_disk = dict(iter_tree_files(root, {self.manifest_name, self.signature_name}))
        except OSError as exc:
            raise IOFailure(f"Cannot walk {tree}: {exc}", exc.filename) from exc
        except ValueError as exc:
            raise IOFailure(f"Unsupported file name under {tree}: {exc}") from exc

        violations: list[Violation] = []

        for path, entry in manifest.files.items():
            file_path = on_disk.get(path)
            if file_path is None:
                violations.append(
                    Violation(kind=ViolationKind.content_mismatch, path=path, detail="missing")
                )
                continue
            try:
                actual_digest, actual_size = digest_file(file_path)
            except OSError as exc:
                raise IOFailure(f"Cannot read {path}: {exc}", path) from exc
            if actual_size != entry.size:
                violations.append(
                    Violation(
                        kind=ViolationKind.content_mismatch,
                        path=path,
                        detail=f"size {actual_size} != expected {entry.size}",
                    )
                )
            elif not digests_equal(entry.digest, actual_digest):
                violations.append(
                    Violation(
                        kind=ViolationKind.content_mismatch,
                        path=path,
                        detail="digest mismatch",
                    )
                )

        for path in on_disk:
            if path not in manifest.files:
                violations.append(
                    Violation(
                        kind=ViolationKind.unexpected_file,
                        path=path,
                        detail="not listed in manifest",
                    )
                )

        violations.sort(key=lambda v: (v.path, v.kind.value))
        report = VerificationReport(root=str(root), violations=violations)
        if report.ok:
            logger.info("Verified %d files under %s", len(manifest.files), root)
        else:
            for violation in violations:
                logger.error(
                    "Integrity violation in %s: %s %s (%s)",
                    root, violation.kind.value, violation.path, violation.detail,
                )
        return report

    def verify_signed(self, tree: str | Path, keyring: KeyRing) -> VerificationReport:
        """Verify the tree's own manifest signature, then its contents.

        Raises:
            TrustChainBroken: if the manifest or signature is missing or the
                signature is not valid under *keyring*.
        """
        root = Path(tree)
        manifest_path = root / self.manifest_name
        signature_path = root / self.signature_name
        try:
            manifest_bytes = manifest_path.read_bytes()
            signature_bytes = signature_path.read_bytes()
        except FileNotFoundError as exc:
            raise TrustChainBroken(f"Missing manifest or signature: {exc.filename}") from exc
        except OSError as exc:
            raise IOFailure(f"Cannot read manifest pair in {tree}: {exc}", str(tree)) from exc

        keyring.require_valid(manifest_bytes, signature_bytes)
        return self.verify_all(root, parse_manifest(manifest_bytes))


__all__ = ["BuildVerifier"]
