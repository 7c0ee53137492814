"""Tests for aumai_siteseal.verifier — BuildVerifier."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from aumai_siteseal.errors import BuildVerificationFailed, IOFailure, TrustChainBroken
from aumai_siteseal.keyring import KeyRing
from aumai_siteseal.manifest import ManifestBuilder
from aumai_siteseal.models import Manifest, Signature, ViolationKind
from aumai_siteseal.verifier import BuildVerifier

FIXED = datetime(2024, 1, 1, tzinfo=UTC)


@pytest.fixture()
def manifest(site_dir: Path) -> Manifest:
    return ManifestBuilder().build(site_dir, generated_at=FIXED)


class TestVerifyAll:
    def test_round_trip_has_no_violations(self, site_dir: Path, manifest: Manifest) -> None:
        report = BuildVerifier().verify_all(site_dir, manifest)
        assert report.ok
        assert report.violations == []

    def test_empty_tree_round_trip(self, empty_site_dir: Path) -> None:
        manifest = ManifestBuilder().build(empty_site_dir, generated_at=FIXED)
        assert BuildVerifier().verify_all(empty_site_dir, manifest).ok

    @pytest.mark.parametrize(
        "target", ["index.html", "about/index.html", "img/logo.png", "css/site.3f2a9c1e.css"]
    )
    def test_single_byte_mutation_flags_exactly_that_path(
        self, site_dir: Path, manifest: Manifest, target: str
    ) -> None:
        path = site_dir / target
        data = bytearray(path.read_bytes())
        data[0] ^= 0xFF
        path.write_bytes(bytes(data))

        report = BuildVerifier().verify_all(site_dir, manifest)
        assert report.paths() == [target]
        assert report.violations[0].kind == ViolationKind.content_mismatch
        assert report.violations[0].detail == "digest mismatch"

    def test_size_change_reported(self, site_dir: Path, manifest: Manifest) -> None:
        (site_dir / "index.html").write_text("<h1>Home</h1>!")
        report = BuildVerifier().verify_all(site_dir, manifest)
        assert report.paths(ViolationKind.content_mismatch) == ["index.html"]
        assert "size" in report.violations[0].detail

    def test_missing_file_is_content_mismatch(self, site_dir: Path, manifest: Manifest) -> None:
        (site_dir / "404.html").unlink()
        report = BuildVerifier().verify_all(site_dir, manifest)
        assert report.paths() == ["404.html"]
        assert report.violations[0].kind == ViolationKind.content_mismatch
        assert report.violations[0].detail == "missing"

    def test_extra_file_is_single_unexpected_file(self, site_dir: Path, manifest: Manifest) -> None:
        (site_dir / "css" / "evil.js").write_text("alert(1)")
        report = BuildVerifier().verify_all(site_dir, manifest)
        assert report.paths() == ["css/evil.js"]
        assert report.violations[0].kind == ViolationKind.unexpected_file

    def test_reports_all_violations(self, site_dir: Path, manifest: Manifest) -> None:
        (site_dir / "index.html").write_text("tampered")
        (site_dir / "404.html").unlink()
        (site_dir / "extra.txt").write_text("x")
        report = BuildVerifier().verify_all(site_dir, manifest)
        assert report.paths() == ["404.html", "extra.txt", "index.html"]
        assert report.paths(ViolationKind.unexpected_file) == ["extra.txt"]

    def test_manifest_pair_files_are_not_unexpected(
        self, site_dir: Path, manifest: Manifest
    ) -> None:
        (site_dir / "integrity-manifest.json").write_text("{}")
        (site_dir / "integrity-manifest.json.sig").write_text("{}")
        assert BuildVerifier().verify_all(site_dir, manifest).ok

    def test_raise_for_violations(self, site_dir: Path, manifest: Manifest) -> None:
        (site_dir / "extra.txt").write_text("x")
        report = BuildVerifier().verify_all(site_dir, manifest)
        with pytest.raises(BuildVerificationFailed):
            report.raise_for_violations()

    def test_missing_tree_raises_io_failure(self, tmp_path: Path, manifest: Manifest) -> None:
        with pytest.raises(IOFailure):
            BuildVerifier().verify_all(tmp_path / "gone", manifest)

    def test_unreadable_file_propagates(
        self, site_dir: Path, manifest: Manifest, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        import aumai_siteseal.verifier as verifier_module

        def broken(path: Path) -> tuple[str, int]:
            raise PermissionError(13, "Permission denied", str(path))

        monkeypatch.setattr(verifier_module, "digest_file", broken)
        with pytest.raises(IOFailure):
            BuildVerifier().verify_all(site_dir, manifest)


class TestVerifySigned:
    def test_signed_tree_verifies(
        self, signed_site: tuple[Path, Manifest, Signature], keyring: KeyRing
    ) -> None:
        site, _, _ = signed_site
        assert BuildVerifier().verify_signed(site, keyring).ok

    def test_missing_signature_breaks_trust_chain(
        self, signed_site: tuple[Path, Manifest, Signature], keyring: KeyRing
    ) -> None:
        site, _, _ = signed_site
        (site / "integrity-manifest.json.sig").unlink()
        with pytest.raises(TrustChainBroken, match="Missing"):
            BuildVerifier().verify_signed(site, keyring)

    def test_edited_manifest_breaks_trust_chain(
        self, signed_site: tuple[Path, Manifest, Signature], keyring: KeyRing
    ) -> None:
        site, _, _ = signed_site
        manifest_path = site / "integrity-manifest.json"
        manifest_path.write_bytes(manifest_path.read_bytes().replace(b'"1.0"', b'"1.0" '))
        with pytest.raises(TrustChainBroken):
            BuildVerifier().verify_signed(site, keyring)

    def test_untrusted_key_breaks_trust_chain(
        self,
        signed_site: tuple[Path, Manifest, Signature],
        ecdsa_p256_keypair: tuple[bytes, bytes],
    ) -> None:
        site, _, _ = signed_site
        other = KeyRing.from_public_keys(ecdsa_p256_keypair[1])
        with pytest.raises(TrustChainBroken):
            BuildVerifier().verify_signed(site, other)

    def test_content_tamper_after_signing(
        self, signed_site: tuple[Path, Manifest, Signature], keyring: KeyRing
    ) -> None:
        site, _, _ = signed_site
        (site / "about" / "index.html").write_text("<h1>Pwned</h1>")
        report = BuildVerifier().verify_signed(site, keyring)
        assert report.paths() == ["about/index.html"]
