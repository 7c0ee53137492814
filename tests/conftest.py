"""Shared test fixtures for aumai-siteseal."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest

from aumai_siteseal.core import KeyManager, sign_tree
from aumai_siteseal.keyring import KeyRing
from aumai_siteseal.models import Manifest, Signature, SignatureAlgorithm

FIXED_TIME = datetime(2024, 1, 1, tzinfo=UTC)

# ---------------------------------------------------------------------------
# Key-pair fixtures — one per algorithm
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def key_manager() -> KeyManager:
    """A shared KeyManager instance (stateless, safe to share)."""
    return KeyManager()


@pytest.fixture(scope="session")
def ed25519_keypair(key_manager: KeyManager) -> tuple[bytes, bytes]:
    """(private_pem, public_pem) for Ed25519."""
    return key_manager.generate_keypair(SignatureAlgorithm.ed25519)


@pytest.fixture(scope="session")
def ecdsa_p256_keypair(key_manager: KeyManager) -> tuple[bytes, bytes]:
    """(private_pem, public_pem) for ECDSA P-256."""
    return key_manager.generate_keypair(SignatureAlgorithm.ecdsa_p256)


@pytest.fixture(scope="session")
def rsa_pss_keypair(key_manager: KeyManager) -> tuple[bytes, bytes]:
    """(private_pem, public_pem) for RSA-PSS."""
    return key_manager.generate_keypair(SignatureAlgorithm.rsa_pss)


@pytest.fixture()
def keyring(ed25519_keypair: tuple[bytes, bytes]) -> KeyRing:
    """In-memory keyring trusting the session Ed25519 public key."""
    _, public_pem = ed25519_keypair
    return KeyRing.from_public_keys(public_pem)


# ---------------------------------------------------------------------------
# Site-tree fixtures
# ---------------------------------------------------------------------------


def write_site(root: Path) -> Path:
    """Populate *root* with a small static site.

    Structure:
        index.html
        404.html
        about/index.html
        css/site.3f2a9c1e.css
        img/logo.png — 256 bytes of binary data
    """
    root.mkdir(parents=True, exist_ok=True)
    (root / "index.html").write_text("<h1>Home</h1>", encoding="utf-8")
    (root / "404.html").write_text("<h1>Not here</h1>", encoding="utf-8")
    (root / "about").mkdir()
    (root / "about" / "index.html").write_text("<h1>About</h1>", encoding="utf-8")
    (root / "css").mkdir()
    (root / "css" / "site.3f2a9c1e.css").write_text("body{margin:0}", encoding="utf-8")
    (root / "img").mkdir()
    (root / "img" / "logo.png").write_bytes(bytes(range(256)))
    return root


@pytest.fixture()
def site_dir(tmp_path: Path) -> Path:
    """An unsigned build output tree."""
    return write_site(tmp_path / "site")


@pytest.fixture()
def empty_site_dir(tmp_path: Path) -> Path:
    """A build output tree with no files (edge case)."""
    empty = tmp_path / "empty_site"
    empty.mkdir()
    return empty


@pytest.fixture()
def signed_site(
    site_dir: Path, ed25519_keypair: tuple[bytes, bytes]
) -> tuple[Path, Manifest, Signature]:
    """*site_dir* with manifest and detached signature written into it."""
    private_pem, _ = ed25519_keypair
    manifest, signature = sign_tree(
        site_dir, private_pem, signer_id="builder@example.com", generated_at=FIXED_TIME
    )
    return site_dir, manifest, signature


@pytest.fixture()
def saved_ed25519_keys(
    tmp_path: Path,
    ed25519_keypair: tuple[bytes, bytes],
    key_manager: KeyManager,
) -> tuple[Path, Path]:
    """Write the Ed25519 key pair to tmp_path; return (private, public) Paths."""
    keys_dir = tmp_path / "keys"
    private_pem, public_pem = ed25519_keypair
    key_manager.save_keypair(private_pem, public_pem, str(keys_dir))
    return keys_dir / "private.pem", keys_dir / "public.pem"


@pytest.fixture()
def make_signed_site(
    tmp_path: Path, ed25519_keypair: tuple[bytes, bytes]
) -> Callable[[str, str], Path]:
    """Factory for further signed builds whose home page reads *marker*."""
    private_pem, _ = ed25519_keypair

    def _make(name: str, marker: str) -> Path:
        root = write_site(tmp_path / name)
        (root / "index.html").write_text(f"<h1>{marker}</h1>", encoding="utf-8")
        sign_tree(root, private_pem, generated_at=FIXED_TIME)
        return root

    return _make
