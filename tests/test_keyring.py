"""Tests for aumai_siteseal.keyring — KeyRing."""

from __future__ import annotations

import base64
import json
from pathlib import Path

import pytest

from aumai_siteseal.core import ManifestSigner, key_fingerprint
from aumai_siteseal.errors import TrustChainBroken
from aumai_siteseal.keyring import KeyRing, parse_signature
from aumai_siteseal.models import SignatureAlgorithm

PAYLOAD = b'{"files":{},"generatedAt":"2024-01-01T00:00:00Z","version":"1.0"}'

# ===========================================================================
# CRUD operations
# ===========================================================================


class TestKeyRingCRUD:
    def test_empty_keyring_has_no_keys(self) -> None:
        ring = KeyRing()
        assert ring.list_keys() == []
        assert len(ring) == 0

    def test_add_public_key_derives_identity(
        self, ed25519_keypair: tuple[bytes, bytes]
    ) -> None:
        _, public_pem = ed25519_keypair
        key = KeyRing().add_public_key(public_pem, label="ci")
        assert key.key_id == key_fingerprint(public_pem)
        assert key.algorithm == SignatureAlgorithm.ed25519
        assert base64.b64decode(key.public_key) == public_pem
        assert key.label == "ci"

    def test_get_missing_key_returns_none(self) -> None:
        assert KeyRing().get_key("nonexistent") is None

    def test_from_public_keys(
        self,
        ed25519_keypair: tuple[bytes, bytes],
        ecdsa_p256_keypair: tuple[bytes, bytes],
    ) -> None:
        ring = KeyRing.from_public_keys(ed25519_keypair[1], ecdsa_p256_keypair[1])
        assert len(ring) == 2

    def test_adding_same_key_twice_keeps_one_entry(
        self, ed25519_keypair: tuple[bytes, bytes]
    ) -> None:
        ring = KeyRing()
        ring.add_public_key(ed25519_keypair[1], label="first")
        ring.add_public_key(ed25519_keypair[1], label="second")
        assert len(ring) == 1
        assert ring.list_keys()[0].label == "second"

    def test_remove_key(self, ed25519_keypair: tuple[bytes, bytes]) -> None:
        ring = KeyRing()
        key = ring.add_public_key(ed25519_keypair[1])
        ring.remove_key(key.key_id)
        assert ring.get_key(key.key_id) is None

    def test_remove_nonexistent_key_raises_key_error(self) -> None:
        with pytest.raises(KeyError, match="Key not found"):
            KeyRing().remove_key("does-not-exist")


# ===========================================================================
# Persistence
# ===========================================================================


class TestKeyRingPersistence:
    def test_add_writes_valid_json(
        self, tmp_path: Path, ed25519_keypair: tuple[bytes, bytes]
    ) -> None:
        path = tmp_path / "nested" / "keyring.json"
        key = KeyRing(str(path)).add_public_key(ed25519_keypair[1])
        raw = json.loads(path.read_text(encoding="utf-8"))
        assert isinstance(raw, list)
        assert raw[0]["key_id"] == key.key_id

    def test_reload_restores_keys(
        self,
        tmp_path: Path,
        ed25519_keypair: tuple[bytes, bytes],
        ecdsa_p256_keypair: tuple[bytes, bytes],
    ) -> None:
        path = tmp_path / "keyring.json"
        ring = KeyRing(str(path))
        ring.add_public_key(ed25519_keypair[1])
        ring.add_public_key(ecdsa_p256_keypair[1])

        restored = KeyRing(str(path))
        assert len(restored) == 2
        assert restored.get_key(key_fingerprint(ed25519_keypair[1])) is not None

    def test_remove_persists(
        self, tmp_path: Path, ed25519_keypair: tuple[bytes, bytes]
    ) -> None:
        path = tmp_path / "keyring.json"
        ring = KeyRing(str(path))
        key = ring.add_public_key(ed25519_keypair[1])
        ring.remove_key(key.key_id)
        assert KeyRing(str(path)).list_keys() == []

    def test_loading_nonexistent_file_starts_empty(self, tmp_path: Path) -> None:
        assert KeyRing(str(tmp_path / "missing.json")).list_keys() == []


# ===========================================================================
# Verification
# ===========================================================================


class TestKeyRingVerify:
    def test_known_key_valid_signature(
        self, ed25519_keypair: tuple[bytes, bytes], keyring: KeyRing
    ) -> None:
        signature = ManifestSigner().sign(PAYLOAD, ed25519_keypair[0])
        result = keyring.check(PAYLOAD, signature)
        assert result.valid is True
        assert result.key_id == signature.key_id

    def test_selects_key_by_id(
        self,
        ed25519_keypair: tuple[bytes, bytes],
        rsa_pss_keypair: tuple[bytes, bytes],
    ) -> None:
        ring = KeyRing.from_public_keys(ed25519_keypair[1], rsa_pss_keypair[1])
        signature = ManifestSigner().sign(PAYLOAD, rsa_pss_keypair[0])
        assert ring.check(PAYLOAD, signature).valid is True

    def test_unknown_key_is_rejected(
        self, ecdsa_p256_keypair: tuple[bytes, bytes], keyring: KeyRing
    ) -> None:
        signature = ManifestSigner().sign(PAYLOAD, ecdsa_p256_keypair[0])
        result = keyring.check(PAYLOAD, signature)
        assert result.valid is False
        assert "not in the keyring" in (result.error or "")

    def test_require_valid_returns_signature(
        self, ed25519_keypair: tuple[bytes, bytes], keyring: KeyRing
    ) -> None:
        signature = ManifestSigner().sign(PAYLOAD, ed25519_keypair[0])
        raw = signature.model_dump_json(by_alias=True).encode()
        assert keyring.require_valid(PAYLOAD, raw) == signature

    def test_require_valid_rejects_modified_payload(
        self, ed25519_keypair: tuple[bytes, bytes], keyring: KeyRing
    ) -> None:
        signature = ManifestSigner().sign(PAYLOAD, ed25519_keypair[0])
        raw = signature.model_dump_json(by_alias=True).encode()
        with pytest.raises(TrustChainBroken):
            keyring.require_valid(PAYLOAD + b" ", raw)

    def test_require_valid_rejects_malformed_signature(self, keyring: KeyRing) -> None:
        with pytest.raises(TrustChainBroken, match="Malformed signature"):
            keyring.require_valid(PAYLOAD, b"{}")

    def test_parse_signature_rejects_non_json(self) -> None:
        with pytest.raises(TrustChainBroken):
            parse_signature(b"\x00\x01")
