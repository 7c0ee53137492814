"""Trusted public keys for manifest verification, with JSON file persistence."""

from __future__ import annotations

import base64
import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from aumai_siteseal.core import (
    ManifestSigner,
    algorithm_for_public_key,
    key_fingerprint,
)
from aumai_siteseal.errors import TrustChainBroken
from aumai_siteseal.models import Signature, TrustedKey, VerificationResult

logger = logging.getLogger(__name__)


def parse_signature(raw: bytes) -> Signature:
    """Parse detached signature bytes, raising :class:`TrustChainBroken`."""
    try:
        return Signature.model_validate_json(raw)
    except ValidationError as exc:
        raise TrustChainBroken(f"Malformed signature: {exc}") from exc


class KeyRing:
    """Public keys trusted to sign manifests, selected by key id.

    Only public material is held here; private keys never leave the build
    environment.  Mutations persist immediately when a path is configured.
    Protect the keyring file with filesystem permissions: anyone able to
    write it can add a key and forge manifests.
    """

    def __init__(self, keyring_path: str | None = None) -> None:
        self._keyring_path = Path(keyring_path) if keyring_path else None
        self._keys: dict[str, TrustedKey] = {}

        if self._keyring_path and self._keyring_path.exists():
            self._load()

    @classmethod
    def from_public_keys(cls, *public_pems: bytes) -> KeyRing:
        """Build an in-memory keyring from PEM-encoded public keys."""
        ring = cls()
        for pem in public_pems:
            ring.add_public_key(pem)
        return ring

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def add_key(self, key: TrustedKey) -> None:
        """Add or replace a trusted key entry."""
        self._keys[key.key_id] = key
        self._save()

    def add_public_key(self, public_pem: bytes, label: str = "") -> TrustedKey:
        """Trust a PEM public key, deriving its id and algorithm."""
        key = TrustedKey(
            key_id=key_fingerprint(public_pem),
            algorithm=algorithm_for_public_key(public_pem),
            public_key=base64.b64encode(public_pem).decode("ascii"),
            label=label,
            trusted_since=datetime.now(tz=UTC),
        )
        self.add_key(key)
        return key

    def remove_key(self, key_id: str) -> None:
        """Remove a key from the keyring.

        Raises:
            KeyError: if the key_id is not in the keyring.
        """
        if key_id not in self._keys:
            raise KeyError(f"Key not found: {key_id}")
        del self._keys[key_id]
        self._save()

    def get_key(self, key_id: str) -> TrustedKey | None:
        return self._keys.get(key_id)

    def list_keys(self) -> list[TrustedKey]:
        return list(self._keys.values())

    def __len__(self) -> int:
        return len(self._keys)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def check(self, manifest_bytes: bytes, signature: Signature) -> VerificationResult:
        """Verify *signature* with the trusted key named by its key id."""
        key = self._keys.get(signature.key_id)
        if key is None:
            return VerificationResult(
                valid=False,
                key_id=signature.key_id,
                error=f"Key '{signature.key_id}' is not in the keyring.",
            )
        public_pem = base64.b64decode(key.public_key)
        return ManifestSigner().check(manifest_bytes, signature, public_pem)

    def require_valid(self, manifest_bytes: bytes, signature_bytes: bytes) -> Signature:
        """Parse and verify a detached signature.

        Raises:
            TrustChainBroken: if the signature is malformed or not valid
                under any trusted key.
        """
        signature = parse_signature(signature_bytes)
        result = self.check(manifest_bytes, signature)
        if not result.valid:
            raise TrustChainBroken(result.error or "invalid manifest signature")
        return signature

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _save(self) -> None:
        if self._keyring_path is None:
            return
        self._keyring_path.parent.mkdir(parents=True, exist_ok=True)
        data = [k.model_dump(mode="json") for k in self._keys.values()]
        self._keyring_path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def _load(self) -> None:
        if self._keyring_path is None or not self._keyring_path.exists():
            return
        raw = json.loads(self._keyring_path.read_text(encoding="utf-8"))
        for entry in raw:
            key = TrustedKey(**entry)
            self._keys[key.key_id] = key
        logger.debug("Loaded %d trusted keys from %s", len(self._keys), self._keyring_path)


__all__ = ["KeyRing", "parse_signature"]
