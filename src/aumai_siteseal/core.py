"""Key management and detached manifest signatures."""

from __future__ import annotations

import hashlib
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.ec import (
    ECDSA,
    EllipticCurvePrivateKey,
)
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from aumai_siteseal.errors import IOFailure
from aumai_siteseal.manifest import (
    DEFAULT_MANIFEST_NAME,
    DEFAULT_SIGNATURE_SUFFIX,
    ManifestBuilder,
    signature_name,
    write_manifest,
)
from aumai_siteseal.models import (
    Manifest,
    Signature,
    SignatureAlgorithm,
    VerificationResult,
)

logger = logging.getLogger(__name__)

RSA_KEY_SIZE = 3072

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _pss_padding() -> padding.PSS:
    return padding.PSS(
        mgf=padding.MGF1(hashes.SHA256()),
        salt_length=padding.PSS.DIGEST_LENGTH,
    )


def _public_pem(
    private_key: Ed25519PrivateKey | EllipticCurvePrivateKey | RSAPrivateKey,
) -> bytes:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def key_fingerprint(public_key_pem: bytes) -> str:
    """Return the key identifier: SHA-256 over the SubjectPublicKeyInfo DER."""
    public_key = serialization.load_pem_public_key(public_key_pem)
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()


def algorithm_for_public_key(public_key_pem: bytes) -> SignatureAlgorithm:
    """Infer the :class:`SignatureAlgorithm` a public key signs with."""
    public_key = serialization.load_pem_public_key(public_key_pem)
    if isinstance(public_key, Ed25519PublicKey):
        return SignatureAlgorithm.ed25519
    if isinstance(public_key, ec.EllipticCurvePublicKey) and isinstance(
        public_key.curve, ec.SECP256R1
    ):
        return SignatureAlgorithm.ecdsa_p256
    if isinstance(public_key, rsa.RSAPublicKey):
        return SignatureAlgorithm.rsa_pss
    raise ValueError(f"Unsupported public key type: {type(public_key).__name__}")


# ---------------------------------------------------------------------------
# KeyManager
# ---------------------------------------------------------------------------


class KeyManager:
    """Generate, persist, and load asymmetric key pairs."""

    def generate_keypair(
        self,
        algorithm: SignatureAlgorithm,
        passphrase: bytes | None = None,
    ) -> tuple[bytes, bytes]:
        """Generate a fresh key pair.

        Args:
            algorithm: ``ed25519``, ``ecdsa_p256`` or ``rsa_pss``.
            passphrase: Optional passphrase to encrypt the private key PEM.

        Returns:
            A tuple of ``(private_key_bytes, public_key_bytes)`` in PEM format.
        """
        encryption: serialization.KeySerializationEncryption = (
            serialization.BestAvailableEncryption(passphrase)
            if passphrase is not None
            else serialization.NoEncryption()
        )
        private_key: Ed25519PrivateKey | EllipticCurvePrivateKey | RSAPrivateKey
        if algorithm == SignatureAlgorithm.ed25519:
            private_key = Ed25519PrivateKey.generate()
        elif algorithm == SignatureAlgorithm.ecdsa_p256:
            private_key = ec.generate_private_key(ec.SECP256R1())
        else:
            private_key = rsa.generate_private_key(
                public_exponent=65537, key_size=RSA_KEY_SIZE
            )
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        )
        return private_pem, _public_pem(private_key)

    def save_keypair(
        self, private_key: bytes, public_key: bytes, path: str
    ) -> None:
        """Write the PEM-encoded key pair to *path*/private.pem and *path*/public.pem.

        The private key file is written with mode 0o600 on POSIX systems.
        """
        out_dir = Path(path)
        out_dir.mkdir(parents=True, exist_ok=True)

        private_file = out_dir / "private.pem"
        public_file = out_dir / "public.pem"

        private_file.write_bytes(private_key)
        public_file.write_bytes(public_key)

        try:
            os.chmod(private_file, 0o600)
        except NotImplementedError:
            pass  # Windows

    def load_private_key(self, path: str, password: bytes | None = None) -> bytes:
        """Read and return raw PEM bytes from *path*.

        The key is parsed eagerly so that a wrong password or a corrupt file
        fails here rather than at signing time.
        """
        pem_bytes = Path(path).read_bytes()
        serialization.load_pem_private_key(pem_bytes, password=password)
        return pem_bytes

    def load_public_key(self, path: str) -> bytes:
        """Read and return raw PEM bytes from *path*."""
        pem_bytes = Path(path).read_bytes()
        serialization.load_pem_public_key(pem_bytes)
        return pem_bytes


# ---------------------------------------------------------------------------
# ManifestSigner
# ---------------------------------------------------------------------------


class ManifestSigner:
    """Sign canonical manifest bytes and verify detached signatures."""

    def sign(
        self,
        manifest_bytes: bytes,
        private_key_bytes: bytes,
        signer_id: str = "",
        password: bytes | None = None,
    ) -> Signature:
        """Sign the exact *manifest_bytes* with a PEM private key.

        Raises:
            ValueError: if the key type is not one of the supported schemes.
        """
        private_key = serialization.load_pem_private_key(
            private_key_bytes, password=password
        )

        if isinstance(private_key, Ed25519PrivateKey):
            algorithm = SignatureAlgorithm.ed25519
            raw_sig = private_key.sign(manifest_bytes)
        elif isinstance(private_key, EllipticCurvePrivateKey) and isinstance(
            private_key.curve, ec.SECP256R1
        ):
            algorithm = SignatureAlgorithm.ecdsa_p256
            raw_sig = private_key.sign(manifest_bytes, ECDSA(hashes.SHA256()))
        elif isinstance(private_key, RSAPrivateKey):
            algorithm = SignatureAlgorithm.rsa_pss
            raw_sig = private_key.sign(manifest_bytes, _pss_padding(), hashes.SHA256())
        else:
            raise ValueError(
                f"Unsupported key type: {type(private_key).__name__}. "
                "Only Ed25519, ECDSA P-256 and RSA-PSS are supported."
            )

        return Signature(
            algorithm=algorithm,
            key_id=key_fingerprint(_public_pem(private_key)),
            signature_hex=raw_sig.hex(),
            signed_at=datetime.now(tz=UTC),
            signer_id=signer_id,
        )

    def check(
        self,
        manifest_bytes: bytes,
        signature: Signature,
        public_key_bytes: bytes,
    ) -> VerificationResult:
        """Verify *signature* over *manifest_bytes* and explain any failure."""
        try:
            public_key = serialization.load_pem_public_key(public_key_bytes)
            expected_algorithm = algorithm_for_public_key(public_key_bytes)
            expected_key_id = key_fingerprint(public_key_bytes)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            return VerificationResult(
                valid=False, error=f"Failed to load public key: {exc}"
            )

        if signature.key_id != expected_key_id:
            return VerificationResult(
                valid=False,
                key_id=signature.key_id,
                error="Signature key id does not match the public key",
            )
        if signature.algorithm != expected_algorithm:
            return VerificationResult(
                valid=False,
                key_id=signature.key_id,
                error=(
                    f"Signature algorithm {signature.algorithm.value} does not "
                    f"match {expected_algorithm.value} public key"
                ),
            )

        try:
            raw_sig = bytes.fromhex(signature.signature_hex)
            if isinstance(public_key, Ed25519PublicKey):
                public_key.verify(raw_sig, manifest_bytes)
            elif isinstance(public_key, ec.EllipticCurvePublicKey):
                public_key.verify(raw_sig, manifest_bytes, ECDSA(hashes.SHA256()))
            elif isinstance(public_key, rsa.RSAPublicKey):
                public_key.verify(
                    raw_sig, manifest_bytes, _pss_padding(), hashes.SHA256()
                )
        except (InvalidSignature, ValueError) as exc:
            return VerificationResult(
                valid=False,
                key_id=signature.key_id,
                error=f"Signature verification failed: {str(exc) or 'invalid signature'}",
            )

        return VerificationResult(valid=True, key_id=signature.key_id)

    def verify(
        self,
        manifest_bytes: bytes,
        signature: Signature,
        public_key_bytes: bytes,
    ) -> bool:
        """Return True if *signature* is a valid signature over *manifest_bytes*."""
        return self.check(manifest_bytes, signature, public_key_bytes).valid


def write_signature(signature: Signature, path: str | Path) -> None:
    """Persist a detached signature as JSON."""
    try:
        Path(path).write_text(
            signature.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
        )
    except OSError as exc:
        raise IOFailure(f"Cannot write signature {path}: {exc}", str(path)) from exc


def sign_tree(
    root: str | Path,
    private_key_bytes: bytes,
    signer_id: str = "",
    password: bytes | None = None,
    manifest_name: str = DEFAULT_MANIFEST_NAME,
    signature_suffix: str = DEFAULT_SIGNATURE_SUFFIX,
    workers: int = 1,
    generated_at: datetime | None = None,
) -> tuple[Manifest, Signature]:
    """Build, persist and sign the manifest of the output tree at *root*.

    The manifest and its detached signature are written into *root*.
    """
    root_path = Path(root)
    builder = ManifestBuilder(manifest_name, signature_suffix, workers=workers)
    manifest = builder.build(root_path, generated_at=generated_at)
    payload = write_manifest(manifest, root_path / manifest_name)
    signature = ManifestSigner().sign(
        payload, private_key_bytes, signer_id=signer_id, password=password
    )
    write_signature(signature, root_path / signature_name(manifest_name, signature_suffix))
    logger.info(
        "Signed manifest for %s with %s key %s",
        root_path, signature.algorithm.value, signature.key_id[:16],
    )
    return manifest, signature


__all__ = [
    "KeyManager",
    "ManifestSigner",
    "algorithm_for_public_key",
    "key_fingerprint",
    "sign_tree",
    "write_signature",
]
