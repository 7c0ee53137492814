"""Pydantic models for aumai-siteseal."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from aumai_siteseal.errors import BuildVerificationFailed, ContentMismatch, UnexpectedFile

MANIFEST_VERSION = "1.0"

_FORBIDDEN_SEGMENTS = {"", ".", ".."}


def is_canonical_path(path: str) -> bool:
    """Return True if *path* is a canonical manifest key.

    Canonical keys have no leading slash, use ``/`` as separator and contain
    no empty, ``.`` or ``..`` segments, backslashes or NUL characters.
    """
    if not path or "\\" in path or "\x00" in path:
        return False
    return not any(segment in _FORBIDDEN_SEGMENTS for segment in path.split("/"))


class SignatureAlgorithm(str, Enum):
    """Asymmetric signing algorithm choices."""

    ed25519 = "ed25519"
    ecdsa_p256 = "ecdsa_p256"
    rsa_pss = "rsa_pss"


class FileEntry(BaseModel):
    """Expected digest and size of a single file in a site build."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    digest: str = Field(alias="hash", pattern=r"^[0-9a-f]{64}$")
    size: int = Field(ge=0)


class Manifest(BaseModel):
    """Index of every file a build emitted, keyed by canonical relative path."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    version: str = MANIFEST_VERSION
    generated_at: datetime = Field(alias="generatedAt")
    files: dict[str, FileEntry] = Field(default_factory=dict)

    @field_validator("version")
    @classmethod
    def _known_version(cls, value: str) -> str:
        if value != MANIFEST_VERSION:
            raise ValueError(f"unsupported manifest version: {value!r}")
        return value

    @field_validator("files")
    @classmethod
    def _canonical_keys(cls, value: dict[str, FileEntry]) -> dict[str, FileEntry]:
        for path in value:
            if not is_canonical_path(path):
                raise ValueError(f"non-canonical manifest path: {path!r}")
        return value

    @property
    def total_size(self) -> int:
        return sum(entry.size for entry in self.files.values())


class Signature(BaseModel):
    """Detached signature over the canonical bytes of a :class:`Manifest`."""

    model_config = ConfigDict(populate_by_name=True)

    algorithm: SignatureAlgorithm
    key_id: str = Field(alias="keyId", min_length=1)
    signature_hex: str = Field(alias="signature", min_length=1)
    signed_at: datetime = Field(alias="signedAt")
    signer_id: str = Field(default="", alias="signerId")


class TrustedKey(BaseModel):
    """A public key the serving side accepts manifest signatures from."""

    key_id: str
    algorithm: SignatureAlgorithm
    public_key: str  # Base-64 encoded PEM
    label: str = ""
    trusted_since: datetime


class VerificationResult(BaseModel):
    """Outcome of a signature verification attempt."""

    valid: bool
    key_id: str | None = None
    error: str | None = None


class ViolationKind(str, Enum):
    content_mismatch = "content_mismatch"
    unexpected_file = "unexpected_file"


class Violation(BaseModel):
    """A single disagreement between a tree and its manifest."""

    kind: ViolationKind
    path: str
    detail: str = ""

    def to_error(self) -> ContentMismatch | UnexpectedFile:
        message = f"{self.path}: {self.detail}" if self.detail else self.path
        if self.kind == ViolationKind.unexpected_file:
            return UnexpectedFile(message, self.path)
        return ContentMismatch(message, self.path)


class VerificationReport(BaseModel):
    """All violations found while checking a tree against a manifest."""

    root: str
    violations: list[Violation] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    def paths(self, kind: ViolationKind | None = None) -> list[str]:
        """Paths of the violations, optionally filtered by *kind*."""
        return [v.path for v in self.violations if kind is None or v.kind == kind]

    def raise_for_violations(self) -> None:
        """Raise :class:`BuildVerificationFailed` if any violation was found."""
        if self.violations:
            raise BuildVerificationFailed(self)


class IncidentType(str, Enum):
    integrity_failure = "integrity_failure"
    trust_chain_broken = "trust_chain_broken"


class SecurityIncident(BaseModel):
    """Structured record of a request the edge gate refused for integrity reasons."""

    type: IncidentType
    path: str | None = None
    expected: str | None = None
    actual: str | None = None
    detail: str = ""
    severity: str = "critical"
    timestamp: datetime


class DeploymentState(BaseModel):
    """The live tree and the single retained rollback point."""

    active_path: str
    backup_path: str | None = None
    timestamp: datetime
    manifest_digest: str | None = None


__all__ = [
    "MANIFEST_VERSION",
    "DeploymentState",
    "FileEntry",
    "IncidentType",
    "Manifest",
    "SecurityIncident",
    "Signature",
    "SignatureAlgorithm",
    "TrustedKey",
    "VerificationReport",
    "VerificationResult",
    "Violation",
    "ViolationKind",
    "is_canonical_path",
]
