"""aumai-siteseal: Signed content manifests and verified serving for static sites."""

from aumai_siteseal.config import SiteSealConfig, load_config
from aumai_siteseal.core import KeyManager, ManifestSigner, key_fingerprint, sign_tree
from aumai_siteseal.deploy import DeploymentOrchestrator, LocalTransport, TransitPackage
from aumai_siteseal.edge import (
    DirectoryIncidentSink,
    DirectoryStore,
    EdgeGate,
    MemoryStore,
    VerifiedManifestCache,
)
from aumai_siteseal.keyring import KeyRing
from aumai_siteseal.manifest import ManifestBuilder, canonical_bytes
from aumai_siteseal.models import (
    DeploymentState,
    FileEntry,
    IncidentType,
    Manifest,
    SecurityIncident,
    Signature,
    SignatureAlgorithm,
    TrustedKey,
    VerificationReport,
    VerificationResult,
    Violation,
    ViolationKind,
)
from aumai_siteseal.verifier import BuildVerifier

__version__ = "0.1.0"

__all__ = [
    "BuildVerifier",
    "DeploymentOrchestrator",
    "DeploymentState",
    "DirectoryIncidentSink",
    "DirectoryStore",
    "EdgeGate",
    "FileEntry",
    "IncidentType",
    "KeyManager",
    "KeyRing",
    "LocalTransport",
    "Manifest",
    "ManifestBuilder",
    "ManifestSigner",
    "MemoryStore",
    "SecurityIncident",
    "Signature",
    "SignatureAlgorithm",
    "SiteSealConfig",
    "TransitPackage",
    "TrustedKey",
    "VerificationReport",
    "VerificationResult",
    "VerifiedManifestCache",
    "Violation",
    "ViolationKind",
    "canonical_bytes",
    "key_fingerprint",
    "load_config",
    "sign_tree",
]
