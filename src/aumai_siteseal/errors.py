"""Exception taxonomy for aumai-siteseal."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from aumai_siteseal.models import VerificationReport


class SiteSealError(Exception):
    """Base class for every error raised by aumai-siteseal."""


class IOFailure(SiteSealError):
    """A file could not be read or written."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class ContentMismatch(SiteSealError):
    """Digest or size of a file disagrees with its manifest entry."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        expected: str | None = None,
        actual: str | None = None,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.expected = expected
        self.actual = actual


class TransitChecksumMismatch(ContentMismatch):
    """A transit package does not match its companion checksum file."""


class UnexpectedFile(SiteSealError):
    """A file is present in a tree but absent from the manifest."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class BuildVerificationFailed(SiteSealError):
    """A tree failed verification; carries the full violation report."""

    def __init__(self, report: VerificationReport) -> None:
        count = len(report.violations)
        super().__init__(f"{count} integrity violation(s) in {report.root}")
        self.report = report
        self.errors = [violation.to_error() for violation in report.violations]


class TrustChainBroken(SiteSealError):
    """Manifest or signature is missing, malformed, or not trusted."""


class InvalidManifest(TrustChainBroken):
    """Manifest bytes do not parse into a valid manifest."""


class BackendUnavailable(TrustChainBroken):
    """The serving backend failed while fetching an object."""


class NoBackupAvailable(SiteSealError):
    """Rollback was requested but there is nothing to roll back to."""


class DeploymentError(SiteSealError):
    """A deployment step failed; the live slot was restored."""


class RollbackFailed(DeploymentError):
    """Automatic restore after a failed swap did not succeed.

    The live slot may be absent or inconsistent and needs an operator.
    """


__all__ = [
    "BackendUnavailable",
    "BuildVerificationFailed",
    "ContentMismatch",
    "DeploymentError",
    "IOFailure",
    "InvalidManifest",
    "NoBackupAvailable",
    "RollbackFailed",
    "SiteSealError",
    "TransitChecksumMismatch",
    "TrustChainBroken",
    "UnexpectedFile",
]
