"""Packaging, transfer and atomic swap of verified site builds."""

from __future__ import annotations

import gzip
import logging
import os
import re
import shutil
import tarfile
import tempfile
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from aumai_siteseal.config import SiteSealConfig
from aumai_siteseal.errors import (
    DeploymentError,
    IOFailure,
    NoBackupAvailable,
    RollbackFailed,
    TransitChecksumMismatch,
)
from aumai_siteseal.hashing import digest, digest_file, digests_equal
from aumai_siteseal.keyring import KeyRing
from aumai_siteseal.manifest import iter_tree_files
from aumai_siteseal.models import DeploymentState
from aumai_siteseal.verifier import BuildVerifier

logger = logging.getLogger(__name__)

_CHECKSUM_LINE = re.compile(r"^([0-9a-f]{64}) [ *](.+)$")


@dataclass(frozen=True)
class TransitPackage:
    """A compressed build archive and its companion ``sha256sum`` file."""

    archive: Path
    checksum_file: Path


class Transport(Protocol):
    def send(self, package: TransitPackage) -> TransitPackage:
        """Deliver *package* to the serving side and return its new location."""


class LocalTransport:
    """Copy packages into an inbox directory on the same host."""

    def __init__(self, inbox: str | Path) -> None:
        self.inbox = Path(inbox)

    def send(self, package: TransitPackage) -> TransitPackage:
        try:
            self.inbox.mkdir(parents=True, exist_ok=True)
            archive = Path(shutil.copy2(package.archive, self.inbox / package.archive.name))
            checksum = Path(
                shutil.copy2(package.checksum_file, self.inbox / package.checksum_file.name)
            )
        except OSError as exc:
            raise IOFailure(f"Transfer to {self.inbox} failed: {exc}", str(self.inbox)) from exc
        logger.info("Transferred %s to %s", package.archive.name, self.inbox)
        return TransitPackage(archive=archive, checksum_file=checksum)


class DeploymentOrchestrator:
    """Replace the live site tree with a verified build, keeping one backup.

    All preparation (packaging, transfer, checksum, unpacking, verification,
    permissions) happens in a hidden staging directory next to the live slot.
    The only externally visible transitions are the renames in the swap.
    """

    def __init__(
        self,
        live_path: str | Path,
        keyring: KeyRing,
        config: SiteSealConfig | None = None,
        transport: Transport | None = None,
    ) -> None:
        self.live_path = Path(live_path)
        self.keyring = keyring
        self.config = config or SiteSealConfig()
        self.transport = transport
        self.verifier = BuildVerifier(self.config.manifest_name, self.config.signature_suffix)

    @property
    def backup_path(self) -> Path:
        return self.live_path.with_name(self.live_path.name + ".previous")

    @property
    def state_path(self) -> Path:
        return self.live_path.with_name(f".{self.live_path.name}.deploy-state.json")

    # ------------------------------------------------------------------
    # Transit package
    # ------------------------------------------------------------------

    def package(self, tree: str | Path, out_dir: str | Path) -> TransitPackage:
        """Write a deterministic ``tar.gz`` of *tree* plus its checksum file."""
        root = Path(tree)
        out = Path(out_dir)
        stamp = datetime.now(tz=UTC).strftime("%Y%m%dT%H%M%SZ")
        archive = out / f"site-{stamp}.tar.gz"
        checksum_file = out / f"{archive.name}.sha256"

        try:
            out.mkdir(parents=True, exist_ok=True)
            with gzip.GzipFile(archive, "wb", mtime=0) as gz, tarfile.open(
                fileobj=gz, mode="w"
            ) as tar:
                for key, file_path in iter_tree_files(root, set()):
                    info = tar.gettarinfo(str(file_path), arcname=key)
                    info.mtime = 0
                    info.uid = info.gid = 0
                    info.uname = info.gname = ""
                    info.mode = 0o644
                    with file_path.open("rb") as fh:
                        tar.addfile(info, fh)
            archive_digest, size = digest_file(archive)
            checksum_file.write_text(f"{archive_digest}  {archive.name}\n", encoding="utf-8")
        except OSError as exc:
            raise IOFailure(f"Cannot package {tree}: {exc}", str(tree)) from exc

        logger.info("Packaged %s into %s (%d bytes)", root, archive, size)
        return TransitPackage(archive=archive, checksum_file=checksum_file)

    def verify_package(self, package: TransitPackage) -> None:
        """Re-check the transit checksum of *package*.

        Raises:
            TransitChecksumMismatch: if the archive does not match.
        """
        try:
            line = package.checksum_file.read_text(encoding="utf-8").strip()
            actual, _ = digest_file(package.archive)
        except OSError as exc:
            raise IOFailure(f"Cannot read transit package: {exc}", exc.filename) from exc

        match = _CHECKSUM_LINE.match(line)
        if match is None or match.group(2) != package.archive.name:
            raise TransitChecksumMismatch(
                f"Malformed checksum file {package.checksum_file.name}",
                package.archive.name,
            )
        if not digests_equal(match.group(1), actual):
            raise TransitChecksumMismatch(
                f"Transit checksum mismatch for {package.archive.name}",
                package.archive.name,
            )

    def unpack(self, package: TransitPackage, destination: str | Path) -> Path:
        dest = Path(destination)
        try:
            dest.mkdir(parents=True)
            with tarfile.open(package.archive, "r:gz") as tar:
                tar.extractall(dest, filter="data")
        except (OSError, tarfile.TarError) as exc:
            raise IOFailure(f"Cannot unpack {package.archive.name}: {exc}", str(dest)) from exc
        return dest

    # ------------------------------------------------------------------
    # Deploy / rollback
    # ------------------------------------------------------------------

    def deploy(self, tree: str | Path) -> DeploymentState:
        """Verify, ship and swap *tree* into the live slot.

        Raises:
            TrustChainBroken: if the manifest signature does not verify.
            BuildVerificationFailed: if the tree disagrees with its manifest,
                before or after transfer.
            TransitChecksumMismatch: if the package was corrupted in transit.
            DeploymentError: if the swap failed and the previous tree was
                restored.
            RollbackFailed: if the swap failed and the restore failed too.
        """
        self.verifier.verify_signed(tree, self.keyring).raise_for_violations()

        self.live_path.parent.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix="siteseal-"))
        try:
            transport = self.transport or LocalTransport(workdir / "inbox")
            shipped = transport.send(self.package(tree, workdir / "outbox"))
            self.verify_package(shipped)

            staging = self._sibling("staging")
            try:
                self.unpack(shipped, staging)
                # Never trust the sender's verification alone.
                self.verifier.verify_signed(staging, self.keyring).raise_for_violations()
                self._apply_permissions(staging)
                manifest_digest = digest((staging / self.config.manifest_name).read_bytes())
                return self._swap_in(staging, manifest_digest)
            finally:
                if staging.exists():
                    shutil.rmtree(staging, ignore_errors=True)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    def rollback(self) -> DeploymentState:
        """Put the retained backup tree live again.

        Raises:
            NoBackupAvailable: if no backup is recorded or it is gone.
        """
        state = self.load_state()
        if state is None or state.backup_path is None:
            raise NoBackupAvailable("No previous deployment recorded")
        backup = Path(state.backup_path)
        if not backup.is_dir():
            raise NoBackupAvailable(f"Backup directory is missing: {backup}")

        self.verifier.verify_signed(backup, self.keyring).raise_for_violations()

        live = self.live_path
        retired = self._sibling("rolled-back")
        had_live = live.exists()
        if had_live:
            try:
                self._move(live, retired)
            except OSError as exc:
                raise DeploymentError(f"Rollback failed, live tree unchanged: {exc}") from exc
        try:
            self._move(backup, live)
        except OSError as exc:
            logger.error("Rollback swap failed: %s", exc)
            if had_live:
                try:
                    self._move(retired, live)
                except OSError as restore_exc:
                    raise RollbackFailed(
                        f"Rollback failed and {live} could not be restored: {restore_exc}"
                    ) from restore_exc
            raise DeploymentError(f"Rollback failed, live tree unchanged: {exc}") from exc

        new_state = DeploymentState(
            active_path=str(live),
            backup_path=None,
            timestamp=datetime.now(tz=UTC),
            manifest_digest=digest((live / self.config.manifest_name).read_bytes()),
        )
        self._save_state(new_state)
        if had_live:
            self._discard(retired)
        logger.info("Rolled back %s to the previous deployment", live)
        return new_state

    def load_state(self) -> DeploymentState | None:
        if not self.state_path.exists():
            return None
        try:
            return DeploymentState.model_validate_json(
                self.state_path.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError) as exc:
            raise DeploymentError(f"Unreadable deployment state {self.state_path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _sibling(self, tag: str) -> Path:
        return self.live_path.with_name(
            f".{self.live_path.name}.{tag}-{uuid.uuid4().hex[:12]}"
        )

    def _move(self, src: Path, dst: Path) -> None:
        os.replace(src, dst)

    def _apply_permissions(self, root: Path) -> None:
        for dirpath, dirnames, filenames in os.walk(root):
            for name in filenames:
                os.chmod(Path(dirpath) / name, self.config.file_mode)
            for name in dirnames:
                os.chmod(Path(dirpath) / name, self.config.dir_mode)
        os.chmod(root, self.config.dir_mode)

    def _swap_in(self, staging: Path, manifest_digest: str) -> DeploymentState:
        live = self.live_path
        backup = self.backup_path

        retired: Path | None = None
        if backup.exists():
            retired = self._sibling("retired")
            try:
                self._move(backup, retired)
            except OSError as exc:
                raise DeploymentError(
                    f"Could not retire {backup}, live tree unchanged: {exc}"
                ) from exc

        had_live = live.exists()
        try:
            if had_live:
                self._move(live, backup)
            self._move(staging, live)
        except OSError as exc:
            logger.error("Swap into %s failed: %s", live, exc)
            try:
                if had_live and not live.exists() and backup.exists():
                    self._move(backup, live)
                if retired is not None:
                    self._move(retired, backup)
            except OSError as restore_exc:
                raise RollbackFailed(
                    f"Swap failed and {live} could not be restored: {restore_exc}"
                ) from restore_exc
            raise DeploymentError(f"Swap failed, previous tree restored: {exc}") from exc

        state = DeploymentState(
            active_path=str(live),
            backup_path=str(backup) if had_live else None,
            timestamp=datetime.now(tz=UTC),
            manifest_digest=manifest_digest,
        )
        self._save_state(state)
        if retired is not None:
            self._discard(retired)
        logger.info("Deployed %s (manifest %s)", live, manifest_digest[:16])
        return state

    def _discard(self, path: Path) -> None:
        """Remove a tree that is no longer referenced by the deployment state."""
        try:
            shutil.rmtree(path)
        except OSError as exc:
            logger.warning("Could not remove %s, delete it manually: %s", path, exc)

    def _save_state(self, state: DeploymentState) -> None:
        tmp = self.state_path.with_name(self.state_path.name + ".tmp")
        tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self.state_path)


__all__ = [
    "DeploymentOrchestrator",
    "LocalTransport",
    "TransitPackage",
    "Transport",
]
