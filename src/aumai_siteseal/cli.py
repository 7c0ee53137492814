"""CLI entry point for aumai-siteseal."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from http import HTTPStatus
from pathlib import Path

import click

from aumai_siteseal.config import SiteSealConfig, load_config
from aumai_siteseal.core import KeyManager, sign_tree
from aumai_siteseal.deploy import DeploymentOrchestrator
from aumai_siteseal.edge import DirectoryIncidentSink, DirectoryStore, EdgeGate
from aumai_siteseal.errors import (
    BuildVerificationFailed,
    ContentMismatch,
    DeploymentError,
    NoBackupAvailable,
    RollbackFailed,
    SiteSealError,
    TrustChainBroken,
)
from aumai_siteseal.keyring import KeyRing, parse_signature
from aumai_siteseal.manifest import load_manifest
from aumai_siteseal.models import SignatureAlgorithm
from aumai_siteseal.verifier import BuildVerifier

EXIT_ERROR = 1
EXIT_VERIFICATION = 2
EXIT_ROLLBACK_FAILED = 3

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _config() -> SiteSealConfig:
    ctx = click.get_current_context()
    return ctx.find_root().obj or SiteSealConfig()


def _build_keyring(public_keys: tuple[str, ...], keyring_path: str | None) -> KeyRing:
    ring = KeyRing()
    if keyring_path:
        for key in KeyRing(keyring_path).list_keys():
            ring.add_key(key)
    km = KeyManager()
    for key_path in public_keys:
        ring.add_public_key(km.load_public_key(key_path), label=key_path)
    if not len(ring):
        raise click.UsageError("Provide at least one --public-key or a non-empty --keyring.")
    return ring


@contextmanager
def _exit_on_error() -> Iterator[None]:
    """Map the error taxonomy onto process exit codes."""
    try:
        yield
    except RollbackFailed as exc:
        click.echo(f"CRITICAL: {exc} (operator intervention required)", err=True)
        sys.exit(EXIT_ROLLBACK_FAILED)
    except BuildVerificationFailed as exc:
        click.echo(f"Verification FAILED: {exc}", err=True)
        for violation in exc.report.violations:
            click.echo(
                f"  [{violation.kind.value}] {violation.path}: {violation.detail}", err=True
            )
        sys.exit(EXIT_VERIFICATION)
    except (TrustChainBroken, ContentMismatch, DeploymentError, NoBackupAvailable) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_VERIFICATION)
    except (SiteSealError, OSError, ValueError, TypeError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_ERROR)


_public_key_option = click.option(
    "--public-key",
    "public_keys",
    multiple=True,
    metavar="PATH",
    help="Trusted public PEM key (repeatable).",
)
_keyring_option = click.option(
    "--keyring",
    "keyring_path",
    default=None,
    metavar="PATH",
    help="Keyring JSON file of trusted public keys.",
)

# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="aumai-siteseal")
@click.option(
    "--config",
    "config_path",
    default=None,
    metavar="PATH",
    help="JSON configuration file.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """AumAI SiteSeal — signed manifests and verified serving for static sites."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        ctx.obj = load_config(config_path)
    except SiteSealError as exc:
        raise click.BadParameter(str(exc), param_hint="--config") from exc


@main.command("keygen")
@click.option(
    "--output",
    default="keys",
    show_default=True,
    metavar="DIR",
    help="Directory to write private.pem and public.pem.",
)
@click.option(
    "--algorithm",
    type=click.Choice([a.value for a in SignatureAlgorithm], case_sensitive=False),
    default="ed25519",
    show_default=True,
    help="Signing algorithm.",
)
def keygen_command(output: str, algorithm: str) -> None:
    """Generate an asymmetric key pair for manifest signing."""
    algo = SignatureAlgorithm(algorithm.lower())
    km = KeyManager()
    private_pem, public_pem = km.generate_keypair(algo)
    km.save_keypair(private_pem, public_pem, output)
    click.echo(f"Key pair ({algo.value}) written to '{output}/'")
    click.echo(f"  Private: {output}/private.pem")
    click.echo(f"  Public : {output}/public.pem")


@main.command("build")
@click.option("--site-dir", required=True, metavar="DIR", help="Build output tree.")
@click.option("--key", required=True, metavar="PATH", help="Private PEM key file.")
@click.option("--signer-id", default="", help="Signer identity label.")
def build_command(site_dir: str, key: str, signer_id: str) -> None:
    """Write and sign the integrity manifest of a build output tree."""
    config = _config()
    with _exit_on_error():
        private_key = KeyManager().load_private_key(key)
        manifest, signature = sign_tree(
            site_dir,
            private_key,
            signer_id=signer_id,
            manifest_name=config.manifest_name,
            signature_suffix=config.signature_suffix,
            workers=config.hash_workers,
        )

    click.echo(f"Manifest written to: {Path(site_dir) / config.manifest_name}")
    click.echo(f"  Files    : {len(manifest.files)}")
    click.echo(f"  Total    : {manifest.total_size:,} bytes")
    click.echo(f"  Key id   : {signature.key_id}")
    click.echo(f"  Algorithm: {signature.algorithm.value}")


@main.command("verify")
@click.option("--site-dir", required=True, metavar="DIR", help="Tree to verify.")
@_public_key_option
@_keyring_option
def verify_command(
    site_dir: str, public_keys: tuple[str, ...], keyring_path: str | None
) -> None:
    """Verify the manifest signature and every file of a tree."""
    config = _config()
    verifier = BuildVerifier(config.manifest_name, config.signature_suffix)
    with _exit_on_error():
        keyring = _build_keyring(public_keys, keyring_path)
        report = verifier.verify_signed(site_dir, keyring)
        click.echo("Signature: VALID")
        report.raise_for_violations()
    click.echo(f"All files verified successfully under {site_dir}.")


@main.command("inspect")
@click.option("--site-dir", required=True, metavar="DIR")
@click.option("--json-output", is_flag=True, help="Emit the raw manifest JSON.")
def inspect_command(site_dir: str, json_output: bool) -> None:
    """Display the manifest and signature stored in a tree."""
    config = _config()
    root = Path(site_dir)
    with _exit_on_error():
        manifest, raw = load_manifest(root / config.manifest_name)
        signature_path = root / config.signature_name
        signature = (
            parse_signature(signature_path.read_bytes()) if signature_path.exists() else None
        )

    if json_output:
        click.echo(raw.decode("utf-8"))
        return

    click.echo(f"Version      : {manifest.version}")
    click.echo(f"Generated    : {manifest.generated_at.isoformat()}")
    click.echo(f"Total Size   : {manifest.total_size:,} bytes")
    click.echo(f"Files        : {len(manifest.files)}")
    if signature is None:
        click.echo("\nSignature    : MISSING")
    else:
        click.echo(f"\nKey id       : {signature.key_id}")
        click.echo(f"Algorithm    : {signature.algorithm.value}")
        click.echo(f"Signer       : {signature.signer_id}")
        click.echo(f"Signed At    : {signature.signed_at.isoformat()}")
    click.echo("\nFiles in manifest:")
    for path, entry in manifest.files.items():
        click.echo(f"  {path}  ({entry.size:,} bytes)  sha256:{entry.digest[:16]}...")


@main.command("deploy")
@click.option("--site-dir", required=True, metavar="DIR", help="Signed build tree.")
@click.option("--live-path", required=True, metavar="DIR", help="Live serving slot.")
@_public_key_option
@_keyring_option
def deploy_command(
    site_dir: str,
    live_path: str,
    public_keys: tuple[str, ...],
    keyring_path: str | None,
) -> None:
    """Ship a verified build into the live slot atomically."""
    with _exit_on_error():
        keyring = _build_keyring(public_keys, keyring_path)
        orchestrator = DeploymentOrchestrator(live_path, keyring, config=_config())
        state = orchestrator.deploy(site_dir)
    click.echo(f"Deployed to {state.active_path}")
    if state.backup_path:
        click.echo(f"  Backup   : {state.backup_path}")


@main.command("rollback")
@click.option("--live-path", required=True, metavar="DIR", help="Live serving slot.")
@_public_key_option
@_keyring_option
def rollback_command(
    live_path: str, public_keys: tuple[str, ...], keyring_path: str | None
) -> None:
    """Restore the previous deployment."""
    with _exit_on_error():
        keyring = _build_keyring(public_keys, keyring_path)
        orchestrator = DeploymentOrchestrator(live_path, keyring, config=_config())
        state = orchestrator.rollback()
    click.echo(f"Rolled back {state.active_path} to the previous deployment.")


@main.command("request")
@click.argument("path")
@click.option("--site-dir", required=True, metavar="DIR", help="Served tree.")
@click.option("--method", default="GET", show_default=True)
@click.option(
    "--incident-dir",
    default=None,
    metavar="DIR",
    help="Record refused requests as JSON security incidents here.",
)
@_public_key_option
@_keyring_option
def request_command(
    path: str,
    site_dir: str,
    method: str,
    incident_dir: str | None,
    public_keys: tuple[str, ...],
    keyring_path: str | None,
) -> None:
    """Run one request through the edge gate and print the response."""
    with _exit_on_error():
        keyring = _build_keyring(public_keys, keyring_path)
        sink = DirectoryIncidentSink(incident_dir) if incident_dir else None
        gate = EdgeGate(DirectoryStore(site_dir), keyring, config=_config(), incident_sink=sink)
        response = gate.handle(method, path)
    click.echo(f"{response.status_code} {HTTPStatus(response.status_code).phrase}")
    for name, value in response.headers.items():
        click.echo(f"{name}: {value}")
    if response.status_code >= 500:
        sys.exit(EXIT_VERIFICATION)


# ---------------------------------------------------------------------------
# Keyring management
# ---------------------------------------------------------------------------


@main.group("trust")
def trust_group() -> None:
    """Manage the keyring of trusted public keys."""


@trust_group.command("add")
@click.option("--keyring", "keyring_path", required=True, metavar="PATH")
@click.option("--public-key", required=True, metavar="PATH")
@click.option("--label", default="", help="Human-readable label.")
def trust_add_command(keyring_path: str, public_key: str, label: str) -> None:
    """Add a public key to the keyring."""
    with _exit_on_error():
        key = KeyRing(keyring_path).add_public_key(
            KeyManager().load_public_key(public_key), label=label
        )
    click.echo(f"Trusted {key.algorithm.value} key {key.key_id}")


@trust_group.command("list")
@click.option("--keyring", "keyring_path", required=True, metavar="PATH")
def trust_list_command(keyring_path: str) -> None:
    """List trusted keys."""
    with _exit_on_error():
        keys = KeyRing(keyring_path).list_keys()
    if not keys:
        click.echo("No trusted keys.")
        return
    for key in keys:
        click.echo(f"{key.key_id}  {key.algorithm.value}  {key.label}")


@trust_group.command("remove")
@click.option("--keyring", "keyring_path", required=True, metavar="PATH")
@click.argument("key_id")
def trust_remove_command(keyring_path: str, key_id: str) -> None:
    """Remove a key from the keyring."""
    with _exit_on_error():
        ring = KeyRing(keyring_path)
    try:
        ring.remove_key(key_id)
    except KeyError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_ERROR)
    click.echo(f"Removed key {key_id}")


if __name__ == "__main__":
    main()
