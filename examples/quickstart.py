"""aumai-siteseal quickstart — working demonstrations of the main features.

Run this file directly to verify your installation and see the features in action:

    python examples/quickstart.py

Each demo function is self-contained and creates temporary files in the system
temp directory, cleaning up after itself.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from aumai_siteseal import (
    BuildVerifier,
    DeploymentOrchestrator,
    DirectoryStore,
    EdgeGate,
    KeyManager,
    KeyRing,
    MemoryStore,
    SignatureAlgorithm,
    sign_tree,
)


def _write_site(root: Path, home: str = "<h1>Home</h1>") -> Path:
    root.mkdir(parents=True)
    (root / "index.html").write_text(home, encoding="utf-8")
    (root / "404.html").write_text("<h1>Not here</h1>", encoding="utf-8")
    (root / "assets").mkdir()
    (root / "assets" / "app.9b1c2d3e.js").write_text("console.log('hi')", encoding="utf-8")
    return root


# ---------------------------------------------------------------------------
# Demo 1 — sign a build and verify it
# ---------------------------------------------------------------------------

def demo_sign_and_verify() -> None:
    """Build, sign and verify a small site with Ed25519 (the default)."""

    print("\n=== Demo 1: Sign & Verify a Build ===")

    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        site = _write_site(tmp / "dist")

        km = KeyManager()
        private_pem, public_pem = km.generate_keypair(SignatureAlgorithm.ed25519)

        manifest, signature = sign_tree(site, private_pem, signer_id="ci@example.com")
        print(f"  Manifest built: {len(manifest.files)} files, "
              f"{manifest.total_size} bytes")
        print(f"  Signed with key {signature.key_id[:16]}... "
              f"({signature.algorithm.value})")

        keyring = KeyRing.from_public_keys(public_pem)
        report = BuildVerifier().verify_signed(site, keyring)
        print(f"  Tree verified: {report.ok}")
        assert report.ok
        print("  Demo 1 passed.")


# ---------------------------------------------------------------------------
# Demo 2 — tamper detection at build time
# ---------------------------------------------------------------------------

def demo_tamper_detection() -> None:
    """Show that edits and injected files after signing are reported by path."""

    print("\n=== Demo 2: Tamper Detection ===")

    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        site = _write_site(tmp / "dist")
        km = KeyManager()
        private_pem, public_pem = km.generate_keypair(SignatureAlgorithm.ecdsa_p256)
        sign_tree(site, private_pem)

        (site / "index.html").write_text("<h1>Defaced</h1>", encoding="utf-8")
        (site / "assets" / "miner.js").write_text("/* injected */", encoding="utf-8")
        print("  index.html modified and assets/miner.js injected (simulated tamper)")

        report = BuildVerifier().verify_signed(site, KeyRing.from_public_keys(public_pem))
        for violation in report.violations:
            print(f"  [{violation.kind.value}] {violation.path}: {violation.detail}")
        assert report.paths() == ["assets/miner.js", "index.html"]
        print("  Demo 2 passed.")


# ---------------------------------------------------------------------------
# Demo 3 — the edge gate
# ---------------------------------------------------------------------------

def demo_edge_gate() -> None:
    """Serve a signed site from memory and watch the gate refuse tampered bytes."""

    print("\n=== Demo 3: Edge Gate ===")

    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        site = _write_site(tmp / "dist")
        km = KeyManager()
        private_pem, public_pem = km.generate_keypair(SignatureAlgorithm.ed25519)
        sign_tree(site, private_pem)

        store = MemoryStore(
            {p.relative_to(site).as_posix(): p.read_bytes()
             for p in site.rglob("*") if p.is_file()}
        )
        gate = EdgeGate(store, KeyRing.from_public_keys(public_pem))

        response = gate.handle("GET", "/")
        print(f"  GET /            -> {response.status_code} {response.headers['X-Content-Hash'][:16]}...")
        response = gate.handle("GET", "/nowhere")
        print(f"  GET /nowhere     -> {response.status_code} {response.body.decode()}")

        store.put("index.html", b"<h1>Defaced</h1>")
        response = gate.handle("GET", "/index.html")
        print(f"  GET /index.html  -> {response.status_code} {response.body.decode()}")
        assert response.status_code == 500
        print("  Demo 3 passed.")


# ---------------------------------------------------------------------------
# Demo 4 — atomic deploy and rollback
# ---------------------------------------------------------------------------

def demo_deploy_and_rollback() -> None:
    """Deploy two releases into a live slot, then roll back to the first."""

    print("\n=== Demo 4: Deploy & Rollback ===")

    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        km = KeyManager()
        private_pem, public_pem = km.generate_keypair(SignatureAlgorithm.rsa_pss)
        keyring = KeyRing.from_public_keys(public_pem)

        release_1 = _write_site(tmp / "release-1", "<h1>Release 1</h1>")
        release_2 = _write_site(tmp / "release-2", "<h1>Release 2</h1>")
        sign_tree(release_1, private_pem)
        sign_tree(release_2, private_pem)

        live = tmp / "srv" / "www"
        orchestrator = DeploymentOrchestrator(live, keyring)
        gate = EdgeGate(DirectoryStore(live), keyring)

        orchestrator.deploy(release_1)
        print(f"  Live after first deploy : {gate.handle('GET', '/').body.decode()}")
        state = orchestrator.deploy(release_2)
        print(f"  Live after second deploy: {gate.handle('GET', '/').body.decode()}")
        print(f"  Backup kept at          : {state.backup_path}")

        orchestrator.rollback()
        body = gate.handle("GET", "/").body.decode()
        print(f"  Live after rollback     : {body}")
        assert body == "<h1>Release 1</h1>"
        print("  Demo 4 passed.")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    """Run all quickstart demos in sequence."""
    print("aumai-siteseal quickstart demos")
    print("=" * 45)

    demo_sign_and_verify()
    demo_tamper_detection()
    demo_edge_gate()
    demo_deploy_and_rollback()

    print("\n" + "=" * 45)
    print("All demos completed successfully.")


if __name__ == "__main__":
    main()
