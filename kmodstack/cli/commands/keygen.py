"""``kmodstack keygen`` — create an Ed25519 key pair for the native signer."""

from __future__ import annotations

import os
from pathlib import Path

import typer

from kmodstack.bridge.crypto_bridge import generate_keypair, key_fingerprint
from kmodstack.cli import common


def keygen_cmd(
    private_key: Path = typer.Argument(..., help="Where to write the private key (hex)."),
    public_key: Path = typer.Argument(..., help="Where to write the public key (hex)."),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite existing files."),
) -> None:
    """Generate an Ed25519 signing key pair."""
    for path in (private_key, public_key):
        if path.exists() and not force:
            common.console.print(f"[bold red]Refusing to overwrite[/bold red] {path} (use --force)")
            raise typer.Exit(code=common.EXIT_CONFIG_FAILED)

    priv, pub = generate_keypair()
    private_key.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(private_key, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as fh:
        fh.write(priv + "\n")
    public_key.parent.mkdir(parents=True, exist_ok=True)
    public_key.write_text(pub + "\n")

    common.console.print(f"[bold green]Key pair written.[/bold green] Fingerprint: {key_fingerprint(pub)}")
    common.console.print(
        "[dim]Set KMODSTACK_SIGNING_PRIVATE_KEY, KMODSTACK_SIGNING_PUBLIC_KEY "
        "and KMODSTACK_SIGNER_BACKEND=ed25519 to use it.[/dim]"
    )
