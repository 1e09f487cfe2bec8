"""
vestledger keygen — create an Ed25519 key for a host journal or a beneficiary.
"""

import sys
from pathlib import Path

import click

from vestledger.core.crypto import Ed25519KeyManager


@click.command(name="keygen")
@click.argument("path", type=click.Path(dir_okay=False))
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing key file.")
def keygen_command(path: str, force: bool) -> None:
    """
    Write a new PEM private key to PATH and print its public key hex.

    The printed hex is the identity to put in an account config.
    """
    key = Ed25519KeyManager.generate()
    try:
        key.save(Path(path), overwrite=force)
    except FileExistsError:
        click.echo(f"Refusing to overwrite {path} (use --force)", err=True)
        sys.exit(2)
    except OSError as e:
        click.echo(f"Failed to write {path}: {e}", err=True)
        sys.exit(2)

    click.echo(key.public_key_hex)
