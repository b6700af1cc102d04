"""Command line entry point for HMS Vault.

Usage:
    hmsvault generate-key                 # New random ENCRYPTION_KEY value
    hmsvault token --length 16            # Random hex token
    hmsvault hash VALUE                   # One-way fingerprint (not for passwords)
    hmsvault encrypt VALUE                # Encrypt with the configured local key
    hmsvault decrypt ENVELOPE             # Decrypt with the configured local key
    hmsvault vault-health                 # Initialize the secret service client
    hmsvault rotate-key [NAME]            # Rotate a transit key
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence

from hmsvault.config import get_settings
from hmsvault.constants import DEFAULT_TOKEN_BYTES, KEY_SIZE
from hmsvault.logging import get_logger, setup_logging
from hmsvault.security.encryption import FieldEncryptor
from hmsvault.security.errors import DataProtectionError
from hmsvault.security.keys import KeyManager
from hmsvault.security.tokens import generate_token, one_way_hash
from hmsvault.vault.client import RemoteSecretClient


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hmsvault", description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("generate-key", help="print a new random 256-bit hex key")

    token = sub.add_parser("token", help="print a random hex token")
    token.add_argument("--length", type=int, default=DEFAULT_TOKEN_BYTES, help="bytes of entropy")

    hash_cmd = sub.add_parser("hash", help="print a one-way fingerprint of VALUE")
    hash_cmd.add_argument("value")

    encrypt = sub.add_parser("encrypt", help="encrypt VALUE with the local key")
    encrypt.add_argument("value")

    decrypt = sub.add_parser("decrypt", help="decrypt ENVELOPE with the local key")
    decrypt.add_argument("envelope")

    sub.add_parser("vault-health", help="check the secret service and transit engine")

    rotate = sub.add_parser("rotate-key", help="rotate a transit key")
    rotate.add_argument("name", nargs="?", default=None)

    return parser


def _local_encryptor() -> FieldEncryptor:
    key_manager = KeyManager.from_settings(get_settings())
    return FieldEncryptor(key_ring=key_manager.key_ring())


async def _vault_health() -> str:
    async with RemoteSecretClient.from_settings(get_settings()) as client:
        return client.state.value


async def _rotate_key(name: str | None) -> str:
    async with RemoteSecretClient.from_settings(get_settings()) as client:
        await client.rotate_key(name)
    return name or get_settings().vault_default_key


def run(argv: Sequence[str] | None = None) -> int:
    """Run one command and return the process exit status."""
    args = _build_parser().parse_args(argv)
    setup_logging()
    log = get_logger("hmsvault.main")

    try:
        if args.command == "generate-key":
            print(generate_token(KEY_SIZE))
        elif args.command == "token":
            print(generate_token(args.length))
        elif args.command == "hash":
            print(one_way_hash(args.value))
        elif args.command == "encrypt":
            print(_local_encryptor().encrypt_value(args.value))
        elif args.command == "decrypt":
            print(_local_encryptor().decrypt_value(args.envelope))
        elif args.command == "vault-health":
            print(asyncio.run(_vault_health()))
        elif args.command == "rotate-key":
            print(f"rotated {asyncio.run(_rotate_key(args.name))}")
    except (DataProtectionError, ValueError) as exc:
        log.error("command_failed", command=args.command, error=str(exc))
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


def main() -> None:
    """Console script entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
