#!/usr/bin/env python3
"""Generate RSA signing keys for every token type.

Usage:
    # Print .env lines to stdout:
    python scripts/generate_signing_keys.py

    # Append them to a file:
    python scripts/generate_signing_keys.py --output .env

    # Use a larger key:
    python scripts/generate_signing_keys.py --key-size 4096

Each token type gets its own key pair, so a leaked forgot-password key
cannot mint access tokens. PEM newlines are written as literal ``\\n`` so
each value fits on one env line; Settings unescapes them on load.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _escape(pem: str) -> str:
    return pem.strip().replace("\n", "\\n")


def build_env_lines(key_size: int = 2048) -> list[str]:
    from tweetline.service.tokens import generate_private_key_pem, public_key_pem

    lines = []
    for prefix in (
        "ACCESS_TOKEN",
        "REFRESH_TOKEN",
        "EMAIL_VERIFY_TOKEN",
        "FORGOT_PASSWORD_TOKEN",
    ):
        private_pem = generate_private_key_pem(key_size=key_size)
        lines.append(f'{prefix}_PRIVATE_KEY="{_escape(private_pem)}"')
        lines.append(f'{prefix}_PUBLIC_KEY="{_escape(public_key_pem(private_pem))}"')
    return lines


def main():
    parser = argparse.ArgumentParser(
        description="Generate per-token-type RSA signing keys for Tweetline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--key-size",
        type=int,
        default=2048,
        help="RSA modulus size in bits (default: 2048)",
    )
    parser.add_argument(
        "--output",
        help="Append the lines to this file instead of printing them",
    )
    args = parser.parse_args()

    if args.key_size < 2048:
        print("Error: --key-size must be at least 2048")
        sys.exit(1)

    try:
        lines = build_env_lines(args.key_size)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.output:
        with open(args.output, "a", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
        print(f"Wrote {len(lines)} key entries to {args.output}")
    else:
        print("\n".join(lines))


if __name__ == "__main__":
    main()
