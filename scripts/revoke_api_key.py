from __future__ import annotations

import argparse
import asyncio
import sys

from bizzytrack.persistence.db import SessionProvider, default_provider
from bizzytrack.services.api_keys import ApiKeyService


def _build_parser() -> argparse.ArgumentParser:
    # Keep CLI usage minimal to avoid revoking the wrong key.
    parser = argparse.ArgumentParser(description="Revoke an API key by id")
    parser.add_argument("--business", required=True, help="Business that owns the key")
    parser.add_argument("key_id", help="API key id to revoke")
    parser.add_argument("--actor", default="revoke_api_key", help="User id recorded in the audit trail")
    return parser


async def _revoke_key(args: argparse.Namespace, provider: SessionProvider | None = None) -> int:
    # Mark the key revoked; the row stays for the audit trail.
    service = ApiKeyService(provider or default_provider())
    await service.revoke(args.business, args.key_id, args.actor)
    print(f"Revoked API key {args.key_id}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_revoke_key(args))
    except Exception as exc:  # noqa: BLE001 - surface revocation failures clearly
        print(f"revoke_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
