from __future__ import annotations

import argparse
import asyncio
import sys

from bizzytrack.domain.schemas import ApiKeyCreate
from bizzytrack.persistence.db import SessionProvider, default_provider
from bizzytrack.services.api_keys import ApiKeyService


def _build_parser() -> argparse.ArgumentParser:
    # Keep CLI arguments explicit to avoid accidental key misuse.
    parser = argparse.ArgumentParser(description="Create an API key for a business")
    parser.add_argument("--business", required=True, help="Business identifier")
    parser.add_argument("--name", required=True, help="Key label for auditing")
    parser.add_argument("--description", default=None, help="Optional key description")
    parser.add_argument(
        "--permission",
        action="append",
        default=[],
        dest="permissions",
        help="Permission granted to the key; repeat for several",
    )
    parser.add_argument("--rate-limit", type=int, default=None, help="Requests per minute")
    parser.add_argument("--allow-ip", action="append", default=[], dest="allowed_ips", help="Allowed IP or CIDR")
    parser.add_argument("--actor", default="create_api_key", help="User id recorded in the audit trail")
    return parser


async def _create_key(args: argparse.Namespace, provider: SessionProvider | None = None) -> int:
    payload = ApiKeyCreate(
        name=args.name,
        description=args.description,
        permissions=args.permissions,
        rate_limit_per_minute=args.rate_limit,
        allowed_ips=args.allowed_ips,
    )
    service = ApiKeyService(provider or default_provider())
    issued = await service.create(args.business, payload, args.actor)

    # The secret is shown once; only its digest is stored.
    print("API key created:")
    print(f"  key_id: {issued.api_key.id}")
    print("  bearer token: ")
    print(f"    {issued.api_key.id}.{issued.secret}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_key(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
