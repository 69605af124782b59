from __future__ import annotations

import argparse
import asyncio
import sys

from bizzytrack.core.logging import configure_logging
from bizzytrack.persistence.db import SessionProvider, default_provider
from bizzytrack.services.sla import SlaService


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Record SLA violations for one or more businesses")
    parser.add_argument("businesses", nargs="+", help="Business identifiers to scan")
    return parser


async def _check(args: argparse.Namespace, provider: SessionProvider | None = None) -> int:
    # Each business is scanned in its own transaction.
    service = SlaService(provider or default_provider())
    total = 0
    for business_id in args.businesses:
        created = await service.check_violations(business_id)
        total += len(created)
        print(f"{business_id}: {len(created)} new violation(s)")
    print(f"Recorded {total} violation(s)")
    return 0


def main() -> int:
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_check(args))
    except Exception as exc:  # noqa: BLE001 - surface scan failures clearly
        print(f"check_sla_violations failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
