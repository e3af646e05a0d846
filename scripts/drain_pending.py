from __future__ import annotations

import argparse
import asyncio
import json
import sys

from slotshare.core.config import get_settings
from slotshare.core.logging import configure_logging
from slotshare.persistence.db import Database
from slotshare.persistence.repos import catalog as catalog_repo
from slotshare.services.subscriptions import SubscriptionService


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Assign queued subscription requests to free slots")
    scope = parser.add_mutually_exclusive_group(required=True)
    scope.add_argument("--service-provider", help="Service provider id to drain")
    scope.add_argument("--all", action="store_true", help="Drain every active service provider")
    parser.add_argument("--country", default=None, help="Limit the drain to one country")
    parser.add_argument("--batch-size", type=int, default=None, help="Max requests examined per provider")
    return parser


async def _drain(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.batch_size is not None:
        settings = settings.model_copy(update={"drain_batch_size": args.batch_size})
    database = Database(settings=settings)
    try:
        service = SubscriptionService(database, settings=settings)
        if args.all:
            async with database.session() as session:
                provider_ids = [provider.id for provider in await catalog_repo.list_service_providers(session)]
        else:
            provider_ids = [args.service_provider]
        for provider_id in provider_ids:
            report = await service.drain(provider_id, args.country)
            print(json.dumps(report.as_dict()))
    finally:
        await database.dispose()
    return 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_drain(args))
    except Exception as exc:  # noqa: BLE001 - operators need the failure reason on stderr
        print(f"drain_pending failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
