from __future__ import annotations

import argparse
import asyncio
from datetime import date

from recordkit.core.logging import configure_logging
from recordkit.domain.models import FileHits
from recordkit.persistence.db import Store


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Print total file hits per day")
    parser.add_argument("--from", dest="from_", type=date.fromisoformat, default=None, help="First day (YYYY-MM-DD)")
    parser.add_argument("--to", type=date.fromisoformat, default=None, help="Last day (YYYY-MM-DD)")
    return parser


async def _report(args: argparse.Namespace) -> None:
    store = Store.from_settings()
    try:
        totals = await FileHits.get_sum_by_date(args.from_, args.to, store=store)
    finally:
        await store.dispose()
    for day, hits in totals.items():
        print(f"{day} hits={hits}")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(_report(_build_parser().parse_args()))
