from __future__ import annotations

import asyncio

from recordkit.core.logging import configure_logging
from recordkit.domain.models import FileHits
from recordkit.persistence.db import Store, create_all


async def create() -> None:
    store = Store.from_settings()
    try:
        await create_all(store, FileHits)
        print(f"created_tables={FileHits.descriptor.table}")
    finally:
        await store.dispose()


if __name__ == "__main__":
    configure_logging()
    asyncio.run(create())
