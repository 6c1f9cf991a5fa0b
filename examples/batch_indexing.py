#!/usr/bin/env python3
import asyncio

from dotenv import load_dotenv

from elastica import BatchProcessor, BulkResponse, Cluster, setup_logging
from elastica.batch import Batch
from elastica.index import ensure_index

load_dotenv()

ORDER_MAPPINGS = {
    "properties": {
        "customer": {"type": "keyword"},
        "total": {"type": "scaled_float", "scaling_factor": 100},
    }
}


def report(batch: Batch, response: BulkResponse) -> None:
    """Print a one-line summary per bulk request."""
    failed = response.failed_items()
    print(f"batch {batch.batch_id[:8]}: {len(batch)} operations, {len(failed)} failed")


async def main() -> None:
    """Index a few thousand orders through the batch processor."""
    cluster = Cluster.from_settings()
    await ensure_index(cluster, "orders", mappings=ORDER_MAPPINGS, shards=1, replicas=0)

    async with BatchProcessor(
        cluster,
        count=500,
        interval_seconds=1.0,
        on_batch_end=report,
    ) as processor:
        handles = [
            await processor.put(
                "orders",
                {"customer": f"customer-{n % 37}", "total": n * 1.5},
                id=n,
            )
            for n in range(2_000)
        ]
        await processor.delete("orders", 0)

    created = 0
    for handle in handles:
        item = await handle.item()
        created += item.result == "created"
    print(f"{created} orders created")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())
