#!/usr/bin/env python3
"""Run one aggregation pass and print the outcome."""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from newswire.config.settings import settings
from newswire.config.sources import SourceRegistry
from newswire.pipeline.aggregator import NewsAggregator
from newswire.pipeline.scheduler import RefreshScheduler
from newswire.storage.factory import get_catalog_store


async def run(replace: bool) -> dict:
    registry = SourceRegistry.from_config(config=settings)
    store = get_catalog_store()
    aggregator = NewsAggregator(registry, settings)
    scheduler = RefreshScheduler(aggregator, store, registry, settings)

    if replace:
        stored = await scheduler.force_run()
    else:
        stored = await scheduler.tick()

    return {
        "stored": stored or 0,
        "catalog": store.stats(),
        "summary": aggregator.last_summary.to_dict() if aggregator.last_summary else {},
        "sources": registry.stats(),
    }


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--replace", action="store_true", help="Replace the catalog instead of merging")
    args = parser.parse_args()

    print("\n" + "=" * 50)
    print("NEWSWIRE REFRESH")
    print("=" * 50 + "\n")

    stats = asyncio.run(run(args.replace))
    summary = stats["summary"]

    print("RESULTS:")
    print(f"  Sources: {summary.get('sources', 0)} "
          f"({summary.get('succeeded', 0)} ok, {summary.get('empty', 0)} empty, "
          f"{summary.get('failed', 0)} failed, {summary.get('rate_limited', 0)} rate limited)")
    print(f"  Articles: {summary.get('fetched', 0)} fetched, {summary.get('unique', 0)} unique, "
          f"{stats['stored']} stored")

    print("\nFAILING SOURCES:")
    failing = [s for s in stats["sources"] if s["consecutive_failures"]]
    for source in failing:
        print(f"  {source['id']}: {source['errors'][-1] if source['errors'] else 'unknown error'}")
    if not failing:
        print("  none")

    catalog = stats["catalog"]
    print(f"\nCATALOG: {catalog['total']} articles across {len(catalog['by_category'])} categories")
    print(f"TIME: {summary.get('elapsed_ms', 0) / 1000:.1f}s\n")


if __name__ == "__main__":
    main()
