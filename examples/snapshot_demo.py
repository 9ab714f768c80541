#!/usr/bin/env python3
"""Runnable demo: take two incremental snapshots of a local CouchDB database.

Prerequisites:
    docker run -d -p 5984:5984 -e COUCHDB_USER=admin -e COUCHDB_PASSWORD=pw couchdb:3
    COUCH_USERNAME=admin COUCH_PASSWORD=pw python examples/snapshot_demo.py demo
"""

from __future__ import annotations

import asyncio
import sys

from rich.console import Console

from couchsnap.cli import run_snapshot
from couchsnap.config.loader import load_platform_config
from couchsnap.observability.health import check_health
from couchsnap.sources.couchdb.client import CouchClient

console = Console()


def main() -> None:
    database = sys.argv[1] if len(sys.argv) > 1 else "demo"
    platform = load_platform_config(overrides={"snapshot": {"database": database}})

    # 1. Health check
    async def probe() -> bool:
        async with CouchClient(platform.server, platform.retry) as client:
            result = await check_health(client, database)
        console.print(result.summary)
        return result.healthy

    if not asyncio.run(probe()):
        console.print("[red]CouchDB not reachable or database missing[/red]")
        sys.exit(1)

    # 2. First run captures everything, second run only what changed since
    for attempt in (1, 2):
        result = asyncio.run(run_snapshot(platform))
        console.print(
            f"[green]run {attempt}:[/green] {result.written} doc(s) → "
            f"{result.output_path.name}"
        )


if __name__ == "__main__":
    main()
