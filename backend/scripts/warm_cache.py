#!/usr/bin/env python3
"""
Ingest match data once so the dashboard starts from a warm cache.

Usage:
    python scripts/warm_cache.py
    python scripts/warm_cache.py --clear     # Drop the cached matches first
    python scripts/warm_cache.py --csv-only  # Skip the match API
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from codstats.ingestion import IngestionOrchestrator  # noqa: E402
from codstats.persistence import JsonFileStore, MatchCache  # noqa: E402
from codstats.settings import Settings, load_env  # noqa: E402
from codstats.sources import CsvMatchSource, MatchApiClient  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Load match data into the local cache."
    )
    parser.add_argument(
        "--clear",
        action="store_true",
        help="Remove the cached matches before loading",
    )
    parser.add_argument(
        "--csv-only",
        action="store_true",
        help="Read the bundled CSV instead of calling the match API",
    )
    return parser.parse_args()


def main() -> int:
    load_env()
    args = _parse_args()
    settings = Settings.from_env()

    cache = MatchCache(JsonFileStore(settings.cache_dir))
    if args.clear:
        cache.clear()
        print(f"Cleared cache in {settings.cache_dir}")

    api_client = None
    if settings.api_base_url and not args.csv_only:
        api_client = MatchApiClient(settings.api_base_url, timeout=settings.request_timeout)

    orchestrator = IngestionOrchestrator(
        api_client=api_client,
        csv_source=CsvMatchSource(settings.csv_path),
        cache=cache,
        use_api=settings.use_api,
        match_limit=settings.match_limit,
    )

    start = time.time()
    matches = orchestrator.load()
    elapsed = time.time() - start

    print(f"State:   {orchestrator.state.value}")
    print(f"Source:  {orchestrator.source or 'none'}")
    print(f"Matches: {len(matches)}")
    if matches:
        first = matches[0].timestamp.strftime("%Y-%m-%d %H:%M")
        last = matches[-1].timestamp.strftime("%Y-%m-%d %H:%M")
        print(f"Range:   {first} -> {last}")
    print(f"Time:    {elapsed:.1f}s")
    return 0 if matches else 1


if __name__ == "__main__":
    sys.exit(main())
