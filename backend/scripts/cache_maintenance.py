"""Print local cache statistics and prune old cross-view broadcasts."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional, Sequence

from skillpath.cache import LocalCache
from skillpath.config import get_settings
from skillpath.events import DatabaseBroadcastChannel

LOGGER = logging.getLogger("skillpath.cache_maintenance")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--database-url", help="Override SKILLPATH_CACHE_URL.")
    parser.add_argument(
        "--retention-seconds",
        type=int,
        help="Delete broadcasts older than this (defaults to SKILLPATH_BROADCAST_RETENTION).",
    )
    parser.add_argument("--dry-run", action="store_true", help="Report counts without pruning.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        settings = get_settings()
        cache = LocalCache.from_url(args.database_url or settings.cache_url)
        retention = (
            args.retention_seconds if args.retention_seconds is not None else settings.broadcast_retention_seconds
        )
        pruned = 0
        if not args.dry_run:
            pruned = DatabaseBroadcastChannel(cache.engine, None).prune(retention)
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "entries": cache.entry_counts(),
            "broadcasts_pruned": pruned,
        }
        print(json.dumps(payload, sort_keys=True))
        return 0
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Cache maintenance failed: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
