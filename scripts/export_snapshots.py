from __future__ import annotations

import argparse
import logging
from pathlib import Path

from coupling_monitor.config import Settings
from coupling_monitor.export import export_edges_csv
from coupling_monitor.storage import build_store

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export stored graph edges to CSV for analysis.")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("data/export/coupling_edges.csv"),
        help="Destination CSV path (directories will be created).",
    )
    parser.add_argument("--limit", type=int, default=1000, help="Most recent snapshots to include.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = Settings.from_env()
    store = build_store(settings)
    try:
        rows = export_edges_csv(store.load_snapshots(args.limit), args.output)
    finally:
        store.close()
    logger.info("Export complete: %s rows -> %s", rows, args.output)


if __name__ == "__main__":
    main()
