from __future__ import annotations

import asyncio
import json
import logging

from coupling_monitor.config import Settings
from coupling_monitor.models import RunStatus
from coupling_monitor.pipeline import build_pipeline
from coupling_monitor.storage import build_store

logger = logging.getLogger(__name__)


async def main() -> int:
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    store = build_store(settings)
    try:
        summary = await build_pipeline(settings, store).run_once()
    finally:
        store.close()

    logger.info("Collection summary: %s", summary.model_dump(mode="json"))
    print(json.dumps(summary.model_dump(mode="json"), indent=2))
    return 1 if summary.status is RunStatus.FAILED else 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
