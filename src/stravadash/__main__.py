"""
Main entrypoint.

Usage:
    python -m stravadash                    # API + scheduler under uvicorn
    python -m stravadash sync config.json   # one sync cycle for a saved config, then exit
"""
import asyncio
import json
import logging
import sys
from pathlib import Path

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _serve() -> None:
    import uvicorn

    from stravadash.config import get_settings

    settings = get_settings()
    uvicorn.run("stravadash.api.main:app", host=settings.host, port=settings.port)


async def _sync_once(config_path: Path) -> int:
    from stravadash.config import DashboardConfig
    from stravadash.strava.sync_service import SyncManager

    config = DashboardConfig.model_validate(json.loads(config_path.read_text(encoding="utf-8")))
    manager = SyncManager()
    manager.notifier.subscribe(
        lambda identifier, event, payload: logger.info("%s → %s", identifier, event)
    )
    try:
        orchestrator = manager.configure(config)
        if orchestrator is None:
            return 1
        status = await orchestrator.sync()
    finally:
        await manager.aclose()

    logger.info(
        "Sync %s: %d new activities, %d checked, %d leaderboards%s",
        status.status,
        status.activities_fetched,
        status.activities_checked,
        status.segments_scanned,
        f" (stopped by {status.stopped_by})" if status.stopped_by else "",
    )
    return 0 if status.status in ("success", "partial") else 1


if __name__ == "__main__":
    if len(sys.argv) > 2 and sys.argv[1] == "sync":
        sys.exit(asyncio.run(_sync_once(Path(sys.argv[2]))))
    else:
        _serve()
