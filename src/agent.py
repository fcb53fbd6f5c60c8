"""Standalone sync agent.

Reads today's records from a Health Connect bridge and submits five-minute
intervals to the IntervalSync API every five minutes.

Run:
    SYNC_SOURCE_URL=http://127.0.0.1:8765 python -m src.agent

Signals:
    SIGINT / SIGTERM  stop after the in-flight cycle finishes
    SIGCONT           treated as a return to the foreground (resume check)
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from src.config import Settings, get_settings
from src.intervals.config_loader import get_sync_config
from src.intervals.errors import SourceUnavailableError
from src.intervals.sources.health_connect import HealthConnectBridgeSource
from src.intervals.sync.client import IntervalApiClient
from src.intervals.sync.scheduler import SyncScheduler

logger = logging.getLogger("intervalsync.agent")


async def run_agent(settings: Settings) -> int:
    """Run the sync loop until a stop signal arrives.  Returns an exit code."""
    if not settings.sync_source_url:
        logger.error("SYNC_SOURCE_URL is not set — nothing to sync from")
        return 2

    config = get_sync_config()
    source = HealthConnectBridgeSource(
        settings.sync_source_url, timeout=config.source_timeout_seconds
    )
    client = IntervalApiClient(
        settings.api_endpoints,
        submit_timeout=config.submit_timeout_seconds,
        health_timeout=config.health_timeout_seconds,
    )
    scheduler = SyncScheduler(
        source=source,
        submitter=client,
        user_id=settings.sync_user_id,
        config=config,
        tz=settings.tzinfo,
    )

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    resume_tasks: set[asyncio.Task] = set()

    def _on_resume() -> None:
        task = loop.create_task(scheduler.on_resume())
        resume_tasks.add(task)
        task.add_done_callback(resume_tasks.discard)

    handlers = {
        signal.SIGINT: stop_event.set,
        signal.SIGTERM: stop_event.set,
        signal.SIGCONT: _on_resume,
    }
    for signum, callback in handlers.items():
        loop.add_signal_handler(signum, callback)

    def _remove_handlers() -> None:
        for signum in handlers:
            loop.remove_signal_handler(signum)

    try:
        result = await scheduler.start()
        logger.info(
            "Initial sync: %d records saved (status=%s)", result.total_saved, result.status
        )
    except SourceUnavailableError as exc:
        logger.error("Cannot start sync agent: %s", exc)
        _remove_handlers()
        await client.close()
        await source.close()
        return 1

    try:
        await stop_event.wait()
    finally:
        logger.info("Stopping sync agent")
        # no resume may start a cycle once shutdown begins
        _remove_handlers()
        await scheduler.stop()
        if resume_tasks:
            await asyncio.gather(*resume_tasks, return_exceptions=True)
        await client.close()
        await source.close()
    return 0


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    sys.exit(asyncio.run(run_agent(settings)))


if __name__ == "__main__":
    main()
