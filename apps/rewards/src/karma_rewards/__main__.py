import asyncio
import signal
from pathlib import Path

from loguru import logger

from karma_rewards.core.logging import configure_logging
from karma_rewards.core.settings import settings
from karma_rewards.db.session import async_session
from karma_rewards.scheduling import RewardJobScheduler

APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


def schedule_path() -> Path:
    path = Path(settings.reward_job_schedule_path)
    if not path.is_absolute():
        path = Path(__file__).resolve().parent.parent.parent / path
    return path


async def run() -> None:
    configure_logging(service_name="karma-rewards", environment=settings.environment, version=APP_VERSION)
    if not settings.reward_job_scheduler_enabled:
        logger.warning("Reward job scheduler disabled; nothing to run")
        return

    scheduler = RewardJobScheduler(session_factory=_session_factory, config_path=schedule_path())
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    scheduler.start()
    try:
        await stop_event.wait()
    finally:
        await scheduler.stop()


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
