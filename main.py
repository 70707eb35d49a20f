"""Event reminders client process.

Runs one reminder session until interrupted:

    python main.py --user <uuid> --capability installed
    python main.py --once          # single tick, then exit
"""

import argparse
import asyncio
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config import CLIENT_CAPABILITY, REMINDER_USER_ID
from logger import logger
from domains.reminders import (
    ClientCapabilityClass,
    ReminderSession,
    build_capability,
)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Event reminder scheduler")
    parser.add_argument(
        "--user", default=REMINDER_USER_ID,
        help="Account id (omit for a guest session backed by the device cache)"
    )
    parser.add_argument(
        "--capability", default=CLIENT_CAPABILITY,
        choices=[c.value for c in ClientCapabilityClass],
        help="Client capability class"
    )
    parser.add_argument(
        "--once", action="store_true",
        help="Load state, run a single tick and exit"
    )
    return parser.parse_args(argv)


async def run_once(session: ReminderSession) -> None:
    await session.request_permission()
    result = await session.run_once()
    if result is not None:
        logger.info(f"Single tick finished: {result.summary() or 'nothing due'}")
    session.cache.close()


async def run_forever(session: ReminderSession) -> None:
    scheduler = AsyncIOScheduler()
    scheduler.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C raises instead
            pass

    await session.request_permission()
    await session.start(scheduler)
    try:
        await stop_event.wait()
    finally:
        await session.stop()
        scheduler.shutdown(wait=False)
        session.cache.close()
        logger.info("Event reminders stopped")


def main(argv=None) -> None:
    args = parse_args(argv)
    session = ReminderSession(
        user_id=args.user or None,
        capability_class=ClientCapabilityClass(args.capability),
        capability=build_capability(),
    )
    logger.info(f"Starting event reminders (user={args.user or 'guest'}, capability={args.capability})")

    try:
        if args.once:
            asyncio.run(run_once(session))
        else:
            asyncio.run(run_forever(session))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
