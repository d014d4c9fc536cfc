"""
Worker Runner - Background Jobs without the Web Server
======================================================

Runs the queue processor, the notification dispatcher and the EasyTable
poller until interrupted:
    python run_worker.py

Or a single pass of the queue and the dispatcher, e.g. from cron:
    python run_worker.py --once
"""

import argparse
import asyncio
import logging
import signal

from src.application import build_container
from src.infrastructure.config import get_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def run_once():
    container = build_container(get_settings())
    try:
        processed = await container.processor.process_queue()
        dispatched = await container.dispatcher.dispatch_pending()
        logger.info(f"Processed {processed} queue items, dispatched {dispatched} notifications")
    finally:
        await container.stop_jobs()


async def run_forever():
    container = build_container(get_settings())
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: Ctrl+C still raises KeyboardInterrupt
            pass

    await container.start_jobs()
    logger.info("Worker running. Press Ctrl+C to stop.")
    try:
        await stop.wait()
    finally:
        await container.stop_jobs()
        logger.info("Worker stopped")


def main():
    parser = argparse.ArgumentParser(description="ReviewFlow background worker")
    parser.add_argument("--once", action="store_true", help="process one batch and exit")
    args = parser.parse_args()

    print("\n" + "=" * 60)
    print("   ReviewFlow - Worker")
    print("=" * 60 + "\n")

    try:
        asyncio.run(run_once() if args.once else run_forever())
    except KeyboardInterrupt:
        print("\nInterrupted.")


if __name__ == "__main__":
    main()
