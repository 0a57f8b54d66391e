#!/usr/bin/env python3
"""
Pipeline Runner
===============

Runs the ingestion / reconciliation pipeline without the HTTP surface.

Usage:
    python -m chainsync.run_pipeline
    python -m chainsync.run_pipeline --mode session
    python -m chainsync.run_pipeline --reconcile-once
"""
import argparse
import asyncio
import logging
import signal
from pathlib import Path

from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / '.env')

from chainsync.config.settings import get_settings
from chainsync.errors import StorageUnavailableError
from chainsync.pipeline import build_pipeline

log = logging.getLogger('chainsync')


async def run(args) -> int:
    overrides = {}
    if args.mode:
        overrides['listening_mode'] = args.mode
    if args.reconcile_once:
        overrides['event_listeners_enabled'] = False

    settings = get_settings().model_copy(update=overrides)
    pipeline = build_pipeline(settings)

    try:
        await pipeline.start()
    except StorageUnavailableError as e:
        log.error(f"❌ Could not start pipeline: {e}")
        await pipeline.gateway.close()
        return 1

    if args.reconcile_once:
        result = await pipeline.reconciliation.run_once()
        log.info(f"Reconciliation pass finished: {result}")
        await pipeline.stop()
        return 0

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_signal(sig, frame):
        log.info(f"Received signal {sig}, shutting down...")
        loop.call_soon_threadsafe(stop.set)

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    log.info(f"Pipeline running (mode: {settings.listening_mode}). Ctrl+C to stop")
    await stop.wait()
    await pipeline.stop()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Run the chainsync pipeline")
    parser.add_argument('--mode', choices=['continuous', 'session', 'on_demand'],
                        help="Override LISTENING_MODE")
    parser.add_argument('--reconcile-once', action='store_true',
                        help="Run a single reconciliation pass without watchers, then exit")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )

    raise SystemExit(asyncio.run(run(args)))


if __name__ == '__main__':
    main()
