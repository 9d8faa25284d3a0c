"""Async-wait expiry CLI — ``surveyor-expire``.

Resumes every run whose asynchronous lookup has outlived its deadline, as
if the lookup had returned nothing.  The engine also expires waits lazily
when a run is touched; this sweep covers runs nobody touches, and is meant
for a periodic job on the device.

Examples::

    # Expire overdue waits using the default deadline
    surveyor-expire

    # Load flows from a non-default directory
    surveyor-expire --flow-dir /data/flows
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

logger = logging.getLogger(__name__)


async def run_expiry(*, flow_dir: str | None = None) -> int:
    """Expire overdue async waits and return the number of runs resumed.

    Builds its own flow cache, store and engine, so it is safe to call from
    a CLI entry point or a scheduled task.
    """
    # Lazy imports to avoid loading DB machinery at module import time
    from surveyor_db.engine import create_schema, dispose_engine, get_session_factory
    from surveyor_db.store import SqlRunStore
    from surveyor_flows.engine import FlowEngine
    from surveyor_flows.flows import FlowStore

    flows = FlowStore(flow_dir=flow_dir)
    flows.load()

    try:
        await create_schema()
        engine = FlowEngine(flows, SqlRunStore(get_session_factory()))
        expired = await engine.expire_async_waits()
        logger.info("Expiry complete: resumed_runs=%d", len(expired))
        return len(expired)
    finally:
        await dispose_engine()


def cli() -> None:
    """Console-script entry point: ``surveyor-expire``.

    Parses command-line arguments and runs the async expiry function.
    """
    parser = argparse.ArgumentParser(
        prog="surveyor-expire",
        description="Resume runs whose asynchronous lookup has timed out.",
    )
    parser.add_argument(
        "--flow-dir",
        default=os.getenv("SERVER_FLOW_DIR"),
        help="Directory of cached flow definitions (default: $SERVER_FLOW_DIR).",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("SERVER_LOG_LEVEL", "INFO"),
        help="Logging level (default: $SERVER_LOG_LEVEL or INFO).",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    count = asyncio.run(run_expiry(flow_dir=args.flow_dir))

    print(f"Resumed {count} timed-out run(s).")
    sys.exit(0)
