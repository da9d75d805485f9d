"""
CoopTime publisher: runs the heartbeat clock until the process is stopped.
"""

import asyncio
import logging

from common import DocumentStore, setup_logging
from common.config import COOP_TIME_STORE_URL, DB_PATH
from coop_time import DocumentTimeStore, FallbackCache, HeartbeatClock, HeartbeatQueue, RestTimeStore

setup_logging("coop-time")
logger = logging.getLogger(__name__)


def build_shared_store():
    """Supabase REST table when COOP_TIME_STORE_URL is set, else the local document store."""
    if COOP_TIME_STORE_URL:
        logger.info("Publishing coopTime to %s", COOP_TIME_STORE_URL)
        return RestTimeStore()
    store = DocumentStore(DB_PATH)
    store.init()
    logger.info("Publishing coopTime to document store %s", DB_PATH)
    return DocumentTimeStore(store)


async def main():
    shared = build_shared_store()
    clock = HeartbeatClock(shared, HeartbeatQueue(), FallbackCache())
    try:
        async with clock:
            await asyncio.Future()
    finally:
        if isinstance(shared, RestTimeStore):
            await shared.aclose()


if __name__ == "__main__":
    asyncio.run(main())
