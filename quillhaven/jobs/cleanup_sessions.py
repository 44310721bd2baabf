"""
Barrido de sesiones expiradas o inactivas.

Pensado para correr desde cron: procesa un batch acotado por invocación.

    quillhaven-cleanup-sessions --batch-size 500
"""
import argparse
import asyncio
import logging

from quillhaven.core.config import settings
from quillhaven.core.db import SessionLocal, engine
from quillhaven.core.logging import setup_logging
from quillhaven.services.events import SecurityEventLog
from quillhaven.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)


async def run_cleanup(batch_size: int, session_factory=SessionLocal) -> int:
    async with session_factory() as db:
        registry = SessionRegistry(db, SecurityEventLog(db))
        return await registry.cleanup_expired(batch_size)


async def _main(batch_size: int) -> int:
    try:
        return await run_cleanup(batch_size)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="End expired and idle login sessions")
    parser.add_argument("--batch-size", type=int, default=settings.SESSION_CLEANUP_BATCH_SIZE)
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    ended = asyncio.run(_main(args.batch_size))
    logger.info("sesiones terminadas: %d", ended)


if __name__ == "__main__":
    main()
