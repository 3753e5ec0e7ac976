import asyncio
import logging
from sqlalchemy.ext.asyncio import async_sessionmaker
from consentgate.modules.authorizations.service import AuthorizationService

log = logging.getLogger("grants.sweeper")

async def sweep_once(session_factory: async_sessionmaker) -> int:
    async with session_factory() as session:
        return await AuthorizationService(session).expire_stale()

async def run_expiry_sweeper(session_factory: async_sessionmaker, interval_seconds: float = 60.0):
    log.info("Grant expiry sweeper started (every %ss)", interval_seconds)
    try:
        while True:
            try:
                n = await sweep_once(session_factory)
                if n:
                    log.info("Expired %d stale authorization grants", n)
            except Exception:
                log.exception("Grant expiry sweep failed")
            await asyncio.sleep(interval_seconds)
    except asyncio.CancelledError:
        log.info("Grant expiry sweeper cancelled; shutting down")
        raise
