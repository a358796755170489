"""
Waypoint - Application Entry Point
==================================

Bootstrap
---------
- Config validation
- Logging
- Database initialization (tier 3) and schema creation
- Redis connection (tier 2)
- Per-user session sign-in / sign-out
- Graceful shutdown

Usage
-----
    python -m src.main <user_id>

Signs the user in, prints a progress summary with the active quests, then
signs out (final flush + purge).
"""

import asyncio
import signal
import sys
from typing import Optional

from src.core.cache.local_store import RedisLocalCache
from src.core.config.config import Config
from src.core.config.manager import ConfigManager
from src.core.database.service import DatabaseService
from src.core.logging.logger import get_logger, setup_logging, shutdown_logging
from src.modules.persistence import SqlAlchemyRemoteStore
from src.modules.session import ProgressionSession

logger = get_logger(__name__)


class WaypointRuntime:
    """Process-wide infrastructure shared by every signed-in session."""

    def __init__(self) -> None:
        self.local: Optional[RedisLocalCache] = None
        self.remote: Optional[SqlAlchemyRemoteStore] = None

    # ========================================================================
    # Startup
    # ========================================================================

    async def startup(self) -> None:
        logger.info("========== WAYPOINT INITIALIZATION START ==========")

        # Step 1: Validate configuration early
        try:
            Config.validate()
            ConfigManager.load()
            logger.info("✓ Configuration loaded")
        except Exception as exc:
            logger.critical(f"Configuration validation failed: {exc}")
            raise

        # Step 2: Remote store (tier 3)
        try:
            await DatabaseService.initialize()
            if not await DatabaseService.health_check():
                raise RuntimeError("Database health check failed")
            await DatabaseService.create_schema()
            self.remote = SqlAlchemyRemoteStore()
            logger.info("✓ Database service initialized")
        except Exception as exc:
            logger.critical(f"Database initialization failed: {exc}", exc_info=True)
            raise

        # Step 3: Local durable cache (tier 2)
        try:
            self.local = await RedisLocalCache.connect()
            logger.info("✓ Local durable cache connected")
        except Exception as exc:
            logger.critical(f"Redis initialization failed: {exc}", exc_info=True)
            raise

        logger.info("========== INFRASTRUCTURE INITIALIZED SUCCESSFULLY ==========")

    # ========================================================================
    # Sessions
    # ========================================================================

    async def open_session(self, user_id: str, **options) -> ProgressionSession:
        if self.remote is None or self.local is None:
            raise RuntimeError("WaypointRuntime.startup() must run before open_session()")
        return await ProgressionSession.sign_in(user_id, self.remote, self.local, **options)

    # ========================================================================
    # Shutdown
    # ========================================================================

    async def shutdown(self) -> None:
        logger.info("========== WAYPOINT SHUTDOWN START ==========")

        if self.local is not None:
            try:
                await self.local.close()
                logger.info("✓ Local durable cache closed")
            except Exception as exc:
                logger.error(f"Redis shutdown error: {exc}", exc_info=True)
            self.local = None

        if DatabaseService.is_initialized():
            try:
                await DatabaseService.shutdown()
                logger.info("✓ Database service shut down")
            except Exception as exc:
                logger.error(f"Database service shutdown error: {exc}", exc_info=True)
        self.remote = None

        logger.info("========== SHUTDOWN COMPLETE ==========")


def format_summary(session: ProgressionSession, quests) -> str:
    record = session.progression.record
    lines = [
        f"user:     {session.user_id}",
        f"level:    {record.level} ({record.experience} xp)",
        f"currency: {record.currency}",
        f"chapter:  {record.current_chapter} (module {record.current_module_in_chapter})",
        "quests:",
    ]
    for quest in quests:
        lines.append(f"  [{quest.pool.value}] {quest.title}: {quest.progress}/{quest.target}")
    return "\n".join(lines)


# ============================================================================
# Application Entrypoint
# ============================================================================

async def main(user_id: str) -> int:
    runtime = WaypointRuntime()

    try:
        await runtime.startup()
        session = await runtime.open_session(user_id)
        try:
            print(format_summary(session, await session.list_active_quests()))
        finally:
            await session.sign_out()
        return 0

    except asyncio.CancelledError:
        logger.warning("Asyncio task cancellation received; shutting down gracefully.")
        raise

    except Exception as exc:
        logger.critical(f"Fatal error: {exc}", exc_info=True)
        return 1

    finally:
        await runtime.shutdown()


def _install_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    try:
        loop.add_signal_handler(signal.SIGTERM, loop.stop)
        logger.debug("SIGTERM handler installed")
    except NotImplementedError:
        logger.debug("SIGTERM not supported on this platform (likely Windows)")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("usage: python -m src.main <user_id>", file=sys.stderr)
        sys.exit(2)

    setup_logging()
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    _install_signal_handlers(loop)

    try:
        sys.exit(loop.run_until_complete(main(sys.argv[1])))
    except KeyboardInterrupt:
        logger.info("Stopped via keyboard interrupt.")
    finally:
        loop.close()
        shutdown_logging()
