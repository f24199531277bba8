"""
BTC Duel - Main Entry Point
===========================

Builds the game core (price feed, opponent engine, session store,
settlement oracle) and runs the periodic session cleanup sweep.
The presentation layer embeds GameService from a running DuelApp.

USAGE:
    python -m btc_duel.main
"""

import asyncio
import signal
import sys
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from btc_duel.utils.logger import configure_logging, get_logger
from btc_duel.data.price_feed import PriceFeed, format_price, format_price_change
from btc_duel.strategy.decision_engine import DecisionEngine
from btc_duel.game.session_store import SessionStore
from btc_duel.game.oracle import SettlementOracle
from btc_duel.game.service import GameService
from config.settings import Settings, settings as default_settings

logger = get_logger(__name__)


async def run_cleanup_loop(
    service: GameService,
    interval_seconds: float,
    stop_event: asyncio.Event
):
    """Sweep expired sessions every `interval_seconds` until stop_event is set."""
    while not stop_event.is_set():
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            break
        except asyncio.TimeoutError:
            pass

        try:
            removed = service.cleanup()
            logger.debug("cleanup_sweep", removed=removed, remaining=len(service.store))
        except Exception as e:
            logger.error("cleanup_sweep_error", error=str(e), exc_info=True)


class DuelApp:
    """
    Owns the game components for the lifetime of the process.

    Components are built once and shared by reference; nothing is
    reached through module globals.
    """

    def __init__(self, config: Optional[Settings] = None, clock=None):
        self.config = config or default_settings

        self.price_feed = PriceFeed(
            api_url=self.config.coingecko_api,
            cache_ttl_seconds=self.config.price_cache_ttl_seconds,
            timeout_seconds=self.config.price_fetch_timeout_seconds,
            clock=clock
        )
        self.engine = DecisionEngine()
        self.store = SessionStore(clock=clock)
        self.oracle = SettlementOracle(
            store=self.store,
            price_feed=self.price_feed,
            clock=clock,
            settlement_delay=timedelta(seconds=self.config.settlement_delay_seconds)
        )
        self.service = GameService(
            price_feed=self.price_feed,
            engine=self.engine,
            store=self.store,
            oracle=self.oracle,
            reward=self.config.game_reward,
            session_max_age=timedelta(seconds=self.config.session_max_age_seconds)
        )

        self._stop_event = asyncio.Event()

    async def run(self):
        """Log startup state, then sweep sessions until stopped."""
        snapshot, _ = await self.service.current_price()
        healthy = await self.oracle.check_health()

        logger.info(
            "duel_started",
            btc_price=format_price(snapshot.price),
            change_24h=format_price_change(snapshot.change_24h),
            oracle_healthy=healthy,
            settlement_delay_seconds=self.config.settlement_delay_seconds,
            reward=self.config.game_reward
        )

        try:
            await run_cleanup_loop(
                self.service,
                self.config.cleanup_interval_seconds,
                self._stop_event
            )
        except asyncio.CancelledError:
            logger.info("duel_tasks_cancelled")
        finally:
            logger.info(
                "duel_stats",
                store=self.store.get_stats(),
                oracle=self.oracle.get_stats(),
                feed=self.price_feed.get_stats(),
                engine=self.engine.get_stats()
            )

    def stop(self):
        self._stop_event.set()

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("duel_shutting_down")
        self.stop()
        await self.price_feed.close()
        logger.info("duel_shutdown_complete")


async def main():
    """Entry point."""
    configure_logging(
        level=default_settings.log_level,
        json_output=default_settings.log_json
    )
    app = DuelApp()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("shutdown_signal_received")
        app.stop()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

    try:
        await app.run()
    except Exception as e:
        logger.error("duel_crashed", error=str(e), exc_info=True)
        raise
    finally:
        await app.shutdown()


def run():
    """Console script entry."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
