"""Whale watcher runner: assembles the engine and runs it until stopped."""

import argparse
import asyncio
import signal
import sys
from typing import Any

import structlog

from ..alerts.telegram import NoopAlertSink, TelegramAlertSink, format_delta_alert
from ..config.settings import WatcherSettings, load_settings
from ..core.errors import FetchError
from ..core.types import EntityKey, PollOutcome, TransferRecord
from ..data.moralis import MoralisHolderSource, ProxyFetcher
from ..data.request_queue import RequestQueue
from ..engine.diff import significant_changes, top_holders
from ..persist.cache import TTLCache
from ..persist.snapshots import SnapshotStore
from ..persist.storage import SQLiteStorage
from .scheduler import PollScheduler

logger = structlog.get_logger(__name__)


class WhaleWatcher:
    """Wires storage, cache, request queue, snapshot store and scheduler."""

    def __init__(self, settings: WatcherSettings) -> None:
        """Initialize whale watcher with assembled components."""
        self.settings = settings
        self.components = self._assemble(settings)
        self._stopped = asyncio.Event()

        self.scheduler.add_listener(self._on_outcome)

        logger.info(
            "Whale watcher initialized",
            chain=settings.chain,
            poll_interval_seconds=settings.poll_interval_seconds,
        )

    def _assemble(self, settings: WatcherSettings) -> dict[str, Any]:
        """Assemble watcher components from settings.

        Args:
            settings: Watcher settings

        Returns:
            Dictionary of assembled components
        """
        components: dict[str, Any] = {}

        storage = SQLiteStorage(
            db_path=settings.database_path,
            quota_bytes=settings.storage_quota_bytes,
        )
        components["storage"] = storage

        components["cache"] = TTLCache(storage, default_ttl=settings.cache_ttl_seconds)
        components["queue"] = RequestQueue(delay=settings.request_delay_seconds)
        components["fetcher"] = ProxyFetcher(base_url=settings.proxy_url)
        components["source"] = MoralisHolderSource(
            fetcher=components["fetcher"],
            queue=components["queue"],
            cache=components["cache"],
            holder_limit=settings.holder_limit,
        )
        components["store"] = SnapshotStore(storage, max_history=settings.history_size)
        components["scheduler"] = PollScheduler(
            source=components["source"],
            store=components["store"],
            interval=settings.poll_interval_seconds,
        )

        if settings.telegram_bot_token and settings.telegram_admin_ids:
            components["alerts"] = TelegramAlertSink(
                bot_token=settings.telegram_bot_token,
                admin_user_ids=settings.telegram_admin_ids,
            )
            logger.info("Using Telegram alert sink")
        else:
            components["alerts"] = NoopAlertSink()
            logger.info("Using noop alert sink (no Telegram config)")

        return components

    @property
    def scheduler(self) -> PollScheduler:
        return self.components["scheduler"]

    async def _on_outcome(self, outcome: PollOutcome) -> None:
        """Flush storage and alert on a completed poll cycle."""
        storage: SQLiteStorage = self.components["storage"]
        await storage.flush()

        alerts = self.components["alerts"]
        if outcome.error is not None:
            await alerts.push(
                f"⚠️ Poll failed for <code>{outcome.entity}</code>: {outcome.error}"
            )
            return

        delta = outcome.delta
        threshold = self.settings.alert_threshold_pct
        if delta is None or not (
            delta.entered or delta.exited or significant_changes(delta, threshold)
        ):
            return

        whales = []
        if outcome.snapshot is not None:
            whales = top_holders(outcome.snapshot, self.settings.whale_fraction)
        transfers = await self._recent_transfers(outcome.entity)

        message = format_delta_alert(
            outcome.entity, delta, threshold, whales=whales, transfers=transfers
        )
        if message:
            await alerts.push(message)

    async def _recent_transfers(self, entity: EntityKey) -> list[TransferRecord]:
        """Fetch recent transfers for alert context; failures yield none."""
        try:
            return await self.components["source"].fetch_transfers(entity)
        except FetchError as e:
            logger.warning("Transfer lookup failed", entity=str(entity), error=str(e))
            return []

    async def start(self, entity: EntityKey) -> None:
        """Load storage, sweep stale cache entries and start polling."""
        storage: SQLiteStorage = self.components["storage"]
        await storage.initialize()

        removed = self.components["cache"].sweep()
        logger.info("Startup cache sweep", removed=removed)

        self.scheduler.track(entity)

    async def run_forever(self, entity: EntityKey) -> None:
        """Poll ``entity`` until stop() is called."""
        await self.start(entity)
        try:
            await self._stopped.wait()
        except asyncio.CancelledError:
            logger.info("Watcher cancelled")
        finally:
            await self.close()

    def stop(self) -> None:
        """Request shutdown."""
        logger.info("Stopping whale watcher")
        self._stopped.set()

    async def close(self) -> None:
        """Stop polling and release resources."""
        self.scheduler.stop()
        await self.components["queue"].close()
        await self.components["fetcher"].close()
        await self.components["storage"].close()

        alerts = self.components["alerts"]
        if isinstance(alerts, TelegramAlertSink):
            await alerts.close()


async def main() -> None:
    """Main entry point for the whale watcher."""
    parser = argparse.ArgumentParser(description="Token whale watcher")
    parser.add_argument(
        "--config", default="configs/dev.yaml", help="Configuration file path"
    )
    parser.add_argument(
        "--profile",
        default="dev",
        choices=["dev", "prod"],
        help="Configuration profile",
    )
    parser.add_argument("--token", help="Token address (overrides config)")
    parser.add_argument("--chain", help="Chain namespace (overrides config)")

    args = parser.parse_args()

    try:
        settings = load_settings(args.profile, args.config)

        token = args.token or settings.token_address
        if not token:
            raise ValueError("No token address configured; pass --token")
        entity = EntityKey(namespace=args.chain or settings.chain, entity_id=token)

        watcher = WhaleWatcher(settings)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, watcher.stop)

        await watcher.run_forever(entity)

    except Exception as e:
        logger.error("Fatal error", error=str(e))
        sys.exit(1)


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
