#!/usr/bin/env python3
# monitor.py
import asyncio
import time
from dataclasses import asdict
from typing import Any, Callable, Dict, Optional, Set

from alerts.alert_engine import AlertRuleEngine
from alerts.pool_detector import PoolDetector
from alerts.watchlist import WatchlistEngine
from constants import C_BLUE, C_GREEN, C_RED, C_RESET, C_YELLOW, DEFAULT_INTERVAL_SECONDS
from ingest.models import ChangeRecord
from ingest.pool_ingestor import PoolDataIngestor
from ingest.price_cache import PriceCache
from ingest.tvl_ingestor import TvlIngestor


class PoolMonitor:
    """Drives one ingest-then-evaluate tick every `interval` seconds."""

    def __init__(
        self,
        pool_ingestor: PoolDataIngestor,
        tvl_ingestor: TvlIngestor,
        price_cache: PriceCache,
        detector: PoolDetector,
        alert_engine: AlertRuleEngine,
        watchlist: WatchlistEngine,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.pool_ingestor = pool_ingestor
        self.tvl_ingestor = tvl_ingestor
        self.price_cache = price_cache
        self.detector = detector
        self.alert_engine = alert_engine
        self.watchlist = watchlist
        self.interval = interval
        self.clock = clock

        self.is_running = False
        self.last_update: Optional[float] = None
        self.last_error: Optional[str] = None
        self.stats: Dict[str, Any] = {'total_updates': 0, 'start_time': None}
        self._scheduler: Optional[asyncio.Task] = None
        self._ticks: Set[asyncio.Task] = set()

    async def start(self) -> None:
        """Runs one tick immediately, then schedules the rest. No-op if already running."""
        if self.is_running:
            print(f"{C_YELLOW}Monitor already running{C_RESET}")
            return
        self.is_running = True
        self.stats['start_time'] = self.clock()
        print(f"{C_GREEN}Starting TermMax monitor (interval {self.interval}s)...{C_RESET}")

        await self.update()
        self._scheduler = asyncio.create_task(self._run_main_loop())

    async def _run_main_loop(self) -> None:
        while self.is_running:
            await asyncio.sleep(self.interval)
            if not self.is_running:
                break
            # Ticks are not serialized; a slow tick may overlap the next one.
            task = asyncio.create_task(self.update())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)

    def stop(self) -> None:
        """Cancels future scheduling. In-flight ticks run to completion."""
        if not self.is_running:
            return
        self.is_running = False
        if self._scheduler is not None:
            self._scheduler.cancel()
            self._scheduler = None
        print("Monitor stopped")

    async def update(self) -> None:
        """One full tick. Failures are logged and kept as `last_error`; they never escape."""
        print("\n" + "=" * 50)
        print(f"{C_BLUE}Starting monitor update...{C_RESET}")
        try:
            await self._run_tick()
            self.last_update = self.clock()
            self.stats['total_updates'] += 1
            self.last_error = None
        except Exception as e:
            print(f"{C_RED}Error during monitor update: {e}{C_RESET}")
            self.last_error = str(e)
        print("=" * 50)

    async def _run_tick(self) -> None:
        pools = await self.pool_ingestor.refresh()
        await self.detector.check_new_pools(pools)
        self.price_cache.update_from_pools(pools)

        await self.tvl_ingestor.refresh()
        await self.tvl_ingestor.refresh_pools()

        changes: Dict[str, ChangeRecord] = {}
        for pool in pools:
            change = self.pool_ingestor.get_change(pool.id)
            if change is not None:
                changes[pool.id] = change
        fired = await self.alert_engine.evaluate(pools, changes, self.tvl_ingestor.get_tvl_change())

        triggered = await self.watchlist.check_rules(pools)
        await self.watchlist.maybe_send_daily_digest(pools)
        self.alert_engine.cleanup()

        print(f"Update complete: {len(pools)} pools, {fired} alert(s), {len(triggered)} watch alert(s)")

    def get_status(self) -> Dict[str, Any]:
        start_time = self.stats.get('start_time')
        return {
            'is_running': self.is_running,
            'last_update': self.last_update,
            'stats': dict(self.stats),
            'uptime': self.clock() - start_time if start_time else 0,
            'last_error': self.last_error,
        }

    def get_data(self) -> Dict[str, Any]:
        """Dashboard snapshot: pools annotated with watch status, plus cached TVL, prices and alerts."""
        pools = []
        for pool in self.pool_ingestor.pools:
            rule = self.watchlist.get_watch(pool.id)
            pools.append({
                **asdict(pool),
                'is_watching': rule is not None,
                'watch_rule': rule.to_dict() if rule else None,
            })
        return {
            'pools': pools,
            'summary': self.pool_ingestor.get_summary(),
            'watchlist': [r.to_dict() for r in self.watchlist.get_all()],
            'prices': {sym: asdict(entry) for sym, entry in self.price_cache.get_all().items()},
            'tvl': self.tvl_ingestor.get_cache(),
            'alerts': [asdict(a) for a in self.alert_engine.get_alerts(20)],
            'status': self.get_status(),
        }
