#!/usr/bin/env python3
"""Protocol TVL ingestion from DefiLlama: one aggregate series plus per-yield-pool history."""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

from constants import C_RED, C_RESET, CHANGE_WINDOW_MINUTES, HISTORY_CAPACITY
from errors import TransientUpstreamError
from ingest.history import HistoryRing
from ingest.models import (
    TvlChange,
    TvlPoint,
    YieldPool,
    YieldPoint,
    YieldPoolChange,
    percent_change,
)
from services.defillama_client import DefiLlamaClient


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class TvlIngestor:
    def __init__(
        self,
        client: DefiLlamaClient,
        history_capacity: int = HISTORY_CAPACITY,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.history_capacity = history_capacity
        self.clock = clock
        self.tvl_cache: Optional[TvlPoint] = None
        self.tvl_history: HistoryRing[TvlPoint] = HistoryRing(history_capacity)
        self.pools: Dict[str, YieldPool] = {}
        self.pool_history: Dict[str, HistoryRing[YieldPoint]] = {}

    async def refresh(self) -> Optional[TvlPoint]:
        """Records the latest aggregate TVL. On upstream failure or a malformed document the cached point is returned."""
        try:
            data = await self.client.get_protocol()
        except TransientUpstreamError as exc:
            print(f"{C_RED}[transient] Error fetching protocol TVL: {exc.reason}{C_RESET}")
            return self.tvl_cache

        try:
            point = self._parse_protocol(data)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            print(f"{C_RED}[transient] Malformed protocol TVL document: {exc!r}{C_RESET}")
            return self.tvl_cache

        self.tvl_cache = point
        self.tvl_history.append(point)
        return point

    def _parse_protocol(self, data: Dict[str, Any]) -> TvlPoint:
        series = data.get('tvl') or []
        latest = series[-1] if series else {}
        chain_tvls: Dict[str, float] = {}
        for chain, payload in (data.get('currentChainTvls') or {}).items():
            value = _optional_float(payload)
            if value is not None:
                chain_tvls[chain] = value

        return TvlPoint(
            timestamp=self.clock(),
            total_tvl=_optional_float(latest.get('totalLiquidityUSD')) or 0.0,
            chain_tvls=chain_tvls,
        )

    async def refresh_pools(self) -> List[YieldPool]:
        """Records the protocol's yield pools. On upstream failure or a malformed listing the cached pools are returned."""
        try:
            raw_pools = await self.client.get_yield_pools()
        except TransientUpstreamError as exc:
            print(f"{C_RED}[transient] Error fetching yield pools: {exc.reason}{C_RESET}")
            return list(self.pools.values())

        now = self.clock()
        try:
            pools = [pool for pool in (self._parse_yield_pool(raw, now) for raw in raw_pools) if pool]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            print(f"{C_RED}[transient] Malformed yield pool listing: {exc!r}{C_RESET}")
            return list(self.pools.values())

        for pool in pools:
            self.pools[pool.pool_id] = pool
            ring = self.pool_history.get(pool.pool_id)
            if ring is None:
                ring = self.pool_history[pool.pool_id] = HistoryRing(self.history_capacity)
            ring.append(YieldPoint(timestamp=now, tvl_usd=pool.tvl_usd, apy=pool.apy))
        return pools

    def _parse_yield_pool(self, raw: Dict[str, Any], now: float) -> Optional[YieldPool]:
        pool_id = raw.get('pool')
        if not pool_id:
            return None
        return YieldPool(
            pool_id=pool_id,
            chain=raw.get('chain') or '',
            symbol=raw.get('symbol') or '',
            tvl_usd=_optional_float(raw.get('tvlUsd')) or 0.0,
            apy=_optional_float(raw.get('apy')) or 0.0,
            apy_base=_optional_float(raw.get('apyBase')),
            apy_reward=_optional_float(raw.get('apyReward')),
            timestamp=now,
        )

    def get_tvl_change(self, window_minutes: int = CHANGE_WINDOW_MINUTES) -> Optional[TvlChange]:
        span = self.tvl_history.window(self.clock(), window_minutes)
        if span is None:
            return None
        old, current = span
        return TvlChange(
            current_tvl=current.total_tvl,
            old_tvl=old.total_tvl,
            change_percent=percent_change(current.total_tvl, old.total_tvl),
            period=window_minutes,
        )

    def get_pool_tvl_change(self, pool_id: str, window_minutes: int = CHANGE_WINDOW_MINUTES) -> Optional[YieldPoolChange]:
        ring = self.pool_history.get(pool_id)
        if ring is None:
            return None
        span = ring.window(self.clock(), window_minutes)
        if span is None:
            return None
        old, current = span
        return YieldPoolChange(
            pool_id=pool_id,
            current_tvl=current.tvl_usd,
            old_tvl=old.tvl_usd,
            tvl_change_percent=percent_change(current.tvl_usd, old.tvl_usd),
            current_apy=current.apy,
            old_apy=old.apy,
            apy_change=current.apy - old.apy,
            period=window_minutes,
        )

    def get_cache(self) -> Dict[str, Any]:
        return {
            'tvl': self.tvl_cache,
            'pools': list(self.pools.values()),
        }
