#!/usr/bin/env python3
"""Alpha pool ingestion: listing + per-vault enrichment, current snapshot and bounded history."""
from __future__ import annotations

import asyncio
import re
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from constants import (
    CHANGE_WINDOW_MINUTES,
    C_RED,
    C_RESET,
    C_YELLOW,
    DEFAULT_CHAIN_ID,
    HISTORY_CAPACITY,
    STABLE_SYMBOL,
)
from errors import TransientUpstreamError
from ingest.history import HistoryRing
from ingest.models import ChangeRecord, HistoryPoint, PoolSnapshot, percent_change
from services.termmax_client import TermMaxClient

# "B2/USDT@24DEC2025-0.5P" -> 0.5, "-50C" -> 50
STRIKE_SUFFIX_RE = re.compile(r'-(\d+(?:\.\d+)?)([PC])$', re.IGNORECASE)
WEI = 1e18


def parse_strike_price(vault_name: Optional[str]) -> float:
    """Strike from a trailing `-<number>P` / `-<number>C` token; 0 when absent."""
    if not vault_name:
        return 0.0
    match = STRIKE_SUFFIX_RE.search(vault_name.strip())
    if not match:
        return 0.0
    return float(match.group(1))


def price_to_strike(price: float, strike: float) -> float:
    if strike <= 0:
        return 0.0
    return (price - strike) / strike * 100


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if result == result else default  # NaN


def _parse_maturity(value: Any) -> float:
    if value is None or value == '':
        return 0.0
    if isinstance(value, (int, float)):
        # Millisecond epochs are far beyond any plausible second epoch.
        return float(value) / 1000 if value > 1e11 else float(value)
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00')).timestamp()
    except ValueError:
        return 0.0


class PoolDataIngestor:
    def __init__(
        self,
        client: TermMaxClient,
        chain_id: int = DEFAULT_CHAIN_ID,
        history_capacity: int = HISTORY_CAPACITY,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.chain_id = chain_id
        self.history_capacity = history_capacity
        self.clock = clock
        self.pools: List[PoolSnapshot] = []
        self.vaults: Dict[str, Dict[str, Any]] = {}
        self.history: Dict[str, HistoryRing[HistoryPoint]] = {}
        self.last_update: Optional[float] = None

    async def refresh(self) -> List[PoolSnapshot]:
        """Fetches and enriches the pool list. On upstream failure or a malformed
        payload the previous list is returned unchanged."""
        try:
            data = await self.client.get_alpha_pools(self.chain_id)
        except TransientUpstreamError as exc:
            print(f"{C_RED}[transient] Error fetching alpha pools: {exc.reason}. Serving {len(self.pools)} cached pools.{C_RESET}")
            return self.pools

        now = self.clock()
        try:
            base_pools = self.parse_alpha_pools(data, now)
            vault_map = await self._fetch_vault_map(base_pools)
            enriched = [self._enrich(pool, vault_map.get((pool.vault_address or '').lower())) for pool in base_pools]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            print(f"{C_RED}[transient] Malformed alpha pool payload: {exc!r}. Serving {len(self.pools)} cached pools.{C_RESET}")
            return self.pools

        self.pools = enriched
        self.last_update = now
        for pool in enriched:
            self._record_history(pool, now)
        return enriched

    async def _fetch_vault_map(self, pools: List[PoolSnapshot]) -> Dict[str, Dict[str, Any]]:
        addresses = sorted({p.vault_address.lower() for p in pools if p.vault_address})
        if not addresses:
            return {}
        print(f"Fetching {len(addresses)} vault details...")
        details = await asyncio.gather(
            *(self.client.get_vault_details(self.chain_id, addr) for addr in addresses)
        )
        vault_map: Dict[str, Dict[str, Any]] = {}
        for addr, detail in zip(addresses, details):
            if detail:
                vault_map[addr] = detail
                self.vaults[addr] = detail
        missing = len(addresses) - len(vault_map)
        if missing:
            print(f"{C_YELLOW}{missing} vault detail lookup(s) missing; keeping listing values for those pools.{C_RESET}")
        return vault_map

    def parse_alpha_pools(self, data: Dict[str, Any], now: float) -> List[PoolSnapshot]:
        collections = (data or {}).get('alphaCollections') or []
        pools: List[PoolSnapshot] = []
        for collection in collections:
            if not collection.get('optionId'):
                continue
            pools.append(self._parse_collection(collection, now))
        return pools

    def _parse_collection(self, collection: Dict[str, Any], now: float) -> PoolSnapshot:
        long_order = collection.get('longOrder') or {}
        vault_config = collection.get('vaultConfig') or {}
        vault_info = vault_config.get('vaultInfo') or {}

        price_info = next(
            (
                p for p in long_order.get('priceInfos') or []
                if p.get('type') == 'BASIC' and p.get('symbol') != STABLE_SYMBOL
            ),
            None,
        )
        underlying_price = 0.0
        target_price = 0.0
        metadata: Dict[str, Any] = {}
        if price_info:
            underlying_price = _to_float(price_info.get('price')) / 10 ** int(price_info.get('priceDecimals') or 0)
            if price_info.get('thirdPartyPrice'):
                decimals = int(price_info.get('thirdPartyPriceDecimals') or 8)
                target_price = _to_float(price_info.get('thirdPartyPrice')) / 10 ** decimals
            metadata = price_info.get('metadata') or {}

        long_vault = (
            collection.get('longVaultAddress')
            or vault_config.get('longVaultAddress')
            or vault_info.get('vaultAddress')
        )
        short_vault = collection.get('shortVaultAddress') or vault_config.get('shortVaultAddress')

        tvl = _to_float(vault_info.get('totalAssets')) / WEI
        capacity = _to_float(vault_info.get('maxCapacity')) / WEI

        return PoolSnapshot(
            id=str(collection['optionId']),
            symbol=collection.get('symbol') or '',
            underlying_symbol=(price_info or {}).get('symbol') or 'Unknown',
            underlying_price=underlying_price,
            strike_price=0.0,
            maturity=_parse_maturity(collection.get('maturity')),
            tvl=tvl,
            capacity=capacity,
            utilization=tvl / capacity * 100 if capacity > 0 else 0.0,
            total_apy=_to_float((vault_config.get('apyInfo') or {}).get('totalApy')),
            price_to_target=price_to_strike(underlying_price, target_price),
            target_price=target_price,
            price_change_24h=_to_float(metadata.get('priceChangePercent')),
            vault_address=short_vault or long_vault,
            timestamp=now,
        )

    def _enrich(self, pool: PoolSnapshot, vault: Optional[Dict[str, Any]]) -> PoolSnapshot:
        if not vault:
            return pool

        strike = parse_strike_price(vault.get('name'))
        tvl = _to_float(vault.get('tvl')) or pool.tvl
        capacity = _to_float(vault.get('capacityValue')) or pool.capacity
        raw_capacity = _to_float(vault.get('capacityValue'))
        utilization = _to_float(vault.get('tvl')) / raw_capacity * 100 if raw_capacity > 0 else pool.utilization

        pool.tvl = tvl
        pool.capacity = capacity
        pool.utilization = utilization
        pool.total_apy = _to_float(vault.get('apy')) * 100
        pool.apr = _to_float(vault.get('apr')) * 100
        pool.strike_price = strike
        pool.target_price = strike
        pool.price_to_target = price_to_strike(pool.underlying_price, strike)
        pool.vault_name = vault.get('name')
        pool.asset_symbol = (vault.get('asset') or {}).get('symbol') or STABLE_SYMBOL
        pool.curator = (vault.get('curator') or {}).get('name')
        return pool

    def _record_history(self, pool: PoolSnapshot, now: float) -> None:
        ring = self.history.get(pool.id)
        if ring is None:
            ring = self.history[pool.id] = HistoryRing(self.history_capacity)
        ring.append(HistoryPoint(
            timestamp=now,
            tvl=pool.tvl,
            capacity=pool.capacity,
            utilization=pool.utilization,
            total_apy=pool.total_apy,
            underlying_price=pool.underlying_price,
            target_price=pool.target_price,
        ))

    def get_change(self, pool_id: str, window_minutes: int = CHANGE_WINDOW_MINUTES) -> Optional[ChangeRecord]:
        ring = self.history.get(pool_id)
        if ring is None:
            return None
        span = ring.window(self.clock(), window_minutes)
        if span is None:
            return None
        old, current = span
        return ChangeRecord(
            pool_id=pool_id,
            tvl_change=current.tvl - old.tvl,
            tvl_change_percent=percent_change(current.tvl, old.tvl),
            utilization_change=current.utilization - old.utilization,
            apy_change=current.total_apy - old.total_apy,
            price_change=current.underlying_price - old.underlying_price,
            price_change_percent=percent_change(current.underlying_price, old.underlying_price),
            period=window_minutes,
            current=current,
            old=old,
        )

    def get_history(self, pool_id: str) -> List[HistoryPoint]:
        ring = self.history.get(pool_id)
        return ring.points() if ring else []

    def get_pool(self, pool_id: str) -> Optional[PoolSnapshot]:
        return next((p for p in self.pools if p.id == pool_id), None)

    def find_by_symbol(self, symbol: str) -> Optional[PoolSnapshot]:
        wanted = symbol.upper()
        return next((p for p in self.pools if p.underlying_symbol.upper() == wanted), None)

    def get_cache(self) -> Dict[str, Any]:
        return {
            'pools': self.pools,
            'last_update': self.last_update,
            'pool_count': len(self.pools),
        }

    def get_summary(self) -> Optional[Dict[str, Any]]:
        pools = self.pools
        if not pools:
            return None
        count = len(pools)
        return {
            'total_tvl': sum(p.tvl for p in pools),
            'total_capacity': sum(p.capacity for p in pools),
            'avg_apy': sum(p.total_apy for p in pools) / count,
            'avg_utilization': sum(p.utilization for p in pools) / count,
            'pool_count': count,
            'last_update': self.last_update,
        }
