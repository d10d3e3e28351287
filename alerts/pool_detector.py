#!/usr/bin/env python3
"""Announces pools whose id has never been seen before."""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, List, Set

from constants import C_GREEN, C_RED, C_RESET, KNOWN_POOLS_KEY, format_number, risk_icon
from errors import PersistenceError
from ingest.models import PoolSnapshot
from services.notifier import Notifier
from storage import DocumentStore


class PoolDetector:
    def __init__(self, store: DocumentStore, notifier: Notifier, clock: Callable[[], float] = time.time):
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.known_pools: Set[str] = set()
        self._load()

    def _load(self) -> None:
        try:
            document = self.store.load(KNOWN_POOLS_KEY) or {}
        except PersistenceError as exc:
            print(f"{C_RED}Error loading known pools: {exc}{C_RESET}")
            return
        self.known_pools = set(document.get('poolIds') or [])
        print(f"Loaded {len(self.known_pools)} known pools")

    def _save(self) -> None:
        document = {
            'poolIds': sorted(self.known_pools),
            'lastUpdate': self.clock(),
        }
        try:
            self.store.save(KNOWN_POOLS_KEY, document)
        except PersistenceError as exc:
            print(f"{C_RED}Error saving known pools: {exc}{C_RESET}")

    async def check_new_pools(self, pools: List[PoolSnapshot]) -> List[PoolSnapshot]:
        """Returns pools not seen before. The known set is persisted before anyone is notified."""
        new_pools: List[PoolSnapshot] = []
        for pool in pools or []:
            if not pool.id:
                continue
            if pool.id not in self.known_pools:
                new_pools.append(pool)
            self.known_pools.add(pool.id)

        if new_pools:
            self._save()
            for pool in new_pools:
                await self.notifier.notify(self.format_new_pool_message(pool), 'success')
                strike = pool.strike_price or pool.target_price
                print(f"{C_GREEN}New pool detected and notified: {pool.underlying_symbol} @ ${strike}{C_RESET}")
        return new_pools

    def format_new_pool_message(self, pool: PoolSnapshot) -> str:
        strike = pool.strike_price or pool.target_price or 0
        maturity = (
            datetime.fromtimestamp(pool.maturity, tz=timezone.utc).strftime('%b %d, %Y')
            if pool.maturity else 'Unknown'
        )
        return (
            "<b>🆕 New Pool Launched!</b>\n\n"
            f"{risk_icon(pool.price_to_target)} <b>{pool.underlying_symbol}/{pool.asset_symbol}</b>\n"
            f"📍 Strike: ${strike}\n"
            f"💰 Current: ${pool.underlying_price:.4f} ({pool.price_to_target:.1f}%)\n"
            f"📈 APY: {pool.total_apy:.1f}%\n"
            f"📊 TVL: ${format_number(pool.tvl)}\n"
            f"📅 Maturity: {maturity}\n"
            f"🏷️ Symbol: {pool.symbol or 'N/A'}"
        )

    @property
    def known_count(self) -> int:
        return len(self.known_pools)

    def is_known(self, pool_id: str) -> bool:
        return pool_id in self.known_pools

    def clear(self) -> None:
        self.known_pools.clear()
        self._save()
