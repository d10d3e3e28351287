#!/usr/bin/env python3
import time
from typing import Callable, Dict, Iterable, Optional

from ingest.models import PoolSnapshot, PriceEntry


class PriceCache:
    """Latest underlying price per symbol, rebuilt from each tick's pool list."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._prices: Dict[str, PriceEntry] = {}

    def update_from_pools(self, pools: Iterable[PoolSnapshot]) -> Dict[str, PriceEntry]:
        now = self.clock()
        prices: Dict[str, PriceEntry] = {}
        for pool in pools:
            if pool.underlying_symbol and pool.underlying_price:
                prices[pool.underlying_symbol] = PriceEntry(
                    price=pool.underlying_price,
                    change_24h=pool.price_change_24h or 0.0,
                    timestamp=now,
                )
        self._prices = prices
        return dict(prices)

    def get(self, symbol: str) -> Optional[PriceEntry]:
        return self._prices.get(symbol)

    def get_all(self) -> Dict[str, PriceEntry]:
        return dict(self._prices)
