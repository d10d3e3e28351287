#!/usr/bin/env python3
"""Snapshot and history records produced by the ingestors."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class PoolSnapshot:
    """Point-in-time state of one dual-investment pool."""
    id: str
    symbol: str
    underlying_symbol: str
    underlying_price: float
    strike_price: float
    maturity: float  # epoch seconds, 0 when unknown
    tvl: float
    capacity: float
    utilization: float
    total_apy: float
    price_to_target: float
    target_price: float = 0.0
    price_change_24h: float = 0.0
    apr: float = 0.0
    vault_address: Optional[str] = None
    vault_name: Optional[str] = None
    asset_symbol: str = 'USDT'
    curator: Optional[str] = None
    timestamp: float = 0.0


@dataclass(slots=True)
class HistoryPoint:
    timestamp: float
    tvl: float
    capacity: float
    utilization: float
    total_apy: float
    underlying_price: float
    target_price: float


@dataclass
class ChangeRecord:
    """Deltas between the earliest in-window point and the latest point."""
    pool_id: str
    tvl_change: float
    tvl_change_percent: float
    utilization_change: float
    apy_change: float
    price_change: float
    price_change_percent: float
    period: int
    current: HistoryPoint
    old: HistoryPoint


@dataclass(slots=True)
class TvlPoint:
    timestamp: float
    total_tvl: float
    chain_tvls: Dict[str, float] = field(default_factory=dict)


@dataclass
class TvlChange:
    current_tvl: float
    old_tvl: float
    change_percent: float
    period: int


@dataclass(slots=True)
class YieldPoint:
    timestamp: float
    tvl_usd: float
    apy: float


@dataclass
class YieldPool:
    pool_id: str
    chain: str
    symbol: str
    tvl_usd: float
    apy: float
    apy_base: Optional[float]
    apy_reward: Optional[float]
    timestamp: float


@dataclass
class YieldPoolChange:
    pool_id: str
    current_tvl: float
    old_tvl: float
    tvl_change_percent: float
    current_apy: float
    old_apy: float
    apy_change: float
    period: int


@dataclass(slots=True)
class PriceEntry:
    price: float
    change_24h: float
    timestamp: float


def percent_change(current: float, old: float) -> float:
    """Percent change from `old` to `current`; an old value of 0 yields 0."""
    if not old:
        return 0.0
    return (current - old) / old * 100
