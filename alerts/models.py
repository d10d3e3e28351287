#!/usr/bin/env python3
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional

from constants import DEFAULT_WATCH_COOLDOWN_MINUTES


def _stored_cooldown(value: Any) -> float:
    """Cooldowns must be positive; anything else loaded from storage falls back to the default."""
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return float(DEFAULT_WATCH_COOLDOWN_MINUTES)
    return minutes if minutes > 0 else float(DEFAULT_WATCH_COOLDOWN_MINUTES)


@dataclass
class AlertRecord:
    id: int
    type: str
    title: str
    payload: Dict[str, Any]
    created_at: float


@dataclass
class AlertRule:
    """One of the fixed global rules."""
    id: str
    name: str
    enabled: bool
    threshold: float
    metric: str  # 'tvl', 'price', 'utilization' or 'apy'
    condition: str  # 'decrease', 'increase' or 'change'


@dataclass
class WatchConditions:
    apy_below: Optional[float] = None
    apy_above: Optional[float] = None
    # Distance to strike, in percent.
    price_to_strike_below: Optional[float] = None
    price_to_strike_above: Optional[float] = None
    tvl_below: Optional[float] = None
    tvl_drop_percent: Optional[float] = None
    utilization_above: Optional[float] = None
    notify_on_maturity: bool = False
    maturity_notified: bool = False
    invested_amount: Optional[float] = None
    invested_at: Optional[float] = None
    invested_price: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WatchConditions":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


CONDITION_FIELDS = frozenset(f.name for f in fields(WatchConditions))
BOOLEAN_CONDITION_FIELDS = frozenset({'notify_on_maturity', 'maturity_notified'})


@dataclass
class WatchRule:
    pool_id: str
    symbol: str = ''
    underlying_symbol: str = ''
    strike_price: float = 0.0
    enabled: bool = True
    created_at: float = 0.0
    updated_at: float = 0.0
    conditions: WatchConditions = field(default_factory=WatchConditions)
    cooldown_minutes: float = DEFAULT_WATCH_COOLDOWN_MINUTES

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WatchRule":
        return cls(
            pool_id=str(data['pool_id']),
            symbol=data.get('symbol') or '',
            underlying_symbol=data.get('underlying_symbol') or '',
            strike_price=float(data.get('strike_price') or 0.0),
            enabled=bool(data.get('enabled', True)),
            created_at=float(data.get('created_at') or 0.0),
            updated_at=float(data.get('updated_at') or 0.0),
            conditions=WatchConditions.from_dict(data.get('conditions') or {}),
            cooldown_minutes=_stored_cooldown(data.get('cooldown_minutes')),
        )


@dataclass
class WatchAlert:
    kind: str
    pool_id: str
    message: str


@dataclass
class ReturnProjection:
    """Two mutually exclusive settlement scenarios for an amount held to maturity."""
    invested_amount: float
    current_price: float
    strike_price: float
    apy: float
    days_to_maturity: float
    maturity: float
    # Price stays above strike: redeemed in the stable asset.
    return_if_not_converted: float
    profit_if_not_converted: float
    profit_percent_if_not_converted: float
    # Price at or below strike: converted to the underlying.
    token_amount_if_converted: float
    token_value_at_strike: float
    break_even_price: float


@dataclass
class MaturityOutcome:
    is_converted: bool
    final_price: float
    strike_price: float
    token_amount: float = 0.0
    token_value_usd: float = 0.0
    loss: float = 0.0
    net_return_percent: float = 0.0
    return_amount: float = 0.0
    profit: float = 0.0
    profit_percent: float = 0.0
