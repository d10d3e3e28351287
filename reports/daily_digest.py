"""Daily accrual report over tracked investments, backed by a rolling per-pool price snapshot."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from alerts.models import WatchRule
from constants import DIGEST_RETENTION_DAYS, risk_icon
from ingest.models import PoolSnapshot


@dataclass(slots=True)
class DaySnapshot:
    price: float
    apy: float
    timestamp: float


@dataclass
class DigestEntry:
    pool_id: str
    underlying_symbol: str
    invested_amount: float
    daily_profit: float
    daily_profit_percent: float
    apy: float
    current_price: float
    price_change: float
    price_change_percent: float
    strike_price: float
    price_to_strike: float


@dataclass
class DailyDigest:
    day: date
    entries: List[DigestEntry] = field(default_factory=list)
    total_invested: float = 0.0
    total_daily_profit: float = 0.0
    text: Optional[str] = None

    @property
    def watches(self) -> int:
        return len(self.entries)

    @property
    def avg_daily_percent(self) -> float:
        if not self.total_invested:
            return 0.0
        return self.total_daily_profit / self.total_invested * 100

    @property
    def has_content(self) -> bool:
        return bool(self.entries)


class DailyDigestBuilder:
    """Aggregates enabled watch rules that carry an investment into a per-day accrual summary."""

    def __init__(self, retention_days: int = DIGEST_RETENTION_DAYS) -> None:
        self.retention_days = retention_days
        self.price_history: Dict[str, Dict[date, DaySnapshot]] = {}

    def record_prices(self, pools: Iterable[PoolSnapshot], day: date, now: float) -> None:
        for pool in pools:
            history = self.price_history.setdefault(pool.id, {})
            history[day] = DaySnapshot(price=pool.underlying_price, apy=pool.total_apy, timestamp=now)
            for stale in sorted(history)[:-self.retention_days]:
                del history[stale]

    def daily_profit(self, pool: PoolSnapshot, invested_amount: float, day: date) -> Optional[DigestEntry]:
        if not invested_amount or invested_amount <= 0:
            return None
        apy = pool.total_apy or 0.0
        daily_rate = apy / 365 / 100

        price_change = 0.0
        price_change_percent = 0.0
        yesterday = self.price_history.get(pool.id, {}).get(day - timedelta(days=1))
        if yesterday is not None:
            price_change = pool.underlying_price - yesterday.price
            if yesterday.price:
                price_change_percent = price_change / yesterday.price * 100

        return DigestEntry(
            pool_id=pool.id,
            underlying_symbol=pool.underlying_symbol,
            invested_amount=invested_amount,
            daily_profit=invested_amount * daily_rate,
            daily_profit_percent=daily_rate * 100,
            apy=apy,
            current_price=pool.underlying_price,
            price_change=price_change,
            price_change_percent=price_change_percent,
            strike_price=pool.strike_price,
            price_to_strike=pool.price_to_target,
        )

    def build(self, rules: Iterable[WatchRule], pools: Iterable[PoolSnapshot], day: date) -> DailyDigest:
        pools_by_id = {p.id: p for p in pools}
        digest = DailyDigest(day=day)
        for rule in rules:
            amount = rule.conditions.invested_amount or 0.0
            if not rule.enabled or amount <= 0:
                continue
            pool = pools_by_id.get(rule.pool_id)
            if pool is None:
                continue
            entry = self.daily_profit(pool, amount, day)
            if entry is None:
                continue
            digest.entries.append(entry)
            digest.total_invested += entry.invested_amount
            digest.total_daily_profit += entry.daily_profit
        if digest.entries:
            digest.text = self.render(digest)
        return digest

    def render(self, digest: DailyDigest, title: str = "Daily Profit Report") -> str:
        lines = [f"📊 <b>{title}</b>", f"📅 {digest.day.isoformat()}", ""]
        for entry in digest.entries:
            price_line = f"   Price: ${entry.current_price:.4f}"
            if entry.price_change != 0:
                price_line += f" ({entry.price_change_percent:+.2f}%)"
            lines.extend([
                f"{risk_icon(entry.price_to_strike)} <b>{entry.underlying_symbol}</b>",
                f"   Invested: {entry.invested_amount:g} USDT",
                f"   Daily: +{entry.daily_profit:.4f} USDT ({entry.daily_profit_percent:.3f}%)",
                price_line,
                f"   Strike: ${entry.strike_price:g} ({entry.price_to_strike:.1f}%)",
                "",
            ])
        lines.extend([
            "<b>📈 Summary</b>",
            f"Total Invested: {digest.total_invested:.2f} USDT",
            f"Daily Profit: +{digest.total_daily_profit:.4f} USDT",
            f"Avg Daily: {digest.avg_daily_percent:.3f}%",
        ])
        return "\n".join(lines)
