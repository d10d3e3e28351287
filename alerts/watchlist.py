#!/usr/bin/env python3
"""Per-pool user watch rules: threshold alerts with per-rule cooldowns, maturity latch, return projection, daily digest."""
from __future__ import annotations

import math
import time
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional

from alerts.models import (
    BOOLEAN_CONDITION_FIELDS,
    CONDITION_FIELDS,
    MaturityOutcome,
    ReturnProjection,
    WatchAlert,
    WatchConditions,
    WatchRule,
)
from constants import (
    C_RED,
    C_RESET,
    DAILY_DIGEST_HOUR,
    DEFAULT_WATCH_COOLDOWN_MINUTES,
    MATURITY_HOLDING_DAYS,
    WATCHLIST_KEY,
)
from errors import PersistenceError, ValidationError
from ingest.models import PoolSnapshot
from reports.daily_digest import DailyDigest, DailyDigestBuilder
from services.notifier import Notifier
from storage import DocumentStore

SECONDS_PER_DAY = 86400
_RULE_FIELDS = frozenset({'symbol', 'underlying_symbol', 'strike_price', 'cooldown_minutes'})


def _validate_number(name: str, value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number, got a boolean")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be a number, got {value!r}") from exc
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{name} must be finite")
    return number


def _validate_cooldown(value: Any) -> float:
    minutes = _validate_number('cooldown_minutes', value)
    if minutes is None or minutes <= 0:
        raise ValidationError("cooldown_minutes must be greater than 0")
    return minutes


def _validate_updates(updates: Dict[str, Any], allowed: frozenset) -> Dict[str, Any]:
    """Type-checks a partial update. Raises before anything is applied."""
    unknown = set(updates) - allowed
    if unknown:
        raise ValidationError(f"Unknown watch field(s): {', '.join(sorted(unknown))}")
    clean: Dict[str, Any] = {}
    for name, value in updates.items():
        if name in BOOLEAN_CONDITION_FIELDS:
            clean[name] = bool(value)
        elif name == 'cooldown_minutes':
            clean[name] = _validate_cooldown(value)
        elif name in ('symbol', 'underlying_symbol'):
            clean[name] = str(value or '')
        elif name == 'strike_price':
            clean[name] = _validate_number(name, value) or 0.0
        else:
            clean[name] = _validate_number(name, value)
    return clean


def estimate_return(pool: PoolSnapshot, invested_amount: float, now: Optional[float] = None) -> Optional[ReturnProjection]:
    """Projects both settlement scenarios, prorating APY linearly over the days left to maturity."""
    if pool is None or not invested_amount or invested_amount <= 0:
        return None
    now = time.time() if now is None else now
    strike = pool.strike_price or 0.0
    apy = pool.total_apy or 0.0

    days_to_maturity = max(0.0, (pool.maturity - now) / SECONDS_PER_DAY)
    interest_rate = apy / 100 * (days_to_maturity / 365)
    expected_interest = invested_amount * interest_rate

    token_amount = invested_amount / strike if strike > 0 else 0.0
    return ReturnProjection(
        invested_amount=invested_amount,
        current_price=pool.underlying_price,
        strike_price=strike,
        apy=apy,
        days_to_maturity=days_to_maturity,
        maturity=pool.maturity,
        return_if_not_converted=invested_amount + expected_interest,
        profit_if_not_converted=expected_interest,
        profit_percent_if_not_converted=interest_rate * 100,
        token_amount_if_converted=token_amount,
        token_value_at_strike=token_amount * strike,
        break_even_price=invested_amount / token_amount if token_amount > 0 else 0.0,
    )


def calculate_maturity_return(pool: PoolSnapshot, invested_amount: float) -> MaturityOutcome:
    """Settlement outcome at maturity.

    Interest assumes a fixed 30-day holding period rather than the actual
    entry date, so it differs from `estimate_return` for the same pool.
    """
    final_price = pool.underlying_price or 0.0
    strike = pool.strike_price or 0.0
    interest_rate = (pool.total_apy or 0.0) / 100 * (MATURITY_HOLDING_DAYS / 365)

    if final_price <= strike:
        token_amount = invested_amount / strike if strike > 0 else 0.0
        token_value = token_amount * final_price
        return MaturityOutcome(
            is_converted=True,
            final_price=final_price,
            strike_price=strike,
            token_amount=token_amount,
            token_value_usd=token_value,
            loss=invested_amount - token_value,
            net_return_percent=(token_value - invested_amount) / invested_amount * 100 if invested_amount else 0.0,
        )

    interest = invested_amount * interest_rate
    return MaturityOutcome(
        is_converted=False,
        final_price=final_price,
        strike_price=strike,
        return_amount=invested_amount + interest,
        profit=interest,
        profit_percent=interest_rate * 100,
    )


class WatchlistEngine:
    def __init__(
        self,
        store: DocumentStore,
        notifier: Notifier,
        clock: Callable[[], float] = time.time,
        tz: Optional[tzinfo] = None,
        digest_hour: int = DAILY_DIGEST_HOUR,
    ):
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.tz = tz
        self.digest_hour = digest_hour
        self.watchlist: Dict[str, WatchRule] = {}
        self.last_triggered: Dict[str, float] = {}
        self.last_digest_date = None
        self.digest_builder = DailyDigestBuilder()
        self._load()

    # --- persistence ---

    def _load(self) -> None:
        try:
            document = self.store.load(WATCHLIST_KEY) or {}
        except PersistenceError as exc:
            print(f"{C_RED}Error loading watchlist: {exc}{C_RESET}")
            return
        for pool_id, payload in document.items():
            try:
                self.watchlist[pool_id] = WatchRule.from_dict({**payload, 'pool_id': pool_id})
            except (KeyError, TypeError, ValueError) as exc:
                print(f"{C_RED}Skipping unreadable watch rule {pool_id}: {exc}{C_RESET}")
        print(f"Loaded {len(self.watchlist)} watch rules")

    def _save(self) -> None:
        document = {pool_id: rule.to_dict() for pool_id, rule in self.watchlist.items()}
        try:
            self.store.save(WATCHLIST_KEY, document)
        except PersistenceError as exc:
            print(f"{C_RED}Error saving watchlist: {exc}{C_RESET}")

    # --- CRUD ---

    def add_watch(self, pool_id: str, **fields: Any) -> WatchRule:
        """Creates (or replaces) the rule for `pool_id`. Unset thresholds stay disabled."""
        if not pool_id:
            raise ValidationError("pool_id is required")
        fields.setdefault('cooldown_minutes', DEFAULT_WATCH_COOLDOWN_MINUTES)
        clean = _validate_updates(fields, CONDITION_FIELDS | _RULE_FIELDS)

        now = self.clock()
        rule = WatchRule(
            pool_id=pool_id,
            symbol=clean.pop('symbol', ''),
            underlying_symbol=clean.pop('underlying_symbol', ''),
            strike_price=clean.pop('strike_price', 0.0),
            enabled=True,
            created_at=now,
            updated_at=now,
            cooldown_minutes=clean.pop('cooldown_minutes'),
        )
        clean['maturity_notified'] = False
        rule.conditions = WatchConditions(**clean)
        self.watchlist[pool_id] = rule
        self._save()
        return rule

    def update_watch(self, pool_id: str, updates: Dict[str, Any]) -> Optional[WatchRule]:
        """Merges `updates` into the rule's conditions (and cooldown). None if no such rule."""
        rule = self.watchlist.get(pool_id)
        if rule is None:
            return None
        clean = _validate_updates(updates, CONDITION_FIELDS | _RULE_FIELDS)
        for name, value in clean.items():
            if name in _RULE_FIELDS:
                setattr(rule, name, value)
            else:
                setattr(rule.conditions, name, value)
        rule.updated_at = self.clock()
        self._save()
        return rule

    def toggle_watch(self, pool_id: str, enabled: bool) -> Optional[WatchRule]:
        rule = self.watchlist.get(pool_id)
        if rule is None:
            return None
        rule.enabled = bool(enabled)
        rule.updated_at = self.clock()
        self._save()
        return rule

    def remove_watch(self, pool_id: str) -> bool:
        if pool_id not in self.watchlist:
            return False
        del self.watchlist[pool_id]
        self._save()
        return True

    def get_all(self) -> List[WatchRule]:
        return list(self.watchlist.values())

    def get_watch(self, pool_id: str) -> Optional[WatchRule]:
        return self.watchlist.get(pool_id)

    def is_watching(self, pool_id: str) -> bool:
        return pool_id in self.watchlist

    def track_investment(self, pool: PoolSnapshot, amount: float) -> WatchRule:
        """Records an investment on the pool's rule, creating the rule with maturity notification if needed."""
        amount = _validate_number('invested_amount', amount)
        if amount is None or amount <= 0:
            raise ValidationError("invested_amount must be greater than 0")
        investment = {
            'invested_amount': amount,
            'invested_at': self.clock(),
            'invested_price': pool.underlying_price or None,
            'notify_on_maturity': True,
        }
        if self.is_watching(pool.id):
            return self.update_watch(pool.id, investment)
        return self.add_watch(
            pool.id,
            symbol=pool.symbol,
            underlying_symbol=pool.underlying_symbol,
            strike_price=pool.strike_price,
            **investment,
        )

    # --- cooldowns ---

    def is_in_cooldown(self, rule_key: str, cooldown_minutes: float, now: Optional[float] = None) -> bool:
        """True strictly before last-fired + cooldown; the boundary instant itself is allowed."""
        last = self.last_triggered.get(rule_key)
        if last is None:
            return False
        now = self.clock() if now is None else now
        return now - last < cooldown_minutes * 60

    def _should_fire(self, rule: WatchRule, kind: str, now: float) -> bool:
        key = f"{rule.pool_id}_{kind}"
        if self.is_in_cooldown(key, rule.cooldown_minutes, now):
            return False
        self.last_triggered[key] = now
        return True

    # --- evaluation ---

    async def check_rules(self, pools: List[PoolSnapshot]) -> List[WatchAlert]:
        """Evaluates every enabled rule against its pool and sends the resulting alerts."""
        pools_by_id = {p.id: p for p in pools}
        now = self.clock()
        triggered: List[WatchAlert] = []
        latched = False

        for rule in list(self.watchlist.values()):
            if not rule.enabled:
                continue
            pool = pools_by_id.get(rule.pool_id)
            if pool is None:
                continue
            triggered.extend(self._check_thresholds(rule, pool, now))
            maturity_alert = self._check_maturity(rule, pool, now)
            if maturity_alert:
                triggered.append(maturity_alert)
                latched = True

        if latched:
            self._save()
        for alert in triggered:
            await self.notifier.notify(alert.message, alert.kind)
        return triggered

    def _check_thresholds(self, rule: WatchRule, pool: PoolSnapshot, now: float) -> List[WatchAlert]:
        c = rule.conditions
        alerts: List[WatchAlert] = []
        symbol = pool.underlying_symbol

        if c.apy_below is not None and pool.total_apy < c.apy_below and self._should_fire(rule, 'apy_below', now):
            alerts.append(WatchAlert('apy_below', pool.id, (
                "📉 <b>APY Alert</b>\n\n"
                f"<b>{symbol}</b> APY dropped!\n"
                f"Current: {pool.total_apy:.1f}%\n"
                f"Threshold: &lt; {c.apy_below:g}%\n"
                f"Strike: ${pool.strike_price:g}"
            )))

        if c.apy_above is not None and pool.total_apy > c.apy_above and self._should_fire(rule, 'apy_above', now):
            alerts.append(WatchAlert('apy_above', pool.id, (
                "📈 <b>APY Alert</b>\n\n"
                f"<b>{symbol}</b> APY spiked!\n"
                f"Current: {pool.total_apy:.1f}%\n"
                f"Threshold: &gt; {c.apy_above:g}%\n"
                f"Strike: ${pool.strike_price:g}"
            )))

        # A pool without a strike has no distance to it.
        if pool.strike_price > 0:
            distance = abs(pool.price_to_target)
            if (c.price_to_strike_below is not None and distance < c.price_to_strike_below
                    and self._should_fire(rule, 'strike_below', now)):
                alerts.append(WatchAlert('strike_danger', pool.id, (
                    "🚨 <b>Strike Price Alert</b>\n\n"
                    f"<b>{symbol}</b> approaching strike!\n"
                    f"Current: ${pool.underlying_price:.4f}\n"
                    f"Strike: ${pool.strike_price:g}\n"
                    f"Distance: {pool.price_to_target:.1f}%\n"
                    f"Threshold: &lt; {c.price_to_strike_below:g}%"
                )))
            if (c.price_to_strike_above is not None and distance > c.price_to_strike_above
                    and self._should_fire(rule, 'strike_above', now)):
                alerts.append(WatchAlert('strike_safe', pool.id, (
                    "🛡️ <b>Strike Price Alert</b>\n\n"
                    f"<b>{symbol}</b> moved away from strike.\n"
                    f"Current: ${pool.underlying_price:.4f}\n"
                    f"Strike: ${pool.strike_price:g}\n"
                    f"Distance: {pool.price_to_target:.1f}%\n"
                    f"Threshold: &gt; {c.price_to_strike_above:g}%"
                )))

        if c.tvl_below is not None and pool.tvl < c.tvl_below and self._should_fire(rule, 'tvl_below', now):
            alerts.append(WatchAlert('tvl_low', pool.id, (
                "💰 <b>TVL Alert</b>\n\n"
                f"<b>{symbol}</b> TVL is low!\n"
                f"Current: ${pool.tvl:,.0f}\n"
                f"Threshold: &lt; ${c.tvl_below:,.0f}"
            )))

        if (c.utilization_above is not None and pool.utilization > c.utilization_above
                and self._should_fire(rule, 'util_above', now)):
            alerts.append(WatchAlert('utilization_high', pool.id, (
                "📊 <b>Utilization Alert</b>\n\n"
                f"<b>{symbol}</b> high utilization!\n"
                f"Current: {pool.utilization:.1f}%\n"
                f"Threshold: &gt; {c.utilization_above:g}%"
            )))

        return alerts

    def _check_maturity(self, rule: WatchRule, pool: PoolSnapshot, now: float) -> Optional[WatchAlert]:
        c = rule.conditions
        if not c.notify_on_maturity or c.maturity_notified or not pool.maturity or now < pool.maturity:
            return None

        profit_info = ''
        if c.invested_amount and c.invested_amount > 0:
            result = calculate_maturity_return(pool, c.invested_amount)
            if result.is_converted:
                outcome = (
                    f"Converted to: {result.token_amount:.4f} {pool.underlying_symbol}\n"
                    f"Token Value: ${result.token_value_usd:.2f}\n"
                    f"Net Return: {result.net_return_percent:+.2f}%"
                )
            else:
                outcome = (
                    f"Returned: {result.return_amount:.2f} USDT\n"
                    f"Profit: +{result.profit:.2f} USDT ({result.profit_percent:.2f}%)"
                )
            profit_info = f"\n\n<b>💰 Investment Result:</b>\nInvested: {c.invested_amount:g} USDT\n{outcome}"

        c.maturity_notified = True
        rule.updated_at = now
        maturity = datetime.fromtimestamp(pool.maturity, tz=timezone.utc).strftime('%Y-%m-%d')
        return WatchAlert('maturity', pool.id, (
            "⏰ <b>Maturity Alert</b>\n\n"
            f"<b>{pool.underlying_symbol}</b> has matured!\n"
            f"Strike: ${pool.strike_price:g}\n"
            f"Final Price: ${pool.underlying_price:.4f}\n"
            f"Maturity: {maturity}"
            f"{profit_info}"
        ))

    # --- projections & digest ---

    def estimate_return(self, pool: PoolSnapshot, invested_amount: float) -> Optional[ReturnProjection]:
        return estimate_return(pool, invested_amount, now=self.clock())

    def build_investment_report(self, pools: List[PoolSnapshot]) -> DailyDigest:
        now = datetime.fromtimestamp(self.clock(), tz=self.tz)
        digest = self.digest_builder.build(self.get_all(), pools, now.date())
        if digest.has_content:
            digest.text = self.digest_builder.render(digest, title="Investment Report")
        return digest

    async def maybe_send_daily_digest(self, pools: List[PoolSnapshot]) -> Optional[DailyDigest]:
        """Sends the digest once per calendar day during the digest hour. Returns it when sent."""
        ts = self.clock()
        now = datetime.fromtimestamp(ts, tz=self.tz)
        today = now.date()
        if now.hour != self.digest_hour or self.last_digest_date == today:
            return None

        self.digest_builder.record_prices(pools, today, ts)
        digest = self.digest_builder.build(self.get_all(), pools, today)
        if not digest.has_content:
            return None

        await self.notifier.notify(digest.text, 'info')
        self.last_digest_date = today
        return digest
