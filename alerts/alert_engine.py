#!/usr/bin/env python3
"""Fixed global alert rules with 5-minute bucket dedup and a bounded recent-alert log."""
from __future__ import annotations

import itertools
import math
import time
from collections import deque
from dataclasses import asdict, fields
from typing import Any, Callable, Deque, Dict, List, Optional

from alerts.models import AlertRecord, AlertRule
from constants import (
    ALERT_BUCKET_SECONDS,
    ALERT_COOLDOWN_RETENTION_SECONDS,
    ALERT_LOG_CAPACITY,
    APY_CHANGE_POINTS,
    C_YELLOW,
    C_RESET,
    DEFAULT_PRICE_ALERT_THRESHOLD,
    DEFAULT_TVL_CHANGE_THRESHOLD,
    UTILIZATION_SPIKE_POINTS,
    format_number,
)
from errors import ValidationError
from ingest.models import ChangeRecord, PoolSnapshot, TvlChange
from services.notifier import Notifier

PROTOCOL_ENTITY = 'protocol'
_MUTABLE_RULE_FIELDS = frozenset({'name', 'enabled', 'threshold'})


def default_rules(tvl_threshold: float, price_threshold: float) -> List[AlertRule]:
    return [
        AlertRule('tvl_drop', 'TVL Drop Alert', True, tvl_threshold, 'tvl', 'decrease'),
        AlertRule('tvl_surge', 'TVL Surge Alert', True, tvl_threshold, 'tvl', 'increase'),
        AlertRule('price_near_strike', 'Price Near Strike Alert', True, price_threshold, 'price', 'change'),
        AlertRule('utilization_spike', 'Utilization Spike Alert', True, UTILIZATION_SPIKE_POINTS, 'utilization', 'increase'),
        AlertRule('apy_change', 'APY Change Alert', True, APY_CHANGE_POINTS, 'apy', 'change'),
    ]


class AlertRuleEngine:
    def __init__(
        self,
        notifier: Notifier,
        tvl_threshold: float = DEFAULT_TVL_CHANGE_THRESHOLD,
        price_threshold: float = DEFAULT_PRICE_ALERT_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ):
        self.notifier = notifier
        self.clock = clock
        self.rules: Dict[str, AlertRule] = {r.id: r for r in default_rules(tvl_threshold, price_threshold)}
        self.alerts: Deque[AlertRecord] = deque(maxlen=ALERT_LOG_CAPACITY)
        self.last_alerts: Dict[str, float] = {}
        self._ids = itertools.count(1)

    def _rule(self, rule_id: str) -> Optional[AlertRule]:
        rule = self.rules.get(rule_id)
        return rule if rule and rule.enabled else None

    def _claim(self, rule_id: str, entity_id: str, now: float) -> bool:
        """True if this rule+entity has not fired in the current 5-minute bucket; marks it as fired."""
        key = f"{math.floor(now / ALERT_BUCKET_SECONDS)}:{rule_id}:{entity_id}"
        if key in self.last_alerts:
            return False
        self.last_alerts[key] = now
        return True

    async def _fire(self, rule_id: str, entity_id: str, alert_type: str, title: str,
                    payload: Dict[str, Any], message: str, category: str) -> bool:
        if not self._claim(rule_id, entity_id, self.clock()):
            return False
        self.add_alert(alert_type, title, payload)
        await self.notifier.notify(message, category)
        return True

    async def evaluate(
        self,
        pools: List[PoolSnapshot],
        changes: Dict[str, ChangeRecord],
        tvl_change: Optional[TvlChange] = None,
    ) -> int:
        """Checks every rule against this tick's change records. Returns the number of alerts fired."""
        fired = 0
        for pool in pools:
            change = changes.get(pool.id)
            if change is None:
                continue
            fired += await self.check_pool_tvl(pool, change)
            fired += await self.check_price_near_strike(pool, change)
            fired += await self.check_utilization_spike(pool, change)
            fired += await self.check_apy_change(pool, change)
        if tvl_change is not None:
            fired += await self.check_protocol_tvl(tvl_change)
        return fired

    def _tvl_rule(self, change_percent: float) -> Optional[AlertRule]:
        if change_percent < 0:
            rule = self._rule('tvl_drop')
        elif change_percent > 0:
            rule = self._rule('tvl_surge')
        else:
            return None
        if rule and abs(change_percent) >= rule.threshold:
            return rule
        return None

    async def check_pool_tvl(self, pool: PoolSnapshot, change: ChangeRecord) -> int:
        rule = self._tvl_rule(change.tvl_change_percent)
        if rule is None:
            return 0
        label = 'Drop' if rule.id == 'tvl_drop' else 'Surge'
        message = (
            "<b>Pool Alert</b>\n\n"
            f"🏊 Pool: {pool.symbol or pool.id}\n"
            f"📊 TVL: ${format_number(change.current.tvl)} ({change.tvl_change_percent:.2f}%)\n"
            f"💹 APY: {change.current.total_apy:.2f}% ({change.apy_change:+.2f}%)\n"
            f"⏱️ Period: {change.period} minutes"
        )
        payload = {
            'pool_id': pool.id,
            'symbol': pool.symbol,
            'current_tvl': change.current.tvl,
            'old_tvl': change.old.tvl,
            'tvl_change_percent': change.tvl_change_percent,
            'period': change.period,
        }
        category = 'danger' if rule.id == 'tvl_drop' else 'warning'
        return int(await self._fire(rule.id, pool.id, 'pool', f"{pool.symbol} TVL {label}", payload, message, category))

    async def check_protocol_tvl(self, tvl_change: TvlChange) -> int:
        rule = self._tvl_rule(tvl_change.change_percent)
        if rule is None:
            return 0
        label = 'Drop' if rule.id == 'tvl_drop' else 'Surge'
        message = (
            "<b>TVL Change Alert</b>\n\n"
            f"📊 Current TVL: ${format_number(tvl_change.current_tvl)}\n"
            f"📉 Previous TVL: ${format_number(tvl_change.old_tvl)}\n"
            f"📈 Change: {tvl_change.change_percent:.2f}%\n"
            f"⏱️ Period: {tvl_change.period} minutes"
        )
        category = 'danger' if rule.id == 'tvl_drop' else 'warning'
        return int(await self._fire(rule.id, PROTOCOL_ENTITY, category, f"TVL {label}", asdict(tvl_change), message, category))

    async def check_price_near_strike(self, pool: PoolSnapshot, change: ChangeRecord) -> int:
        rule = self._rule('price_near_strike')
        if rule is None or pool.strike_price <= 0:
            return 0
        if abs(pool.price_to_target) > rule.threshold:
            return 0
        message = (
            "<b>Price Alert</b>\n\n"
            f"🪙 Token: {pool.underlying_symbol} ({pool.symbol})\n"
            f"💵 Current Price: ${pool.underlying_price:.4f}\n"
            f"📍 Strike: ${pool.strike_price} ({pool.price_to_target:.2f}% away)\n"
            f"📊 Change: {change.price_change_percent:.2f}%\n"
            f"⏱️ Period: {change.period} minutes"
        )
        payload = {
            'pool_id': pool.id,
            'symbol': pool.symbol,
            'current_price': pool.underlying_price,
            'strike_price': pool.strike_price,
            'price_to_target': pool.price_to_target,
            'change_percent': change.price_change_percent,
            'period': change.period,
        }
        return int(await self._fire(rule.id, pool.id, 'price', f"{pool.underlying_symbol} Near Strike", payload, message, 'price'))

    async def check_utilization_spike(self, pool: PoolSnapshot, change: ChangeRecord) -> int:
        rule = self._rule('utilization_spike')
        if rule is None or change.utilization_change < rule.threshold:
            return 0
        message = (
            "<b>Utilization Spike</b>\n\n"
            f"🏊 Pool: {pool.symbol or pool.id}\n"
            f"📈 Utilization: {change.old.utilization:.1f}% → {change.current.utilization:.1f}%\n"
            f"⏱️ Period: {change.period} minutes"
        )
        payload = {
            'pool_id': pool.id,
            'symbol': pool.symbol,
            'current_utilization': change.current.utilization,
            'old_utilization': change.old.utilization,
            'change': change.utilization_change,
        }
        return int(await self._fire(rule.id, pool.id, 'warning', f"{pool.symbol} Utilization Spike", payload, message, 'warning'))

    async def check_apy_change(self, pool: PoolSnapshot, change: ChangeRecord) -> int:
        rule = self._rule('apy_change')
        if rule is None or abs(change.apy_change) < rule.threshold:
            return 0
        message = (
            "<b>APY Change Alert</b>\n\n"
            f"🏊 Pool: {pool.symbol or pool.id}\n"
            f"💹 APY: {change.old.total_apy:.2f}% → {change.current.total_apy:.2f}% ({change.apy_change:+.2f})\n"
            f"⏱️ Period: {change.period} minutes"
        )
        payload = {
            'pool_id': pool.id,
            'symbol': pool.symbol,
            'current_apy': change.current.total_apy,
            'old_apy': change.old.total_apy,
            'apy_change': change.apy_change,
            'period': change.period,
        }
        return int(await self._fire(rule.id, pool.id, 'apy', f"{pool.symbol} APY Change", payload, message, 'warning'))

    def add_alert(self, alert_type: str, title: str, payload: Dict[str, Any]) -> AlertRecord:
        record = AlertRecord(
            id=next(self._ids),
            type=alert_type,
            title=title,
            payload=payload,
            created_at=self.clock(),
        )
        self.alerts.append(record)
        print(f"{C_YELLOW}Alert: {title}{C_RESET}")
        return record

    def get_alerts(self, limit: int = 50) -> List[AlertRecord]:
        """Most recent first."""
        return list(reversed(self.alerts))[:limit]

    def get_rules(self) -> List[AlertRule]:
        return list(self.rules.values())

    def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> Optional[AlertRule]:
        rule = self.rules.get(rule_id)
        if rule is None:
            return None
        unknown = set(updates) - _MUTABLE_RULE_FIELDS
        if unknown:
            immutable = unknown & {f.name for f in fields(AlertRule)}
            reason = "read-only" if immutable == unknown else "unknown"
            raise ValidationError(f"Cannot update {reason} rule field(s): {', '.join(sorted(unknown))}")
        if 'threshold' in updates:
            try:
                threshold = float(updates['threshold'])
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"threshold must be a number, got {updates['threshold']!r}") from exc
            if threshold < 0 or math.isnan(threshold):
                raise ValidationError("threshold must be non-negative")
        for name, value in updates.items():
            if name == 'threshold':
                value = float(value)
            elif name == 'enabled':
                value = bool(value)
            setattr(rule, name, value)
        return rule

    def cleanup(self) -> int:
        """Drops dedup keys older than 10 minutes. Returns the number removed."""
        now = self.clock()
        expired = [k for k, fired_at in self.last_alerts.items() if now - fired_at > ALERT_COOLDOWN_RETENTION_SECONDS]
        for key in expired:
            del self.last_alerts[key]
        return len(expired)
