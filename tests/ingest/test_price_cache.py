from ingest.models import PoolSnapshot
from ingest.price_cache import PriceCache


def _pool(pool_id, symbol, price, change=0.0):
    return PoolSnapshot(
        id=pool_id,
        symbol=f"{symbol}/USDT",
        underlying_symbol=symbol,
        underlying_price=price,
        strike_price=0.0,
        maturity=0.0,
        tvl=0.0,
        capacity=0.0,
        utilization=0.0,
        total_apy=0.0,
        price_to_target=0.0,
        price_change_24h=change,
    )


def test_update_replaces_prices_and_skips_unpriced_pools():
    cache = PriceCache(clock=lambda: 42.0)
    cache.update_from_pools([_pool("1", "B2", 0.5, 2.0), _pool("2", "ESPORTS", 0.0), _pool("3", "", 1.0)])

    assert set(cache.get_all()) == {"B2"}
    entry = cache.get("B2")
    assert entry.price == 0.5
    assert entry.change_24h == 2.0
    assert entry.timestamp == 42.0

    cache.update_from_pools([_pool("2", "ESPORTS", 1.2)])
    assert cache.get("B2") is None
    assert cache.get("ESPORTS").price == 1.2
