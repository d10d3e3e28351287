import pytest

from errors import TransientUpstreamError
from ingest.tvl_ingestor import TvlIngestor


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class StubDefiLlamaClient:
    def __init__(self):
        self.protocol = {
            "tvl": [{"date": 1, "totalLiquidityUSD": 900_000}, {"date": 2, "totalLiquidityUSD": 1_000_000}],
            "currentChainTvls": {"BSC": 800_000, "Arbitrum": "200000", "bad": None},
        }
        self.yield_pools = [
            {"pool": "p-1", "chain": "BSC", "symbol": "USDT", "tvlUsd": 50_000, "apy": 12.0, "apyBase": 10.0},
            {"chain": "BSC", "symbol": "NOID"},
        ]
        self.fail = False

    async def get_protocol(self):
        if self.fail:
            raise TransientUpstreamError("https://api.llama.fi/protocol/termmax", "503")
        return self.protocol

    async def get_yield_pools(self):
        if self.fail:
            raise TransientUpstreamError("https://yields.llama.fi/pools", "503")
        return self.yield_pools


@pytest.mark.asyncio
async def test_refresh_records_latest_aggregate_point():
    ingestor = TvlIngestor(StubDefiLlamaClient(), clock=FakeClock())

    point = await ingestor.refresh()

    assert point.total_tvl == 1_000_000
    assert point.chain_tvls == {"BSC": 800_000.0, "Arbitrum": 200_000.0}
    assert ingestor.get_cache()["tvl"] is point


@pytest.mark.asyncio
async def test_failed_refresh_returns_cached_point():
    client = StubDefiLlamaClient()
    clock = FakeClock()
    ingestor = TvlIngestor(client, clock=clock)
    cached = await ingestor.refresh()

    client.fail = True
    clock.now += 60

    assert await ingestor.refresh() is cached
    assert await ingestor.refresh_pools() == []


@pytest.mark.asyncio
async def test_tvl_change_over_window():
    client = StubDefiLlamaClient()
    clock = FakeClock()
    ingestor = TvlIngestor(client, clock=clock)

    await ingestor.refresh()
    assert ingestor.get_tvl_change() is None

    client.protocol["tvl"].append({"date": 3, "totalLiquidityUSD": 700_000})
    clock.now += 300
    await ingestor.refresh()

    change = ingestor.get_tvl_change()
    assert change.old_tvl == 1_000_000
    assert change.current_tvl == 700_000
    assert change.change_percent == pytest.approx(-30.0)


@pytest.mark.asyncio
async def test_refresh_pools_tracks_per_pool_history():
    client = StubDefiLlamaClient()
    clock = FakeClock()
    ingestor = TvlIngestor(client, clock=clock)

    pools = await ingestor.refresh_pools()
    assert [p.pool_id for p in pools] == ["p-1"]
    assert pools[0].apy_reward is None

    client.yield_pools[0] = {**client.yield_pools[0], "tvlUsd": 60_000, "apy": 9.0}
    clock.now += 120
    await ingestor.refresh_pools()

    change = ingestor.get_pool_tvl_change("p-1")
    assert change.tvl_change_percent == pytest.approx(20.0)
    assert change.apy_change == pytest.approx(-3.0)

    client.fail = True
    cached = await ingestor.refresh_pools()
    assert [p.tvl_usd for p in cached] == [60_000]


@pytest.mark.asyncio
async def test_malformed_protocol_document_returns_cached_point():
    client = StubDefiLlamaClient()
    clock = FakeClock()
    ingestor = TvlIngestor(client, clock=clock)
    cached = await ingestor.refresh()

    client.protocol = {"tvl": [1.0]}
    clock.now += 60
    assert await ingestor.refresh() is cached

    client.protocol = {"tvl": [], "currentChainTvls": ["BSC"]}
    clock.now += 60
    assert await ingestor.refresh() is cached
    assert len(ingestor.tvl_history) == 1


@pytest.mark.asyncio
async def test_malformed_yield_listing_returns_cached_pools():
    client = StubDefiLlamaClient()
    clock = FakeClock()
    ingestor = TvlIngestor(client, clock=clock)
    first = await ingestor.refresh_pools()

    client.yield_pools = [{"pool": "p-2", "tvlUsd": 1.0}, "garbage"]
    clock.now += 60
    pools = await ingestor.refresh_pools()

    assert [p.pool_id for p in pools] == [p.pool_id for p in first] == ["p-1"]
    assert "p-2" not in ingestor.pools
    assert len(ingestor.pool_history["p-1"]) == 1
