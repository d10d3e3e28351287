import pytest

from errors import TransientUpstreamError
from ingest.pool_ingestor import PoolDataIngestor, parse_strike_price, price_to_strike


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class StubTermMaxClient:
    def __init__(self, listing, vaults=None):
        self.listing = listing
        self.vaults = vaults or {}
        self.fail = False
        self.vault_calls = []

    async def get_alpha_pools(self, chain_id):
        if self.fail:
            raise TransientUpstreamError("https://api.example/v2/alpha/list", "boom")
        return self.listing

    async def get_vault_details(self, chain_id, vault_address):
        self.vault_calls.append(vault_address)
        return self.vaults.get(vault_address)


def _collection(option_id, symbol="B2", price=0.55, vault="0xAbC", maturity="2025-12-24T08:00:00Z"):
    return {
        "optionId": option_id,
        "symbol": f"{symbol}/USDT@24DEC2025",
        "maturity": maturity,
        "shortVaultAddress": vault,
        "longOrder": {
            "priceInfos": [
                {"type": "BASIC", "symbol": "USDT", "price": "100000000", "priceDecimals": 8},
                {
                    "type": "BASIC",
                    "symbol": symbol,
                    "price": str(int(price * 1e8)),
                    "priceDecimals": 8,
                    "metadata": {"priceChangePercent": "-3.5"},
                },
            ]
        },
        "vaultConfig": {
            "vaultInfo": {"totalAssets": str(int(400 * 1e18)), "maxCapacity": str(int(1000 * 1e18))},
            "apyInfo": {"totalApy": "12.5"},
        },
    }


def _vault(name="B2/USDT@24DEC2025-0.5P", tvl=5000, capacity=10000, apy=0.42):
    return {
        "name": name,
        "tvl": tvl,
        "capacityValue": capacity,
        "apy": apy,
        "apr": 0.35,
        "asset": {"symbol": "USDT"},
        "curator": {"name": "TermMax Labs"},
    }


def test_parse_strike_price_from_vault_name():
    assert parse_strike_price("B2/USDT@24DEC2025-0.5P") == 0.5
    assert parse_strike_price("ESPORTS-50c") == 50.0
    assert parse_strike_price("no strike here") == 0.0
    assert parse_strike_price(None) == 0.0


def test_price_to_strike_without_strike_is_zero():
    assert price_to_strike(1.0, 0.0) == 0.0
    assert price_to_strike(0.55, 0.5) == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_refresh_enriches_pools_from_vault_details():
    client = StubTermMaxClient(
        {"alphaCollections": [_collection("opt-1")]},
        vaults={"0xabc": _vault()},
    )
    ingestor = PoolDataIngestor(client, clock=FakeClock())

    pools = await ingestor.refresh()

    assert len(pools) == 1
    pool = pools[0]
    assert pool.id == "opt-1"
    assert pool.underlying_symbol == "B2"
    assert pool.underlying_price == pytest.approx(0.55)
    assert pool.strike_price == 0.5
    assert pool.target_price == 0.5
    assert pool.price_to_target == pytest.approx(10.0)
    assert pool.tvl == 5000
    assert pool.utilization == pytest.approx(50.0)
    assert pool.total_apy == pytest.approx(42.0)
    assert pool.apr == pytest.approx(35.0)
    assert pool.curator == "TermMax Labs"
    assert pool.price_change_24h == pytest.approx(-3.5)
    assert client.vault_calls == ["0xabc"]


@pytest.mark.asyncio
async def test_missing_vault_detail_keeps_listing_values():
    client = StubTermMaxClient({"alphaCollections": [_collection("opt-1")]})
    ingestor = PoolDataIngestor(client, clock=FakeClock())

    pool = (await ingestor.refresh())[0]

    assert pool.strike_price == 0.0
    assert pool.tvl == pytest.approx(400.0)
    assert pool.utilization == pytest.approx(40.0)
    assert pool.total_apy == pytest.approx(12.5)


@pytest.mark.asyncio
async def test_collections_without_option_id_are_skipped():
    listing = {"alphaCollections": [_collection("opt-1"), {**_collection("x"), "optionId": None}]}
    ingestor = PoolDataIngestor(StubTermMaxClient(listing), clock=FakeClock())

    pools = await ingestor.refresh()

    assert [p.id for p in pools] == ["opt-1"]


@pytest.mark.asyncio
async def test_upstream_failure_serves_previous_snapshot():
    client = StubTermMaxClient({"alphaCollections": [_collection("opt-1")]}, vaults={"0xabc": _vault()})
    clock = FakeClock()
    ingestor = PoolDataIngestor(client, clock=clock)
    first = await ingestor.refresh()

    client.fail = True
    clock.now += 60
    second = await ingestor.refresh()

    assert second == first
    assert ingestor.last_update == 1_700_000_000.0
    assert len(ingestor.get_history("opt-1")) == 1


@pytest.mark.asyncio
async def test_get_change_compares_window_endpoints():
    client = StubTermMaxClient({"alphaCollections": [_collection("opt-1")]}, vaults={"0xabc": _vault(tvl=5000, apy=0.40)})
    clock = FakeClock()
    ingestor = PoolDataIngestor(client, clock=clock)

    await ingestor.refresh()
    assert ingestor.get_change("opt-1") is None

    client.vaults["0xabc"] = _vault(tvl=4000, apy=0.55)
    clock.now += 600
    await ingestor.refresh()

    change = ingestor.get_change("opt-1")
    assert change.tvl_change == pytest.approx(-1000)
    assert change.tvl_change_percent == pytest.approx(-20.0)
    assert change.apy_change == pytest.approx(15.0)
    assert change.utilization_change == pytest.approx(-10.0)
    assert change.period == 60


@pytest.mark.asyncio
async def test_history_is_bounded():
    client = StubTermMaxClient({"alphaCollections": [_collection("opt-1")]})
    clock = FakeClock()
    ingestor = PoolDataIngestor(client, history_capacity=5, clock=clock)

    for _ in range(12):
        await ingestor.refresh()
        clock.now += 60

    history = ingestor.get_history("opt-1")
    assert len(history) == 5
    assert [p.timestamp for p in history] == sorted(p.timestamp for p in history)


@pytest.mark.asyncio
async def test_summary_and_lookup_helpers():
    listing = {"alphaCollections": [_collection("opt-1", symbol="B2"), _collection("opt-2", symbol="ESPORTS", vault="0xdef")]}
    ingestor = PoolDataIngestor(StubTermMaxClient(listing), clock=FakeClock())
    assert ingestor.get_summary() is None

    await ingestor.refresh()

    summary = ingestor.get_summary()
    assert summary["pool_count"] == 2
    assert summary["total_tvl"] == pytest.approx(800.0)
    assert ingestor.find_by_symbol("esports").id == "opt-2"
    assert ingestor.get_pool("missing") is None


@pytest.mark.asyncio
async def test_malformed_listing_keeps_previous_snapshot():
    client = StubTermMaxClient({"alphaCollections": [_collection("opt-1")]}, vaults={"0xabc": _vault()})
    clock = FakeClock()
    ingestor = PoolDataIngestor(client, clock=clock)
    first = await ingestor.refresh()

    bad = _collection("opt-1")
    bad["longOrder"]["priceInfos"][1]["priceDecimals"] = "8.0"
    client.listing = {"alphaCollections": [bad]}
    clock.now += 60

    assert await ingestor.refresh() is first
    assert ingestor.last_update == clock.now - 60
    assert len(ingestor.get_history("opt-1")) == 1


@pytest.mark.asyncio
async def test_malformed_vault_detail_keeps_previous_snapshot():
    client = StubTermMaxClient({"alphaCollections": [_collection("opt-1")]}, vaults={"0xabc": _vault()})
    clock = FakeClock()
    ingestor = PoolDataIngestor(client, clock=clock)
    first = await ingestor.refresh()

    client.vaults = {"0xabc": {**_vault(), "asset": "USDT"}}
    clock.now += 60

    pools = await ingestor.refresh()

    assert pools is first
    assert pools[0].asset_symbol == "USDT"


@pytest.mark.asyncio
async def test_listing_with_wrong_shape_serves_cache():
    client = StubTermMaxClient({"alphaCollections": ["not-a-collection"]})
    ingestor = PoolDataIngestor(client, clock=FakeClock())

    assert await ingestor.refresh() == []
    assert ingestor.last_update is None
