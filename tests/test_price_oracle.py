from __future__ import annotations

import asyncio

import pytest

from conftest import FakeHttp
from core.price_oracle import (
    AllSourcesFailed,
    DexscreenerSource,
    PriceOracle,
    PriceSource,
    PumpFunSource,
    RaydiumSource,
    SolscanSource,
    build_default_oracle,
    format_price,
)

MINT = "WinLEWmint1111111111111111111111111111111"
POOL = "pool123"
COIN = "coin456"
PAIR = "pair789"

SOLSCAN_URL = SolscanSource.URL.format(mint=MINT)
RAY_KEY_URL = RaydiumSource.KEY_URL.format(pool=POOL)
RAY_INFO_URL = RaydiumSource.INFO_URL.format(pool=POOL)
PUMP_URL = PumpFunSource.URL.format(coin=COIN)
DEX_URL = DexscreenerSource.URL.format(pair=PAIR)


def _oracle(http: FakeHttp, api_key: str = "key") -> PriceOracle:
    return build_default_oracle(http, mint=MINT, solscan_api_key=api_key,
                                raydium_pool_id=POOL, pumpfun_pool_id=COIN,
                                dexscreener_pair_id=PAIR)


async def test_first_source_wins_and_later_sources_are_not_called():
    http = FakeHttp({
        SOLSCAN_URL: (200, {"data": {"price": 0.00042}}),
        DEX_URL: (200, {"pair": {"priceUsd": "0.5"}}),
    })
    quote = await _oracle(http).resolve_best()

    assert quote.value == pytest.approx(0.00042)
    assert quote.source_id == "solscan"
    assert http.calls == [SOLSCAN_URL]
    assert http.headers[SOLSCAN_URL]["token"] == "key"


async def test_waterfall_falls_through_in_priority_order():
    http = FakeHttp({
        SOLSCAN_URL: (500, None),
        RAY_KEY_URL: (200, {"data": []}),
        PUMP_URL: (200, {"price": {"usd": 0}}),
        DEX_URL: (200, {"pairs": [{"priceUsd": "0.0123"}]}),
    })
    quote = await _oracle(http).resolve_best()

    assert quote.source_id == "dexscreener"
    assert quote.value == pytest.approx(0.0123)
    assert http.calls == [SOLSCAN_URL, RAY_KEY_URL, PUMP_URL, DEX_URL]


async def test_missing_solscan_key_skips_without_a_request():
    http = FakeHttp({PUMP_URL: (200, {"price": {"usd": 0.002}})})
    quote = await _oracle(http, api_key="").resolve_best()

    assert quote.source_id == "pumpfun"
    assert SOLSCAN_URL not in http.calls


async def test_raydium_uses_info_after_key_lookup():
    http = FakeHttp({
        RAY_KEY_URL: (200, {"data": [{"id": POOL}]}),
        RAY_INFO_URL: (200, {"data": [{"price": "0.0007"}]}),
    })
    quote = await _oracle(http, api_key="").resolve_best()

    assert quote.source_id == "raydium"
    assert quote.value == pytest.approx(0.0007)


async def test_all_sources_failed_carries_every_outcome():
    http = FakeHttp({
        SOLSCAN_URL: (200, {"data": {"price": "not a number"}}),
        PUMP_URL: (200, {"price": {"usd": True}}),
        DEX_URL: (200, {"pair": {"priceUsd": "NaN"}}),
    })
    with pytest.raises(AllSourcesFailed) as excinfo:
        await _oracle(http).resolve_best()

    outcomes = excinfo.value.outcomes
    assert [o.source_id for o in outcomes] == ["solscan", "raydium", "pumpfun", "dexscreener"]
    assert all(not o.ok and o.error for o in outcomes)


async def test_solscan_rejects_string_price():
    http = FakeHttp({SOLSCAN_URL: (200, {"data": {"price": "0.1"}})})
    source = SolscanSource(http, 0, mint=MINT, api_key="key")

    outcome = await source.fetch()

    assert not outcome.ok
    assert "Solscan" in outcome.error


@pytest.mark.parametrize("value", [0, -1, float("inf"), None, "abc"])
async def test_dexscreener_rejects_unusable_values(value):
    http = FakeHttp({DEX_URL: (200, {"pair": {"priceUsd": value}})})
    outcome = await DexscreenerSource(http, 0, pair_id=PAIR).fetch()

    assert not outcome.ok


async def test_network_error_becomes_an_outcome():
    http = FakeHttp({PUMP_URL: ConnectionError("connection reset")})
    outcome = await PumpFunSource(http, 0, coin_id=COIN).fetch()

    assert not outcome.ok
    assert "connection reset" in outcome.error


async def test_slow_source_times_out():
    class SlowSource(PriceSource):
        source_id = "slow"
        display_name = "Slow"

        async def _fetch_price(self) -> float:
            await asyncio.sleep(5)
            return 1.0

    outcome = await SlowSource(FakeHttp(), 0, timeout_seconds=0.01).fetch()

    assert not outcome.ok
    assert outcome.error == "Slow timed out"


async def test_resolve_all_calls_every_source():
    http = FakeHttp({
        SOLSCAN_URL: (200, {"data": {"price": 1.5}}),
        DEX_URL: (200, {"pair": {"priceUsd": "1.4"}}),
    })
    outcomes = await _oracle(http).resolve_all()

    assert [o.ok for o in outcomes] == [True, False, False, True]
    assert DEX_URL in http.calls


def test_duplicate_priorities_are_rejected():
    http = FakeHttp()
    with pytest.raises(ValueError):
        PriceOracle([
            PumpFunSource(http, 1, coin_id=COIN),
            DexscreenerSource(http, 1, pair_id=PAIR),
        ])


def test_sources_are_sorted_by_priority():
    http = FakeHttp()
    oracle = PriceOracle([
        DexscreenerSource(http, 5, pair_id=PAIR),
        PumpFunSource(http, 2, coin_id=COIN),
    ])
    assert [s.source_id for s in oracle.sources] == ["pumpfun", "dexscreener"]


def test_format_price_uses_six_decimals():
    assert format_price(0.000123456) == "0.000123"
    assert format_price(2) == "2.000000"
