"""
Price Oracle - Multi-Source Waterfall

Resolves the token's USD price from several independent public APIs.

  resolve_best(): sources tried in priority order, first usable quote wins,
                  nothing after the winner is called. No averaging, no quorum,
                  no retries. Raises AllSourcesFailed only when every source
                  failed.
  resolve_all():  diagnostic sweep. Calls every source and reports each
                  outcome as data. Never used for a user-facing price.

Every source owns its own schema: HTTP status check, field presence, numeric
type, conversion to a plain USD float. A source that cannot produce a positive
finite number FAILS; it never returns 0 as a placeholder.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from core.constitution import IRON_LAWS

logger = logging.getLogger("winlew.price")


class PriceSourceError(Exception):
    """One source could not produce a usable price."""
    pass


class AllSourcesFailed(Exception):
    def __init__(self, outcomes: list["SourceOutcome"]):
        self.outcomes = outcomes
        detail = "; ".join(f"{o.source_id}: {o.error}" for o in outcomes)
        super().__init__(f"All price sources failed ({detail})")


# ============================================================
# DATA MODELS
# ============================================================

@dataclass(frozen=True)
class PriceQuote:
    value: float
    source_id: str
    observed_at: float


@dataclass(frozen=True)
class SourceOutcome:
    """Result of one fetch. Exactly one of quote / error is set."""
    source_id: str
    quote: Optional[PriceQuote] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.quote is not None


# ============================================================
# HTTP
# ============================================================

class HttpFetcher:
    """Thin aiohttp wrapper: GET a URL, return (status, parsed JSON or None)."""

    def __init__(self, timeout_seconds: float = IRON_LAWS.EXTERNAL_CALL_TIMEOUT_SECONDS):
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def get_json(self, url: str, headers: Optional[dict] = None) -> tuple[int, Any]:
        session = await self._get_session()
        async with session.get(url, headers=headers) as resp:
            if resp.status != 200:
                return resp.status, None
            return resp.status, await resp.json(content_type=None)

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()


def _require_number(value: Any, what: str, allow_string: bool = False) -> float:
    """Accept a real number (or a numeric string where the API sends one)."""
    if isinstance(value, bool):
        raise PriceSourceError(f"No price in {what}")
    if isinstance(value, (int, float)):
        number = float(value)
    elif allow_string and isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            raise PriceSourceError(f"No price in {what}") from None
    else:
        raise PriceSourceError(f"No price in {what}")
    if math.isnan(number) or math.isinf(number) or number <= 0:
        raise PriceSourceError(f"Unusable price in {what}: {value!r}")
    return number


def _first(items: Any) -> dict:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


# ============================================================
# SOURCES
# ============================================================

class PriceSource:
    """
    One ranked upstream. Subclasses implement _fetch_price() and raise
    PriceSourceError on anything unusable; fetch() turns that into a
    SourceOutcome and never raises.
    """

    source_id: str = ""
    display_name: str = ""

    def __init__(self, http: HttpFetcher, priority: int,
                 timeout_seconds: float = IRON_LAWS.PRICE_SOURCE_TIMEOUT_SECONDS):
        self._http = http
        self.priority = priority
        self._timeout = timeout_seconds

    async def _fetch_price(self) -> float:
        raise NotImplementedError

    async def _get(self, url: str, headers: Optional[dict] = None) -> Any:
        status, body = await self._http.get_json(url, headers=headers)
        if status != 200:
            raise PriceSourceError(f"{self.display_name} HTTP {status}")
        if body is None:
            raise PriceSourceError(f"{self.display_name} returned an empty body")
        return body

    async def fetch(self) -> SourceOutcome:
        try:
            raw = await asyncio.wait_for(self._fetch_price(), self._timeout)
            value = _require_number(raw, f"{self.display_name} result")
        except asyncio.TimeoutError:
            return SourceOutcome(self.source_id, error=f"{self.display_name} timed out")
        except Exception as e:
            return SourceOutcome(self.source_id, error=str(e) or type(e).__name__)
        return SourceOutcome(
            self.source_id,
            quote=PriceQuote(value=value, source_id=self.source_id, observed_at=time.time()),
        )


class SolscanSource(PriceSource):
    source_id = "solscan"
    display_name = "Solscan"
    URL = "https://pro-api.solscan.io/v2.0/token/price?address={mint}"

    def __init__(self, http: HttpFetcher, priority: int, mint: str, api_key: str, **kwargs):
        super().__init__(http, priority, **kwargs)
        self._mint = mint
        self._api_key = api_key

    async def _fetch_price(self) -> float:
        if not self._api_key:
            raise PriceSourceError("SOLSCAN_API_KEY not set")
        body = await self._get(
            self.URL.format(mint=self._mint),
            headers={"accept": "application/json", "token": self._api_key},
        )
        data = body.get("data") if isinstance(body, dict) else None
        price = data.get("price") if isinstance(data, dict) else None
        return _require_number(price, "Solscan result")


class RaydiumSource(PriceSource):
    source_id = "raydium"
    display_name = "Raydium"
    KEY_URL = "https://api-v3.raydium.io/pools/key/ids?ids={pool}"
    INFO_URL = "https://api-v3.raydium.io/pools/info/ids?ids={pool}"

    def __init__(self, http: HttpFetcher, priority: int, pool_id: str, **kwargs):
        super().__init__(http, priority, **kwargs)
        self._pool_id = pool_id

    async def _fetch_price(self) -> float:
        if not self._pool_id:
            raise PriceSourceError("RAYDIUM_POOL_ID not set")
        keys = await self._get(self.KEY_URL.format(pool=self._pool_id))
        pool_key = _first(keys.get("data") if isinstance(keys, dict) else None)
        if not pool_key.get("id"):
            raise PriceSourceError("Raydium pool not found")

        info = await self._get(self.INFO_URL.format(pool=self._pool_id))
        pool_info = _first(info.get("data") if isinstance(info, dict) else None)
        return _require_number(pool_info.get("price"), "Ray info", allow_string=True)


class PumpFunSource(PriceSource):
    source_id = "pumpfun"
    display_name = "Pump.fun"
    URL = "https://api.pump.fun/coin/{coin}"

    def __init__(self, http: HttpFetcher, priority: int, coin_id: str, **kwargs):
        super().__init__(http, priority, **kwargs)
        self._coin_id = coin_id

    async def _fetch_price(self) -> float:
        if not self._coin_id:
            raise PriceSourceError("PUMPFUN_POOL_ID not set")
        body = await self._get(self.URL.format(coin=self._coin_id))
        price = body.get("price") if isinstance(body, dict) else None
        usd = price.get("usd") if isinstance(price, dict) else None
        return _require_number(usd, "Pump.fun")


class DexscreenerSource(PriceSource):
    source_id = "dexscreener"
    display_name = "Dexscreener"
    URL = "https://api.dexscreener.io/latest/dex/pairs/solana/{pair}"

    def __init__(self, http: HttpFetcher, priority: int, pair_id: str, **kwargs):
        super().__init__(http, priority, **kwargs)
        self._pair_id = pair_id

    async def _fetch_price(self) -> float:
        if not self._pair_id:
            raise PriceSourceError("DEXSCREENER_PAIR_ID not set")
        body = await self._get(self.URL.format(pair=self._pair_id))
        if not isinstance(body, dict):
            raise PriceSourceError("No price in Dexscreener result")
        pair = body.get("pair") if isinstance(body.get("pair"), dict) else _first(body.get("pairs"))
        # Dexscreener serialises priceUsd as a decimal string
        return _require_number(pair.get("priceUsd"), "Dexscreener result", allow_string=True)


# ============================================================
# AGGREGATOR
# ============================================================

class PriceOracle:
    """
    Stateless after construction: safe to share between scheduled jobs and
    chat commands running concurrently.
    """

    def __init__(self, sources: list[PriceSource]):
        ids = [s.source_id for s in sources]
        priorities = [s.priority for s in sources]
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate price source ids: {ids}")
        if len(set(priorities)) != len(priorities):
            raise ValueError(f"price source priorities must be distinct: {priorities}")
        self._sources = tuple(sorted(sources, key=lambda s: s.priority))

    @property
    def sources(self) -> tuple[PriceSource, ...]:
        return self._sources

    async def resolve_best(self) -> PriceQuote:
        failures: list[SourceOutcome] = []
        for source in self._sources:
            outcome = await source.fetch()
            if outcome.ok:
                logger.info(f"{source.display_name} price: {outcome.quote.value}")
                return outcome.quote
            logger.warning(f"⚠️ {source.display_name} failed: {outcome.error}")
            failures.append(outcome)

        logger.error("❌ All price sources failed!")
        raise AllSourcesFailed(failures)

    async def resolve_all(self) -> list[SourceOutcome]:
        outcomes = []
        for source in self._sources:
            outcomes.append(await source.fetch())
        return outcomes


def build_default_oracle(http: HttpFetcher, mint: str, solscan_api_key: str = "",
                         raydium_pool_id: str = "", pumpfun_pool_id: str = "",
                         dexscreener_pair_id: str = "") -> PriceOracle:
    """Solscan → Raydium → Pump.fun → Dexscreener."""
    return PriceOracle([
        SolscanSource(http, 0, mint=mint, api_key=solscan_api_key),
        RaydiumSource(http, 1, pool_id=raydium_pool_id),
        PumpFunSource(http, 2, coin_id=pumpfun_pool_id),
        DexscreenerSource(http, 3, pair_id=dexscreener_pair_id),
    ])


def format_price(value: float) -> str:
    return f"{value:.{IRON_LAWS.PRICE_DISPLAY_DECIMALS}f}"
