"""
Scheduled display refresh

Periodic jobs that put the current price into channel names:
  - voice channel, top of every hour      "💰 WinLEW: $0.000123"
  - price channel, top of every hour      "💰WinLEW:$0.000123"
  - alert channel (voice), every 10 min   "💰 WinLEW: $0.000123"

Each run resolves the price once through the waterfall. A failed run logs
and waits for the next tick; jobs never raise into the scheduler.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from core.price_oracle import PriceOracle, format_price

logger = logging.getLogger("winlew.schedules")


@dataclass(frozen=True)
class LabelJob:
    name: str
    channel_id: Optional[int]
    template: str                # formatted with symbol=, price=
    require_voice: bool = True

    def label(self, symbol: str, price: float) -> str:
        return self.template.format(symbol=symbol, price=format_price(price))


VOICE_LABEL = "💰 {symbol}: ${price}"
PRICE_LABEL = "💰{symbol}:${price}"


def default_jobs(voice_channel_id: Optional[int], price_channel_id: Optional[int],
                 alert_channel_id: Optional[int]) -> dict[str, LabelJob]:
    return {
        "voice": LabelJob("voice", voice_channel_id, VOICE_LABEL, require_voice=True),
        "price": LabelJob("price", price_channel_id, PRICE_LABEL, require_voice=False),
        "alert": LabelJob("alert", alert_channel_id, VOICE_LABEL, require_voice=True),
    }


class LabelRefresher:
    """
    Runs LabelJobs against whatever chat platform supplies the channel lookups.

    fetch_channel: async fn(channel_id) -> channel or None
    is_voice:      fn(channel) -> bool
    rename:        async fn(channel, new_name)
    """

    def __init__(
        self,
        oracle: PriceOracle,
        symbol: str,
        fetch_channel: Callable[[int], Awaitable[Any]],
        is_voice: Callable[[Any], bool],
        rename: Callable[[Any, str], Awaitable[None]],
    ):
        self._oracle = oracle
        self._symbol = symbol
        self._fetch_channel = fetch_channel
        self._is_voice = is_voice
        self._rename = rename
        self.last_labels: dict[str, str] = {}

    async def run(self, job: LabelJob) -> Optional[str]:
        """Returns the label applied, or None if this run did nothing."""
        if job.channel_id is None:
            return None
        try:
            quote = await self._oracle.resolve_best()
            channel = await self._fetch_channel(job.channel_id)
            if channel is None:
                logger.error(f"[CRON] {job.name} channel {job.channel_id} not found!")
                return None
            if job.require_voice and not self._is_voice(channel):
                logger.error(f"[CRON] {job.name} channel {job.channel_id} is not a voice channel!")
                return None
            label = job.label(self._symbol, quote.value)
            await self._rename(channel, label)
        except Exception as e:
            logger.error(f"[CRON] {job.name} rename failed: {type(e).__name__}: {e}")
            return None

        self.last_labels[job.name] = label
        logger.info(f"[CRON] {job.name} channel renamed to: {label}")
        return label
