"""
Discord client - relays messages to the command router, runs the periodic jobs

  on_message      → CommandRouter.handle → message.reply
  hourly (UTC :00) voice + price channel labels, tweet relay
  every 10 min     alert channel label
  first ready      "channel is live" notice on the general webhook
"""

import datetime
import logging
from typing import Callable, Optional

import aiohttp
import discord
from discord.ext import tasks

from core.price_oracle import PriceOracle
from services.commands import CommandRouter
from services.schedules import LabelJob, LabelRefresher
from twitter.poller import TwitterPoller

logger = logging.getLogger("winlew.discord")

TOP_OF_EVERY_HOUR = [datetime.time(hour=h, tzinfo=datetime.timezone.utc) for h in range(24)]


def is_voice_based(channel) -> bool:
    return isinstance(channel, (discord.VoiceChannel, discord.StageChannel))


async def rename_channel(channel, name: str):
    await channel.edit(name=name)


class WinlewClient(discord.Client):
    def __init__(
        self,
        router: CommandRouter,
        oracle: PriceOracle,
        symbol: str,
        jobs: dict[str, LabelJob],
        poller: Optional[TwitterPoller] = None,
        general_webhook_url: str = "",
        on_restart: Optional[Callable[[], None]] = None,
        ready_message: str = "✅ 💰Channel is now live. For assistance, use the !help command",
    ):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.guild_messages = True
        intents.message_content = True
        intents.voice_states = True
        super().__init__(intents=intents)

        self._router = router
        self._jobs = jobs
        self._poller = poller
        self._general_webhook_url = general_webhook_url
        self._on_restart = on_restart
        self._ready_message = ready_message
        self._announced = False
        self._webhook_session: Optional[aiohttp.ClientSession] = None
        self.refresher = LabelRefresher(
            oracle, symbol,
            fetch_channel=self._get_or_fetch_channel,
            is_voice=is_voice_based,
            rename=rename_channel,
        )

    async def setup_hook(self):
        self._webhook_session = aiohttp.ClientSession()
        self.hourly_labels.start()
        self.alert_label.start()
        if self._poller is not None:
            self.tweet_relay.start()

    async def close(self):
        for loop in (self.hourly_labels, self.alert_label, self.tweet_relay):
            loop.cancel()
        if self._webhook_session is not None and not self._webhook_session.closed:
            await self._webhook_session.close()
        await super().close()

    async def _get_or_fetch_channel(self, channel_id: int):
        return self.get_channel(channel_id) or await self.fetch_channel(channel_id)

    async def announce(self, content: str):
        """Post to the general webhook, if configured."""
        if not self._general_webhook_url or self._webhook_session is None:
            return
        webhook = discord.Webhook.from_url(self._general_webhook_url, session=self._webhook_session)
        await webhook.send(content=content)

    # ============================================================
    # EVENTS
    # ============================================================

    async def on_ready(self):
        logger.info(f"🤖 Logged in as {self.user}")
        if self._announced:
            return
        self._announced = True
        try:
            await self.announce(self._ready_message)
        except Exception as e:
            logger.warning(f"Ready announcement failed: {e}")

    async def on_message(self, message: discord.Message):
        reply = await self._router.handle(
            str(message.author.id), message.content, author_is_bot=message.author.bot
        )
        if reply is None:
            return
        await message.reply(reply.text)
        if reply.restart and self._on_restart is not None:
            self._on_restart()

    # ============================================================
    # PERIODIC JOBS
    # ============================================================

    @tasks.loop(time=TOP_OF_EVERY_HOUR)
    async def hourly_labels(self):
        await self.refresher.run(self._jobs["voice"])
        await self.refresher.run(self._jobs["price"])

    @tasks.loop(minutes=10)
    async def alert_label(self):
        await self.refresher.run(self._jobs["alert"])

    @tasks.loop(time=TOP_OF_EVERY_HOUR)
    async def tweet_relay(self):
        await self._poller.poll_once()

    @hourly_labels.before_loop
    @alert_label.before_loop
    @tweet_relay.before_loop
    async def _wait_until_ready(self):
        await self.wait_until_ready()
