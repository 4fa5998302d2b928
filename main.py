"""
WinLEW bot - main entry point

Initializes all modules, wires callbacks, starts the server.
One file to understand how everything connects.

  config      → core.config.BotConfig (fatal if a required var is missing)
  chain       → AsyncClient + SplTokenExecutor (custodial signer)
  resolver    → AccountResolver (raw account / .sol)
  oracle      → PriceOracle (Solscan → Raydium → Pump.fun → Dexscreener)
  faucet      → DistributionEngine (ClaimLedger + CooldownTable)
  chat        → CommandRouter + WinlewClient (Discord)
  ops         → FastAPI app, served by uvicorn; its lifespan runs the Discord client

Usage:
    python main.py
"""

import os
import re
import sys
import signal
import asyncio
import logging
from contextlib import asynccontextmanager

import tweepy
import uvicorn
from dotenv import load_dotenv
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solders.keypair import Keypair
from solders.signature import Signature

# ============================================================
# BOOTSTRAP
# ============================================================

load_dotenv()

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


class _SecretMaskingFilter(logging.Filter):
    """
    Redact signer secrets: base58 keypairs and raw JSON byte arrays.

    Transaction signatures are also 64 bytes of base58 and must stay readable,
    so a candidate is only redacted when its second half is the public key
    of its first half.
    """
    _BASE58_CANDIDATE = re.compile(r'(?<![1-9A-HJ-NP-Za-km-z])[1-9A-HJ-NP-Za-km-z]{86,88}(?![1-9A-HJ-NP-Za-km-z])')
    _BYTE_ARRAY = re.compile(r'\[\s*(?:\d{1,3}\s*,\s*){63}\d{1,3}\s*\]')

    @staticmethod
    def _is_keypair(candidate: str) -> bool:
        try:
            raw = bytes(Signature.from_string(candidate))
        except ValueError:
            return False
        return bytes(Keypair.from_seed(raw[:32]).pubkey()) == raw[32:]

    def _redact_keypair(self, match: re.Match) -> str:
        return '[REDACTED]' if self._is_keypair(match.group(0)) else match.group(0)

    def _mask(self, text: str) -> str:
        text = self._BASE58_CANDIDATE.sub(self._redact_keypair, text)
        return self._BYTE_ARRAY.sub('[REDACTED]', text)

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        if record.args:
            try:
                formatted = record.getMessage()
                masked = self._mask(formatted)
                if masked != formatted:
                    record.msg = masked
                    record.args = None
            except (TypeError, ValueError):
                pass  # malformed args: leave the record for the handler to report
        return True


_mask_filter = _SecretMaskingFilter()
for _h in logging.root.handlers:
    _h.addFilter(_mask_filter)

logger = logging.getLogger("winlew.main")


# ============================================================
# MODULE IMPORTS
# ============================================================

from core.config import BotConfig, ConfigError
from core.chain import SplTokenExecutor, load_keypair
from core.resolver import AccountResolver
from core.price_oracle import HttpFetcher, build_default_oracle
from core.ledger import ClaimLedger, CooldownTable
from core.distribution import DistributionEngine
from core.registrations import RegistrationBook
from services.commands import CommandRouter, QuickLinks
from services.schedules import default_jobs
from services.discord_client import WinlewClient
from twitter.poller import TwitterPoller
from api.server import create_app


def _request_restart():
    """Graceful stop; the process supervisor brings the bot back up."""
    logger.warning("♻️ Restart requested — shutting down")
    os.kill(os.getpid(), signal.SIGTERM)


def _on_discord_exit(task: asyncio.Task):
    """The chat client died under a live server: stop, so the supervisor restarts both."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.critical(f"Discord client crashed: {type(error).__name__}: {error}")
    else:
        logger.critical("Discord client stopped unexpectedly")
    _request_restart()


def create_bot_app(config: BotConfig):
    """Create the fully wired FastAPI app. The Discord client lives in its lifespan."""
    config.data_dir.mkdir(parents=True, exist_ok=True)

    signer = load_keypair(config.keypair_path)
    rpc = AsyncClient(config.rpc_url, commitment=Confirmed)
    executor = SplTokenExecutor(rpc, signer, config.token_mint)
    logger.info(f"{config.token_symbol} mint: {config.token_mint}")
    logger.info(f"Custodial wallet: {executor.custodial_account}")

    resolver = AccountResolver(executor)
    http = HttpFetcher()
    oracle = build_default_oracle(
        http,
        mint=str(config.token_mint),
        solscan_api_key=config.solscan_api_key,
        raydium_pool_id=config.raydium_pool_id,
        pumpfun_pool_id=config.pumpfun_pool_id,
        dexscreener_pair_id=config.dexscreener_pair_id,
    )
    engine = DistributionEngine(
        resolver,
        executor,
        ClaimLedger(config.claims_file),
        CooldownTable(),
        amount=config.drip_amount,
        moderators=config.mod_ids,
    )
    router = CommandRouter(
        prefix=config.command_prefix,
        engine=engine,
        resolver=resolver,
        oracle=oracle,
        token_reader=executor,
        registrations=RegistrationBook(config.data_dir),
        links=QuickLinks(
            mint=str(config.token_mint),
            dexscreener_pair=config.dexscreener_pair_id,
            pool=config.raydium_pool_id,
        ),
        symbol=config.token_symbol,
    )

    client: WinlewClient  # assigned below, read by the relay closure

    async def _relay_tweet(content: str):
        await client.announce(content)

    poller = None
    if config.twitter_bearer_token:
        poller = TwitterPoller(
            tweepy.Client(bearer_token=config.twitter_bearer_token),
            config.twitter_username,
            config.data_dir,
            relay=_relay_tweet,
        )
    else:
        logger.warning("No TWITTER_BEARER_TOKEN — tweet relay disabled")

    client = WinlewClient(
        router,
        oracle,
        config.token_symbol,
        jobs=default_jobs(config.voice_channel_id, config.price_channel_id,
                          config.alert_channel_id),
        poller=poller,
        general_webhook_url=config.general_webhook_url,
        on_restart=_request_restart,
        ready_message=f"✅ 💰Channel is now live. For assistance, use the {config.command_prefix}help command",
    )

    @asynccontextmanager
    async def lifespan(app):
        """Startup and shutdown."""
        logger.info("=" * 60)
        logger.info("WinLEW bot is starting...")
        logger.info("=" * 60)

        discord_task = asyncio.create_task(client.start(config.discord_token))
        discord_task.add_done_callback(_on_discord_exit)
        yield

        logger.info("WinLEW bot shutting down...")
        discord_task.remove_done_callback(_on_discord_exit)
        await client.close()
        discord_task.cancel()
        try:
            await discord_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Discord client ended with {type(e).__name__}: {e}")
        await http.close()
        await rpc.close()
        logger.info("Goodbye.")

    app = create_app(
        oracle=oracle,
        resolver=resolver,
        engine=engine,
        wallet=str(executor.custodial_account),
        started_at=router.started_at,
    )
    app.router.lifespan_context = lifespan
    return app


# ============================================================
# ENTRY POINT
# ============================================================

def main():
    try:
        config = BotConfig.from_env()
    except ConfigError as e:
        logger.critical(f"Startup aborted: {e}")
        sys.exit(1)
    config.log_checklist()

    app = create_bot_app(config)
    logger.info(f"Starting server on {config.host}:{config.port}")
    uvicorn.run(app, host=config.host, port=config.port, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
