"""
Bot configuration - environment driven

Reads the same variable names the bot has always been deployed with.
main.py calls load_dotenv() first, so a local .env works too.

Only a missing required variable is fatal: ConfigError halts startup.
Everything else (webhooks, price-source keys, Twitter) just disables the
feature that needs it.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from solders.pubkey import Pubkey

from core.constitution import IRON_LAWS

logger = logging.getLogger("winlew.config")


REQUIRED_VARS = (
    "DISCORD_BOT_TOKEN",
    "VOICE_CHANNEL_ID",
    "WINLEW_MINT",
    "BOT_KEYPAIR_PATH",
    "RPC_URL",
)


class ConfigError(Exception):
    """Fatal startup error: a required external dependency identifier is missing."""
    pass


def _split_ids(raw: str) -> frozenset[str]:
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


def _optional_int(raw: str) -> Optional[int]:
    raw = raw.strip()
    return int(raw) if raw.isdigit() else None


@dataclass
class BotConfig:
    discord_token: str
    voice_channel_id: int
    token_mint: Pubkey
    keypair_path: Path
    rpc_url: str

    command_prefix: str = "!"
    drip_amount: float = IRON_LAWS.DEFAULT_DRIP_AMOUNT
    token_symbol: str = "WinLEW"
    mod_ids: frozenset[str] = field(default_factory=frozenset)

    price_channel_id: Optional[int] = None
    alert_channel_id: Optional[int] = None

    voice_webhook_url: str = ""
    price_webhook_url: str = ""
    general_webhook_url: str = ""
    announcement_webhook_url: str = ""

    twitter_bearer_token: str = ""
    twitter_username: str = "WinLewToken"

    solscan_api_key: str = ""
    raydium_pool_id: str = ""
    pumpfun_pool_id: str = ""
    dexscreener_pair_id: str = ""

    data_dir: Path = Path("data")
    claims_file: Path = Path("data/faucet_claims.json")

    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BotConfig":
        """Build config from the environment. Raises ConfigError on any fatal gap."""
        env = os.environ if env is None else env

        def get(name: str, default: str = "") -> str:
            return (env.get(name) or default).strip()

        missing = [name for name in REQUIRED_VARS if not get(name)]
        if missing:
            raise ConfigError(f"Missing required env vars: {', '.join(missing)}")

        try:
            token_mint = Pubkey.from_string(get("WINLEW_MINT"))
        except ValueError as e:
            raise ConfigError(f"WINLEW_MINT is not a valid account: {e}") from e

        voice_channel_id = _optional_int(get("VOICE_CHANNEL_ID"))
        if voice_channel_id is None:
            raise ConfigError("VOICE_CHANNEL_ID must be a numeric channel id")

        try:
            drip_amount = float(get("DRIP_AMOUNT", str(IRON_LAWS.DEFAULT_DRIP_AMOUNT)))
        except ValueError as e:
            raise ConfigError(f"DRIP_AMOUNT is not a number: {e}") from e
        if drip_amount <= 0:
            raise ConfigError("DRIP_AMOUNT must be positive")

        data_dir = Path(get("DATA_DIR", "data"))

        return cls(
            discord_token=get("DISCORD_BOT_TOKEN"),
            voice_channel_id=voice_channel_id,
            token_mint=token_mint,
            keypair_path=Path(get("BOT_KEYPAIR_PATH")),
            rpc_url=get("RPC_URL"),
            command_prefix=get("COMMAND_PREFIX", "!"),
            drip_amount=drip_amount,
            token_symbol=get("TOKEN_SYMBOL", "WinLEW"),
            mod_ids=_split_ids(get("MOD_IDS")),
            price_channel_id=_optional_int(get("PRICE_CHANNEL_ID")),
            alert_channel_id=_optional_int(get("ALERT_CHANNEL_ID")),
            voice_webhook_url=get("VOICE_WEBHOOK_URL"),
            price_webhook_url=get("PRICE_WEBHOOK_URL"),
            general_webhook_url=get("GENERAL_WEBHOOK_URL"),
            announcement_webhook_url=get("ANNOUNCEMENT_WEBHOOK_URL"),
            twitter_bearer_token=get("TWITTER_BEARER_TOKEN"),
            twitter_username=get("TWITTER_USERNAME", "WinLewToken"),
            solscan_api_key=get("SOLSCAN_API_KEY"),
            raydium_pool_id=get("RAYDIUM_POOL_ID"),
            pumpfun_pool_id=get("PUMPFUN_POOL_ID"),
            dexscreener_pair_id=get("DEXSCREENER_PAIR_ID"),
            data_dir=data_dir,
            claims_file=Path(get("FAUCET_CLAIMS_FILE", str(data_dir / "faucet_claims.json"))),
            host=get("HOST", "0.0.0.0"),
            port=int(get("PORT", "8000")),
        )

    def describe(self) -> list[tuple[str, bool]]:
        """(variable, present) pairs for the startup checklist. Never exposes values."""
        return [
            ("DISCORD_BOT_TOKEN", bool(self.discord_token)),
            ("TWITTER_BEARER_TOKEN", bool(self.twitter_bearer_token)),
            ("VOICE_WEBHOOK_URL", bool(self.voice_webhook_url)),
            ("PRICE_WEBHOOK_URL", bool(self.price_webhook_url)),
            ("GENERAL_WEBHOOK_URL", bool(self.general_webhook_url)),
            ("ANNOUNCEMENT_WEBHOOK_URL", bool(self.announcement_webhook_url)),
            ("VOICE_CHANNEL_ID", bool(self.voice_channel_id)),
            ("PRICE_CHANNEL_ID", self.price_channel_id is not None),
            ("ALERT_CHANNEL_ID", self.alert_channel_id is not None),
            ("RPC_URL", bool(self.rpc_url)),
            ("WINLEW_MINT", True),
            ("BOT_KEYPAIR_PATH", bool(str(self.keypair_path))),
            ("COMMAND_PREFIX", True),
            ("DRIP_AMOUNT", True),
            ("MOD_IDS", bool(self.mod_ids)),
        ]

    def log_checklist(self):
        logger.info("→ .env loaded:")
        for name, present in self.describe():
            status = "✅ Completed" if present else "❌ Missing"
            logger.info(f" • {name:<24} : {status}")
