"""
Command Router - prefix commands → core calls → reply text

Platform-agnostic: takes (author id, message text), returns the reply text.
The Discord client only relays. Every command failure is caught here and
turned into a reply; nothing a user types can crash the bot.

Commands (prefix "!" by default):
  user:  balance faucet price register supply uptime help quicklinks
         buy dexscreener rugcheck swap geckoterminal cmc website
  mods:  send debugprice wallet restart modhelp
"""

import functools
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

from solders.pubkey import Pubkey

from core.constitution import IRON_LAWS, Reason
from core.distribution import DisbursementResult, DistributionEngine
from core.price_oracle import AllSourcesFailed, PriceOracle, format_price
from core.registrations import RegistrationBook
from core.resolver import AccountResolver, ResolutionError

logger = logging.getLogger("winlew.commands")

EXPLORER_TX_URL = "https://solscan.io/tx/{signature}"
EXPLORER_HINT = "_If you don't see the transaction on Solscan right away, please wait a minute and check again!_"
DEFAULT_WEBSITE = "http://WinLEW.xyZ"


class TokenReader(Protocol):
    @property
    def custodial_account(self) -> Pubkey: ...

    async def token_balance(self, owner: Pubkey) -> Optional[float]: ...

    async def token_supply(self) -> float: ...


@dataclass
class CommandReply:
    text: str
    restart: bool = False


@dataclass(frozen=True)
class QuickLinks:
    """Ecosystem links, derived from the configured mint / pool / pair ids."""
    mint: str
    dexscreener_pair: str = ""
    pool: str = ""
    website: str = DEFAULT_WEBSITE

    @property
    def pumpfun(self) -> str:
        return f"https://pump.fun/coin/{self.mint}"

    @property
    def dexscreener(self) -> str:
        return f"https://dexscreener.com/solana/{(self.dexscreener_pair or self.mint).lower()}"

    @property
    def rugcheck(self) -> str:
        return f"https://rugcheck.xyz/tokens/{self.mint}"

    @property
    def swap(self) -> str:
        return f"https://raydium.io/swap/?inputMint=sol&outputMint={self.mint}"

    @property
    def geckoterminal(self) -> str:
        return f"https://www.geckoterminal.com/solana/pools/{self.pool or self.mint}"

    @property
    def cmc(self) -> str:
        return f"https://coinmarketcap.com/dexscan/solana/{self.dexscreener_pair or self.mint}/"


def truncate_reply(text: str, limit: int = IRON_LAWS.MAX_REPLY_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "…"


def format_uptime(seconds: float) -> str:
    total = int(seconds)
    h, m, s = total // 3600, (total // 60) % 60, total % 60
    return f"⏳ Uptime: {h}h {m}m {s}s"


def describe_disbursement(command: str, result: DisbursementResult, symbol: str) -> str:
    """Reply text for every terminal state of a faucet/send request."""
    if result.succeeded:
        tx = EXPLORER_TX_URL.format(signature=result.signature)
        if command == "send":
            return f"✅ Sent {result.amount:g} {symbol}! Tx: {tx}\n{EXPLORER_HINT}"
        return f"💧 Dripped! Tx: {tx}\n{EXPLORER_HINT}"

    reason = result.reason
    if reason is Reason.NOT_AUTHORIZED:
        return "❌ You are not authorized to use this command."
    if reason in (Reason.INVALID_ADDRESS, Reason.DOMAIN_RESOLUTION_FAILED):
        return "❌ Invalid address or .sol domain"
    if reason is Reason.SELF_TRANSFER_DISALLOWED:
        return "❌ Cannot send tokens to the bot's own address!"
    if reason is Reason.LEDGER_COOLDOWN_ACTIVE:
        return "⏳ This address already claimed the faucet in the past 24h!💥"
    if reason is Reason.REQUESTER_COOLDOWN_ACTIVE:
        return f"⏳ Please wait ~{result.wait_hours}h to use that command again."
    if reason is Reason.MISSING_RECIPIENT_ACCOUNT:
        return (f"💥 Error No ATA Account! (Recipient must create their "
                f"${symbol} token account first)")
    if reason is Reason.TRANSFER_EXPIRED:
        return ("⏰ Transaction expired (block height exceeded). The Solana network was too "
                "slow or the transaction was sent too late. Please try again!")
    text = f"❌ Failed to send: {result.detail}" if command == "send" else f"❌ {result.detail}"
    if result.signature:
        # tokens moved even though the request failed afterwards
        text += f"\nTx: {EXPLORER_TX_URL.format(signature=result.signature)}"
    return text


# ============================================================
# ROUTER
# ============================================================

class CommandRouter:
    """
    Usage:
        router = CommandRouter(prefix="!", engine=..., resolver=..., oracle=..., ...)
        reply = await router.handle(str(message.author.id), message.content)
        if reply: await message.reply(reply.text)
    """

    def __init__(
        self,
        prefix: str,
        engine: DistributionEngine,
        resolver: AccountResolver,
        oracle: PriceOracle,
        token_reader: TokenReader,
        registrations: RegistrationBook,
        links: QuickLinks,
        symbol: str = "WinLEW",
        clock: Callable[[], float] = time.time,
    ):
        self._prefix = prefix
        self._engine = engine
        self._resolver = resolver
        self._oracle = oracle
        self._reader = token_reader
        self._registrations = registrations
        self._links = links
        self._symbol = symbol
        self._clock = clock
        self._started_at = clock()

        self._handlers: dict[str, Callable[[str, list[str]], Awaitable[CommandReply]]] = {
            "uptime": self._uptime,
            "restart": self._restart,
            "wallet": self._wallet,
            "balance": self._balance,
            "faucet": self._faucet,
            "send": self._send,
            "register": self._register,
            "price": self._price,
            "debugprice": self._debugprice,
            "supply": self._supply,
            "help": self._help,
            "quicklinks": self._quicklinks,
            "modhelp": self._modhelp,
            "buy": functools.partial(self._static, name="buy"),
            "dexscreener": functools.partial(self._static, name="dexscreener"),
            "rugcheck": functools.partial(self._static, name="rugcheck"),
            "swap": functools.partial(self._static, name="swap"),
            "geckoterminal": functools.partial(self._static, name="geckoterminal"),
            "cmc": functools.partial(self._static, name="cmc"),
            "website": functools.partial(self._static, name="website"),
        }

    @property
    def started_at(self) -> float:
        return self._started_at

    def parse(self, content: str) -> Optional[tuple[str, list[str]]]:
        if not content.startswith(self._prefix):
            return None
        parts = content[len(self._prefix):].strip().split()
        if not parts:
            return None
        return parts[0].lower(), parts[1:]

    async def handle(self, author_id: str, content: str,
                     author_is_bot: bool = False) -> Optional[CommandReply]:
        if author_is_bot:
            return None
        parsed = self.parse(content)
        if parsed is None:
            return None
        cmd, args = parsed
        handler = self._handlers.get(cmd)
        if handler is None:
            return None
        try:
            return await handler(author_id, args)
        except Exception as e:
            logger.error(f"Error in {cmd}: {type(e).__name__}: {e}", exc_info=True)
            return CommandReply(f"❌ {e}")

    def _usage(self, cmd: str) -> CommandReply:
        return CommandReply(f"Usage: {self._prefix}{cmd} <Your Solana ADDRESS or .sol>")

    # ----------------------------------------------------------
    # ADMIN
    # ----------------------------------------------------------

    async def _uptime(self, author_id: str, args: list[str]) -> CommandReply:
        return CommandReply(format_uptime(self._clock() - self._started_at))

    async def _restart(self, author_id: str, args: list[str]) -> CommandReply:
        if not self._engine.is_moderator(author_id):
            return CommandReply("❌ You are not authorized to restart the bot.")
        logger.warning(f"Restart requested by {author_id}")
        return CommandReply("♻️ Restarting bot...", restart=True)

    async def _wallet(self, author_id: str, args: list[str]) -> CommandReply:
        return CommandReply(f"🤖 Bot wallet: `{self._reader.custodial_account}`")

    # ----------------------------------------------------------
    # TOKEN
    # ----------------------------------------------------------

    async def _balance(self, author_id: str, args: list[str]) -> CommandReply:
        if not args:
            return self._usage("balance")
        try:
            owner = await self._resolver.resolve(args[0])
        except ResolutionError:
            return CommandReply("❌ Invalid address or .sol domain")
        total = await self._reader.token_balance(owner)
        if total is None:
            return CommandReply(f"ℹ️ No ${self._symbol} account found for that address.")
        return CommandReply(f"🔍 Balance: {total:g} {self._symbol}")

    async def _faucet(self, author_id: str, args: list[str]) -> CommandReply:
        if not args:
            return self._usage("faucet")
        result = await self._engine.faucet(author_id, args[0])
        return CommandReply(describe_disbursement("faucet", result, self._symbol))

    async def _send(self, author_id: str, args: list[str]) -> CommandReply:
        if not self._engine.is_moderator(author_id):
            return CommandReply("❌ You are not authorized to use this command.")
        if not args:
            return self._usage("send")
        result = await self._engine.send(author_id, args[0])
        return CommandReply(describe_disbursement("send", result, self._symbol))

    async def _register(self, author_id: str, args: list[str]) -> CommandReply:
        if not args:
            return self._usage("register")
        await self._registrations.register(args[0])
        return CommandReply(f"✅ Registered {args[0]}")

    async def _supply(self, author_id: str, args: list[str]) -> CommandReply:
        supply = await self._reader.token_supply()
        return CommandReply(f"🌐 Total supply: {supply:g} {self._symbol}")

    # ----------------------------------------------------------
    # PRICE
    # ----------------------------------------------------------

    async def _price(self, author_id: str, args: list[str]) -> CommandReply:
        try:
            quote = await self._oracle.resolve_best()
        except AllSourcesFailed:
            return CommandReply(f"❌ No price source available for ${self._symbol} right now.")
        return CommandReply(f"💰 {self._symbol} Price: ${format_price(quote.value)}")

    async def _debugprice(self, author_id: str, args: list[str]) -> CommandReply:
        if not self._engine.is_moderator(author_id):
            return CommandReply("❌ This command is restricted.")
        lines = ["🛠️ Debugging price sources..."]
        by_id = {s.source_id: s.display_name for s in self._oracle.sources}
        for outcome in await self._oracle.resolve_all():
            name = by_id.get(outcome.source_id, outcome.source_id)
            if outcome.ok:
                lines.append(f"{name} ✅: ${outcome.quote.value}")
            else:
                lines.append(f"{name} ❌: {outcome.error}")
        return CommandReply(truncate_reply("\n".join(lines) + "\n"))

    # ----------------------------------------------------------
    # HELP / LINKS
    # ----------------------------------------------------------

    async def _help(self, author_id: str, args: list[str]) -> CommandReply:
        p, sym = self._prefix, self._symbol
        return CommandReply(
            "📖 **Commands:**\n"
            f"• `{p}balance <Your Solana Address or .sol>` —\n"
            f"  🔍 Check your ${sym} balance\n"
            f"• `{p}faucet <Your Solana Address or .sol>` —\n"
            f"  💧 Receive {self._engine.amount:g} ${sym}\n"
            f"• `{p}price` — 💰 View current ${sym} price\n"
            f"• `{p}register <Your Solana Address or .sol>` —\n"
            "  📝 Register for airdrops\n"
            f"• `{p}supply` — 🌐 Total ${sym} supply\n"
            f"• `{p}uptime` — ⏱️ Bot uptime\n"
            "\n"
            f"🔗 **See Quick Links:** Type `{p}quicklinks` for all {sym} ecosystem links!\n"
            "\n"
            f"🛠️ `{p}debugprice` — (For MOD use ONLY)"
        )

    async def _quicklinks(self, author_id: str, args: list[str]) -> CommandReply:
        p, sym = self._prefix, self._symbol
        return CommandReply(
            "🔗 **Quick Links:**\n"
            f"• `{p}buy` — 🚀 Buy ${sym} on Pump.fun\n"
            f"• `{p}dexscreener` — 📊 View charts on DexScreener\n"
            f"• `{p}rugcheck` — 🔒 Safety check on RugCheck\n"
            f"• `{p}swap` — 💱 Swap ${sym} on Raydium\n"
            f"• `{p}send <Your Solana Address or .sol>` —\n"
            f"  ✉️💧 Receive {self._engine.amount:g} ${sym} (MOD only)\n"
            f"• `{p}geckoterminal` — 🌐 Pool info on GeckoTerminal\n"
            f"• `{p}cmc` — 📈 CoinMarketCap info\n"
            f"• `{p}website` — 🖥️ Visit our official site: <{self._links.website}>"
        )

    async def _modhelp(self, author_id: str, args: list[str]) -> CommandReply:
        if not self._engine.is_moderator(author_id):
            return CommandReply("❌ This command is restricted.")
        p = self._prefix
        return CommandReply(
            "🛠️ **Moderator/Admin Commands:**\n"
            f"• `{p}restart` — ♻️ Restart the bot (admin only)\n"
            f"• `{p}wallet` — 🤖 Show bot's public Solana address\n"
            f"• `{p}debugprice` — 🧩 Show all price source diagnostics\n"
            f"• `{p}modhelp` — 🛠️ Show this mod/admin help menu\n"
            "\n"
            "🔒 *All regular user commands are also available to mods. Use with caution!*"
        )

    async def _static(self, author_id: str, args: list[str], name: str) -> CommandReply:
        sym, links = self._symbol, self._links
        replies = {
            "buy": f"🚀 Buy ${sym} now on Pump.fun:\n{links.pumpfun}",
            "dexscreener": f"📊 Check ${sym} charts and stats on DexScreener:\n{links.dexscreener}",
            "rugcheck": f"🔒 Be safe! Verify ${sym} on RugCheck:\n{links.rugcheck}",
            "swap": f"💱 Swap your tokens for ${sym} using Raydium:\n{links.swap}",
            "geckoterminal": f"🌐 View ${sym} pool on GeckoTerminal:\n{links.geckoterminal}",
            "cmc": f"📈 Track ${sym} on CoinMarketCap:\n{links.cmc}",
            "website": f"🖥️ Visit our official site:\n{links.website}",
        }
        return CommandReply(replies[name])
