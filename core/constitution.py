"""
WINLEW BOT CONSTITUTION - Layer 0 (Immutable)

Hardcoded limits for the faucet, the price waterfall and every external
call. Nothing at runtime may change these values; configuration only
chooses WHICH token and accounts they apply to.

Designed for: WinLEW community bot
"""

from dataclasses import dataclass
from enum import Enum
from typing import Final


class Reason(Enum):
    """Every recoverable per-request outcome the core can report."""
    INVALID_ADDRESS = "invalid_address"
    DOMAIN_RESOLUTION_FAILED = "domain_resolution_failed"
    LEDGER_COOLDOWN_ACTIVE = "ledger_cooldown_active"
    REQUESTER_COOLDOWN_ACTIVE = "requester_cooldown_active"
    SELF_TRANSFER_DISALLOWED = "self_transfer_disallowed"
    MISSING_RECIPIENT_ACCOUNT = "missing_recipient_account"
    TRANSFER_EXPIRED = "transfer_expired"
    ALL_SOURCES_FAILED = "all_sources_failed"
    UPSTREAM_FAILURE = "upstream_failure"
    NOT_AUTHORIZED = "not_authorized"


# ============================================================
# IRON LAWS - faucet and oracle limits
# ============================================================

@dataclass(frozen=True)
class IronLaws:
    """Frozen dataclass = truly immutable at runtime."""

    # --- CLAIM LEDGER (per recipient account) ---
    CLAIM_COOLDOWN_SECONDS: Final[int] = 24 * 60 * 60

    # --- COOLDOWN TABLE (per command + requester) ---
    REQUESTER_COOLDOWN_MS: Final[int] = 24 * 60 * 60 * 1000
    # Window is written at admission, before the transfer outcome is known.
    # A failed transfer still costs the requester their window.
    CONSUME_COOLDOWN_ON_FAILURE: Final[bool] = True

    # --- DISBURSEMENT ---
    DEFAULT_DRIP_AMOUNT: Final[float] = 1000.0
    TOKEN_DECIMALS: Final[int] = 6

    # --- EXTERNAL CALLS ---
    EXTERNAL_CALL_TIMEOUT_SECONDS: Final[float] = 10.0
    PRICE_SOURCE_TIMEOUT_SECONDS: Final[float] = 15.0   # sources may chain two requests
    TRANSFER_TIMEOUT_SECONDS: Final[float] = 90.0

    # --- CHAT ---
    MAX_REPLY_CHARS: Final[int] = 1900
    PRICE_DISPLAY_DECIMALS: Final[int] = 6


IRON_LAWS = IronLaws()


# ============================================================
# NAME SERVICE - .sol domain registry constants
# ============================================================

@dataclass(frozen=True)
class NameService:
    DOMAIN_SUFFIX: Final[str] = ".sol"
    HASH_PREFIX: Final[str] = "SPL Name Service"
    PROGRAM_ID: Final[str] = "namesLPneVptA9Z5rqUDD9tMTWEJwofgaYwp8cawRkX"
    ROOT_DOMAIN_ACCOUNT: Final[str] = "58PwtjSDuFHuUkYjH9BYnnQKHfwo9reZhC2zMJv9JPkx"
    SUBDOMAIN_PREFIX: Final[str] = "\x00"
    # Registry header: parent(32) | owner(32) | class(32)
    OWNER_OFFSET: Final[int] = 32
    HEADER_LENGTH: Final[int] = 96


NAME_SERVICE = NameService()


# ============================================================
# TRANSFER ERROR MARKERS
# ============================================================

# Substrings reported by the transfer primitive when the recipient has no
# token account for the mint.
MISSING_ACCOUNT_MARKERS: Final[tuple[str, ...]] = (
    "could not find an ATA account",
    "TokenAccountNotFoundError",
    "Failed to send",
    "AccountNotFound",
)

# Substrings reported when the transaction's blockhash validity lapsed.
EXPIRY_MARKERS: Final[tuple[str, ...]] = (
    "TransactionExpiredBlockheightExceededError",
    "block height exceeded",
)
