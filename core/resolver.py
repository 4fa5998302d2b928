"""
Account Resolver - human input → canonical account

Accepts either a raw base58 account or a .sol domain name.

Domain path (SPL Name Service):
  1. hashed name = sha256("SPL Name Service" + name)
  2. registry key = PDA([hashed name, no class, parent]) under the name program
  3. fetch registry account, owner = bytes 32..64 of the header

Any failure on the domain path is DomainResolutionFailed, whatever the
sub-cause. Callers must not branch on why a name did not resolve.
No caching: every call re-resolves.
"""

import asyncio
import hashlib
import logging
from typing import Optional, Protocol

from solders.pubkey import Pubkey

from core.constitution import IRON_LAWS, NAME_SERVICE

logger = logging.getLogger("winlew.resolver")

_NAME_PROGRAM_ID = Pubkey.from_string(NAME_SERVICE.PROGRAM_ID)
_SOL_ROOT = Pubkey.from_string(NAME_SERVICE.ROOT_DOMAIN_ACCOUNT)
_NO_CLASS = bytes(32)


class ResolutionError(Exception):
    pass


class InvalidAddress(ResolutionError):
    pass


class DomainResolutionFailed(ResolutionError):
    pass


class AccountDataReader(Protocol):
    async def get_account_data(self, account: Pubkey) -> Optional[bytes]: ...


# ============================================================
# NAME SERVICE KEY DERIVATION
# ============================================================

def hash_name(name: str) -> bytes:
    return hashlib.sha256((NAME_SERVICE.HASH_PREFIX + name).encode("utf-8")).digest()


def name_account_key(hashed_name: bytes, parent: Optional[Pubkey] = None) -> Pubkey:
    parent_bytes = bytes(parent) if parent is not None else _NO_CLASS
    key, _bump = Pubkey.find_program_address(
        [hashed_name, _NO_CLASS, parent_bytes], _NAME_PROGRAM_ID
    )
    return key


def domain_key(domain: str) -> Pubkey:
    """
    Registry key for a name without its .sol suffix.
    "bonfida" → child of the .sol root; "dex.bonfida" → child of "bonfida".

    The name is lowercased before hashing, so "Bonfida.sol" typed in chat
    finds the registered record. The registry itself only holds lowercase
    names; hashing the input as typed would miss them.
    """
    domain = domain.strip().lower()
    if not domain:
        raise ValueError("empty domain name")
    labels = domain.split(".")
    if len(labels) > 2 or not all(labels):
        raise ValueError(f"unsupported domain shape: {domain!r}")

    parent = name_account_key(hash_name(labels[-1]), _SOL_ROOT)
    if len(labels) == 1:
        return parent
    return name_account_key(hash_name(NAME_SERVICE.SUBDOMAIN_PREFIX + labels[0]), parent)


def registry_owner(data: bytes) -> Pubkey:
    if len(data) < NAME_SERVICE.HEADER_LENGTH:
        raise ValueError(f"registry record too short ({len(data)} bytes)")
    start = NAME_SERVICE.OWNER_OFFSET
    return Pubkey.from_bytes(data[start:start + 32])


# ============================================================
# RESOLVER
# ============================================================

class AccountResolver:
    """Turns chat input into an account. Side-effect free apart from RPC reads."""

    def __init__(self, reader: AccountDataReader,
                 timeout_seconds: float = IRON_LAWS.EXTERNAL_CALL_TIMEOUT_SECONDS):
        self._reader = reader
        self._timeout = timeout_seconds

    async def resolve(self, raw: str) -> Pubkey:
        text = (raw or "").strip()
        if not text:
            raise InvalidAddress("empty address")

        if text.lower().endswith(NAME_SERVICE.DOMAIN_SUFFIX):
            return await self._resolve_domain(text[: -len(NAME_SERVICE.DOMAIN_SUFFIX)])

        try:
            return Pubkey.from_string(text)
        except ValueError as e:
            raise InvalidAddress(f"not a valid account: {text[:64]}") from e

    async def _resolve_domain(self, name: str) -> Pubkey:
        try:
            key = domain_key(name)
            data = await asyncio.wait_for(self._reader.get_account_data(key), self._timeout)
            if data is None:
                raise LookupError(f"no registry record at {key}")
            owner = registry_owner(data)
        except Exception as e:
            logger.info(f"Domain '{name}.sol' did not resolve: {type(e).__name__}: {e}")
            raise DomainResolutionFailed("Unable to resolve .sol domain") from e

        logger.debug(f"Resolved {name}.sol → {owner}")
        return owner
