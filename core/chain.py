"""
Chain Executor - On-Chain Token Layer

The bot's only write path to the chain: moving the faucet token from the
custodial wallet to a recipient. Also serves the read-only lookups the
commands and the resolver need (account data, token balance, supply).

Design:
- One AsyncClient for the whole process, shared by resolver and executor
- Associated token accounts (ATA) derived locally, never trusted from input
- transfer() raises on failure; classification of the failure belongs to the
  caller (distribution engine), not to this module
- Amounts are given in UI units and scaled by the mint decimals here

Designed for: WinLEW community bot
"""

import json
import logging
from pathlib import Path
from typing import Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.async_client import AsyncToken
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from core.constitution import IRON_LAWS

logger = logging.getLogger("winlew.chain")


class TokenAccountNotFoundError(Exception):
    """Recipient has no token account for the mint."""
    pass


def load_keypair(path: Path) -> Keypair:
    """Signer file is a JSON array of the 64 secret-key bytes."""
    raw = json.loads(Path(path).read_text())
    return Keypair.from_bytes(bytes(raw))


# ============================================================
# CHAIN EXECUTOR
# ============================================================

class SplTokenExecutor:
    """
    Moves and reads one SPL token on behalf of the custodial signer.

    Usage:
        client = AsyncClient(rpc_url, commitment=Confirmed)
        executor = SplTokenExecutor(client, load_keypair(path), mint)
        signature = await executor.transfer(recipient, 1000)
    """

    def __init__(
        self,
        client: AsyncClient,
        signer: Keypair,
        mint: Pubkey,
        decimals: int = IRON_LAWS.TOKEN_DECIMALS,
    ):
        self._client = client
        self._signer = signer
        self._mint = mint
        self._decimals = decimals
        self._token = AsyncToken(client, mint, TOKEN_PROGRAM_ID, signer)
        self._tx_count: int = 0
        self._last_error: str = ""

    @property
    def custodial_account(self) -> Pubkey:
        return self._signer.pubkey()

    @property
    def mint(self) -> Pubkey:
        return self._mint

    def to_base_units(self, amount_ui: float) -> int:
        return int(round(amount_ui * (10 ** self._decimals)))

    # ============================================================
    # READS
    # ============================================================

    async def get_account_data(self, account: Pubkey) -> Optional[bytes]:
        """Raw account data, or None if the account does not exist."""
        resp = await self._client.get_account_info(account)
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    async def token_balance(self, owner: Pubkey) -> Optional[float]:
        """Sum of the owner's token accounts for the mint. None = no account at all."""
        resp = await self._client.get_token_accounts_by_owner_json_parsed(
            owner, TokenAccountOpts(mint=self._mint)
        )
        accounts = resp.value or []
        if not accounts:
            return None
        total = 0.0
        for keyed in accounts:
            parsed = keyed.account.data.parsed
            amount = parsed.get("info", {}).get("tokenAmount", {}).get("uiAmount")
            total += float(amount or 0)
        return total

    async def token_supply(self) -> float:
        resp = await self._client.get_token_supply(self._mint)
        return float(resp.value.ui_amount or 0)

    # ============================================================
    # WRITE
    # ============================================================

    async def transfer(
        self,
        recipient: Pubkey,
        amount_ui: float,
        create_recipient_account: bool = False,
    ) -> str:
        """
        Send amount_ui tokens from the custodial ATA to the recipient's ATA.
        Returns the confirmed transaction signature.

        Raises TokenAccountNotFoundError when the recipient ATA is missing and
        create_recipient_account is False. Any RPC/confirmation error propagates.
        """
        source_ata = get_associated_token_address(self.custodial_account, self._mint)
        dest_ata = get_associated_token_address(recipient, self._mint)

        if await self.get_account_data(dest_ata) is None:
            if not create_recipient_account:
                raise TokenAccountNotFoundError(
                    f"could not find an ATA account for {recipient} (mint {self._mint})"
                )
            logger.info(f"Creating token account for {str(recipient)[:8]}...")
            await self._token.create_associated_token_account(recipient, skip_confirmation=False)

        try:
            resp = await self._token.transfer(
                source=source_ata,
                dest=dest_ata,
                owner=self._signer,
                amount=self.to_base_units(amount_ui),
                opts=TxOpts(skip_confirmation=False, preflight_commitment=Confirmed),
            )
        except Exception as e:
            self._last_error = f"{type(e).__name__}: {e}"
            raise

        signature = str(resp.value)
        self._tx_count += 1
        logger.info(f"Sent {amount_ui:g} tokens → {dest_ata} | tx={signature[:16]}...")
        return signature

    def get_status(self) -> dict:
        return {
            "custodial_account": str(self.custodial_account),
            "mint": str(self._mint),
            "tx_count": self._tx_count,
            "last_error": self._last_error,
        }
