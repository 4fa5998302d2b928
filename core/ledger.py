"""
Faucet state - two deliberately orthogonal rate limiters

ClaimLedger   (persisted, keyed by RECIPIENT account)
  {base58 account: last claim unix seconds}, one flat JSON object on disk.
  Survives restarts. Written once per successful disbursement, after the
  transfer succeeded. Entries are overwritten, never deleted.

CooldownTable (in-memory, keyed by COMMAND + REQUESTER chat id)
  {(command, requester): next eligible unix millis}. Empty on every start.
  Written at admission, before the transfer outcome is known.

Neither subsumes the other: one stops a single address being drained by many
chat accounts, the other stops one chat account cycling through addresses.
"""

import asyncio
import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional

from core.constitution import IRON_LAWS

logger = logging.getLogger("winlew.ledger")


# ============================================================
# CLAIM LEDGER
# ============================================================

class ClaimLedger:
    """
    File-backed claim record. Every commit is a full read-modify-write of the
    file under one asyncio.Lock, so concurrent commits for different
    recipients cannot lose each other's entries.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, int]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Claim ledger unreadable ({e}) — treating as empty")
            return {}
        if not isinstance(data, dict):
            logger.warning("Claim ledger is not a JSON object — treating as empty")
            return {}
        claims = {}
        for account, ts in data.items():
            try:
                claims[str(account)] = int(ts)
            except (TypeError, ValueError):
                logger.warning(f"Claim ledger: skipping malformed entry for {account}")
        return claims

    def _write(self, claims: dict[str, int]):
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(claims, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self._path)

    async def read(self) -> dict[str, int]:
        """Full mapping snapshot. Never mutates anything."""
        async with self._lock:
            return self._load()

    async def last_claim(self, account: str) -> Optional[int]:
        return (await self.read()).get(account)

    async def commit(self, account: str, claimed_at: int):
        """Record a successful claim. Durable on return."""
        async with self._lock:
            claims = self._load()
            claims[account] = int(claimed_at)
            self._write(claims)
        logger.info(f"Claim recorded: {account[:8]}... at {claimed_at}")


# ============================================================
# COOLDOWN TABLE
# ============================================================

class CooldownTable:
    """Per (command, requester) next-eligible timestamps. Process lifetime only."""

    def __init__(self, window_ms: int = IRON_LAWS.REQUESTER_COOLDOWN_MS):
        self._window_ms = window_ms
        self._next_eligible: dict[tuple[str, str], int] = {}
        # check-then-set must be one step per key
        self._lock = threading.Lock()

    @property
    def window_ms(self) -> int:
        return self._window_ms

    def remaining_ms(self, command: str, requester: str, now_ms: int) -> int:
        with self._lock:
            until = self._next_eligible.get((command, requester), 0)
        return max(0, until - now_ms)

    def try_admit(self, command: str, requester: str, now_ms: int) -> Optional[int]:
        """
        Atomically admit a request.
        Returns None when admitted (window now starts), otherwise the
        milliseconds still to wait. A rejected attempt does not extend the window.
        Expired windows are dropped on every admission.
        """
        key = (command, requester)
        with self._lock:
            until = self._next_eligible.get(key, 0)
            if now_ms < until:
                return until - now_ms
            expired = [k for k, v in self._next_eligible.items() if v <= now_ms]
            for k in expired:
                del self._next_eligible[k]
            self._next_eligible[key] = now_ms + self._window_ms
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._next_eligible)
