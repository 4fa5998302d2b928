"""
Distribution Engine - Rate-Limited Token Disbursement

One request, one pass through a fixed state machine:

  authorize   (send only)   requester must be a moderator
  resolve                   raw input → account (InvalidAddress / DomainResolutionFailed)
  self guard  (send only)   never send to the custodial wallet itself
  ledger      (faucet only) recipient claimed < 24h ago → rejected
  cooldown                  (command, requester) still cooling → rejected, wait in hours
  admission                 requester window written NOW, before the transfer
  transfer                  opaque primitive, timeout-bounded
  commit      (faucet only) ledger[recipient] = now, durable before success returns

Terminal states: SUCCEEDED, REJECTED(reason), FAILED(reason). Nothing raises
out of faucet() / send(); every per-request problem becomes a result.

Admission before transfer is intentional anti-spam: a requester whose
transfer fails (e.g. recipient has no token account) still waits out the
window. See IRON_LAWS.CONSUME_COOLDOWN_ON_FAILURE.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from solders.pubkey import Pubkey

from core.constitution import IRON_LAWS, Reason, MISSING_ACCOUNT_MARKERS, EXPIRY_MARKERS
from core.ledger import ClaimLedger, CooldownTable
from core.resolver import AccountResolver, DomainResolutionFailed, InvalidAddress

logger = logging.getLogger("winlew.distribution")


class TransferPrimitive(Protocol):
    @property
    def custodial_account(self) -> Pubkey: ...

    async def transfer(self, recipient: Pubkey, amount_ui: float,
                       create_recipient_account: bool = False) -> str: ...


class DisbursementStatus(Enum):
    SUCCEEDED = "succeeded"
    REJECTED = "rejected"
    FAILED = "failed"


# ============================================================
# DATA MODELS
# ============================================================

@dataclass(frozen=True)
class PathPolicy:
    """What differs between the open faucet and the moderator send path."""
    command: str
    requires_authorization: bool = False
    self_send_guard: bool = False
    uses_claim_ledger: bool = True
    recognizes_expiry: bool = False
    create_recipient_account: bool = False


FAUCET_POLICY = PathPolicy(command="faucet")
SEND_POLICY = PathPolicy(
    command="send",
    requires_authorization=True,
    self_send_guard=True,
    uses_claim_ledger=False,
    recognizes_expiry=True,
    create_recipient_account=True,
)


@dataclass
class DisbursementRequest:
    requester_id: str
    raw_address: str
    resolved_account: Optional[Pubkey] = None


@dataclass
class DisbursementResult:
    status: DisbursementStatus
    reason: Optional[Reason] = None
    signature: str = ""
    recipient: str = ""
    amount: float = 0.0
    wait_hours: int = 0
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is DisbursementStatus.SUCCEEDED


def _rejected(reason: Reason, **kwargs) -> DisbursementResult:
    return DisbursementResult(status=DisbursementStatus.REJECTED, reason=reason, **kwargs)


def _failed(reason: Reason, **kwargs) -> DisbursementResult:
    return DisbursementResult(status=DisbursementStatus.FAILED, reason=reason, **kwargs)


def classify_transfer_error(error: BaseException, recognizes_expiry: bool) -> Reason:
    """Map a transfer exception onto the taxonomy by name and message text."""
    text = f"{type(error).__name__}: {error}"
    if any(marker in text for marker in MISSING_ACCOUNT_MARKERS):
        return Reason.MISSING_RECIPIENT_ACCOUNT
    if recognizes_expiry and any(marker in text for marker in EXPIRY_MARKERS):
        return Reason.TRANSFER_EXPIRED
    return Reason.UPSTREAM_FAILURE


# ============================================================
# ENGINE
# ============================================================

class DistributionEngine:
    """
    Owns no global state: the ledger and cooldown table are injected, so
    tests and the running bot see exactly the same behaviour.

    Usage:
        engine = DistributionEngine(resolver, executor, ledger, cooldowns,
                                    amount=1000, moderators={"1234"})
        result = await engine.faucet(str(author.id), "someone.sol")
    """

    def __init__(
        self,
        resolver: AccountResolver,
        executor: TransferPrimitive,
        ledger: ClaimLedger,
        cooldowns: CooldownTable,
        amount: float = IRON_LAWS.DEFAULT_DRIP_AMOUNT,
        moderators: frozenset[str] = frozenset(),
        clock: Callable[[], float] = time.time,
        transfer_timeout: float = IRON_LAWS.TRANSFER_TIMEOUT_SECONDS,
    ):
        self._resolver = resolver
        self._executor = executor
        self._ledger = ledger
        self._cooldowns = cooldowns
        self._amount = amount
        self._moderators = frozenset(moderators)
        self._clock = clock
        self._transfer_timeout = transfer_timeout
        # Recipients with a ledger-path transfer in flight.
        self._in_flight: set[str] = set()
        self._disbursed_count: int = 0

    @property
    def amount(self) -> float:
        return self._amount

    def is_moderator(self, requester_id: str) -> bool:
        return requester_id in self._moderators

    async def faucet(self, requester_id: str, raw_address: str) -> DisbursementResult:
        return await self.disburse(FAUCET_POLICY, DisbursementRequest(requester_id, raw_address))

    async def send(self, requester_id: str, raw_address: str) -> DisbursementResult:
        return await self.disburse(SEND_POLICY, DisbursementRequest(requester_id, raw_address))

    async def disburse(self, policy: PathPolicy, request: DisbursementRequest) -> DisbursementResult:
        now = self._clock()
        now_ms = int(now * 1000)
        now_sec = int(now)

        # 0. Authorization
        if policy.requires_authorization and not self.is_moderator(request.requester_id):
            return _rejected(Reason.NOT_AUTHORIZED)

        # 1. Resolve
        try:
            recipient = await self._resolver.resolve(request.raw_address)
        except DomainResolutionFailed as e:
            return _rejected(Reason.DOMAIN_RESOLUTION_FAILED, detail=str(e))
        except InvalidAddress as e:
            return _rejected(Reason.INVALID_ADDRESS, detail=str(e))
        request.resolved_account = recipient
        recipient_key = str(recipient)

        # 2. Self-send guard
        if policy.self_send_guard and recipient == self._executor.custodial_account:
            return _rejected(Reason.SELF_TRANSFER_DISALLOWED, recipient=recipient_key)

        # 3. Ledger check (per recipient). The in-flight slot is taken before
        # the first await so two claims for one recipient cannot both pass.
        if policy.uses_claim_ledger:
            if recipient_key in self._in_flight:
                return _rejected(Reason.LEDGER_COOLDOWN_ACTIVE, recipient=recipient_key,
                                 detail="claim already in progress")
            self._in_flight.add(recipient_key)

        try:
            if policy.uses_claim_ledger:
                last = await self._ledger.last_claim(recipient_key)
                if last is not None and now_sec - last < IRON_LAWS.CLAIM_COOLDOWN_SECONDS:
                    return _rejected(Reason.LEDGER_COOLDOWN_ACTIVE, recipient=recipient_key)

            # 4 + 5. Requester cooldown, check-and-admit in one step
            remaining_ms = self._cooldowns.try_admit(policy.command, request.requester_id, now_ms)
            if remaining_ms is not None:
                return _rejected(
                    Reason.REQUESTER_COOLDOWN_ACTIVE,
                    recipient=recipient_key,
                    wait_hours=math.ceil(remaining_ms / 3_600_000),
                )

            # 6. Transfer
            try:
                signature = await asyncio.wait_for(
                    self._executor.transfer(
                        recipient, self._amount,
                        create_recipient_account=policy.create_recipient_account,
                    ),
                    self._transfer_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"{policy.command}: transfer to {recipient_key[:8]}... timed out")
                return _failed(Reason.UPSTREAM_FAILURE, recipient=recipient_key,
                               detail="transfer timed out")
            except Exception as e:
                reason = classify_transfer_error(e, policy.recognizes_expiry)
                if reason is Reason.UPSTREAM_FAILURE:
                    logger.error(f"{policy.command} ERROR for {request.raw_address}: "
                                 f"{type(e).__name__}: {e}")
                else:
                    logger.warning(f"{policy.command}: {reason.value} for {recipient_key[:8]}...")
                return _failed(reason, recipient=recipient_key, detail=str(e) or type(e).__name__)

            # 7. Commit (per recipient), only after the transfer succeeded
            if policy.uses_claim_ledger:
                try:
                    await self._ledger.commit(recipient_key, now_sec)
                except OSError as e:
                    logger.critical(f"Transfer {signature} sent but claim NOT recorded "
                                    f"for {recipient_key}: {e}")
                    return _failed(Reason.UPSTREAM_FAILURE, recipient=recipient_key,
                                   signature=signature, amount=self._amount,
                                   detail=f"claim ledger write failed: {e}")
        finally:
            if policy.uses_claim_ledger:
                self._in_flight.discard(recipient_key)

        self._disbursed_count += 1
        logger.info(f"{policy.command}: sent {self._amount:g} to {recipient_key[:8]}... "
                    f"(requester {request.requester_id})")
        return DisbursementResult(
            status=DisbursementStatus.SUCCEEDED,
            signature=signature,
            recipient=recipient_key,
            amount=self._amount,
        )

    async def next_eligible_claim(self, account: Pubkey) -> tuple[Optional[int], Optional[int]]:
        """(last claim, next eligible) unix seconds for a recipient. None if never claimed."""
        last = await self._ledger.last_claim(str(account))
        if last is None:
            return None, None
        return last, last + IRON_LAWS.CLAIM_COOLDOWN_SECONDS

    def get_status(self) -> dict:
        return {
            "amount": self._amount,
            "disbursed": self._disbursed_count,
            "in_flight": len(self._in_flight),
            "cooldowns_active": len(self._cooldowns),
        }
