from __future__ import annotations

import asyncio

import pytest
from solders.pubkey import Pubkey

from core.chain import TokenAccountNotFoundError
from core.constitution import IRON_LAWS, Reason
from core.distribution import (
    DisbursementStatus,
    DistributionEngine,
    classify_transfer_error,
)

MOD = "42"
USER = "7"


class TransactionExpiredBlockheightExceededError(Exception):
    pass


@pytest.fixture
def engine(resolver, executor, ledger, cooldowns, clock) -> DistributionEngine:
    return DistributionEngine(resolver, executor, ledger, cooldowns,
                              amount=1000, moderators=frozenset({MOD}), clock=clock)


@pytest.fixture
def recipient() -> Pubkey:
    return Pubkey.new_unique()


# ============================================================
# FAUCET
# ============================================================

async def test_faucet_success_commits_ledger(engine, executor, ledger, recipient, clock):
    result = await engine.faucet(USER, str(recipient))

    assert result.status is DisbursementStatus.SUCCEEDED
    assert result.signature == "sig1"
    assert result.amount == 1000
    assert executor.transfers == [(recipient, 1000, False)]
    assert await ledger.last_claim(str(recipient)) == int(clock.now)


async def test_invalid_address_is_rejected_before_any_state(engine, executor, cooldowns):
    result = await engine.faucet(USER, "definitely not an address")

    assert result.status is DisbursementStatus.REJECTED
    assert result.reason is Reason.INVALID_ADDRESS
    assert executor.transfers == []
    assert len(cooldowns) == 0


async def test_unresolvable_domain_is_rejected(engine, executor):
    result = await engine.faucet(USER, "ghost.sol")

    assert result.reason is Reason.DOMAIN_RESOLUTION_FAILED
    assert executor.transfers == []


async def test_ledger_blocks_same_recipient_for_another_requester(engine, recipient, clock):
    await engine.faucet(USER, str(recipient))
    clock.advance(3600)

    result = await engine.faucet("someone-else", str(recipient))

    assert result.status is DisbursementStatus.REJECTED
    assert result.reason is Reason.LEDGER_COOLDOWN_ACTIVE


async def test_ledger_allows_recipient_after_a_day(engine, ledger, recipient, clock):
    await ledger.commit(str(recipient), int(clock.now) - 90_000)

    result = await engine.faucet(USER, str(recipient))

    assert result.succeeded


async def test_ledger_boundary_is_exactly_one_day(engine, ledger, recipient, clock):
    await ledger.commit(str(recipient), int(clock.now) - IRON_LAWS.CLAIM_COOLDOWN_SECONDS)

    assert (await engine.faucet(USER, str(recipient))).succeeded


async def test_requester_cooldown_reports_wait_in_hours(engine, clock):
    await engine.faucet(USER, str(Pubkey.new_unique()))
    clock.advance(3600 + 1)

    result = await engine.faucet(USER, str(Pubkey.new_unique()))

    assert result.reason is Reason.REQUESTER_COOLDOWN_ACTIVE
    assert result.wait_hours == 23


async def test_missing_recipient_account_still_consumes_cooldown(engine, executor, ledger, recipient):
    executor.error = TokenAccountNotFoundError(f"could not find an ATA account for {recipient}")

    first = await engine.faucet(USER, str(recipient))
    executor.error = None
    second = await engine.faucet(USER, str(recipient))

    assert first.status is DisbursementStatus.FAILED
    assert first.reason is Reason.MISSING_RECIPIENT_ACCOUNT
    assert second.reason is Reason.REQUESTER_COOLDOWN_ACTIVE
    # the failed claim never reached the ledger
    assert await ledger.last_claim(str(recipient)) is None


async def test_expiry_is_not_recognized_on_faucet(engine, executor, recipient):
    executor.error = TransactionExpiredBlockheightExceededError("block height exceeded")

    result = await engine.faucet(USER, str(recipient))

    assert result.reason is Reason.UPSTREAM_FAILURE


async def test_timeout_fails_without_ledger_commit(resolver, ledger, cooldowns, clock, recipient):
    class StuckExecutor:
        custodial_account = Pubkey.new_unique()

        async def transfer(self, recipient, amount_ui, create_recipient_account=False):
            await asyncio.sleep(5)

    engine = DistributionEngine(resolver, StuckExecutor(), ledger, cooldowns,
                                clock=clock, transfer_timeout=0.01)
    result = await engine.faucet(USER, str(recipient))

    assert result.status is DisbursementStatus.FAILED
    assert result.reason is Reason.UPSTREAM_FAILURE
    assert await ledger.last_claim(str(recipient)) is None


async def test_concurrent_claims_for_one_recipient_disburse_once(resolver, ledger, cooldowns, clock, recipient):
    class SlowExecutor:
        custodial_account = Pubkey.new_unique()

        def __init__(self):
            self.count = 0

        async def transfer(self, recipient, amount_ui, create_recipient_account=False):
            self.count += 1
            await asyncio.sleep(0.01)
            return "sig"

    slow = SlowExecutor()
    engine = DistributionEngine(resolver, slow, ledger, cooldowns, clock=clock)

    results = await asyncio.gather(
        engine.faucet("a", str(recipient)),
        engine.faucet("b", str(recipient)),
    )

    assert slow.count == 1
    assert sorted(r.status.value for r in results) == ["rejected", "succeeded"]


async def test_ledger_write_failure_is_reported(engine, ledger, recipient, monkeypatch):
    async def broken_commit(account, claimed_at):
        raise OSError("disk full")

    monkeypatch.setattr(ledger, "commit", broken_commit)
    result = await engine.faucet(USER, str(recipient))

    assert result.status is DisbursementStatus.FAILED
    assert result.signature == "sig1"
    assert "disk full" in result.detail


# ============================================================
# SEND
# ============================================================

async def test_send_requires_moderator(engine, executor, recipient):
    result = await engine.send(USER, str(recipient))

    assert result.reason is Reason.NOT_AUTHORIZED
    assert executor.transfers == []


async def test_send_to_self_is_rejected_before_cooldown(engine, executor, cooldowns):
    result = await engine.send(MOD, str(executor.custodial_account))

    assert result.reason is Reason.SELF_TRANSFER_DISALLOWED
    assert len(cooldowns) == 0


async def test_send_creates_account_and_skips_ledger(engine, executor, ledger, recipient, clock):
    await ledger.commit(str(recipient), int(clock.now))

    result = await engine.send(MOD, str(recipient))

    assert result.succeeded
    assert executor.transfers == [(recipient, 1000, True)]
    assert await ledger.read() == {str(recipient): int(clock.now)}


async def test_send_recognizes_expiry(engine, executor, recipient):
    executor.error = TransactionExpiredBlockheightExceededError("block height exceeded")

    result = await engine.send(MOD, str(recipient))

    assert result.reason is Reason.TRANSFER_EXPIRED


async def test_send_and_faucet_cooldowns_are_independent(engine):
    assert (await engine.send(MOD, str(Pubkey.new_unique()))).succeeded
    assert (await engine.faucet(MOD, str(Pubkey.new_unique()))).succeeded
    assert (await engine.send(MOD, str(Pubkey.new_unique()))).reason is Reason.REQUESTER_COOLDOWN_ACTIVE


# ============================================================
# HELPERS
# ============================================================

def test_classify_transfer_error():
    assert classify_transfer_error(TokenAccountNotFoundError("x"), False) is Reason.MISSING_RECIPIENT_ACCOUNT
    assert classify_transfer_error(RuntimeError("AccountNotFound"), True) is Reason.MISSING_RECIPIENT_ACCOUNT
    assert classify_transfer_error(RuntimeError("block height exceeded"), True) is Reason.TRANSFER_EXPIRED
    assert classify_transfer_error(RuntimeError("block height exceeded"), False) is Reason.UPSTREAM_FAILURE
    assert classify_transfer_error(RuntimeError("boom"), True) is Reason.UPSTREAM_FAILURE


async def test_next_eligible_claim(engine, ledger, recipient):
    assert await engine.next_eligible_claim(recipient) == (None, None)
    await ledger.commit(str(recipient), 1000)
    assert await engine.next_eligible_claim(recipient) == (1000, 1000 + IRON_LAWS.CLAIM_COOLDOWN_SECONDS)
