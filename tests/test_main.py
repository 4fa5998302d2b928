from __future__ import annotations

import asyncio
import json
import logging

import pytest
from solders.keypair import Keypair

import main
from main import _SecretMaskingFilter


def _record(msg: str, *args) -> logging.LogRecord:
    return logging.LogRecord("winlew.test", logging.INFO, __file__, 1, msg, args or None, None)


def test_transaction_signature_stays_readable():
    signature = str(Keypair().sign_message(b"hello"))
    record = _record(f"Transfer {signature} sent but claim NOT recorded for X: disk full")

    _SecretMaskingFilter().filter(record)

    assert signature in record.getMessage()


def test_signature_in_args_stays_readable():
    signature = str(Keypair().sign_message(b"hello"))
    record = _record("Sent tx=%s", signature)

    _SecretMaskingFilter().filter(record)

    assert record.getMessage() == f"Sent tx={signature}"


def test_base58_keypair_is_redacted():
    secret = str(Keypair())
    record = _record("loaded signer %s", secret)

    _SecretMaskingFilter().filter(record)

    assert secret not in record.getMessage()
    assert "[REDACTED]" in record.getMessage()


def test_json_byte_array_is_redacted():
    raw = json.dumps(list(bytes(Keypair())))
    record = _record(f"keyfile contents: {raw}")

    _SecretMaskingFilter().filter(record)

    assert record.getMessage() == "keyfile contents: [REDACTED]"


def test_public_key_is_untouched():
    pubkey = str(Keypair().pubkey())
    record = _record(f"Custodial wallet: {pubkey}")

    _SecretMaskingFilter().filter(record)

    assert record.getMessage() == f"Custodial wallet: {pubkey}"


@pytest.fixture
def restarts(monkeypatch):
    calls = []
    monkeypatch.setattr(main, "_request_restart", lambda: calls.append(True))
    return calls


async def test_discord_crash_requests_restart(restarts, caplog):
    async def bad_login():
        raise RuntimeError("Improper token has been passed.")

    task = asyncio.create_task(bad_login())
    with pytest.raises(RuntimeError):
        await task

    with caplog.at_level(logging.CRITICAL, logger="winlew.main"):
        main._on_discord_exit(task)

    assert restarts == [True]
    assert "Improper token" in caplog.text


async def test_cancelled_discord_task_does_not_restart(restarts):
    task = asyncio.create_task(asyncio.sleep(10))
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    main._on_discord_exit(task)

    assert restarts == []
