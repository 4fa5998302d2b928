from __future__ import annotations

from typing import Any, Optional

import pytest
from solders.pubkey import Pubkey

from core.ledger import ClaimLedger, CooldownTable
from core.resolver import AccountResolver


class FakeHttp:
    """Stands in for HttpFetcher. routes: url -> (status, body) or an exception."""

    def __init__(self, routes: Optional[dict[str, Any]] = None):
        self.routes = dict(routes or {})
        self.calls: list[str] = []
        self.headers: dict[str, Optional[dict]] = {}

    async def get_json(self, url: str, headers: Optional[dict] = None):
        self.calls.append(url)
        self.headers[url] = headers
        route = self.routes.get(url)
        if route is None:
            return 404, None
        if isinstance(route, BaseException):
            raise route
        return route

    async def close(self):
        pass


class FakeReader:
    """Account data by key, as the chain executor would return it."""

    def __init__(self, accounts: Optional[dict[Pubkey, bytes]] = None, error: Optional[Exception] = None):
        self.accounts = dict(accounts or {})
        self.error = error
        self.calls: list[Pubkey] = []

    async def get_account_data(self, account: Pubkey) -> Optional[bytes]:
        self.calls.append(account)
        if self.error is not None:
            raise self.error
        return self.accounts.get(account)


class FakeExecutor:
    """Transfer primitive + token reader. Set .error to make the next transfers raise."""

    def __init__(self, custodial: Optional[Pubkey] = None):
        self.custodial = custodial or Pubkey.new_unique()
        self.transfers: list[tuple[Pubkey, float, bool]] = []
        self.error: Optional[Exception] = None
        self.balances: dict[Pubkey, float] = {}
        self.supply = 1_000_000_000.0

    @property
    def custodial_account(self) -> Pubkey:
        return self.custodial

    async def transfer(self, recipient: Pubkey, amount_ui: float,
                       create_recipient_account: bool = False) -> str:
        self.transfers.append((recipient, amount_ui, create_recipient_account))
        if self.error is not None:
            raise self.error
        return f"sig{len(self.transfers)}"

    async def token_balance(self, owner: Pubkey) -> Optional[float]:
        return self.balances.get(owner)

    async def token_supply(self) -> float:
        return self.supply


class FrozenClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def reader() -> FakeReader:
    return FakeReader()


@pytest.fixture
def resolver(reader) -> AccountResolver:
    return AccountResolver(reader, timeout_seconds=1)


@pytest.fixture
def ledger(tmp_path) -> ClaimLedger:
    return ClaimLedger(tmp_path / "faucet_claims.json")


@pytest.fixture
def cooldowns() -> CooldownTable:
    return CooldownTable()
