"""
WinLEW bot API Server - FastAPI operational surface

Endpoints:
- GET /health              Uptime + custodial wallet
- GET /price               Best quote from the price waterfall
- GET /price/sources       Per-source diagnostics (every source called)
- GET /claims/{address}    Faucet claim status for an address or .sol name

Read-only. Disbursement happens only through chat commands.
"""

import os
import time
import logging
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from core.distribution import DistributionEngine
from core.price_oracle import AllSourcesFailed, PriceOracle
from core.resolver import AccountResolver, DomainResolutionFailed, InvalidAddress

logger = logging.getLogger("winlew.api")


# ============================================================
# MODELS
# ============================================================

class HealthResponse(BaseModel):
    alive: bool = True
    uptime_seconds: int
    wallet: str
    faucet: dict


class PriceResponse(BaseModel):
    price_usd: float
    source: str
    observed_at: float


class SourceOutcomeResponse(BaseModel):
    source: str
    ok: bool
    price_usd: Optional[float] = None
    error: str = ""


class ClaimStatusResponse(BaseModel):
    account: str
    last_claim: Optional[int] = None
    next_eligible: Optional[int] = None
    eligible_now: bool


# ============================================================
# APP
# ============================================================

def create_app(
    oracle: PriceOracle,
    resolver: AccountResolver,
    engine: DistributionEngine,
    wallet: str,
    started_at: Optional[float] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Create the FastAPI app wired to the bot's core modules."""
    started = started_at if started_at is not None else clock()

    app = FastAPI(
        title="WinLEW bot",
        description="Price oracle and faucet status for the WinLEW community bot.",
        version="0.1.0",
    )

    cors_origins = os.getenv("CORS_ORIGINS", "*").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Heartbeat endpoint."""
        return HealthResponse(
            uptime_seconds=int(clock() - started),
            wallet=wallet,
            faucet=engine.get_status(),
        )

    @app.get("/price", response_model=PriceResponse)
    async def price():
        try:
            quote = await oracle.resolve_best()
        except AllSourcesFailed as e:
            raise HTTPException(status_code=503, detail=str(e))
        return PriceResponse(price_usd=quote.value, source=quote.source_id,
                             observed_at=quote.observed_at)

    @app.get("/price/sources", response_model=list[SourceOutcomeResponse])
    async def price_sources():
        outcomes = await oracle.resolve_all()
        return [
            SourceOutcomeResponse(
                source=o.source_id,
                ok=o.ok,
                price_usd=o.quote.value if o.ok else None,
                error=o.error,
            )
            for o in outcomes
        ]

    @app.get("/claims/{address}", response_model=ClaimStatusResponse)
    async def claim_status(address: str):
        try:
            account = await resolver.resolve(address)
        except (InvalidAddress, DomainResolutionFailed) as e:
            raise HTTPException(status_code=400, detail=str(e))
        last, next_eligible = await engine.next_eligible_claim(account)
        return ClaimStatusResponse(
            account=str(account),
            last_claim=last,
            next_eligible=next_eligible,
            eligible_now=next_eligible is None or clock() >= next_eligible,
        )

    return app
