"""FastAPI router exposing the treasury surface."""
from __future__ import annotations

import os

from common.logging import configure_logging

configure_logging(os.getenv("LOG_FORMAT", "json"), service_name="treasury")

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from pydantic import BaseModel, Field

from common.auth import require_identity
from treasury_domain.audit import get_session
from treasury_domain.config import load_config
from treasury_domain.errors import (AlreadyExecuted, AuthorizationError,
                                    ExternalCallError, InsufficientFundsError,
                                    InsufficientSignatures,
                                    InvalidParameterError, ReentrantCall,
                                    SlippageError, TreasuryError,
                                    UnknownOperation)
from treasury_domain.models import (BuyReceipt, ExecutionResult,
                                    OperationRecord, SellReceipt,
                                    TreasurySnapshot)

from .engine import Treasury, in_memory_treasury

# ---------------------------------------------------------------------------
# Dependency injection helpers
# ---------------------------------------------------------------------------

_TREASURY: Optional[Treasury] = None


def get_treasury() -> Treasury:  # pragma: no cover
    """Process-wide treasury over in-memory collaborators; tests override."""
    global _TREASURY
    if _TREASURY is None:
        _TREASURY = in_memory_treasury(load_config(), session=get_session())
    return _TREASURY


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class ReserveBuyRequest(BaseModel):
    amount: int = Field(..., gt=0)
    min_out: int = Field(default=0, ge=0)


class TokenBuyRequest(BaseModel):
    amount: int = Field(..., gt=0)
    token: str = Field(..., min_length=1)
    min_out: int = Field(default=0, ge=0)


class NativeBuyRequest(BaseModel):
    value: int = Field(..., gt=0)
    min_out: int = Field(default=0, ge=0)


class SellRequest(BaseModel):
    amount: int = Field(..., gt=0)


class ProposeRequest(BaseModel):
    payload: Dict[str, Any]


class ProposeResponse(BaseModel):
    index: int


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_STATUS_MAP = (
    (UnknownOperation, status.HTTP_404_NOT_FOUND),
    ((AlreadyExecuted, InsufficientSignatures, ReentrantCall), status.HTTP_409_CONFLICT),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    ((SlippageError, InsufficientFundsError), status.HTTP_409_CONFLICT),
    (InvalidParameterError, status.HTTP_400_BAD_REQUEST),
    (ExternalCallError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: TreasuryError) -> int:
    for classes, code in _STATUS_MAP:
        if isinstance(exc, classes):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _treasury_error_handler(_: Request, exc: TreasuryError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={"detail": exc.code, "message": str(exc)},
    )


# ---------------------------------------------------------------------------
# Router definition
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api/treasury/v1", tags=["treasury"])


@router.post("/buy/reserve", response_model=BuyReceipt, status_code=status.HTTP_201_CREATED)
def buy_reserve(
    req: ReserveBuyRequest,
    identity: str = Depends(require_identity),
    treasury: Treasury = Depends(get_treasury),
):
    return treasury.buy_for_primary_reserve(identity, req.amount, req.min_out)


@router.post("/buy/token", response_model=BuyReceipt, status_code=status.HTTP_201_CREATED)
def buy_token(
    req: TokenBuyRequest,
    identity: str = Depends(require_identity),
    treasury: Treasury = Depends(get_treasury),
):
    return treasury.buy_for_token(identity, req.amount, req.token, req.min_out)


@router.post("/buy/native", response_model=BuyReceipt, status_code=status.HTTP_201_CREATED)
def buy_native(
    req: NativeBuyRequest,
    identity: str = Depends(require_identity),
    treasury: Treasury = Depends(get_treasury),
):
    return treasury.buy_for_native(identity, req.value, req.min_out)


@router.post("/sell", response_model=SellReceipt, status_code=status.HTTP_201_CREATED)
def sell(
    req: SellRequest,
    identity: str = Depends(require_identity),
    treasury: Treasury = Depends(get_treasury),
):
    return treasury.sell(identity, req.amount)


@router.post("/operations", response_model=ProposeResponse, status_code=status.HTTP_201_CREATED)
def propose(
    req: ProposeRequest,
    identity: str = Depends(require_identity),
    treasury: Treasury = Depends(get_treasury),
):
    return ProposeResponse(index=treasury.propose(identity, req.payload))


@router.post("/operations/{index}/sign", response_model=OperationRecord)
def sign(
    index: int,
    identity: str = Depends(require_identity),
    treasury: Treasury = Depends(get_treasury),
):
    return treasury.sign(identity, index)


@router.post("/operations/{index}/execute", response_model=ExecutionResult)
def execute(
    index: int,
    identity: str = Depends(require_identity),
    treasury: Treasury = Depends(get_treasury),
):
    return treasury.execute(identity, index)


@router.get("/operations", response_model=List[OperationRecord])
def list_operations(
    pending_only: bool = False,
    _: str = Depends(require_identity),
    treasury: Treasury = Depends(get_treasury),
):
    return treasury.engine.operations(pending_only=pending_only)


@router.get("/operations/{index}", response_model=OperationRecord)
def get_operation(
    index: int,
    _: str = Depends(require_identity),
    treasury: Treasury = Depends(get_treasury),
):
    return treasury.engine.operation(index)


@router.get("/state", response_model=TreasurySnapshot)
def treasury_state(
    _: str = Depends(require_identity),
    treasury: Treasury = Depends(get_treasury),
):
    return treasury.snapshot()


# ---------------------------------------------------------------------------
# ASGI app factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    app = FastAPI(title="Treasury API")
    app.include_router(router)
    app.add_exception_handler(TreasuryError, _treasury_error_handler)
    # ensure /metrics mounted exactly once
    if not any(getattr(r, "path", None) == "/metrics" for r in app.routes):
        app.mount("/metrics", make_asgi_app())

    @app.get("/healthz", tags=["health"])
    def healthz():
        return {"ok": True}

    return app


app = create_app()
