"""Data models for the treasury: payload union, operation records, receipts."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

__all__ = [
    "DeploymentMode",
    "SetMode",
    "SetLiquidityRatio",
    "AddOwner",
    "RemoveOwner",
    "ChangeThreshold",
    "Rebalance",
    "Payload",
    "parse_payload",
    "OperationRecord",
    "BuyReceipt",
    "SellReceipt",
    "RebalancePlan",
    "RebalanceReceipt",
    "ExecutionResult",
    "ReserveView",
    "TreasurySnapshot",
]


class DeploymentMode(str, Enum):
    LIQUIDITY_VENUE = "liquidity_venue"
    LENDING_MARKET = "lending_market"


# ---------------------------------------------------------------------------
# Privileged operation payloads (tagged on ``kind``)
# ---------------------------------------------------------------------------


class SetMode(BaseModel):
    kind: Literal["set_mode"] = "set_mode"
    mode: DeploymentMode


class SetLiquidityRatio(BaseModel):
    # range is checked by the rebalancer so callers get InvalidRatio
    kind: Literal["set_liquidity_ratio"] = "set_liquidity_ratio"
    percent: int


class AddOwner(BaseModel):
    kind: Literal["add_owner"] = "add_owner"
    owner: str


class RemoveOwner(BaseModel):
    kind: Literal["remove_owner"] = "remove_owner"
    owner: str


class ChangeThreshold(BaseModel):
    kind: Literal["change_threshold"] = "change_threshold"
    threshold: int


class Rebalance(BaseModel):
    kind: Literal["rebalance"] = "rebalance"


Payload = Annotated[
    Union[SetMode, SetLiquidityRatio, AddOwner, RemoveOwner, ChangeThreshold, Rebalance],
    Field(discriminator="kind"),
]

_PAYLOAD_ADAPTER: TypeAdapter = TypeAdapter(Payload)


def parse_payload(data: Dict[str, Any]) -> Payload:
    """Validate a raw ``{"kind": ..., ...}`` mapping into a payload model."""
    return _PAYLOAD_ADAPTER.validate_python(data)


# ---------------------------------------------------------------------------
# Operation log
# ---------------------------------------------------------------------------


class OperationRecord(BaseModel):
    """One entry of the append-only operation log."""

    index: int
    payload: Payload
    proposer: str
    signers: List[str] = Field(default_factory=list)
    executed: bool = False
    proposed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    executed_at: Optional[datetime] = None

    @property
    def kind(self) -> str:
        return self.payload.kind


# ---------------------------------------------------------------------------
# Receipts (realized amounts, all in smallest units)
# ---------------------------------------------------------------------------


class BuyReceipt(BaseModel):
    buyer: str
    path: Literal["reserve", "token", "native"]
    asset_in: str
    amount_in: int
    primary_in: int
    minted: int
    retained: int = 0


class SellReceipt(BaseModel):
    seller: str
    burned: int
    payout: int
    retained: int


class RebalancePlan(BaseModel):
    mode: DeploymentMode
    liquidity_ratio: int
    total_reserve: int
    liquid_target: int
    withdraw: int
    deposit: int


class RebalanceReceipt(BaseModel):
    mode: DeploymentMode
    total_reserve: int
    withdrawn: int
    deposited: int
    liquid: int
    deployed: int


class ExecutionResult(BaseModel):
    index: int
    kind: str
    executed_by: str
    result: Optional[Dict[str, Any]] = None


class ReserveView(BaseModel):
    primary_asset: str
    liquid: int
    lending: int
    secondary: Dict[str, int] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.liquid + self.lending


class TreasurySnapshot(BaseModel):
    owners: List[str]
    threshold: int
    next_index: int
    pending: List[int]
    mode: DeploymentMode
    liquidity_ratio: int
    total_supply: int
    reserves: ReserveView
