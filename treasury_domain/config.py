"""Treasury configuration.

Defaults are merged with an optional JSON file (``TREASURY_CONFIG``, default
``treasury.json`` next to this module) and a handful of env overrides.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from .errors import InvalidOwner, InvalidParameterError, InvalidRatio, InvalidThreshold

__all__ = ["TreasuryConfig", "load_config", "DEFAULT_LIQUIDITY_RATIO"]

DEFAULT_LIQUIDITY_RATIO = 50

_DEFAULTS: Dict = {
    "owners": [],
    "threshold": 1,
    "treasury_address": "treasury",
    "primary_asset": "USDT",
    "primary_decimals": 6,
    "backed_decimals": 18,
    "native_asset": "NATIVE",
    "liquidity_ratio": DEFAULT_LIQUIDITY_RATIO,
    "mode": "liquidity_venue",
}

_CONFIG_PATH = Path(__file__).with_name("treasury.json")


@dataclass(slots=True)
class TreasuryConfig:
    """Deployment parameters for one treasury instance.

    Attributes
    ----------
    owners
        Initial owner set (order preserved, no duplicates).
    threshold
        Initial number of distinct owner signatures required per operation.
    primary_decimals / backed_decimals
        Smallest-unit precision of the reserve and backed tokens. The
        backed token must be at least as precise as the reserve.
    """

    owners: List[str] = field(default_factory=list)
    threshold: int = 1
    treasury_address: str = "treasury"
    primary_asset: str = "USDT"
    primary_decimals: int = 6
    backed_decimals: int = 18
    native_asset: str = "NATIVE"
    liquidity_ratio: int = DEFAULT_LIQUIDITY_RATIO
    mode: str = "liquidity_venue"

    @property
    def conversion_factor(self) -> int:
        return 10 ** (self.backed_decimals - self.primary_decimals)

    def validate(self) -> "TreasuryConfig":
        if not self.owners:
            raise InvalidOwner("owner set must not be empty")
        if any(not o for o in self.owners):
            raise InvalidOwner("owner identity must be non-empty")
        if len(set(self.owners)) != len(self.owners):
            raise InvalidOwner("duplicate owner")
        if not 1 <= self.threshold <= len(self.owners):
            raise InvalidThreshold(
                f"threshold {self.threshold} outside [1, {len(self.owners)}]"
            )
        if not 0 <= self.liquidity_ratio <= 100:
            raise InvalidRatio(f"liquidity ratio {self.liquidity_ratio} outside [0, 100]")
        if self.backed_decimals < self.primary_decimals:
            raise InvalidParameterError("backed token must not be less precise than reserve")
        if self.mode not in ("liquidity_venue", "lending_market"):
            raise InvalidParameterError(f"unknown deployment mode {self.mode!r}")
        return self


def _load_file(path: Path) -> Dict:
    try:
        with path.open() as fp:
            return json.load(fp)
    except FileNotFoundError:
        return {}


def _env_overrides() -> Dict:
    out: Dict = {}
    owners = os.getenv("TREASURY_OWNERS")
    if owners:
        out["owners"] = [o.strip() for o in owners.split(",") if o.strip()]
    threshold = os.getenv("TREASURY_THRESHOLD")
    if threshold:
        out["threshold"] = int(threshold)
    ratio = os.getenv("TREASURY_LIQUIDITY_RATIO")
    if ratio:
        out["liquidity_ratio"] = int(ratio)
    return out


def load_config(path: str | Path | None = None) -> TreasuryConfig:
    """Return validated config: defaults < JSON file < env."""
    cfg_path = Path(path or os.getenv("TREASURY_CONFIG", str(_CONFIG_PATH)))
    data = {**_DEFAULTS, **_load_file(cfg_path), **_env_overrides()}
    known = {k: v for k, v in data.items() if k in _DEFAULTS}
    return TreasuryConfig(**known).validate()
