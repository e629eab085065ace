"""Collaborator interface definitions.

Ledgers, the swap venue and the lending market are external to the
treasury; adapters implement these protocols so they can be swapped between
the in-memory mocks and the HTTP clients.
"""

from __future__ import annotations

import time
from typing import Callable, Protocol, TypeVar

from treasury_domain.errors import ExternalCallError, TreasuryError
from treasury_observability.metrics import (external_call_failures_total,
                                            external_call_latency_seconds)

__all__ = ["TokenLedger", "SwapVenue", "LendingMarket", "call_external"]

T = TypeVar("T")


class TokenLedger(Protocol):
    """Fungible-asset ledger (balance / transfer / approve semantics).

    Ledgers may deduct a transfer fee, so a recipient can be credited less
    than the nominal amount.
    """

    symbol: str

    def balance_of(self, holder: str) -> int:
        ...

    def allowance(self, owner: str, spender: str) -> int:
        ...

    def approve(self, owner: str, spender: str, amount: int) -> None:
        ...

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        ...

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> None:
        ...


class SwapVenue(Protocol):
    """Asset-for-asset exchange. Returns the realized output amount."""

    address: str

    def swap_exact_input(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_out: int,
        payer: str,
        recipient: str,
    ) -> int:
        ...


class LendingMarket(Protocol):
    """Yield-bearing deposit venue. Calls return the confirmed amount."""

    address: str

    def deposit(self, asset: str, amount: int, on_behalf_of: str) -> int:
        ...

    def withdraw(self, asset: str, amount: int, to: str) -> int:
        ...

    def position(self, asset: str, holder: str) -> int:
        ...


def call_external(collaborator: str, action: str, fn: Callable[..., T], *args, **kwargs) -> T:
    """Run a collaborator call with latency histogram and error wrapping.

    Treasury errors pass through unchanged; anything else becomes
    :class:`ExternalCallError`.
    """
    t0 = time.perf_counter()
    try:
        return fn(*args, **kwargs)
    except TreasuryError:
        external_call_failures_total.labels(collaborator=collaborator, action=action).inc()
        raise
    except Exception as exc:
        external_call_failures_total.labels(collaborator=collaborator, action=action).inc()
        raise ExternalCallError(f"{collaborator}.{action} failed: {exc}") from exc
    finally:
        external_call_latency_seconds.labels(
            collaborator=collaborator, action=action
        ).observe(time.perf_counter() - t0)
