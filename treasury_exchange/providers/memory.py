"""In-memory collaborator adapters.

Simulates ledgers, a fixed-rate swap venue and a lending market without any
network access. Failures can be injected per instance or via the
``MOCK_VENUE_FAIL`` ("swap") and ``MOCK_LENDING_FAIL`` (one of: "deposit",
"withdraw") env variables. Ledgers and the lending market support
``checkpoint``/``rollback`` so they revert together with the treasury.
"""

from __future__ import annotations

import os
from typing import Dict, Mapping, Optional, Tuple

from treasury_domain.errors import SlippageExceeded

from .base import LendingMarket, SwapVenue, TokenLedger

__all__ = ["LedgerError", "InMemoryLedger", "MockSwapVenue", "MockLendingMarket"]


class LedgerError(RuntimeError):
    pass


class InMemoryLedger(TokenLedger):
    """Balance/allowance book with an optional fee deducted on every transfer."""

    def __init__(
        self,
        symbol: str,
        decimals: int = 18,
        *,
        transfer_fee_bps: int = 0,
        fee_sink: str = "fee_sink",
    ) -> None:
        self.symbol = symbol
        self.decimals = decimals
        self.transfer_fee_bps = transfer_fee_bps
        self.fee_sink = fee_sink
        self.balances: Dict[str, int] = {}
        self.allowances: Dict[Tuple[str, str], int] = {}

    def credit(self, holder: str, amount: int) -> None:
        """Faucet: create *amount* out of thin air for *holder*."""
        self.balances[holder] = self.balances.get(holder, 0) + amount

    def balance_of(self, holder: str) -> int:
        return self.balances.get(holder, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise LedgerError("negative allowance")
        self.allowances[(owner, spender)] = amount

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        self._move(sender, recipient, amount)

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> None:
        allowed = self.allowance(owner, spender)
        if amount > allowed:
            raise LedgerError(f"{self.symbol}: allowance {allowed} < {amount}")
        self.allowances[(owner, spender)] = allowed - amount
        self._move(owner, recipient, amount)

    def _move(self, src: str, dst: str, amount: int) -> None:
        if amount < 0:
            raise LedgerError("negative amount")
        held = self.balance_of(src)
        if held < amount:
            raise LedgerError(f"{self.symbol}: {src} holds {held} < {amount}")
        fee = amount * self.transfer_fee_bps // 10_000
        self.balances[src] = held - amount
        self.balances[dst] = self.balance_of(dst) + amount - fee
        if fee:
            self.balances[self.fee_sink] = self.balance_of(self.fee_sink) + fee

    # transactional participant -----------------------------------------
    def checkpoint(self):
        return dict(self.balances), dict(self.allowances)

    def rollback(self, token) -> None:
        balances, allowances = token
        self.balances = dict(balances)
        self.allowances = dict(allowances)


class MockSwapVenue(SwapVenue):
    """Fixed-rate venue: ``out = amount_in * num // den`` minus ``fee_bps``.

    The venue pays out of its own balance on the output ledger, so it must be
    funded with :meth:`InMemoryLedger.credit` first.
    """

    def __init__(
        self,
        ledgers: Mapping[str, InMemoryLedger],
        *,
        address: str = "swap_venue",
        fee_bps: int = 0,
        fail_on: Optional[str] = None,
    ) -> None:
        self.ledgers = ledgers
        self.address = address
        self.fee_bps = fee_bps
        self.fail_on = fail_on if fail_on is not None else os.getenv("MOCK_VENUE_FAIL", "")
        self.rates: Dict[Tuple[str, str], Tuple[int, int]] = {}

    def set_rate(self, token_in: str, token_out: str, numerator: int, denominator: int = 1) -> None:
        self.rates[(token_in, token_out)] = (numerator, denominator)

    def quote(self, token_in: str, token_out: str, amount_in: int) -> int:
        try:
            num, den = self.rates[(token_in, token_out)]
        except KeyError:
            raise LedgerError(f"no pool for {token_in}->{token_out}") from None
        gross = amount_in * num // den
        return gross - gross * self.fee_bps // 10_000

    def swap_exact_input(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_out: int,
        payer: str,
        recipient: str,
    ) -> int:
        if self.fail_on == "swap":
            raise RuntimeError("mock venue forced failure for swap")
        out = self.quote(token_in, token_out, amount_in)
        if out < min_out:
            raise SlippageExceeded(f"venue output {out} < min_out {min_out}")
        self.ledgers[token_in].transfer_from(self.address, payer, self.address, amount_in)
        self.ledgers[token_out].transfer(self.address, recipient, out)
        return out


class MockLendingMarket(LendingMarket):
    """Deposit book; positions are tracked per ``(asset, holder)``."""

    def __init__(
        self,
        ledgers: Mapping[str, InMemoryLedger],
        *,
        address: str = "lending_market",
        fail_on: Optional[str] = None,
    ) -> None:
        self.ledgers = ledgers
        self.address = address
        self.fail_on = fail_on if fail_on is not None else os.getenv("MOCK_LENDING_FAIL", "")
        self.positions: Dict[Tuple[str, str], int] = {}

    def _maybe_fail(self, action: str) -> None:
        if self.fail_on == action:
            raise RuntimeError(f"mock lending market forced failure for {action}")

    def deposit(self, asset: str, amount: int, on_behalf_of: str) -> int:
        self._maybe_fail("deposit")
        ledger = self.ledgers[asset]
        before = ledger.balance_of(self.address)
        ledger.transfer_from(self.address, on_behalf_of, self.address, amount)
        # credit what arrived so every position stays backed on the ledger
        received = ledger.balance_of(self.address) - before
        key = (asset, on_behalf_of)
        self.positions[key] = self.positions.get(key, 0) + received
        return received

    def withdraw(self, asset: str, amount: int, to: str) -> int:
        self._maybe_fail("withdraw")
        key = (asset, to)
        held = self.positions.get(key, 0)
        if amount > held:
            raise LedgerError(f"position {held} < {amount}")
        self.positions[key] = held - amount
        self.ledgers[asset].transfer(self.address, to, amount)
        return amount

    def position(self, asset: str, holder: str) -> int:
        return self.positions.get((asset, holder), 0)

    def accrue(self, asset: str, holder: str, amount: int) -> None:
        """Simulate interest: grow the position and back it on the ledger."""
        key = (asset, holder)
        self.positions[key] = self.positions.get(key, 0) + amount
        self.ledgers[asset].credit(self.address, amount)

    # transactional participant -----------------------------------------
    def checkpoint(self):
        return dict(self.positions)

    def rollback(self, token) -> None:
        self.positions = dict(token)
