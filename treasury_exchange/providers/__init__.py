"""Collaborator adapters (ledgers, swap venue, lending market)."""
from .base import LendingMarket, SwapVenue, TokenLedger, call_external
from .memory import InMemoryLedger, MockLendingMarket, MockSwapVenue

__all__ = [
    "TokenLedger",
    "SwapVenue",
    "LendingMarket",
    "call_external",
    "InMemoryLedger",
    "MockSwapVenue",
    "MockLendingMarket",
]
