"""Backed-token issuance and redemption."""
from .service import TreasuryExchange

__all__ = ["TreasuryExchange"]
