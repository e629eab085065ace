"""Multisig authorization package."""
from .engine import AuthorizationEngine

__all__ = ["AuthorizationEngine"]
