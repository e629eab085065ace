"""Error taxonomy shared by the treasury components.

Every error aborts the whole call: the guarded transaction in
:mod:`treasury_domain.state` restores the treasury before the exception
reaches the caller. ``code`` is stable and is what the HTTP layer and the
audit journal record.
"""
from __future__ import annotations

__all__ = [
    "TreasuryError",
    "AuthorizationError",
    "NotOwner",
    "UnknownOperation",
    "AlreadyExecuted",
    "InsufficientSignatures",
    "ReentrantCall",
    "DispatchRequired",
    "SlippageError",
    "SlippageExceeded",
    "InsufficientFundsError",
    "InsufficientReserve",
    "InvalidParameterError",
    "InvalidRatio",
    "InvalidOwner",
    "InvalidThreshold",
    "UnsupportedAsset",
    "ExternalCallError",
]


class TreasuryError(Exception):
    code = "treasury_error"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class AuthorizationError(TreasuryError):
    code = "authorization_error"


class NotOwner(AuthorizationError):
    code = "not_owner"


class UnknownOperation(AuthorizationError):
    code = "unknown_operation"


class AlreadyExecuted(AuthorizationError):
    code = "already_executed"


class InsufficientSignatures(AuthorizationError):
    code = "insufficient_signatures"


class ReentrantCall(AuthorizationError):
    code = "reentrant_call"


class DispatchRequired(AuthorizationError):
    """Privileged mutation attempted outside an executed operation."""

    code = "dispatch_required"


# ---------------------------------------------------------------------------
# Value movement
# ---------------------------------------------------------------------------


class SlippageError(TreasuryError):
    code = "slippage_error"


class SlippageExceeded(SlippageError):
    code = "slippage_exceeded"


class InsufficientFundsError(TreasuryError):
    code = "insufficient_funds"


class InsufficientReserve(InsufficientFundsError):
    code = "insufficient_reserve"


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------


class InvalidParameterError(TreasuryError):
    code = "invalid_parameter"


class InvalidRatio(InvalidParameterError):
    code = "invalid_ratio"


class InvalidOwner(InvalidParameterError):
    code = "invalid_owner"


class InvalidThreshold(InvalidParameterError):
    code = "invalid_threshold"


class UnsupportedAsset(InvalidParameterError):
    code = "unsupported_asset"


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class ExternalCallError(TreasuryError):
    """Swap venue / lending market / ledger call failed or looked implausible."""

    code = "external_call_error"
