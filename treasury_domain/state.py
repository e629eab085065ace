"""Single owned treasury state.

All components hold a reference to one :class:`TreasuryState` and mutate it
only through its methods. :meth:`TreasuryState.guarded` is the single
serialization point and the atomic-commit boundary: it serializes callers,
refuses re-entry, and on any exception restores the state, every enlisted
collaborator and the audit session.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .audit import AuditAction, log_audit, log_failure
from .config import TreasuryConfig
from .errors import (DispatchRequired, InsufficientFundsError, NotOwner,
                     ReentrantCall, UnknownOperation)
from .models import DeploymentMode, OperationRecord

__all__ = ["Transactional", "TreasuryState"]

_LOG = logging.getLogger(__name__)


class Transactional(Protocol):
    """Collaborator whose state can be rolled back with the treasury."""

    def checkpoint(self) -> Any:
        ...

    def rollback(self, token: Any) -> None:
        ...


class TreasuryState:
    # plain values and the owner list are captured whole; the operation arena
    # and the token book are journaled per key as they are touched
    _SCALAR_FIELDS = (
        "threshold",
        "mode",
        "liquidity_ratio",
        "next_index",
        "total_supply",
    )

    def __init__(self, config: TreasuryConfig, *, session: Session | None = None):
        config.validate()
        self.config = config
        self.owners: List[str] = list(config.owners)
        self.threshold: int = config.threshold
        self.mode = DeploymentMode(config.mode)
        self.liquidity_ratio: int = config.liquidity_ratio
        # arena keyed by index; next_index only ever grows
        self.operations: Dict[int, OperationRecord] = {}
        self.next_index: int = 0
        self.total_supply: int = 0
        self.balances: Dict[str, int] = {}
        self.session = session

        self._lock = threading.RLock()
        self._active: Optional[str] = None
        self._dispatch_depth = 0
        self._participants: List[Transactional] = []
        # prior values of keys touched by the running call; None means absent
        self._saved_records: Dict[int, Optional[OperationRecord]] = {}
        self._saved_balances: Dict[str, Optional[int]] = {}

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------
    def enlist(self, participant: Transactional) -> None:
        if participant not in self._participants:
            self._participants.append(participant)

    @property
    def active_call(self) -> Optional[str]:
        return self._active

    @contextmanager
    def reading(self) -> Iterator["TreasuryState"]:
        """Hold the state lock for a consistent multi-field read."""
        with self._lock:
            yield self

    @contextmanager
    def guarded(self, call: str, actor: str = "system") -> Iterator["TreasuryState"]:
        with self._lock:
            if self._active is not None:
                raise ReentrantCall(f"{call} re-entered while {self._active} is running")
            self._active = call
            saved = self._capture()
            tokens = [(p, p.checkpoint()) for p in self._participants]
            try:
                yield self
                if self.session is not None:
                    self.session.commit()
            except Exception as exc:
                self._restore(saved)
                for participant, token in reversed(tokens):
                    participant.rollback(token)
                _LOG.warning(
                    "treasury_call_reverted",
                    extra={"call": call, "actor": actor, "error": getattr(exc, "code", exc.__class__.__name__)},
                )
                if self.session is not None:
                    self._journal_failure(call, actor, exc)
                raise
            finally:
                self._active = None
                self._saved_records.clear()
                self._saved_balances.clear()

    def _journal_failure(self, call: str, actor: str, exc: Exception) -> None:
        self.session.rollback()
        try:
            log_failure(self.session, call=call, actor=actor, exc=exc)
            self.session.commit()
        except SQLAlchemyError:
            # the original error is what the caller sees
            self.session.rollback()
            _LOG.exception("audit_failure_not_recorded", extra={"call": call, "actor": actor})

    def _capture(self) -> Dict[str, Any]:
        self._saved_records.clear()
        self._saved_balances.clear()
        saved = {name: getattr(self, name) for name in self._SCALAR_FIELDS}
        saved["owners"] = list(self.owners)
        return saved

    def _restore(self, saved: Dict[str, Any]) -> None:
        for name, value in saved.items():
            setattr(self, name, value)
        for index, record in self._saved_records.items():
            if record is None:
                self.operations.pop(index, None)
            else:
                self.operations[index] = record
        for holder, amount in self._saved_balances.items():
            if amount is None:
                self.balances.pop(holder, None)
            else:
                self.balances[holder] = amount

    def _remember_record(self, index: int) -> None:
        if self._active is None or index in self._saved_records:
            return
        current = self.operations.get(index)
        self._saved_records[index] = None if current is None else current.model_copy(deep=True)

    def _remember_balance(self, holder: str) -> None:
        if self._active is not None and holder not in self._saved_balances:
            self._saved_balances[holder] = self.balances.get(holder)

    # ------------------------------------------------------------------
    # Dispatch gate for privileged mutations
    # ------------------------------------------------------------------
    @contextmanager
    def dispatching(self) -> Iterator[None]:
        self._dispatch_depth += 1
        try:
            yield
        finally:
            self._dispatch_depth -= 1

    def require_dispatch(self, action: str) -> None:
        if self._dispatch_depth == 0:
            raise DispatchRequired(f"{action} is only reachable through an executed operation")

    # ------------------------------------------------------------------
    # Owners / operation log
    # ------------------------------------------------------------------
    def is_owner(self, identity: str) -> bool:
        return identity in self.owners

    def require_owner(self, identity: str) -> None:
        if not self.is_owner(identity):
            raise NotOwner(f"{identity!r} is not an owner")

    def append_operation(self, record: OperationRecord) -> None:
        self._remember_record(record.index)
        self.operations[record.index] = record
        self.next_index = record.index + 1

    def operation(self, index: int) -> OperationRecord:
        try:
            return self.operations[index]
        except KeyError:
            raise UnknownOperation(f"operation {index} does not exist") from None

    def operation_for_update(self, index: int) -> OperationRecord:
        """Live record for in-place mutation; its prior value is kept for restore."""
        record = self.operation(index)
        self._remember_record(index)
        return record

    def prune_executed(self) -> int:
        """Drop executed records from memory; indices are never handed out again."""
        with self._lock:
            executed = [i for i, rec in self.operations.items() if rec.executed]
            for i in executed:
                self._remember_record(i)
                del self.operations[i]
        return len(executed)

    # ------------------------------------------------------------------
    # Backed token book
    # ------------------------------------------------------------------
    def balance_of(self, holder: str) -> int:
        return self.balances.get(holder, 0)

    def mint(self, holder: str, amount: int) -> None:
        self._remember_balance(holder)
        self.balances[holder] = self.balance_of(holder) + amount
        self.total_supply += amount

    def burn(self, holder: str, amount: int) -> None:
        held = self.balance_of(holder)
        if amount > held:
            raise InsufficientFundsError(f"{holder!r} holds {held}, cannot burn {amount}")
        self._remember_balance(holder)
        self.balances[holder] = held - amount
        self.total_supply -= amount

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------
    def audit(
        self,
        action: AuditAction,
        *,
        entity_type: str,
        entity_id: str,
        actor: str = "system",
        payload: dict | None = None,
    ) -> None:
        if self.session is None:
            return
        log_audit(
            self.session,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor=actor,
            payload=payload,
        )
