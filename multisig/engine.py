"""Generic m-of-n authorization engine.

Owners propose payload-addressed operations, collect signatures, and any
caller may execute once the signature count reaches the threshold. Execution
dispatches the payload through a table of ``kind -> apply`` routes, so new
privileged actions only need a route, not new authorization plumbing.

Signature policy: counts are evaluated at execute time against the current
owner set and threshold. A signer that has since been removed as owner no
longer counts.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from treasury_domain.audit import AuditAction
from treasury_domain.errors import (AlreadyExecuted, InsufficientSignatures,
                                    InvalidOwner, InvalidParameterError,
                                    InvalidThreshold)
from treasury_domain.models import (AddOwner, ChangeThreshold, ExecutionResult,
                                    OperationRecord, Payload, RemoveOwner,
                                    parse_payload)
from treasury_domain.state import TreasuryState
from treasury_observability.metrics import operations_total

__all__ = ["AuthorizationEngine"]

_LOG = logging.getLogger(__name__)

ApplyFn = Callable[[Any], Any]
ValidateFn = Callable[[Any], None]


@dataclass(slots=True)
class _Route:
    apply: ApplyFn
    validate: Optional[ValidateFn] = None


class AuthorizationEngine:
    """Owner set, threshold and the append-only operation log."""

    def __init__(self, state: TreasuryState):
        self.state = state
        self._routes: Dict[str, _Route] = {}
        self.register("add_owner", self._apply_add_owner, self._validate_add_owner)
        self.register("remove_owner", self._apply_remove_owner, self._validate_remove_owner)
        self.register("change_threshold", self._apply_change_threshold, self._validate_threshold)

    # ------------------------------------------------------------------
    def register(self, kind: str, apply: ApplyFn, validate: ValidateFn | None = None) -> None:
        """Add (or replace) the dispatch route for payloads of *kind*."""
        self._routes[kind] = _Route(apply=apply, validate=validate)

    def _route(self, kind: str) -> _Route:
        try:
            return self._routes[kind]
        except KeyError:
            raise InvalidParameterError(f"no handler registered for {kind!r}") from None

    @property
    def owners(self) -> List[str]:
        return list(self.state.owners)

    @property
    def threshold(self) -> int:
        return self.state.threshold

    # ------------------------------------------------------------------
    # propose / sign / execute
    # ------------------------------------------------------------------
    def propose(self, proposer: str, payload: Union[Payload, Dict[str, Any]]) -> int:
        """Record a new operation and return its index.

        The proposer's own approval is recorded with the proposal.
        """
        if isinstance(payload, dict):
            try:
                payload = parse_payload(payload)
            except ValidationError as exc:
                raise InvalidParameterError(f"malformed payload: {exc.errors()[:1]}") from exc

        with self.state.guarded("propose", proposer):
            self.state.require_owner(proposer)
            route = self._route(payload.kind)
            if route.validate is not None:
                route.validate(payload)
            index = self.state.next_index
            record = OperationRecord(
                index=index, payload=payload, proposer=proposer, signers=[proposer]
            )
            self.state.append_operation(record)
            self.state.audit(
                AuditAction.OPERATION_PROPOSED,
                entity_type="operation",
                entity_id=str(index),
                actor=proposer,
                payload=payload.model_dump(mode="json"),
            )

        operations_total.labels(kind=payload.kind, event="proposed").inc()
        _LOG.info(
            "operation_proposed",
            extra={"operation": index, "kind": payload.kind, "actor": proposer},
        )
        return index

    def sign(self, signer: str, index: int) -> OperationRecord:
        """Add *signer* to the operation's signer set; re-signing is a no-op."""
        with self.state.guarded("sign", signer):
            self.state.require_owner(signer)
            record = self.state.operation_for_update(index)
            if record.executed:
                raise AlreadyExecuted(f"operation {index} already executed")
            added = signer not in record.signers
            if added:
                record.signers.append(signer)
                self.state.audit(
                    AuditAction.OPERATION_SIGNED,
                    entity_type="operation",
                    entity_id=str(index),
                    actor=signer,
                    payload={"signatures": len(record.signers)},
                )
            view = record.model_copy(deep=True)

        if added:
            operations_total.labels(kind=view.kind, event="signed").inc()
            _LOG.info(
                "operation_signed",
                extra={"operation": index, "kind": view.kind, "actor": signer},
            )
        return view

    def execute(self, caller: str, index: int) -> ExecutionResult:
        """Apply the operation's payload exactly once.

        A failure inside the dispatched effect reverts the whole call, the
        executed flag included, so the same signatures can be reused on retry.
        """
        kind = "unknown"
        try:
            with self.state.guarded("execute", caller):
                record = self.state.operation_for_update(index)
                kind = record.kind
                if record.executed:
                    raise AlreadyExecuted(f"operation {index} already executed")
                count = self._effective_count(record)
                if count < self.state.threshold:
                    raise InsufficientSignatures(
                        f"operation {index} has {count} of {self.state.threshold} signatures"
                    )
                # flag first: a re-entrant execute sees the operation as spent
                record.executed = True
                record.executed_at = datetime.now(timezone.utc)
                route = self._route(kind)
                with self.state.dispatching():
                    outcome = route.apply(record.payload)
                result = outcome.model_dump(mode="json") if isinstance(outcome, BaseModel) else outcome
                self.state.audit(
                    AuditAction.OPERATION_EXECUTED,
                    entity_type="operation",
                    entity_id=str(index),
                    actor=caller,
                    payload={"kind": kind, "signers": list(record.signers), "result": result},
                )
        except Exception:
            operations_total.labels(kind=kind, event="execute_failed").inc()
            raise

        operations_total.labels(kind=kind, event="executed").inc()
        _LOG.info(
            "operation_executed",
            extra={"operation": index, "kind": kind, "actor": caller},
        )
        return ExecutionResult(index=index, kind=kind, executed_by=caller, result=result)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def operation(self, index: int) -> OperationRecord:
        with self.state.reading():
            return self.state.operation(index).model_copy(deep=True)

    def operations(self, *, pending_only: bool = False) -> List[OperationRecord]:
        with self.state.reading():
            records = sorted(self.state.operations.values(), key=lambda r: r.index)
            if pending_only:
                records = [r for r in records if not r.executed]
            return [r.model_copy(deep=True) for r in records]

    def signature_count(self, index: int) -> int:
        with self.state.reading():
            return self._effective_count(self.state.operation(index))

    def is_executable(self, index: int) -> bool:
        with self.state.reading():
            record = self.state.operation(index)
            return not record.executed and self._effective_count(record) >= self.state.threshold

    def _effective_count(self, record: OperationRecord) -> int:
        return sum(1 for s in record.signers if self.state.is_owner(s))

    # ------------------------------------------------------------------
    # Owner / threshold routes
    # ------------------------------------------------------------------
    def _validate_add_owner(self, payload: AddOwner) -> None:
        if not payload.owner:
            raise InvalidOwner("owner identity must be non-empty")
        if self.state.is_owner(payload.owner):
            raise InvalidOwner(f"{payload.owner!r} is already an owner")

    def _apply_add_owner(self, payload: AddOwner) -> Dict[str, Any]:
        self._validate_add_owner(payload)
        self.state.owners.append(payload.owner)
        self.state.audit(
            AuditAction.OWNERS_CHANGED,
            entity_type="owners",
            entity_id=payload.owner,
            payload={"added": payload.owner, "owners": list(self.state.owners)},
        )
        return {"owners": list(self.state.owners)}

    def _validate_remove_owner(self, payload: RemoveOwner) -> None:
        if not self.state.is_owner(payload.owner):
            raise InvalidOwner(f"{payload.owner!r} is not an owner")
        remaining = len(self.state.owners) - 1
        if remaining < 1:
            raise InvalidOwner("cannot remove the last owner")
        if remaining < self.state.threshold:
            raise InvalidThreshold(
                f"removing {payload.owner!r} leaves {remaining} owners below threshold {self.state.threshold}"
            )

    def _apply_remove_owner(self, payload: RemoveOwner) -> Dict[str, Any]:
        self._validate_remove_owner(payload)
        self.state.owners.remove(payload.owner)
        self.state.audit(
            AuditAction.OWNERS_CHANGED,
            entity_type="owners",
            entity_id=payload.owner,
            payload={"removed": payload.owner, "owners": list(self.state.owners)},
        )
        return {"owners": list(self.state.owners)}

    def _validate_threshold(self, payload: ChangeThreshold) -> None:
        if not 1 <= payload.threshold <= len(self.state.owners):
            raise InvalidThreshold(
                f"threshold {payload.threshold} outside [1, {len(self.state.owners)}]"
            )

    def _apply_change_threshold(self, payload: ChangeThreshold) -> Dict[str, Any]:
        self._validate_threshold(payload)
        previous = self.state.threshold
        self.state.threshold = payload.threshold
        self.state.audit(
            AuditAction.THRESHOLD_CHANGED,
            entity_type="threshold",
            entity_id=str(payload.threshold),
            payload={"previous": previous, "threshold": payload.threshold},
        )
        return {"threshold": payload.threshold}
