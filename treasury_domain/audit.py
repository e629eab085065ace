"""Audit journal for treasury calls.

Every guarded call appends rows here; the rows share the call's transaction
so a reverted call leaves only its failure row behind.
"""
from __future__ import annotations

import os
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import Column
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON as SA_JSON
from sqlmodel import Field, Session, SQLModel, create_engine, select

__all__ = [
    "AuditAction",
    "AuditJournal",
    "log_audit",
    "log_failure",
    "recent_entries",
    "init_db",
    "get_session",
]

DATABASE_URL = os.getenv("TREASURY_DB_URL", "sqlite:///./treasury_audit.db")
engine = create_engine(
    DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)


class AuditAction(str, Enum):
    OPERATION_PROPOSED = "operation_proposed"
    OPERATION_SIGNED = "operation_signed"
    OPERATION_EXECUTED = "operation_executed"
    BUY = "buy"
    SELL = "sell"
    MODE_CHANGED = "mode_changed"
    RATIO_CHANGED = "ratio_changed"
    OWNERS_CHANGED = "owners_changed"
    THRESHOLD_CHANGED = "threshold_changed"
    REBALANCED = "rebalanced"
    CALL_FAILED = "call_failed"


class AuditJournal(SQLModel, table=True):
    __tablename__ = "treasury_audit_journal"
    __table_args__ = {"extend_existing": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    event_ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    actor: str = Field(default="system", index=True)
    action: str = Field(index=True)
    entity_type: str = Field(index=True)
    entity_id: str = Field(index=True)
    payload: Optional[dict] = Field(
        default=None, sa_column=Column(SA_JSON().with_variant(JSONB, "postgresql"))
    )
    # error normalization
    error_code: Optional[str] = None
    error_class: Optional[str] = None
    error_msg: Optional[str] = None


def log_audit(
    session: Session,
    *,
    action: AuditAction,
    entity_type: str,
    entity_id: str,
    actor: str = "system",
    payload: dict | None = None,
) -> None:
    """Persist immutable audit row."""
    row = AuditJournal(
        action=action.value,
        entity_type=entity_type,
        entity_id=entity_id,
        actor=actor,
        payload=payload or {},
    )
    session.add(row)
    # don't commit; caller responsible to maintain transaction atomicity


def log_failure(
    session: Session,
    *,
    call: str,
    actor: str,
    exc: BaseException,
) -> None:
    """Record a reverted call with its normalized error."""
    row = AuditJournal(
        action=AuditAction.CALL_FAILED.value,
        entity_type="call",
        entity_id=call,
        actor=actor,
        payload={},
        error_code=getattr(exc, "code", "internal_error"),
        error_class=exc.__class__.__name__,
        error_msg=str(exc)[:500],
    )
    session.add(row)


def recent_entries(session: Session, limit: int = 50) -> List[AuditJournal]:
    stmt = select(AuditJournal).order_by(AuditJournal.id.desc()).limit(limit)
    return list(session.exec(stmt).all())


# ---------------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------------


def init_db() -> None:
    SQLModel.metadata.create_all(engine)


def get_session() -> Session:
    init_db()
    return Session(engine)
