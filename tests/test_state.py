import threading

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from helpers import FACTOR, OWNERS, USDT, approve, run_operation
from treasury_domain.audit import AuditJournal
from treasury_domain.config import TreasuryConfig
from treasury_domain.errors import (DispatchRequired, InsufficientFundsError,
                                    InvalidOwner, InvalidThreshold,
                                    ReentrantCall, SlippageExceeded)
from treasury_domain.models import OperationRecord, SetLiquidityRatio
from treasury_domain.state import TreasuryState
from treasury_exchange.providers.memory import InMemoryLedger


@pytest.fixture()
def state():
    return TreasuryState(TreasuryConfig(owners=["alice", "bob"], threshold=2))


def test_guarded_restores_state_and_participants(state):
    ledger = InMemoryLedger("USDT", 6)
    ledger.credit("treasury", 100)
    state.enlist(ledger)
    state.enlist(ledger)
    assert len(state._participants) == 1

    with pytest.raises(RuntimeError):
        with state.guarded("mint", "alice"):
            state.mint("alice", 10)
            state.owners.append("carol")
            ledger.transfer("treasury", "alice", 40)
            raise RuntimeError("boom")

    assert state.total_supply == 0
    assert state.balance_of("alice") == 0
    assert state.owners == ["alice", "bob"]
    assert ledger.balance_of("treasury") == 100
    assert state.active_call is None


def test_guarded_refuses_reentry(state):
    with state.guarded("outer"):
        with pytest.raises(ReentrantCall):
            with state.guarded("inner"):
                pass
        assert state.active_call == "outer"
    assert state.active_call is None


def test_guarded_serializes_threads(state):
    def worker():
        for _ in range(200):
            with state.guarded("mint"):
                state.mint("alice", 1)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()
    assert state.total_supply == 800


def test_require_dispatch(state):
    with pytest.raises(DispatchRequired):
        state.require_dispatch("rebalance")
    with state.dispatching():
        state.require_dispatch("rebalance")
    with pytest.raises(DispatchRequired):
        state.require_dispatch("rebalance")


def test_burn_more_than_held(state):
    state.mint("alice", 5)
    with pytest.raises(InsufficientFundsError):
        state.burn("alice", 6)
    state.burn("alice", 5)
    assert state.total_supply == 0


def test_prune_never_reuses_indices(treasury):
    first = run_operation(treasury, SetLiquidityRatio(percent=40)).index
    pending = treasury.propose_liquidity_ratio("alice", 45)

    assert treasury.state.prune_executed() == 1
    assert list(treasury.state.operations) == [pending]
    assert treasury.propose_liquidity_ratio("bob", 50) == pending + 1
    assert first not in treasury.state.operations


@pytest.mark.parametrize(
    "owners, threshold, exc",
    [
        ([], 1, InvalidOwner),
        (["alice", "alice"], 1, InvalidOwner),
        (["alice", ""], 1, InvalidOwner),
        (OWNERS, 0, InvalidThreshold),
        (OWNERS, 5, InvalidThreshold),
    ],
)
def test_state_rejects_bad_owner_config(owners, threshold, exc):
    with pytest.raises(exc):
        TreasuryState(TreasuryConfig(owners=list(owners), threshold=threshold))


def test_failed_call_drops_new_records_and_restores_touched_balances(state):
    state.mint("alice", 7)
    with pytest.raises(RuntimeError):
        with state.guarded("mixed", "alice"):
            state.append_operation(
                OperationRecord(index=0, proposer="alice", payload=SetLiquidityRatio(percent=40))
            )
            state.mint("bob", 3)
            state.burn("alice", 2)
            raise RuntimeError("boom")

    assert state.operations == {}
    assert state.next_index == 0
    assert state.balances == {"alice": 7}
    assert state.total_supply == 7


def test_failed_call_restores_pruned_and_updated_records(treasury):
    done = run_operation(treasury, SetLiquidityRatio(percent=40)).index
    pending = treasury.propose_liquidity_ratio("alice", 45)
    state = treasury.state

    with pytest.raises(RuntimeError):
        with state.guarded("cleanup", "alice"):
            state.prune_executed()
            state.operation_for_update(pending).signers.append("bob")
            raise RuntimeError("boom")

    assert sorted(state.operations) == [done, pending]
    assert state.operation(pending).signers == ["alice"]


def test_commit_failure_reverts_the_call(treasury, audit_session, monkeypatch):
    real_commit = audit_session.commit
    calls = []

    def flaky_commit():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("disk full")
        real_commit()

    monkeypatch.setattr(audit_session, "commit", flaky_commit)
    approve(treasury, "buyer", "USDT", 10 * USDT)
    with pytest.raises(RuntimeError):
        treasury.buy_for_primary_reserve("buyer", 10 * USDT)

    assert treasury.exchange.total_supply == 0
    assert treasury.exchange.balance_of("buyer") == 0
    assert treasury.exchange.ledgers["USDT"].balance_of("buyer") == 1_000 * USDT
    assert treasury.exchange.liquid_reserve() == 0
    actions = [row.action for row in audit_session.exec(select(AuditJournal)).all()]
    assert actions == ["call_failed"]


def test_unrecordable_failure_keeps_the_original_error(treasury, audit_session, monkeypatch):
    def broken_commit():
        raise OperationalError("COMMIT", None, Exception("database is locked"))

    monkeypatch.setattr(audit_session, "commit", broken_commit)
    approve(treasury, "buyer", "USDT", 10 * USDT)
    with pytest.raises(SlippageExceeded):
        treasury.buy_for_primary_reserve("buyer", 10 * USDT, min_out=10 * USDT * FACTOR + 1)
    assert treasury.state.active_call is None


def test_reading_waits_for_a_running_call(state):
    entered = threading.Event()
    release = threading.Event()
    seen = []

    def writer():
        with state.guarded("mint"):
            state.mint("alice", 5)
            entered.set()
            release.wait(5)
            state.mint("alice", 5)

    def reader():
        with state.reading():
            seen.append(state.total_supply)

    w = threading.Thread(target=writer)
    w.start()
    entered.wait(5)
    r = threading.Thread(target=reader)
    r.start()
    r.join(0.1)
    assert seen == []
    release.set()
    w.join()
    r.join()
    assert seen == [10]
