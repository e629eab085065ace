import os

# keep the module-level audit engine off disk during tests
os.environ.setdefault("TREASURY_DB_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_FORMAT", "text")

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from helpers import ETHER, OWNERS, UNI_FOR_10, USDT, USDT_PER_ETH
from treasury_domain.config import TreasuryConfig
from treasury_orchestrator.engine import Treasury, in_memory_treasury


def pytest_configure(config):
    """If pytest-socket is installed, disable sockets and allow localhost if supported."""
    try:
        import pytest_socket

        pytest_socket.disable_socket()
        if hasattr(pytest_socket, "allow_hosts"):
            pytest_socket.allow_hosts("127.0.0.1", "localhost")
    except ImportError:
        pass


@pytest.fixture()
def audit_session() -> Session:
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture()
def config() -> TreasuryConfig:
    return TreasuryConfig(owners=list(OWNERS), threshold=4, liquidity_ratio=30)


@pytest.fixture()
def treasury(config: TreasuryConfig, audit_session: Session) -> Treasury:
    t = in_memory_treasury(config, session=audit_session, secondary=["UNI"])
    ledgers = t.exchange.ledgers
    ledgers["USDT"].credit("buyer", 1_000 * USDT)
    ledgers["UNI"].credit("buyer", 100 * ETHER)
    ledgers["NATIVE"].credit("buyer", 10 * ETHER)
    # venue pays swaps out of its own USDT
    ledgers["USDT"].credit("swap_venue", 1_000_000 * USDT)

    venue = t.exchange.venue
    venue.set_rate("UNI", "USDT", UNI_FOR_10, 10 * ETHER)
    venue.set_rate("NATIVE", "USDT", USDT_PER_ETH, ETHER)
    return t
