"""Offline tests for the treasury HTTP surface."""
from __future__ import annotations

import json

import jwt
import pytest
from fastapi.testclient import TestClient

from helpers import ETHER, OWNERS, USDT, approve
from treasury_orchestrator import api as treasury_api

_SECRET = "treasury-test-signing-key-0123456789abcdef"
TOKENS = {f"tok-{name}": name for name in OWNERS + ["buyer"]}


def _auth(name: str) -> dict:
    return {"Authorization": f"Bearer tok-{name}"}


@pytest.fixture()
def client(treasury, monkeypatch):
    monkeypatch.setenv("TREASURY_API_TOKENS", json.dumps(TOKENS))
    app = treasury_api.create_app()
    app.dependency_overrides[treasury_api.get_treasury] = lambda: treasury
    return TestClient(app)


def test_requires_bearer_token(client):
    assert client.get("/api/treasury/v1/state").status_code == 401
    r = client.get("/api/treasury/v1/state", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 403
    r = client.get("/api/treasury/v1/state", headers={"Authorization": "Basic tok-alice"})
    assert r.status_code == 403


def test_jwt_subject_is_the_identity(client, treasury, monkeypatch):
    monkeypatch.setenv("TREASURY_JWT_SECRET", _SECRET)
    token = jwt.encode({"sub": "buyer"}, _SECRET, algorithm="HS256")
    approve(treasury, "buyer", "USDT", USDT)

    r = client.post(
        "/api/treasury/v1/buy/reserve",
        json={"amount": USDT},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert r.status_code == 201, r.text
    assert r.json()["buyer"] == "buyer"

    forged = jwt.encode({"sub": "buyer"}, "x" * 40, algorithm="HS256")
    r = client.get("/api/treasury/v1/state", headers={"Authorization": f"Bearer {forged}"})
    assert r.status_code == 403


def test_buy_and_sell(client, treasury):
    approve(treasury, "buyer", "USDT", 10 * USDT)
    r = client.post("/api/treasury/v1/buy/reserve", json={"amount": 10 * USDT}, headers=_auth("buyer"))
    assert r.status_code == 201, r.text
    assert r.json()["minted"] == 10 * ETHER

    r = client.post("/api/treasury/v1/sell", json={"amount": 10 * ETHER}, headers=_auth("buyer"))
    assert r.status_code == 201, r.text
    assert r.json()["payout"] == 5 * USDT


def test_token_and_native_buys(client, treasury):
    approve(treasury, "buyer", "UNI", 10 * ETHER)
    r = client.post(
        "/api/treasury/v1/buy/token",
        json={"amount": 10 * ETHER, "token": "UNI"},
        headers=_auth("buyer"),
    )
    assert r.status_code == 201, r.text
    assert r.json()["path"] == "token"

    r = client.post("/api/treasury/v1/buy/native", json={"value": ETHER}, headers=_auth("buyer"))
    assert r.status_code == 201, r.text
    assert r.json()["asset_in"] == "NATIVE"


@pytest.mark.parametrize(
    "path, body, status",
    [
        ("/api/treasury/v1/buy/reserve", {"amount": 10 * USDT, "min_out": 10**30}, 409),
        ("/api/treasury/v1/buy/token", {"amount": ETHER, "token": "DOGE"}, 400),
        ("/api/treasury/v1/sell", {"amount": ETHER}, 409),
        ("/api/treasury/v1/buy/reserve", {"amount": 0}, 422),
    ],
)
def test_error_mapping(client, treasury, path, body, status):
    approve(treasury, "buyer", "USDT", 10 * USDT)
    r = client.post(path, json=body, headers=_auth("buyer"))
    assert r.status_code == status, r.text


def test_operation_lifecycle(client, treasury):
    r = client.post(
        "/api/treasury/v1/operations",
        json={"payload": {"kind": "set_mode", "mode": "lending_market"}},
        headers=_auth("alice"),
    )
    assert r.status_code == 201, r.text
    index = r.json()["index"]

    for name in ("bob", "carol"):
        r = client.post(f"/api/treasury/v1/operations/{index}/sign", headers=_auth(name))
        assert r.status_code == 200

    r = client.post(f"/api/treasury/v1/operations/{index}/execute", headers=_auth("buyer"))
    assert r.status_code == 409
    assert r.json()["detail"] == "insufficient_signatures"

    r = client.get("/api/treasury/v1/operations", params={"pending_only": True}, headers=_auth("buyer"))
    assert [op["index"] for op in r.json()] == [index]

    client.post(f"/api/treasury/v1/operations/{index}/sign", headers=_auth("dave"))
    r = client.post(f"/api/treasury/v1/operations/{index}/execute", headers=_auth("buyer"))
    assert r.status_code == 200, r.text
    assert r.json()["result"] == {"mode": "lending_market"}

    r = client.get(f"/api/treasury/v1/operations/{index}", headers=_auth("buyer"))
    assert r.json()["executed"] is True
    r = client.get("/api/treasury/v1/state", headers=_auth("buyer"))
    body = r.json()
    assert body["mode"] == "lending_market"
    assert body["pending"] == []
    assert body["reserves"]["primary_asset"] == "USDT"


def test_operation_errors(client):
    r = client.post(
        "/api/treasury/v1/operations",
        json={"payload": {"kind": "set_liquidity_ratio", "percent": 101}},
        headers=_auth("alice"),
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_ratio"

    r = client.post(
        "/api/treasury/v1/operations",
        json={"payload": {"kind": "rebalance"}},
        headers=_auth("buyer"),
    )
    assert r.status_code == 403
    assert r.json()["detail"] == "not_owner"

    r = client.get("/api/treasury/v1/operations/42", headers=_auth("alice"))
    assert r.status_code == 404


def test_health_and_metrics(client):
    assert client.get("/healthz").json() == {"ok": True}
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "treasury_backed_supply" in r.text
