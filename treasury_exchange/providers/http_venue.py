"""HTTP adapters for a remote swap venue and lending market.

Both speak a small JSON API and use a synchronous ``httpx.Client``; tests
inject ``httpx.MockTransport``. Responses must carry integer amounts, anything
else is rejected so the treasury never settles against a malformed reply.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import httpx

from .base import LendingMarket, SwapVenue

__all__ = ["HttpSwapVenue", "HttpLendingMarket"]

_LOG = logging.getLogger(__name__)

_TIMEOUT = float(os.getenv("TREASURY_HTTP_TIMEOUT", "10"))


def _amount(body: Dict[str, Any], key: str) -> int:
    value = body.get(key)
    # bool is an int subclass; refuse it explicitly
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"response field {key!r} is not an integer: {value!r}")
    return value


class _JsonClient:
    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=_TIMEOUT,
            transport=transport,
        )

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._client.post(path, json=payload)
        resp.raise_for_status()
        return resp.json()

    def _get(self, path: str) -> Dict[str, Any]:
        resp = self._client.get(path)
        resp.raise_for_status()
        return resp.json()

    def close(self) -> None:
        self._client.close()


class HttpSwapVenue(_JsonClient, SwapVenue):
    def __init__(self, base_url: str, *, address: str, **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.address = address

    def swap_exact_input(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_out: int,
        payer: str,
        recipient: str,
    ) -> int:
        body = self._post(
            "/swap",
            {
                "token_in": token_in,
                "token_out": token_out,
                "amount_in": amount_in,
                "min_out": min_out,
                "payer": payer,
                "recipient": recipient,
            },
        )
        out = _amount(body, "amount_out")
        _LOG.info("venue_swap", extra={"asset": token_in, "amount": amount_in})
        return out


class HttpLendingMarket(_JsonClient, LendingMarket):
    def __init__(self, base_url: str, *, address: str, **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.address = address

    def deposit(self, asset: str, amount: int, on_behalf_of: str) -> int:
        body = self._post(
            "/deposit", {"asset": asset, "amount": amount, "on_behalf_of": on_behalf_of}
        )
        return _amount(body, "amount")

    def withdraw(self, asset: str, amount: int, to: str) -> int:
        body = self._post("/withdraw", {"asset": asset, "amount": amount, "to": to})
        return _amount(body, "amount")

    def position(self, asset: str, holder: str) -> int:
        return _amount(self._get(f"/positions/{asset}/{holder}"), "amount")
