"""Bearer-token authentication resolving a caller identity.

The resolved identity is the address the treasury sees as buyer, seller,
proposer or signer. Two token kinds are accepted:

* HS256 JWTs signed with ``TREASURY_JWT_SECRET``; the identity is ``sub``.
* Static tokens from ``TREASURY_API_TOKENS`` (JSON ``{"token": "identity"}``).
"""
from __future__ import annotations

import json
import os
from typing import Dict

import jwt
from fastapi import Header, HTTPException, status

__all__ = ["require_identity", "static_tokens"]


def static_tokens() -> Dict[str, str]:
    raw = os.getenv("TREASURY_API_TOKENS", "")
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}


def require_identity(authorization: str | None = Header(None)) -> str:
    """Validate Bearer token and return the caller identity."""

    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    # Check for JWT (three segments separated by '.')
    if token.count(".") == 2:
        secret = os.getenv("TREASURY_JWT_SECRET")
        if not secret:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden"
            )
        try:
            payload = jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.PyJWTError as exc:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden"
            ) from exc
        subject = payload.get("sub")
        if not subject:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return str(subject)

    identity = static_tokens().get(token)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return identity
