"""Caller identity.

Tokens are opaque identifiers chosen by the client (browser session id or
worker id). Nothing here verifies them.
"""
from __future__ import annotations

from typing import Optional

from fastapi import Header

ANONYMOUS = "anonymous"


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer":
        token = token.strip()
    else:
        token = authorization.strip()
    return token or None


def resolve_owner(explicit: Optional[str], authorization: Optional[str]) -> str:
    """Explicit ``user`` field first, then the bearer token, then anonymous."""
    if explicit and explicit.strip():
        return explicit.strip()
    return _bearer(authorization) or ANONYMOUS


def get_token_owner(authorization: Optional[str] = Header(default=None)) -> str:
    return resolve_owner(None, authorization)


def get_worker_id(
    authorization: Optional[str] = Header(default=None),
    x_worker_id: Optional[str] = Header(default=None),
) -> str:
    return _bearer(authorization) or (x_worker_id or "").strip() or ANONYMOUS
