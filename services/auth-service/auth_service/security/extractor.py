"""Locate a candidate session token on an inbound request.

Precedence is fixed: cookie, then ``Authorization: Bearer`` header, then the
query parameter. ``None`` means no token was presented at all; whether a
presented token is valid is decided by the token service.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from fastapi import Request


class TokenSource(str, Enum):
    COOKIE = "cookie"
    HEADER = "header"
    QUERY = "query"


@dataclass(frozen=True, slots=True)
class TokenCandidate:
    value: str
    source: TokenSource


def bearer_token(authorization: str | None) -> str | None:
    """Return the token from a ``Bearer <token>`` header value, else ``None``."""
    if not authorization:
        return None
    parts = authorization.strip().split(None, 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    return token or None


def extract_token(
    request: Request,
    *,
    cookie_name: str,
    allow_query: bool = True,
    query_param: str = "token",
) -> TokenCandidate | None:
    cookie_value = (request.cookies.get(cookie_name) or "").strip()
    if cookie_value:
        return TokenCandidate(cookie_value, TokenSource.COOKIE)

    header_value = bearer_token(request.headers.get("Authorization"))
    if header_value:
        return TokenCandidate(header_value, TokenSource.HEADER)

    if allow_query:
        query_value = (request.query_params.get(query_param) or "").strip()
        if query_value:
            return TokenCandidate(query_value, TokenSource.QUERY)

    return None
