"""
Admin session tokens.

The admin signs in with one shared password and gets a short-lived JWT
bound to the device that asked for it. Nothing is stored server side: a
token is valid when its own `timestamp` claim is less than ten minutes
old and the device fingerprint of the current request matches the one
baked into it. Logging out only deletes the client's copy.

The device fingerprint is built from request headers that any client can
set. It keeps a copied token from working casually on another machine; it
is not an authentication factor.
"""
from __future__ import annotations
import base64
import hmac
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from .errors import (
    AuthNotConfigured, DeviceMismatch, InvalidCredentials, MalformedToken,
    MissingToken, TokenExpired,
)
from .helpers import ct_equal, now_ms

log = logging.getLogger(__name__)

# ----------------------------
# Config & Constants
# ----------------------------
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD")
JWT_SECRET = os.environ.get("JWT_SECRET", "dev-secret-change-me")
ALGORITHM = "HS256"
SESSION_TTL_SECONDS = 10 * 60
SESSION_TTL_MS = SESSION_TTL_SECONDS * 1000

ADMIN_ROLE = "admin"
COOKIE_NAME = "admin_token"


@dataclass(frozen=True)
class RequestContext:
    ip: str
    user_agent: str
    accept_language: str

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "RequestContext":
        ip = (
            headers.get("x-forwarded-for")
            or headers.get("x-real-ip")
            or "unknown"
        )
        return cls(
            ip=ip,
            user_agent=headers.get("user-agent") or "",
            accept_language=headers.get("accept-language") or "",
        )

    @classmethod
    def from_request(cls, request) -> "RequestContext":
        return cls.from_headers(request.headers)


def device_fingerprint(ctx: RequestContext) -> str:
    raw = f"{ctx.ip}:{ctx.user_agent}:{ctx.accept_language}"
    return base64.b64encode(raw.encode()).decode()


def issue_token(
    password: str, ctx: RequestContext, now: Optional[int] = None
) -> str:
    if not ADMIN_PASSWORD:
        raise AuthNotConfigured()
    if not password or not ct_equal(password, ADMIN_PASSWORD):
        log.warning("admin login rejected from %s", ctx.ip)
        raise InvalidCredentials()

    issued = now_ms() if now is None else now
    claims = {
        "role": ADMIN_ROLE,
        "timestamp": issued,
        "deviceFingerprint": device_fingerprint(ctx),
        "exp": issued // 1000 + SESSION_TTL_SECONDS,
    }
    log.info("admin token issued for %s", ctx.ip)
    return jwt.encode(claims, JWT_SECRET, algorithm=ALGORITHM)


def verify_token(
    token: Optional[str], ctx: RequestContext, now: Optional[int] = None
) -> Dict[str, Any]:
    """Return the token's claims or raise the matching AuthError."""
    if not token:
        raise MissingToken()
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise TokenExpired()
    except JWTError:
        raise MalformedToken()

    issued = claims.get("timestamp")
    if not isinstance(issued, int):
        raise MalformedToken()

    now = now_ms() if now is None else now
    if now - issued > SESSION_TTL_MS:
        raise TokenExpired()

    expected = device_fingerprint(ctx)
    if not hmac.compare_digest(
        str(claims.get("deviceFingerprint", "")), expected
    ):
        raise DeviceMismatch()

    if claims.get("role") != ADMIN_ROLE:
        raise MalformedToken()
    return claims


def remaining_seconds(claims: Dict[str, Any], now: Optional[int] = None) -> int:
    now = now_ms() if now is None else now
    left = claims.get("timestamp", 0) + SESSION_TTL_MS - now
    return max(0, left // 1000)


def token_from_request(request) -> Optional[str]:
    """Bearer header first, then the cookie set at login."""
    header = request.headers.get("authorization") or ""
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return request.cookies.get(COOKIE_NAME)
