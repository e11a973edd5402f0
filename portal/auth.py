"""Static password login and signed session cookies.

Each password in the settings table maps to one identity: a character key
for players, or the GM identity for the editor. A successful login sets a
cookie holding ``identity|expires|signature`` (HMAC-SHA256 over the first two
parts), so no server-side session state is kept.
"""

from __future__ import annotations

import hashlib
import hmac
import time

from fastapi import HTTPException, Request
from pydantic import BaseModel

from portal import storage

SESSION_COOKIE = "portal_session"
SESSION_SECONDS = 30 * 86400


class Identity(BaseModel):
    user: str
    is_gm: bool = False


def authenticate(password: str) -> str | None:
    """Return the identity for ``password``, or None."""
    return storage.settings().users.get(password.strip())


def _sign(payload: str) -> str:
    key = storage.settings().secret.encode()
    return hmac.new(key, payload.encode(), hashlib.sha256).hexdigest()


def make_token(user: str, lifetime: int = SESSION_SECONDS, now: float | None = None) -> str:
    expires = int((now if now is not None else time.time()) + lifetime)
    payload = f"{user}|{expires}"
    return f"{payload}|{_sign(payload)}"


def verify_token(token: str, now: float | None = None) -> str | None:
    """Return the identity in a valid, unexpired token, else None."""
    parts = token.split("|")
    if len(parts) != 3:
        return None
    user, expires, signature = parts
    if not expires.isdigit() or (now if now is not None else time.time()) > int(expires):
        return None
    if not hmac.compare_digest(_sign(f"{user}|{expires}"), signature):
        return None
    return user


def identity_for(user: str) -> Identity:
    return Identity(user=user, is_gm=user == storage.settings().gm_identity)


def current_identity(request: Request) -> Identity:
    """FastAPI dependency: the logged-in identity, or 401."""
    token = request.cookies.get(SESSION_COOKIE, "")
    user = verify_token(token) if token else None
    if user is None:
        raise HTTPException(401, "Not logged in")
    return identity_for(user)
