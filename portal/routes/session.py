"""Health check, login and logout endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Response

from portal import auth

from .models import LoginBody

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.post("/login")
async def login(body: LoginBody, response: Response):
    """Exchange a password for a signed session cookie."""
    user = auth.authenticate(body.password)
    if user is None:
        raise HTTPException(401, "Invalid password")

    response.set_cookie(
        auth.SESSION_COOKIE,
        auth.make_token(user),
        max_age=auth.SESSION_SECONDS if body.remember else None,
        httponly=True,
        samesite="lax",
    )
    identity = auth.identity_for(user)
    return {"success": True, "user": identity.user, "is_gm": identity.is_gm}


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(auth.SESSION_COOKIE)
    return {"success": True}


@router.get("/session")
async def session(identity: auth.Identity = Depends(auth.current_identity)):
    """Who is logged in."""
    return {"success": True, "user": identity.user, "is_gm": identity.is_gm}
