from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from app.core.security import SESSION_MAX_AGE, create_session_cookie
from app.deps import SESSION_COOKIE_NAME, get_current_user
from app.models.user import User
from app.services import users as user_service

router = APIRouter()


class GoogleAuthRequest(BaseModel):
    id_token: str


def _user_out(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "name": user.name,
        "picture": user.picture,
    }


def _set_session_cookie(response: Response, user: User) -> None:
    payload = user_service.session_payload_for_user(user)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=create_session_cookie(payload),
        max_age=SESSION_MAX_AGE,
        httponly=True,
        secure=False,  # set True in prod with HTTPS
        samesite="lax",
        path="/",
    )


@router.post("/google")
async def auth_google(body: GoogleAuthRequest, response: Response):
    """Exchange Google ID token for session; set httpOnly cookie."""
    claims = user_service.verify_google_id_token(body.id_token)
    user = await user_service.upsert_user_from_google(claims)
    _set_session_cookie(response, user)
    return {"user": _user_out(user)}


@router.post("/refresh")
async def auth_refresh(response: Response, user: User = Depends(get_current_user)):
    """Re-issue the session cookie with a fresh expiry."""
    _set_session_cookie(response, user)
    return {"user": _user_out(user)}


@router.post("/logout")
async def auth_logout(response: Response, user: User = Depends(get_current_user)):
    """Invalidate all sessions for the current user and clear the cookie."""
    await user_service.invalidate_sessions(user)
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return {"status": "logged_out"}


@router.get("/me")
async def auth_me(user: User = Depends(get_current_user)):
    """Return current user. Requires session cookie."""
    return _user_out(user)
