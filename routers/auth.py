from typing import Annotated, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Request, Response
from itsdangerous import BadSignature, URLSafeTimedSerializer
from passlib.context import CryptContext

from config import ADMIN_PASSWORD, ADMIN_SESSION_MAX_AGE, SECRET_KEY

router = APIRouter(tags=["auth"])

SESSION_COOKIE = "admin_session"

serializer = URLSafeTimedSerializer(SECRET_KEY)


pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)

ADMIN_PASSWORD_HASH = pwd_context.hash(ADMIN_PASSWORD)


def verify_admin_password(password: str) -> bool:
    return pwd_context.verify(password, ADMIN_PASSWORD_HASH)


def create_session_token() -> str:
    """
    There is a single shared admin, so the token only says "admin".
    """
    return serializer.dumps({"role": "admin"})


def verify_session_token(token: str, max_age_seconds: int = ADMIN_SESSION_MAX_AGE):
    """
    Returns the token payload if valid, or None if invalid/expired.
    """
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except BadSignature:
        return None


def require_admin(
    session_token: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
) -> dict:
    """
    Reads the admin cookie and verifies it. Raises 401 otherwise.
    """
    if session_token is None:
        raise HTTPException(status_code=401, detail="Admin login required")

    data = verify_session_token(session_token)
    if not data or data.get("role") != "admin":
        raise HTTPException(status_code=401, detail="Invalid or expired admin session")

    return data


AdminDep = Annotated[dict, Depends(require_admin)]


@router.post("/login")
async def login(request: Request, response: Response):
    """
    Log in with the shared admin password and set a signed cookie.

    Accepts either JSON or form-data.
    """
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("application/json"):
        data = await request.json()
        raw_password = data.get("password") if isinstance(data, dict) else None
    else:
        form = await request.form()
        raw_password = form.get("password")

    password = raw_password if isinstance(raw_password, str) else None
    if not password:
        raise HTTPException(status_code=400, detail="Password is required")

    if not verify_admin_password(password):
        raise HTTPException(status_code=400, detail="Invalid password")

    response.set_cookie(
        key=SESSION_COOKIE,
        value=create_session_token(),
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=ADMIN_SESSION_MAX_AGE,
    )
    return {"message": "Login successful", "role": "admin"}


@router.post("/logout")
def logout(response: Response):
    """
    Clear the admin cookie.
    """
    response.delete_cookie(SESSION_COOKIE)
    return {"message": "Logged out"}
