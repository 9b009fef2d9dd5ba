"""
Admin session handling: bcrypt password checks and signed session cookies.

Sessions are stateless HS256 JWTs; there is no server-side revocation.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException, Request, Response
from jose import jwt, JWTError
from passlib.context import CryptContext

SESSION_SECRET = os.getenv("ADMIN_SESSION_SECRET")
if not SESSION_SECRET or len(SESSION_SECRET) < 32:
    raise RuntimeError(
        "ADMIN_SESSION_SECRET environment variable is required and must be at least 32 characters long."
    )

JWT_ALG = "HS256"
JWT_ISSUER = "maison-slimani-admin"
JWT_AUDIENCE = "maison-slimani-admin-app"
SESSION_COOKIE = "admin_session"
SESSION_LIFETIME = timedelta(days=7)
SECURE_COOKIES = os.getenv("ENVIRONMENT") == "production"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        # unknown or malformed hash
        return False


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def create_session(email: str, now: Optional[datetime] = None) -> str:
    issued = now or datetime.now(timezone.utc)
    claims = {
        "email": email,
        "sub": email,
        "iat": issued,
        "exp": issued + SESSION_LIFETIME,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
    }
    return jwt.encode(claims, SESSION_SECRET, algorithm=JWT_ALG)


def verify_session(token: Optional[str]) -> Optional[str]:
    """Return the admin email carried by a valid token, else None."""
    if not token:
        return None
    try:
        payload = jwt.decode(
            token,
            SESSION_SECRET,
            algorithms=[JWT_ALG],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
        )
    except JWTError:
        return None
    email = payload.get("email")
    return email if isinstance(email, str) else None


def set_session_cookie(response: Response, token: str):
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=int(SESSION_LIFETIME.total_seconds()),
        httponly=True,
        secure=SECURE_COOKIES,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response):
    response.delete_cookie(SESSION_COOKIE, path="/")


def require_admin(request: Request) -> str:
    email = verify_session(request.cookies.get(SESSION_COOKIE))
    if email is None:
        raise HTTPException(status_code=401, detail="Non autorisé")
    return email
