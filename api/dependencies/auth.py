from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, status
from jose import JWTError, jwt
from database.db import SessionLocal
import os

ALGORITHM = "HS256"
SECRET_KEY = os.getenv("SUPABASE_JWT_SECRET")
EXPECTED_AUD = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")
ACCESS_TOKEN_COOKIE = "sb-access-token"

if not SECRET_KEY:
    raise ValueError("CRITICAL: SUPABASE_JWT_SECRET is not set in environment variables. Authentication cannot proceed.")


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: Optional[str] = None
    role: Optional[str] = None


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return request.cookies.get(ACCESS_TOKEN_COOKIE)


async def get_current_user(request: Request) -> AuthenticatedUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token = _extract_token(request)
    if not token:
        raise credentials_exception

    try:
        # Supabase access tokens are HS256 JWTs signed with the project secret
        opts = {"verify_aud": bool(EXPECTED_AUD)}
        payload = jwt.decode(
            token,
            SECRET_KEY,
            algorithms=[ALGORITHM],
            audience=EXPECTED_AUD or None,
            options=opts,
        )
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    return AuthenticatedUser(id=user_id, email=payload.get("email"), role=payload.get("role"))
