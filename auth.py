"""
Session auth: bcrypt passwords, a signed JWT in an HTTP-only cookie,
OTP generation and the FastAPI dependencies that gate routes.
"""
import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import database

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
TOKEN_TTL = timedelta(days=7)
COOKIE_NAME = "token"
COOKIE_SECURE = os.getenv("ENVIRONMENT", "development") == "production"

security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def generate_otp() -> str:
    return str(100000 + secrets.randbelow(900000))


def create_token(user: dict) -> str:
    payload = {
        "userId": str(user.get("id") or user.get("_id")),
        "email": user["email"],
        "role": user.get("role", "user"),
        "exp": datetime.now(timezone.utc) + TOKEN_TTL,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def read_token_claims(token: Optional[str]) -> Optional[dict]:
    """Decode a token without raising; None for missing or invalid tokens."""
    if not token:
        return None
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.InvalidTokenError:
        return None


def set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
        max_age=int(TOKEN_TTL.total_seconds()),
        path="/",
    )


def clear_auth_cookie(response: Response) -> None:
    response.set_cookie(
        COOKIE_NAME,
        "",
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
        max_age=0,
        path="/",
    )


def public_user(doc: dict) -> dict:
    user = database.serialize_doc(doc)
    user.pop("password_hash", None)
    user.pop("otp", None)
    return user


def _request_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    if credentials is not None:
        return credentials.credentials
    return None


def load_user(claims: dict) -> Optional[dict]:
    oid = database.parse_object_id(claims.get("userId"))
    if oid is None:
        return None
    return database.db["users"].find_one({"_id": oid})


def get_current_user(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    token = _request_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated.")
    claims = decode_token(token)
    user = load_user(claims)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return public_user(user)


def get_optional_user(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    claims = read_token_claims(_request_token(request, credentials))
    if not claims:
        return None
    user = load_user(claims)
    return public_user(user) if user else None


def get_current_admin(user=Depends(get_current_user)):
    # role comes from the stored user, not the token claims
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required.")
    return user
