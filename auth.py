"""
Bearer-token authentication for the SageExcel API.

Passwords are hashed with bcrypt (cost 10). Tokens are HS256 JWTs that embed
the user's non-secret profile; verification never touches the database.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt
from fastapi import Header

BCRYPT_ROUNDS = 10
TOKEN_ALGORITHM = "HS256"
TOKEN_TTL = timedelta(minutes=int(os.getenv("TOKEN_TTL_MINUTES", "60")))


class AuthError(Exception):
    status_code = 401
    message = "Authentication failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class MissingToken(AuthError):
    message = "No token provided"


class InvalidToken(AuthError):
    status_code = 403
    message = "Invalid token"


class Unauthenticated(AuthError):
    message = "user doesnt exist"


class InvalidCredential(AuthError):
    message = "Invalid password"


def _secret_key() -> str:
    return os.getenv("SECRET_KEY", "sageexcel-development-secret-change-me")


def hash_password(plaintext: str) -> str:
    return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plaintext: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def token_payload(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "_id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "isAdmin": bool(user.get("isAdmin", False)),
    }


def issue_token(user: Dict[str, Any], expires_in: timedelta = TOKEN_TTL) -> str:
    """Sign a token for ``user`` that expires ``expires_in`` from now."""
    now = datetime.now(timezone.utc)
    claims = token_payload(user)
    claims["iat"] = now
    claims["exp"] = now + expires_in
    return jwt.encode(claims, _secret_key(), algorithm=TOKEN_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        claims = jwt.decode(token, _secret_key(), algorithms=[TOKEN_ALGORITHM])
    except jwt.PyJWTError as e:
        raise InvalidToken() from e
    return {key: claims.get(key) for key in ("_id", "name", "email", "isAdmin")}


def authenticate(users, email: str, password: str) -> Dict[str, Any]:
    """Return the user document for a matching email/password pair.

    ``users`` is the ``user`` collection. Raises ``Unauthenticated`` when no
    user has that email and ``InvalidCredential`` when the password is wrong.
    """
    user = users.find_one({"email": email})
    if not user:
        raise Unauthenticated()
    if not verify_password(password, user.get("password", "")):
        raise InvalidCredential()
    return user


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise MissingToken()
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise MissingToken()
    return token.strip()


def current_user(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    """FastAPI dependency yielding the profile embedded in the bearer token."""
    return decode_token(bearer_token(authorization))
