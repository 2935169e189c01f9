from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timedelta, timezone
from uuid import UUID

import bcrypt
import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from . import models
from .database import get_db
from .errors import AccountDisabled, AuthenticationRequired, InvalidCredential, PrincipalNotFound, ValidationError
from .rbac import Principal

# purpose: credential issuance, password hashing and per-request principal resolution
# depends_on: PyJWT (HS256 tokens), bcrypt
# status: active

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
TOKEN_ISSUER = os.getenv("TOKEN_ISSUER", "microvault")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(7 * 24 * 60)))

PASSWORD_MIN_LENGTH = 12
# bcrypt only accepts the first 72 bytes of a secret
PASSWORD_MAX_BYTES = 72
_SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")

bearer_scheme = HTTPBearer(auto_error=False)


def _secret_key() -> str:
    secret = os.getenv("SECRET_KEY")
    if not secret:
        raise RuntimeError("SECRET_KEY is not configured")
    return secret


def _bcrypt_rounds() -> int:
    return int(os.getenv("BCRYPT_ROUNDS", "12"))


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=_bcrypt_rounds())).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # malformed stored hash
        return False


_dummy_hash: str | None = None


def burn_password_check(password: str) -> None:
    """Spend the same bcrypt work as a real check when no account matched."""

    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = get_password_hash("microvault-timing-equaliser")
    verify_password(password, _dummy_hash)


def password_problems(password: str) -> list[str]:
    problems = []
    if len(password) < PASSWORD_MIN_LENGTH:
        problems.append(f"Minimum {PASSWORD_MIN_LENGTH} characters required")
    if len(password.encode()) > PASSWORD_MAX_BYTES:
        problems.append(f"Maximum {PASSWORD_MAX_BYTES} bytes allowed")
    if not re.search(r"[A-Z]", password):
        problems.append("At least one uppercase letter required")
    if not re.search(r"[a-z]", password):
        problems.append("At least one lowercase letter required")
    if not re.search(r"\d", password):
        problems.append("At least one number required")
    if not _SPECIAL_CHARACTERS.search(password):
        problems.append("At least one special character required")
    return problems


def ensure_password_strength(password: str) -> None:
    problems = password_problems(password)
    if problems:
        raise ValidationError(
            "Password does not meet requirements",
            errors=[{"field": "password", "message": p} for p in problems],
        )


def create_access_token(user: models.User, expires_delta: timedelta | None = None) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user.id),
        "iss": TOKEN_ISSUER,
        "iat": now,
        "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
        # advisory only; authorization always re-reads the account
        "role": user.role,
        "biosafety_clearance": user.biosafety_clearance,
    }
    return jwt.encode(claims, _secret_key(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> UUID:
    """Return the account id carried by a valid token.

    Bad signatures, foreign issuers, expiry and malformed subjects all raise the
    same ``InvalidCredential``.
    """

    try:
        payload = jwt.decode(
            token,
            _secret_key(),
            algorithms=[ALGORITHM],
            issuer=TOKEN_ISSUER,
            options={"require": ["sub", "exp", "iss"]},
        )
        return UUID(str(payload["sub"]))
    except (jwt.PyJWTError, ValueError) as exc:
        logger.info("Rejected access token: %s", type(exc).__name__)
        raise InvalidCredential() from exc


def resolve_principal(db: Session, token: str) -> Principal:
    account_id = decode_access_token(token)
    user = db.get(models.User, account_id)
    if user is None:
        raise PrincipalNotFound()
    if user.deleted_at is not None:
        raise AccountDisabled()
    return user.to_principal()


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Principal:
    if credentials is None or not credentials.credentials:
        raise AuthenticationRequired()
    return resolve_principal(db, credentials.credentials)


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None
