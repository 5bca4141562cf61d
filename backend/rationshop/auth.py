"""
Bearer-token identity for the two portals.

Tokens are HS256 JWTs carrying ``sub``, ``role`` and an ``admin`` claim. Admins sign in with
email + password (argon2 hash); customers receive a custom token after the out-of-band
Aadhaar/OTP check. A token without the admin claim only gets customer permissions.
"""
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from rationshop.errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

SECRET_KEY = os.environ.get("AUTH_SECRET_KEY", "change-me")
ALGORITHM = "HS256"
TOKEN_EXPIRE_MINUTES = int(os.environ.get("TOKEN_EXPIRE_MINUTES", "60"))

ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@rationshop.com")

ph = PasswordHasher()
bearer_scheme = HTTPBearer(auto_error=False)


def _admin_password_hash() -> str:
    """ADMIN_PASSWORD_HASH if set, else a hash of ADMIN_PASSWORD (development default)."""
    configured = os.environ.get("ADMIN_PASSWORD_HASH")
    if configured:
        return configured
    return ph.hash(os.environ.get("ADMIN_PASSWORD", "Admin@123"))


ADMIN_PASSWORD_HASH = _admin_password_hash()


class Token(BaseModel):
    """Signed bearer token returned by the sign-in endpoints."""
    access_token: str
    token_type: str = "bearer"


class Identity(BaseModel):
    """Claims extracted from a verified token."""
    subject: str
    role: str
    admin: bool = False
    card_type: Optional[str] = None


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return ph.verify(hashed_password, plain_password)
    except VerifyMismatchError:
        return False
    except (VerificationError, InvalidHashError) as exc:
        logger.error("argon2 verification error: %s", exc)
        return False


def create_token(subject: str, claims: dict, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=TOKEN_EXPIRE_MINUTES))
    payload = {**claims, "sub": subject, "exp": expire}
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def authenticate_admin(email: str, password: str) -> str:
    """Password sign-in for the back-office; returns a token with the admin claim."""
    if email.strip().lower() != ADMIN_EMAIL.lower() or not verify_password(password, ADMIN_PASSWORD_HASH):
        logger.info("admin_sign_in_failed")
        raise Unauthorized("Invalid email or password.")
    return create_token(ADMIN_EMAIL, {"role": "admin", "admin": True})


def create_customer_token(customer_id: str, card_type: str) -> str:
    """Custom sign-in token scoped to one customer."""
    return create_token(customer_id, {"role": "customer", "admin": False, "cardType": card_type})


def decode_token(token: str) -> Identity:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.PyJWTError as exc:
        raise Unauthorized() from exc
    subject = payload.get("sub")
    if not subject:
        raise Unauthorized()
    admin = payload.get("admin") is True
    return Identity(
        subject=subject,
        role="admin" if admin else "customer",
        admin=admin,
        card_type=payload.get("cardType"),
    )


def current_identity(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Identity:
    """Resolve the caller from the Authorization header or raise Unauthorized."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthorized()
    return decode_token(credentials.credentials)


def require_admin(identity: Identity = Depends(current_identity)) -> Identity:
    if not identity.admin:
        raise Forbidden("Administrator access is required.")
    return identity


def require_customer(identity: Identity = Depends(current_identity)) -> Identity:
    if identity.admin:
        raise Forbidden("This action is only available from the customer portal.")
    return identity
