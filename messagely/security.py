"""
Password hashing and signed identity tokens.

Passwords are hashed with salted PBKDF2-HMAC-SHA256. The iteration
count is the work factor (``PASSWORD_HASH_ITERATIONS``) and is stored
alongside the salt so existing hashes keep verifying after the setting
changes.

Tokens are HS256 JWTs (PyJWT) carrying a ``username`` claim. Clients
send them as ``Authorization: Bearer <token>``.
"""

import hashlib
import hmac
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from messagely.config import settings
from messagely.errors import AuthorizationError

logger = logging.getLogger(__name__)

HASH_SCHEME = "pbkdf2_sha256"
SALT_BYTES = 16


# =============================================================================
# Password Hashing
# =============================================================================

def hash_password(password: str, iterations: Optional[int] = None) -> str:
    """
    Hash a password with a fresh random salt.

    Returns:
        ``pbkdf2_sha256$<iterations>$<salt hex>$<hash hex>``
    """
    iterations = iterations or settings.PASSWORD_HASH_ITERATIONS
    salt = os.urandom(SALT_BYTES)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{HASH_SCHEME}${iterations}${salt.hex()}${dk.hex()}"


def verify_password(password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a stored hash.

    Malformed stored hashes verify as False rather than raising.
    """
    try:
        scheme, iterations, salt_hex, hash_hex = hashed_password.split("$")
        if scheme != HASH_SCHEME:
            return False
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(hash_hex)
        dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, int(iterations))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False
    # Constant-time comparison
    return hmac.compare_digest(dk, expected)


# =============================================================================
# Tokens
# =============================================================================

def create_token(username: str) -> str:
    """Sign a bearer token embedding ``username``."""
    claims = {"username": username, "iat": datetime.now(timezone.utc)}
    if settings.ACCESS_TOKEN_EXPIRE_MINUTES > 0:
        claims["exp"] = claims["iat"] + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    logger.debug(f"Issuing token for {username}")
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> str:
    """
    Verify a token and return the username it was issued to.

    Raises:
        AuthorizationError: signature, expiry or claims are invalid
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.info(f"Rejected token: {e}")
        raise AuthorizationError("Unauthorized")

    username = payload.get("username")
    if not username:
        raise AuthorizationError("Unauthorized")
    return username


bearer_scheme = HTTPBearer(auto_error=False)


def get_current_username(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """Dependency resolving the requester identity from the bearer token."""
    if credentials is None:
        raise AuthorizationError("Unauthorized")
    return decode_token(credentials.credentials)
