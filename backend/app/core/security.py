"""Security utilities: identity tokens and gateway signatures."""

import hashlib
import hmac
from datetime import timedelta
from typing import Any

from jose import JWTError, jwt

from app.core.config import settings
from app.core.time_utils import utcnow


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """
    Create a JWT access token.

    Tokens are normally minted by the auth provider; this is used by
    internal tooling and tests to produce tokens the API accepts.

    Args:
        data: Data to encode in the token
        expires_delta: Token expiration time delta

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()
    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "type": "access"})
    encoded_jwt = jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt


def decode_token(token: str) -> dict[str, Any] | None:
    """
    Decode and verify a JWT token.

    Args:
        token: JWT token to decode

    Returns:
        Decoded token data or None if invalid
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        return payload
    except JWTError:
        return None


def compute_signature(message: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of ``message`` keyed with ``secret``."""
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, provided: str | None) -> bool:
    """Constant-time comparison of two hex signatures."""
    if not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.strip().encode("utf-8"))


def verify_webhook_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """
    Verify a gateway webhook signature over the raw request body.

    Args:
        raw_body: Request body exactly as received
        signature: Value of the x-razorpay-signature header
        secret: Webhook secret shared with the gateway

    Returns:
        True if the signature matches
    """
    return signatures_match(compute_signature(raw_body, secret), signature)


def verify_payment_signature(order_id: str, payment_id: str, signature: str | None, secret: str) -> bool:
    """
    Verify the checkout callback signature, computed over ``order_id|payment_id``.

    Args:
        order_id: Gateway order id
        payment_id: Gateway payment id
        signature: Signature returned to the client by the checkout widget
        secret: Gateway key secret

    Returns:
        True if the signature matches
    """
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return signatures_match(compute_signature(message, secret), signature)
