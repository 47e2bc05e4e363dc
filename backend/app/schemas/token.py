"""Token schemas for identity resolution."""

from pydantic import BaseModel


class TokenPayload(BaseModel):
    """Token payload data."""

    sub: str | None = None  # subject (user ID)
    exp: int | None = None  # expiration timestamp
    type: str | None = None  # token type
