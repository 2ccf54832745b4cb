import re
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from fastapi import Response

from app.core.config import settings

# secrets.token_urlsafe(32) yields 43 characters; tolerate other sane lengths
GUEST_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,128}$")


class OwnerKind(str, Enum):
    USER = "user"
    GUEST = "guest"


@dataclass(frozen=True)
class CartOwner:
    """The key a cart line is scoped to: a verified user id or a guest session token."""
    user_id: Optional[int] = None
    session_id: Optional[str] = None

    def __post_init__(self):
        if (self.user_id is None) == (not self.session_id):
            raise ValueError("A cart owner needs exactly one of user_id or session_id")

    @classmethod
    def for_user(cls, user_id: int) -> "CartOwner":
        return cls(user_id=user_id)

    @classmethod
    def for_guest(cls, session_id: str) -> "CartOwner":
        return cls(session_id=session_id)

    @property
    def kind(self) -> OwnerKind:
        return OwnerKind.USER if self.user_id is not None else OwnerKind.GUEST


def new_guest_token() -> str:
    return secrets.token_urlsafe(32)


def is_valid_guest_token(value: Optional[str]) -> bool:
    return bool(value) and GUEST_TOKEN_PATTERN.match(value) is not None


def resolve_cart_owner(user_id: Optional[int], guest_cookie: Optional[str]) -> Tuple[CartOwner, Optional[str]]:
    """
    Pick the owner key for a request.

    ``user_id`` must come from a verified bearer token. Without one, the guest cookie
    is used, and when it is missing or malformed a new token is minted. The second
    element of the result is that new token (the caller sets it as a cookie) or None.
    """
    if user_id is not None:
        return CartOwner.for_user(user_id), None

    if is_valid_guest_token(guest_cookie):
        return CartOwner.for_guest(guest_cookie), None

    token = new_guest_token()
    return CartOwner.for_guest(token), token


def set_guest_cookie(response: Response, token: str):
    response.set_cookie(
        key=settings.GUEST_SESSION_COOKIE,
        value=token,
        max_age=settings.GUEST_SESSION_MAX_AGE,
        path="/",
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
    )


def clear_guest_cookie(response: Response):
    response.delete_cookie(
        key=settings.GUEST_SESSION_COOKIE,
        path="/",
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
    )
