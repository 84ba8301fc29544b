import uuid
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from elibrary.core.enums import MembershipName, RoleName
from elibrary.core.library_client import LibraryClient, library_client
from elibrary.services.cart_registry import CartStoreRegistry, cart_registry
from elibrary.services.cart_store import BorrowCartStore
from elibrary.services.membership import resolve_membership


def get_library_client() -> LibraryClient:
    return library_client


def get_cart_registry() -> CartStoreRegistry:
    return cart_registry


def require_token(request: Request) -> str:
    """Bearer token stored in the session by POST /api/session."""
    token = request.session.get("token")
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated. Please log in.",
        )
    return token


def require_admin(request: Request, token: str = Depends(require_token)) -> str:
    """
    Role as reported by the library API's /users/me when the session started.
    The library API still authorizes every admin call it receives.
    """
    role = request.session.get("role")
    if role not in (RoleName.ADMIN.value, RoleName.SUPER_ADMIN.value):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return token


def get_membership(request: Request) -> MembershipName:
    return resolve_membership(request.session.get("membership"))


def get_anonymous_id(request: Request) -> Optional[str]:
    """Per-browser cart id for logged-out visitors, issued on first use."""
    if request.session.get("user_id"):
        return None
    if not request.session.get("cart_id"):
        request.session["cart_id"] = uuid.uuid4().hex
    return request.session["cart_id"]


async def get_cart_store(
    request: Request,
    anonymous_id: Optional[str] = Depends(get_anonymous_id),
    registry: CartStoreRegistry = Depends(get_cart_registry)
) -> BorrowCartStore:
    """Cart for the session's user, or this browser's anonymous cart when logged out."""
    return await registry.get(
        request.session.get("user_id"), request.session.get("token"), anonymous_id
    )
