from fastapi import APIRouter, Depends, Request
import logging

from elibrary.api.dependencies import get_cart_registry, get_cart_store, get_library_client, get_membership
from elibrary.core.enums import MembershipName
from elibrary.core.library_client import LibraryClient
from elibrary.schemas.session import SessionCreate, SessionResponse
from elibrary.services.cart_registry import CartStoreRegistry
from elibrary.services.cart_store import BorrowCartStore
from elibrary.services.membership import resolve_membership

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/session", tags=["session"])


@router.get("", response_model=SessionResponse)
async def get_session(
    request: Request,
    membership: MembershipName = Depends(get_membership),
    store: BorrowCartStore = Depends(get_cart_store)
):
    return SessionResponse(
        user_id=request.session.get("user_id"),
        role=request.session.get("role"),
        membership=membership,
        authenticated=bool(request.session.get("token")),
        cart_count=store.get_cart_count()
    )


@router.post("", response_model=SessionResponse)
async def create_session(
    request: Request,
    data: SessionCreate,
    registry: CartStoreRegistry = Depends(get_cart_registry),
    client: LibraryClient = Depends(get_library_client)
):
    """
    Attach a library API token to this session and load the user's cart.

    User id, role and membership are read from the library API for that
    token, never taken from the request body.
    """
    profile = await client.get_me(data.token)
    membership = resolve_membership(profile.membership_name)
    anonymous_id = request.session.pop("cart_id", None)

    request.session.update({
        "token": data.token,
        "user_id": profile.id,
        "role": profile.role_name.value,
        "membership": membership.value,
    })
    store = await registry.login(profile.id, data.token, anonymous_id)
    logger.info(f"Session started for user {profile.id}")

    return SessionResponse(
        user_id=profile.id,
        role=profile.role_name,
        membership=membership,
        authenticated=True,
        cart_count=store.get_cart_count()
    )


@router.delete("", response_model=SessionResponse)
async def end_session(
    request: Request,
    registry: CartStoreRegistry = Depends(get_cart_registry)
):
    user_id = request.session.get("user_id")
    await registry.release(user_id, request.session.get("cart_id"))
    request.session.clear()
    logger.info(f"Session ended for user {user_id}")
    return SessionResponse(authenticated=False)
