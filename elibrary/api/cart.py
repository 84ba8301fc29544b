from fastapi import APIRouter, Depends, HTTPException, status
import logging

from elibrary.api.dependencies import get_cart_store, get_library_client, get_membership
from elibrary.core.enums import MembershipName
from elibrary.core.library_client import LibraryClient
from elibrary.schemas.cart import CartItemAdd, CartResponse, CheckoutRequest
from elibrary.services.cart_store import BorrowCartStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cart", tags=["cart"])


@router.get("", response_model=CartResponse)
async def get_cart(
    store: BorrowCartStore = Depends(get_cart_store),
    membership: MembershipName = Depends(get_membership)
):
    """Get current borrow cart."""
    return store.to_response(membership)


@router.post("/add", response_model=CartResponse)
async def add_to_cart(
    item: CartItemAdd,
    store: BorrowCartStore = Depends(get_cart_store),
    client: LibraryClient = Depends(get_library_client),
    membership: MembershipName = Depends(get_membership)
):
    """Add one copy of a book; silently capped at the available stock."""
    book = await client.get_book(item.book_id)
    await store.add_to_cart(book)
    return store.to_response(membership)


@router.post("/{book_id}/increase", response_model=CartResponse)
async def increase_quantity(
    book_id: str,
    store: BorrowCartStore = Depends(get_cart_store),
    membership: MembershipName = Depends(get_membership)
):
    await store.increase_qty(book_id)
    return store.to_response(membership)


@router.post("/{book_id}/decrease", response_model=CartResponse)
async def decrease_quantity(
    book_id: str,
    store: BorrowCartStore = Depends(get_cart_store),
    membership: MembershipName = Depends(get_membership)
):
    await store.decrease_qty(book_id)
    return store.to_response(membership)


@router.delete("/{book_id}", response_model=CartResponse)
async def remove_from_cart(
    book_id: str,
    store: BorrowCartStore = Depends(get_cart_store),
    membership: MembershipName = Depends(get_membership)
):
    await store.remove_from_cart(book_id)
    return store.to_response(membership)


@router.post("/clear", response_model=CartResponse)
async def clear_cart(
    store: BorrowCartStore = Depends(get_cart_store),
    membership: MembershipName = Depends(get_membership)
):
    await store.clear_cart()
    return store.to_response(membership)


@router.post("/checkout", status_code=status.HTTP_201_CREATED)
async def checkout(
    data: CheckoutRequest,
    store: BorrowCartStore = Depends(get_cart_store)
):
    """Place an order for the cart contents; the cart is cleared on success."""
    try:
        return await store.checkout(data.address_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
