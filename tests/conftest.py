from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from elibrary.core.library_client import LibraryAPIError
from elibrary.db.base import Base
from elibrary.db.models import LocalCart  # noqa: F401
from elibrary.schemas.book import Book
from elibrary.schemas.order import Order, OrderPage
from elibrary.schemas.session import UserProfile
from elibrary.services.cart_storage import LocalCartStorage


DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine():
    engine = create_async_engine(DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def storage(session_factory):
    return LocalCartStorage(session_factory)


class FakeLibraryClient:
    """Records calls the cart makes against the library API."""

    def __init__(self):
        self.remote_cart = []
        self.books = {}
        self.events = []
        self.synced = []
        self.placed_orders = []
        self.users = {}
        self.sync_tokens = []
        self.orders = {}
        self.status_updates = []
        self.order_filters = None
        self.fail_get_cart = False
        self.fail_sync = False
        self.fail_place_order = False
        self.sync_gate = None

    async def get_me(self, token):
        self.events.append("get_me")
        if token not in self.users:
            raise LibraryAPIError("Failed to fetch profile: Invalid token", status_code=401)
        return UserProfile.model_validate(self.users[token])

    async def get_book(self, book_id):
        self.events.append("get_book")
        if book_id not in self.books:
            raise LibraryAPIError("Failed to fetch book: Book not found", status_code=404)
        return self.books[book_id]

    async def get_cart(self, token):
        self.events.append("get_cart")
        if self.fail_get_cart:
            raise LibraryAPIError("Failed to fetch cart: Server error", status_code=500)
        return self.remote_cart

    async def sync_cart(self, token, items):
        self.events.append("sync_cart")
        if self.sync_gate is not None:
            await self.sync_gate.wait()
        if self.fail_sync:
            raise LibraryAPIError("Failed to sync cart: Server error", status_code=500)
        self.synced.append([(item.book.id, item.quantity) for item in items])
        self.sync_tokens.append(token)
        return {"message": "Cart synced successfully"}

    async def place_order(self, token, items, address_id):
        self.events.append("place_order")
        if self.fail_place_order:
            raise LibraryAPIError("Failed to place order: Insufficient stock", status_code=400)
        self.placed_orders.append(([(item.book.id, item.quantity) for item in items], address_id))
        return {"_id": "order-1", "status": "pending"}

    async def get_order(self, token, order_id):
        self.events.append("get_order")
        if order_id not in self.orders:
            raise LibraryAPIError("Failed to fetch order: Order not found", status_code=404)
        return Order.model_validate(self.orders[order_id])

    async def get_all_orders(self, token, filters=None):
        self.events.append("get_all_orders")
        self.order_filters = filters
        orders = list(self.orders.values())
        return OrderPage.model_validate({
            "orders": orders, "totalOrders": len(orders), "totalPages": 1,
            "currentPage": 1, "limit": 10, "counts": {"total": len(orders)}
        })

    async def cancel_order(self, token, order_id):
        self.status_updates.append((order_id, "cancelled"))
        self.orders[order_id]["status"] = "cancelled"
        return {"message": "Order cancelled successfully"}

    async def request_exchange(self, token, order_id, reason):
        self.status_updates.append((order_id, "return_requested"))
        self.orders[order_id].update({"status": "return_requested", "returnReason": reason})
        return {"message": "Exchange request submitted successfully"}

    async def submit_refund_details(self, token, order_id, details):
        self.orders[order_id]["refundDetails"] = details.model_dump(by_alias=True)
        return {"message": "Refund details submitted successfully"}

    async def get_my_orders(self, token, status=None):
        self.events.append("get_my_orders")
        return [Order.model_validate(order) for order in self.orders.values()]

    async def update_order_status(self, token, order_id, status):
        self.status_updates.append((order_id, status))
        self.orders[order_id]["status"] = status
        return {"message": "Order status updated"}

    async def download_invoice(self, token, order_id):
        return b"%PDF-1.4 invoice"


@pytest.fixture
def fake_client():
    return FakeLibraryClient()


@pytest.fixture
def make_book():
    def _make_book(book_id="book-1", copies=5, price="120.00", title=None):
        return Book(
            _id=book_id,
            title=title or f"Title {book_id}",
            price=Decimal(price),
            noOfCopies=copies,
        )
    return _make_book
