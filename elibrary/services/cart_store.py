import logging
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional

from elibrary.core.library_client import LibraryAPIError, LibraryClient
from elibrary.schemas.book import Book
from elibrary.schemas.cart import CartItem, CartItemResponse, CartResponse, CartSummary
from elibrary.services.cart_storage import LocalCartStorage
from elibrary.services.cart_sync import RemoteCartSync, remote_to_cart_items
from elibrary.services.membership import delivery_fee

logger = logging.getLogger(__name__)

# Change origins passed to listeners
HYDRATE = "hydrate"
REMOTE = "remote"
LOCAL = "local"

Listener = Callable[[List[CartItem], str], Awaitable[None]]


class BorrowCartStore:
    """
    A user's borrow cart.

    Local storage is the source of truth; when a session token is present the
    cart is mirrored best-effort to the library API. Consumers hold a reference
    to the store and drive its lifecycle through `init()` and `dispose()`.
    Nothing here raises on background failures; only `checkout()` reports
    errors to the caller.
    """

    def __init__(
        self,
        storage: LocalCartStorage,
        client: LibraryClient,
        storage_key: str,
        token: Optional[str] = None
    ):
        self.storage = storage
        self.client = client
        self.storage_key = storage_key
        self.token = token
        self.items: List[CartItem] = []
        self.initialized = False
        self._listeners: List[Listener] = []
        self._remote = RemoteCartSync(client, token) if token else None
        self._skip_next_remote_write = True

    async def init(self) -> "BorrowCartStore":
        """
        Hydrate from local storage, then overwrite with the remote cart when
        one exists.
        """
        self._skip_next_remote_write = True
        self.subscribe(self._persist)
        self.subscribe(self._push_remote)

        items = await self.storage.read(self.storage_key)
        await self._replace(items, HYDRATE)

        if self.token:
            await self._fetch_remote()

        self.initialized = True
        logger.info(f"Cart {self.storage_key} ready with {self.get_cart_count()} books")
        return self

    def dispose(self) -> None:
        """Detach listeners and abandon any remote write still in flight."""
        self._listeners.clear()
        if self._remote:
            self._remote.cancel()
        self.initialized = False

    async def flush(self) -> None:
        if self._remote:
            await self._remote.flush()

    def update_token(self, token: str) -> None:
        """Switch to another session's token without dropping queued remote writes."""
        self.token = token
        if self._remote is None:
            self._remote = RemoteCartSync(self.client, token)
        else:
            self._remote.token = token

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _fetch_remote(self) -> None:
        try:
            remote_cart = await self.client.get_cart(self.token)
        except LibraryAPIError as e:
            logger.error(f"Error fetching remote cart for {self.storage_key}: {e.message}")
            return

        items = remote_to_cart_items(remote_cart)
        if items:
            # Remote is the source of truth after login; offline additions are dropped.
            await self._replace(items, REMOTE)

    async def _replace(self, items: List[CartItem], origin: str) -> None:
        self.items = items
        for listener in list(self._listeners):
            try:
                await listener(self.items, origin)
            except Exception:
                logger.exception(f"Cart listener failed for {self.storage_key}")

    async def _persist(self, items: List[CartItem], origin: str) -> None:
        await self.storage.write(self.storage_key, items)

    async def _push_remote(self, items: List[CartItem], origin: str) -> None:
        if self._skip_next_remote_write:
            # The mount-time change must not clobber a remote cart not yet fetched.
            self._skip_next_remote_write = False
            return
        if self._remote is None or origin == REMOTE:
            return
        self._remote.schedule(items)

    def _find(self, book_id: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.book.id == book_id), None)

    async def _update_quantity(self, book_id: str, delta: int) -> None:
        item = self._find(book_id)
        if item is None:
            return
        quantity = item.quantity + delta
        if quantity < 1 or quantity > item.book.no_of_copies:
            return
        await self._replace(
            [
                i.model_copy(update={"quantity": quantity}) if i.book.id == book_id else i
                for i in self.items
            ],
            LOCAL
        )

    async def add_to_cart(self, book: Book) -> None:
        existing = self._find(book.id)

        if existing:
            if existing.quantity >= book.no_of_copies:
                logger.debug(f"Book {book.id} already at available stock ({book.no_of_copies})")
                return
            items = [
                i.model_copy(update={"book": book, "quantity": i.quantity + 1}) if i.book.id == book.id else i
                for i in self.items
            ]
        elif book.no_of_copies < 1:
            logger.debug(f"Book {book.id} is out of stock, not added")
            return
        else:
            items = self.items + [CartItem(book=book, quantity=1)]

        await self._replace(items, LOCAL)
        logger.info(f"Added to cart {self.storage_key}: book_id={book.id}")

    async def merge(self, incoming: List[CartItem]) -> None:
        """Fold another cart in book by book, each quantity capped at its copies."""
        items = list(self.items)
        for entry in incoming:
            copies = entry.book.no_of_copies
            index = next((n for n, i in enumerate(items) if i.book.id == entry.book.id), None)
            if index is None:
                if copies >= 1:
                    items.append(entry.model_copy(update={"quantity": min(entry.quantity, copies)}))
                continue
            current = items[index]
            quantity = min(current.quantity + entry.quantity, max(copies, current.quantity))
            items[index] = current.model_copy(update={"quantity": quantity})

        if items != self.items:
            await self._replace(items, LOCAL)
            logger.info(f"Merged {len(incoming)} entries into cart {self.storage_key}")

    async def remove_from_cart(self, book_id: str) -> None:
        if self._find(book_id) is None:
            return
        await self._replace([i for i in self.items if i.book.id != book_id], LOCAL)
        logger.info(f"Removed from cart {self.storage_key}: book_id={book_id}")

    async def increase_qty(self, book_id: str) -> None:
        await self._update_quantity(book_id, 1)

    async def decrease_qty(self, book_id: str) -> None:
        await self._update_quantity(book_id, -1)

    async def clear_cart(self) -> None:
        await self._replace([], LOCAL)
        logger.info(f"Cart {self.storage_key} cleared")

    def is_in_cart(self, book_id: str) -> bool:
        return self._find(book_id) is not None

    def get_cart_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def get_item_quantity(self, book_id: str) -> int:
        item = self._find(book_id)
        return item.quantity if item else 0

    def summary(self, membership=None) -> CartSummary:
        subtotal = sum((item.book.price * item.quantity for item in self.items), Decimal("0"))
        fee = delivery_fee(subtotal, membership) if self.items else Decimal("0")
        return CartSummary(
            subtotal=subtotal,
            delivery_fee=fee,
            total=subtotal + fee,
            item_count=self.get_cart_count()
        )

    def to_response(self, membership=None) -> CartResponse:
        return CartResponse(
            items=[
                CartItemResponse(
                    book_id=item.book.id,
                    title=item.book.title,
                    price=item.book.price,
                    quantity=item.quantity,
                    available_copies=item.book.no_of_copies,
                    subtotal=item.book.price * item.quantity
                )
                for item in self.items
            ],
            summary=self.summary(membership)
        )

    async def checkout(self, address_id: str) -> dict:
        """
        Place an order for the cart contents and clear the cart.

        Unlike background sync, failures here are raised to the caller.
        """
        if not self.token:
            raise ValueError("Login required to place an order")
        if not self.items:
            raise ValueError("Cart is empty")

        order = await self.client.place_order(self.token, self.items, address_id)
        await self.clear_cart()
        return order
