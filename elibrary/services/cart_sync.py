import asyncio
import logging
from typing import List, Optional

from pydantic import ValidationError

from elibrary.core.library_client import LibraryAPIError, LibraryClient
from elibrary.schemas.book import Book
from elibrary.schemas.cart import CartItem
from elibrary.services.cart_storage import dedupe_items

logger = logging.getLogger(__name__)


def remote_to_cart_items(remote_cart: list) -> List[CartItem]:
    """
    Map remote line items (`{"book_id": <populated book>, "quantity": n}`)
    onto local cart items. Entries whose book was not populated are skipped.
    """
    items = []
    for entry in remote_cart or []:
        book_data = entry.get("book_id") if isinstance(entry, dict) else None
        quantity = entry.get("quantity") if isinstance(entry, dict) else None
        if not isinstance(book_data, dict) or not isinstance(quantity, int) or quantity < 1:
            logger.warning(f"Skipping unusable remote cart entry: {entry!r}")
            continue
        try:
            items.append(CartItem(book=Book.model_validate(book_data), quantity=quantity))
        except ValidationError as e:
            logger.warning(f"Skipping malformed remote cart entry: {str(e)}")
    return dedupe_items(items)


class RemoteCartSync:
    """
    Pushes cart snapshots to the library API one write at a time.

    While a write is in flight, newer snapshots replace a single pending slot,
    so the remote mirror always converges on the last local state and an older
    write can never land after a newer one.
    """

    def __init__(self, client: LibraryClient, token: str):
        self.client = client
        self.token = token
        self._pending: Optional[List[CartItem]] = None
        self._worker: Optional[asyncio.Task] = None

    def schedule(self, items: List[CartItem]) -> None:
        self._pending = list(items)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        while self._pending is not None:
            snapshot, self._pending = self._pending, None
            try:
                await self.client.sync_cart(self.token, snapshot)
            except LibraryAPIError as e:
                logger.error(f"Error syncing cart with library API: {e.message}")
            except Exception:
                logger.exception("Unexpected error syncing cart with library API")

    async def flush(self) -> None:
        """Wait until every scheduled snapshot has been attempted."""
        while self._worker is not None and not self._worker.done():
            await self._worker

    def cancel(self) -> None:
        self._pending = None
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
        self._worker = None
