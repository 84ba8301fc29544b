import asyncio
import logging
from collections import defaultdict
from typing import Dict, Optional

from elibrary.core.library_client import LibraryClient, library_client
from elibrary.services.cart_storage import LocalCartStorage, storage_key_for
from elibrary.services.cart_store import BorrowCartStore

logger = logging.getLogger(__name__)


class CartStoreRegistry:
    """Keeps one initialized cart store per storage key for the service's lifetime."""

    def __init__(self, storage: LocalCartStorage = None, client: LibraryClient = None):
        self.storage = storage or LocalCartStorage()
        self.client = client or library_client
        self._stores: Dict[str, BorrowCartStore] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get(
        self,
        user_id: Optional[str] = None,
        token: Optional[str] = None,
        anonymous_id: Optional[str] = None
    ) -> BorrowCartStore:
        """
        The store for a user, or for one anonymous browser session.

        A user signed in on several devices shares one store; a request carrying
        a different token only swaps the token used for remote writes.
        """
        key = storage_key_for(user_id, anonymous_id)
        async with self._locks[key]:
            store = self._stores.get(key)
            if store is None:
                store = BorrowCartStore(self.storage, self.client, key, token)
                await store.init()
                self._stores[key] = store
            elif token and store.token != token:
                store.update_token(token)
            return store

    async def login(self, user_id: str, token: str, anonymous_id: Optional[str] = None) -> BorrowCartStore:
        """
        Open the user's cart and fold in whatever this browser session added
        while logged out. The user's own stored and remote carts load first.
        """
        offline_items = []
        if anonymous_id:
            anonymous_key = storage_key_for(None, anonymous_id)
            anonymous = self._stores.pop(anonymous_key, None)
            if anonymous is not None:
                anonymous.dispose()
                offline_items = anonymous.items
            else:
                offline_items = await self.storage.read(anonymous_key)

        store = await self.get(user_id, token)

        if offline_items:
            await store.merge(offline_items)
            await self.storage.delete(anonymous_key)
            logger.info(f"Carried {len(offline_items)} offline cart entries into {store.storage_key}")
        return store

    async def release(self, user_id: Optional[str], anonymous_id: Optional[str] = None) -> None:
        """Drop a store after its queued remote writes have gone out."""
        store = self._stores.pop(storage_key_for(user_id, anonymous_id), None)
        if store is not None:
            await store.flush()
            store.dispose()

    async def close(self) -> None:
        """Let pending remote writes finish, then tear every store down."""
        for store in list(self._stores.values()):
            await store.flush()
            store.dispose()
        self._stores.clear()


# Global instance
cart_registry = CartStoreRegistry()
