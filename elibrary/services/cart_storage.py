import json
import logging
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from elibrary.db.models import LocalCart
from elibrary.db.session import async_session
from elibrary.schemas.cart import CartItem

logger = logging.getLogger(__name__)

ANONYMOUS_STORAGE_KEY = "borrowCart"


def storage_key_for(user_id: Optional[str], anonymous_id: Optional[str] = None) -> str:
    """
    Per-user key once logged in; before that each browser session owns its
    own anonymous key so carts are never shared between visitors.
    """
    if user_id:
        return f"{ANONYMOUS_STORAGE_KEY}_{user_id}"
    if anonymous_id:
        return f"{ANONYMOUS_STORAGE_KEY}_anon_{anonymous_id}"
    return ANONYMOUS_STORAGE_KEY


def dedupe_items(items: List[CartItem]) -> List[CartItem]:
    """Keep the first entry per book id."""
    seen = set()
    unique = []
    for item in items:
        if item.book.id in seen:
            logger.warning(f"Dropping duplicate cart entry for book {item.book.id}")
            continue
        seen.add(item.book.id)
        unique.append(item)
    return unique


def serialize_cart(items: List[CartItem]) -> str:
    return json.dumps([item.model_dump(mode="json", by_alias=True) for item in items])


def deserialize_cart(raw: Optional[str]) -> List[CartItem]:
    """Parse a stored cart; anything unreadable yields an empty cart."""
    if not raw:
        return []

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.error(f"Error loading cart from local storage: {str(e)}")
        return []

    if not isinstance(data, list):
        logger.error(f"Error loading cart from local storage: expected a list, got {type(data).__name__}")
        return []

    try:
        items = [CartItem.model_validate(entry) for entry in data]
    except ValidationError as e:
        logger.error(f"Error loading cart from local storage: {str(e)}")
        return []

    return dedupe_items(items)


class LocalCartStorage:
    """Key/value cart persistence backed by the local_carts table."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or async_session

    async def read(self, storage_key: str) -> List[CartItem]:
        try:
            async with self.session_factory() as db:
                row = await db.get(LocalCart, storage_key)
                raw = row.payload if row else None
        except SQLAlchemyError as e:
            logger.error(f"Error reading cart {storage_key} from local storage: {str(e)}")
            return []
        return deserialize_cart(raw)

    async def write(self, storage_key: str, items: List[CartItem]) -> None:
        payload = serialize_cart(items)
        try:
            async with self.session_factory() as db:
                row = await db.get(LocalCart, storage_key)
                if row:
                    row.payload = payload
                else:
                    db.add(LocalCart(storage_key=storage_key, payload=payload))
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error saving cart {storage_key} to local storage: {str(e)}")
            return
        logger.debug(f"Saved cart {storage_key} ({len(items)} items) to local storage")

    async def delete(self, storage_key: str) -> None:
        try:
            async with self.session_factory() as db:
                row = await db.get(LocalCart, storage_key)
                if row:
                    await db.delete(row)
                    await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting cart {storage_key} from local storage: {str(e)}")
