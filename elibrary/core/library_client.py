import logging
import httpx
from typing import Optional, List, Dict, Any

from pydantic import ValidationError

from elibrary.core.config import settings
from elibrary.schemas.book import Book
from elibrary.schemas.cart import CartItem
from elibrary.schemas.order import Order, OrderPage, RefundDetailsSubmit
from elibrary.schemas.session import UserProfile

logger = logging.getLogger(__name__)


class LibraryAPIError(Exception):
    """Raised when the library API rejects a call or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        return data.get("error") or data.get("message") or response.text
    return response.text


class LibraryClient:
    """HTTP client for the e-library REST API."""

    def __init__(self, base_url: str = None, transport: httpx.AsyncBaseTransport = None):
        self.base_url = (base_url or settings.LIBRARY_API_BASE_URL).rstrip("/")
        self.transport = transport
        self.client = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=settings.LIBRARY_API_TIMEOUT_SECONDS,
                transport=self.transport
            )
        return self.client

    async def _request(
        self,
        method: str,
        path: str,
        failure: str,
        token: Optional[str] = None,
        **kwargs
    ) -> httpx.Response:
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            client = await self._get_client()
            response = await client.request(method, url, headers=headers, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            detail = _error_detail(e.response)
            logger.error(f"{method} {url} failed with status {status_code}: {detail}")
            raise LibraryAPIError(f"{failure}: {detail}", status_code=status_code)
        except httpx.HTTPError as e:
            logger.error(f"{method} {url} failed: {str(e)}")
            raise LibraryAPIError(f"{failure}: {str(e)}")

    async def get_me(self, token: str) -> UserProfile:
        """Profile of the token's owner, including role and populated membership."""
        response = await self._request("GET", "users/me", "Failed to fetch profile", token=token)
        try:
            return UserProfile.model_validate(response.json())
        except (ValidationError, ValueError) as e:
            raise LibraryAPIError(f"Malformed profile payload: {str(e)}")

    async def get_book(self, book_id: str) -> Book:
        response = await self._request("GET", f"books/{book_id}", "Failed to fetch book")
        try:
            return Book.model_validate(response.json())
        except (ValidationError, ValueError) as e:
            raise LibraryAPIError(f"Malformed book payload for {book_id}: {str(e)}")

    async def get_cart(self, token: str) -> List[Dict[str, Any]]:
        """
        Fetch the remote cart.

        GET /users/cart
        Returns: [{"book_id": {...populated book...}, "quantity": 2}, ...]
        """
        response = await self._request("GET", "users/cart", "Failed to fetch cart", token=token)
        data = response.json()
        return data if isinstance(data, list) else []

    async def sync_cart(self, token: str, items: List[CartItem]) -> dict:
        """
        Replace the remote cart with the given items.

        PUT /users/cart
        {"cartItems": [{"book": {"_id": "...", ...}, "quantity": 2}]}
        """
        payload = {"cartItems": [item.model_dump(mode="json", by_alias=True) for item in items]}
        logger.debug(f"Syncing {len(items)} cart items to library API")
        response = await self._request(
            "PUT", "users/cart", "Failed to sync cart", token=token, json=payload
        )
        return response.json()

    async def place_order(self, token: str, items: List[CartItem], address_id: str) -> dict:
        """
        Place an order for the cart contents.

        POST /orders
        {"items": [{"book_id": "...", "quantity": 1}], "selectedAddressId": "..."}
        """
        payload = {
            "items": [{"book_id": item.book.id, "quantity": item.quantity} for item in items],
            "selectedAddressId": address_id
        }
        logger.info(f"Placing order for {len(items)} books, address {address_id}")
        response = await self._request(
            "POST", "orders", "Failed to place order", token=token, json=payload
        )
        result = response.json()
        logger.info(f"Order placed successfully: {result.get('_id') if isinstance(result, dict) else result}")
        return result

    async def get_my_orders(self, token: str, status: Optional[str] = None) -> List[Order]:
        params = {}
        if status and status != "all":
            params["status"] = status
        response = await self._request(
            "GET", "orders/my-orders", "Failed to fetch your orders", token=token, params=params
        )
        try:
            return [Order.model_validate(o) for o in response.json()]
        except (ValidationError, ValueError, TypeError) as e:
            raise LibraryAPIError(f"Malformed order list payload: {str(e)}")

    async def get_order(self, token: str, order_id: str) -> Order:
        response = await self._request(
            "GET", f"orders/admin/{order_id}", "Failed to fetch order details", token=token
        )
        try:
            return Order.model_validate(response.json())
        except (ValidationError, ValueError) as e:
            raise LibraryAPIError(f"Malformed order payload for {order_id}: {str(e)}")

    async def get_all_orders(self, token: str, filters: Optional[Dict[str, Any]] = None) -> OrderPage:
        """
        Admin order listing.

        GET /orders/admin/all?status=&search=&membership=&reason=&sort=&page=&limit=
        Returns: {"orders": [...], "totalOrders": n, "totalPages": n, "currentPage": n, "limit": n, "counts": {...}}
        """
        params = {k: v for k, v in (filters or {}).items() if v is not None and v != "all"}
        response = await self._request(
            "GET", "orders/admin/all", "Failed to fetch orders", token=token, params=params
        )
        try:
            return OrderPage.model_validate(response.json())
        except (ValidationError, ValueError) as e:
            raise LibraryAPIError(f"Malformed order page payload: {str(e)}")

    async def cancel_order(self, token: str, order_id: str) -> dict:
        logger.info(f"Cancelling order {order_id}")
        response = await self._request(
            "PATCH", f"orders/{order_id}/cancel", "Failed to cancel order", token=token
        )
        return response.json()

    async def request_exchange(self, token: str, order_id: str, reason: str) -> dict:
        logger.info(f"Requesting exchange for order {order_id}: {reason}")
        response = await self._request(
            "POST",
            f"orders/{order_id}/return",
            "Failed to request exchange",
            token=token,
            json={"reason": reason}
        )
        return response.json()

    async def submit_refund_details(self, token: str, order_id: str, details: RefundDetailsSubmit) -> dict:
        response = await self._request(
            "PUT",
            f"orders/{order_id}/refund-details",
            "Failed to submit refund details",
            token=token,
            json=details.model_dump(by_alias=True)
        )
        return response.json()

    async def update_order_status(self, token: str, order_id: str, status: str) -> dict:
        logger.info(f"Updating order {order_id} status to {status}")
        response = await self._request(
            "PATCH",
            f"orders/admin/{order_id}/status",
            "Failed to update order status",
            token=token,
            json={"status": status}
        )
        return response.json()

    async def download_invoice(self, token: str, order_id: str) -> bytes:
        response = await self._request(
            "GET", f"orders/{order_id}/invoice", "Failed to download invoice", token=token
        )
        return response.content

    async def close(self):
        """Close HTTP client."""
        if self.client:
            await self.client.aclose()
            self.client = None


# Global instance
library_client = LibraryClient()
