from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
import logging

from elibrary.api.dependencies import get_library_client, get_membership, require_admin, require_token
from elibrary.core.enums import MembershipName
from elibrary.core.library_client import LibraryClient
from elibrary.schemas.order import (
    ExchangeRequest,
    Order,
    OrderStatusUpdate,
    OrderView,
    OrderViewPage,
    RefundDetailsSubmit,
)
from elibrary.services.order_progress import (
    cancel_error,
    exchange_error,
    get_estimated_delivery,
    get_order_countdown,
    get_order_progress,
    get_status_options,
    refund_details_error,
    status_change_error,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/orders", tags=["orders"])


def build_order_view(order: Order, membership: MembershipName, now: datetime) -> OrderView:
    """Order plus its derived progress, countdown and admin status choices at `now`."""
    tier = order.membership or membership
    return OrderView(
        order=order,
        progress=get_order_progress(order),
        countdown=get_order_countdown(order, tier, now),
        estimated_delivery=get_estimated_delivery(order, tier),
        status_options=get_status_options(order),
    )


def reject_if(error: Optional[str]) -> None:
    if error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error)


@router.get("/my-orders", response_model=List[OrderView])
async def list_my_orders(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    token: str = Depends(require_token),
    membership: MembershipName = Depends(get_membership),
    client: LibraryClient = Depends(get_library_client)
):
    orders = await client.get_my_orders(token, status_filter)
    now = datetime.now(timezone.utc)
    return [build_order_view(order, membership, now) for order in orders]


@router.get("/admin/all", response_model=OrderViewPage)
async def list_all_orders(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = None,
    membership_filter: Optional[str] = Query(default=None, alias="membership"),
    reason: Optional[str] = None,
    sort: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    token: str = Depends(require_admin),
    client: LibraryClient = Depends(get_library_client)
):
    """Admin listing; each order is presented with its owner's membership."""
    result = await client.get_all_orders(token, {
        "status": status_filter,
        "search": search,
        "membership": membership_filter,
        "reason": reason,
        "sort": sort,
        "page": page,
        "limit": limit,
    })
    now = datetime.now(timezone.utc)
    return OrderViewPage(
        orders=[build_order_view(order, MembershipName.BASIC, now) for order in result.orders],
        total_orders=result.total_orders,
        total_pages=result.total_pages,
        current_page=result.current_page,
        limit=result.limit,
        counts=result.counts,
    )


@router.get("/{order_id}", response_model=OrderView)
async def get_order(
    order_id: str,
    token: str = Depends(require_token),
    membership: MembershipName = Depends(get_membership),
    client: LibraryClient = Depends(get_library_client)
):
    order = await client.get_order(token, order_id)
    return build_order_view(order, membership, datetime.now(timezone.utc))


@router.patch("/admin/{order_id}/status", response_model=OrderView)
async def update_order_status(
    order_id: str,
    data: OrderStatusUpdate,
    token: str = Depends(require_admin),
    membership: MembershipName = Depends(get_membership),
    client: LibraryClient = Depends(get_library_client)
):
    """Validate the transition locally, then let the library API apply it."""
    order = await client.get_order(token, order_id)
    reject_if(status_change_error(order, data.status))

    await client.update_order_status(token, order_id, data.status.value)
    order = await client.get_order(token, order_id)
    return build_order_view(order, membership, datetime.now(timezone.utc))


@router.patch("/{order_id}/cancel", response_model=OrderView)
async def cancel_order(
    order_id: str,
    token: str = Depends(require_token),
    membership: MembershipName = Depends(get_membership),
    client: LibraryClient = Depends(get_library_client)
):
    """Cancel one of the user's own orders while it is still pending or processing."""
    order = await client.get_order(token, order_id)
    reject_if(cancel_error(order))

    await client.cancel_order(token, order_id)
    order = await client.get_order(token, order_id)
    return build_order_view(order, membership, datetime.now(timezone.utc))


@router.post("/{order_id}/exchange", response_model=OrderView)
async def request_exchange(
    order_id: str,
    data: ExchangeRequest,
    token: str = Depends(require_token),
    membership: MembershipName = Depends(get_membership),
    client: LibraryClient = Depends(get_library_client)
):
    now = datetime.now(timezone.utc)
    order = await client.get_order(token, order_id)
    reject_if(exchange_error(order, now))

    await client.request_exchange(token, order_id, data.reason)
    order = await client.get_order(token, order_id)
    return build_order_view(order, membership, now)


@router.put("/{order_id}/refund-details", response_model=OrderView)
async def submit_refund_details(
    order_id: str,
    data: RefundDetailsSubmit,
    token: str = Depends(require_token),
    membership: MembershipName = Depends(get_membership),
    client: LibraryClient = Depends(get_library_client)
):
    """Bank details for a refund; accepted only once the refund has been initiated."""
    order = await client.get_order(token, order_id)
    reject_if(refund_details_error(order))

    await client.submit_refund_details(token, order_id, data)
    order = await client.get_order(token, order_id)
    return build_order_view(order, membership, datetime.now(timezone.utc))


@router.get("/{order_id}/invoice")
async def download_invoice(
    order_id: str,
    token: str = Depends(require_token),
    client: LibraryClient = Depends(get_library_client)
):
    content = await client.download_invoice(token, order_id)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="invoice-{order_id}.pdf"'}
    )
