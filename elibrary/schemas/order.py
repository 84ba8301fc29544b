from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union
from datetime import datetime
import logging

from elibrary.core.enums import MembershipName, OrderStatus, Urgency
from elibrary.schemas.book import Book

logger = logging.getLogger(__name__)


class OrderItem(BaseModel):
    book_id: Union[Book, str]
    quantity: int
    price_at_order: Decimal = Field(alias="priceAtOrder")

    class Config:
        populate_by_name = True
        extra = "allow"


class RefundDetails(BaseModel):
    account_name: Optional[str] = Field(default=None, alias="accountName")
    bank_name: Optional[str] = Field(default=None, alias="bankName")
    account_number: Optional[str] = Field(default=None, alias="accountNumber")
    ifsc_code: Optional[str] = Field(default=None, alias="ifscCode")

    class Config:
        populate_by_name = True


class Order(BaseModel):
    """Order snapshot as returned by the library API. Read-only on this side."""

    id: str = Field(alias="_id")
    user_id: Optional[Any] = None
    items: List[OrderItem] = []
    status: OrderStatus
    total_amount: Optional[Decimal] = Field(default=None, alias="totalAmount")
    delivery_fee: Optional[Decimal] = Field(default=None, alias="deliveryFee")
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    delivered_at: Optional[datetime] = Field(default=None, alias="deliveredAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    estimated_delivery_date: Optional[datetime] = Field(default=None, alias="estimatedDeliveryDate")
    return_reason: Optional[str] = Field(default=None, alias="returnReason")
    exchange_image_url: Optional[str] = Field(default=None, alias="exchangeImageUrl")
    refund_details: Optional[RefundDetails] = Field(default=None, alias="refundDetails")

    class Config:
        populate_by_name = True
        extra = "allow"

    @field_validator("created_at", "delivered_at", "updated_at", "estimated_delivery_date", mode="before")
    @classmethod
    def tolerate_malformed_timestamp(cls, value):
        # A broken timestamp must not make the whole order unreadable;
        # the presenter treats a missing createdAt as overdue.
        if value is None or isinstance(value, datetime):
            return value
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Discarding malformed order timestamp: {value!r}")
            return None

    @property
    def membership(self) -> Optional[MembershipName]:
        """Membership of the ordering user when the API populated `user_id`."""
        if not isinstance(self.user_id, dict):
            return None
        membership = self.user_id.get("membership_id")
        name = membership.get("name") if isinstance(membership, dict) else None
        try:
            return MembershipName(name) if name else None
        except ValueError:
            return None


class OrderProgress(BaseModel):
    track: str
    sub_track: Optional[str] = None
    step: Optional[int] = None
    terminal: Optional[str] = None
    # step number of steps[0]
    first_step: int
    steps: List[str]


class Countdown(BaseModel):
    deadline: Optional[datetime] = None
    remaining_seconds: int
    percentage: float
    urgency: Urgency
    overdue: bool
    label: str


class StatusOption(BaseModel):
    value: OrderStatus
    label: str
    allowed: bool


class OrderView(BaseModel):
    order: Order
    progress: OrderProgress
    countdown: Optional[Countdown] = None
    estimated_delivery: Optional[datetime] = None
    status_options: List[StatusOption] = []


class OrderPage(BaseModel):
    """One page of the admin order listing, with per-status totals."""

    orders: List[Order] = []
    total_orders: int = Field(default=0, alias="totalOrders")
    total_pages: int = Field(default=0, alias="totalPages")
    current_page: int = Field(default=1, alias="currentPage")
    limit: int = 10
    counts: Dict[str, int] = {}

    class Config:
        populate_by_name = True
        extra = "allow"


class OrderViewPage(BaseModel):
    orders: List[OrderView]
    total_orders: int
    total_pages: int
    current_page: int
    limit: int
    counts: Dict[str, int]


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class ExchangeRequest(BaseModel):
    reason: str = Field(min_length=1)


class RefundDetailsSubmit(BaseModel):
    account_name: str = Field(min_length=1, alias="accountName")
    bank_name: str = Field(min_length=1, alias="bankName")
    account_number: str = Field(min_length=1, alias="accountNumber")
    ifsc_code: str = Field(min_length=1, alias="ifscCode")

    class Config:
        populate_by_name = True
