"""
Order progress and SLA countdown presentation.

Everything here is a pure function of an order snapshot, a membership tier and
the current time. Callers pass ``now`` explicitly and re-evaluate on every
clock tick or status change; nothing is cached between calls.
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

from elibrary.core.config import settings
from elibrary.core.enums import OrderStatus, Urgency
from elibrary.schemas.order import Countdown, Order, OrderProgress, StatusOption
from elibrary.services.membership import sla_window

STANDARD_TRACK = "standard"
EXCHANGE_TRACK = "exchange"
REFUND_SUB_TRACK = "refund"
RESHIPMENT_SUB_TRACK = "reshipment"

STANDARD_STEPS = {
    OrderStatus.CANCELLED: 0,
    OrderStatus.PENDING: 1,
    OrderStatus.PROCESSING: 2,
    OrderStatus.SHIPPED: 3,
    OrderStatus.DELIVERED: 4,
}
STANDARD_LABELS = ["Pending", "Processing", "Shipped", "Delivered"]

EXCHANGE_STEPS = {
    OrderStatus.PENDING: 0,
    OrderStatus.RETURN_REQUESTED: 0,
    OrderStatus.RETURN_ACCEPTED: 1,
    OrderStatus.RETURNED: 2,
}
REFUND_STEPS = {
    OrderStatus.REFUND_INITIATED: 3,
    OrderStatus.REFUNDED: 4,
}
RESHIPMENT_STEPS = {
    OrderStatus.PROCESSING: 3,
    OrderStatus.SHIPPED: 4,
    OrderStatus.DELIVERED: 5,
}
EXCHANGE_LABELS = ["Exchange Requested", "Accepted", "Item Received"]
REFUND_LABELS = EXCHANGE_LABELS + ["Refund Initiated", "Refunded"]
RESHIPMENT_LABELS = EXCHANGE_LABELS + ["Exchange Processed", "Shipped", "Delivered"]

# Statuses that only exist once a delivered order has been contested.
EXCHANGE_ONLY_STATUSES = {
    OrderStatus.RETURN_REQUESTED,
    OrderStatus.RETURN_ACCEPTED,
    OrderStatus.RETURNED,
    OrderStatus.RETURN_REJECTED,
    OrderStatus.REFUND_INITIATED,
    OrderStatus.REFUNDED,
}

COUNTDOWN_STATUSES = {OrderStatus.PENDING, OrderStatus.PROCESSING}

URGENT_BELOW_PERCENT = 25
WARNING_BELOW_PERCENT = 50

FORWARD_SEQUENCE = [
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]
EXCHANGE_TRANSITIONS = {
    OrderStatus.RETURN_REQUESTED: {
        OrderStatus.RETURN_ACCEPTED,
        OrderStatus.RETURN_REJECTED,
        OrderStatus.REFUND_INITIATED,
    },
    OrderStatus.RETURN_ACCEPTED: {OrderStatus.RETURNED, OrderStatus.REFUND_INITIATED},
    OrderStatus.RETURNED: {OrderStatus.PROCESSING, OrderStatus.REFUND_INITIATED},
    OrderStatus.REFUND_INITIATED: {OrderStatus.REFUNDED},
}

STANDARD_OPTIONS = [
    (OrderStatus.PENDING, "Pending"),
    (OrderStatus.PROCESSING, "Processing"),
    (OrderStatus.SHIPPED, "Shipped"),
    (OrderStatus.DELIVERED, "Delivered"),
    (OrderStatus.RETURN_REQUESTED, "Exchange Req."),
    (OrderStatus.RETURNED, "Exchanged"),
    (OrderStatus.RETURN_REJECTED, "Exchange Rej."),
    (OrderStatus.CANCELLED, "Cancelled"),
]
EXCHANGE_OPTIONS = [
    (OrderStatus.RETURN_REQUESTED, "Exchange Pending"),
    (OrderStatus.RETURN_ACCEPTED, "Accepted"),
    (OrderStatus.RETURNED, "Item Received"),
    (OrderStatus.REFUND_INITIATED, "Refund Initiated"),
    (OrderStatus.REFUNDED, "Refunded"),
    (OrderStatus.PROCESSING, "Exchange Processed"),
    (OrderStatus.SHIPPED, "Shipped"),
    (OrderStatus.DELIVERED, "Delivered"),
    (OrderStatus.RETURN_REJECTED, "Exchange Rejected"),
]


def is_exchange_order(order: Order) -> bool:
    return bool(order.return_reason) or order.status in EXCHANGE_ONLY_STATUSES


def get_order_progress(order: Order) -> OrderProgress:
    """Map an order's status onto its progress stepper."""
    status = order.status

    if not is_exchange_order(order):
        if status == OrderStatus.CANCELLED:
            return OrderProgress(
                track=STANDARD_TRACK, step=0, terminal="cancelled",
                first_step=1, steps=STANDARD_LABELS
            )
        return OrderProgress(
            track=STANDARD_TRACK, step=STANDARD_STEPS[status],
            first_step=1, steps=STANDARD_LABELS
        )

    if status == OrderStatus.RETURN_REJECTED:
        return OrderProgress(
            track=EXCHANGE_TRACK, terminal="rejected", first_step=0, steps=EXCHANGE_LABELS
        )
    if status == OrderStatus.CANCELLED:
        return OrderProgress(
            track=EXCHANGE_TRACK, terminal="cancelled", first_step=0, steps=EXCHANGE_LABELS
        )
    if status in REFUND_STEPS:
        return OrderProgress(
            track=EXCHANGE_TRACK, sub_track=REFUND_SUB_TRACK, step=REFUND_STEPS[status],
            first_step=0, steps=REFUND_LABELS
        )
    if status in RESHIPMENT_STEPS:
        return OrderProgress(
            track=EXCHANGE_TRACK, sub_track=RESHIPMENT_SUB_TRACK, step=RESHIPMENT_STEPS[status],
            first_step=0, steps=RESHIPMENT_LABELS
        )
    return OrderProgress(
        track=EXCHANGE_TRACK, step=EXCHANGE_STEPS[status], first_step=0, steps=RESHIPMENT_LABELS
    )


def _as_utc(value: Union[datetime, str, None]) -> Optional[datetime]:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _format_remaining(remaining: timedelta) -> str:
    total_minutes = int(remaining.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m left"


def _urgency(percentage: float) -> Urgency:
    if percentage < URGENT_BELOW_PERCENT:
        return Urgency.URGENT
    if percentage < WARNING_BELOW_PERCENT:
        return Urgency.WARNING
    return Urgency.NORMAL


def compute_countdown(created_at, membership, now: datetime) -> Countdown:
    """
    SLA countdown for an order created at ``created_at``.

    A missing or unparseable ``created_at`` is reported as overdue.
    """
    created = _as_utc(created_at)
    if created is None:
        return Countdown(
            remaining_seconds=0, percentage=0.0, urgency=Urgency.OVERDUE,
            overdue=True, label="Overdue"
        )

    window = sla_window(membership)
    deadline = created + window
    remaining = deadline - _as_utc(now)

    if remaining <= timedelta(0):
        return Countdown(
            deadline=deadline, remaining_seconds=0, percentage=0.0,
            urgency=Urgency.OVERDUE, overdue=True, label="Overdue"
        )

    percentage = max(0.0, min(100.0, remaining / window * 100))
    return Countdown(
        deadline=deadline,
        remaining_seconds=int(remaining.total_seconds()),
        percentage=round(percentage, 2),
        urgency=_urgency(percentage),
        overdue=False,
        label=_format_remaining(remaining),
    )


def get_order_countdown(order: Order, membership, now: datetime) -> Optional[Countdown]:
    """Countdown for orders still awaiting dispatch; ``None`` otherwise."""
    if is_exchange_order(order) or order.status not in COUNTDOWN_STATUSES:
        return None
    return compute_countdown(order.created_at, membership, now)


def estimated_delivery_date(created_at: datetime, membership) -> datetime:
    return created_at + sla_window(membership)


def get_estimated_delivery(order: Order, membership) -> Optional[datetime]:
    """The library's own estimate when it sent one, else createdAt plus the SLA window."""
    if order.estimated_delivery_date is not None:
        return order.estimated_delivery_date
    created = _as_utc(order.created_at)
    return estimated_delivery_date(created, membership) if created else None


def is_status_transition_allowed(current: OrderStatus, new: OrderStatus) -> bool:
    if current in FORWARD_SEQUENCE and new in FORWARD_SEQUENCE:
        return FORWARD_SEQUENCE.index(new) == FORWARD_SEQUENCE.index(current) + 1
    if new == OrderStatus.CANCELLED:
        return current in (OrderStatus.PENDING, OrderStatus.PROCESSING)
    return new in EXCHANGE_TRANSITIONS.get(current, set())


def status_change_error(order: Order, new: OrderStatus) -> Optional[str]:
    """Why an admin may not move `order` to `new`; ``None`` when the change is fine."""
    if order.status == new:
        return None
    if not is_status_transition_allowed(order.status, new):
        return f"Invalid status transition from {order.status.value} to {new.value}"
    if new == OrderStatus.REFUNDED and not (order.refund_details and order.refund_details.account_number):
        return "Cannot mark as Refunded. Bank details missing."
    return None


def cancel_error(order: Order) -> Optional[str]:
    if order.status not in (OrderStatus.PENDING, OrderStatus.PROCESSING):
        return f"Cannot cancel order in {order.status.value} status"
    return None


def exchange_error(order: Order, now: datetime) -> Optional[str]:
    """Exchanges are open for delivered orders, counted from delivery."""
    if order.status != OrderStatus.DELIVERED:
        return f"Cannot request exchange for order in {order.status.value}"
    delivered = _as_utc(order.delivered_at or order.updated_at or order.created_at)
    if delivered is None:
        return "Exchange window has expired"
    if _as_utc(now) - delivered > timedelta(days=settings.EXCHANGE_WINDOW_DAYS):
        return "Exchange window has expired"
    return None


def refund_details_error(order: Order) -> Optional[str]:
    if order.status != OrderStatus.REFUND_INITIATED:
        return "Refund not initiated"
    return None


def get_status_options(order: Order) -> List[StatusOption]:
    """Admin dropdown entries for the order's track, flagged by transition rules."""
    options = EXCHANGE_OPTIONS if is_exchange_order(order) else STANDARD_OPTIONS
    return [
        StatusOption(
            value=value,
            label=label,
            allowed=status_change_error(order, value) is None,
        )
        for value, label in options
    ]
