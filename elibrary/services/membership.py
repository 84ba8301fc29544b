from datetime import timedelta
from decimal import Decimal
from typing import Optional, Union

from elibrary.core.config import settings
from elibrary.core.enums import MembershipName


def resolve_membership(value: Optional[Union[str, MembershipName]]) -> MembershipName:
    """Unknown or missing membership falls back to basic."""
    if isinstance(value, MembershipName):
        return value
    try:
        return MembershipName(str(value).lower()) if value else MembershipName.BASIC
    except ValueError:
        return MembershipName.BASIC


def is_premium(membership) -> bool:
    return resolve_membership(membership) == MembershipName.PREMIUM


def sla_window(membership) -> timedelta:
    hours = settings.PREMIUM_SLA_HOURS if is_premium(membership) else settings.BASIC_SLA_HOURS
    return timedelta(hours=hours)


def delivery_fee(subtotal: Decimal, membership) -> Decimal:
    if is_premium(membership) or subtotal >= settings.FREE_DELIVERY_THRESHOLD:
        return Decimal("0")
    return Decimal(settings.DELIVERY_FEE)
