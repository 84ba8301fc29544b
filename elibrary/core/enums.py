import enum


class MembershipName(str, enum.Enum):
    BASIC = "basic"
    PREMIUM = "premium"


class RoleName(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURN_REQUESTED = "return_requested"
    RETURN_ACCEPTED = "return_accepted"
    RETURNED = "returned"
    RETURN_REJECTED = "return_rejected"
    REFUND_INITIATED = "refund_initiated"
    REFUNDED = "refunded"


class Urgency(str, enum.Enum):
    NORMAL = "normal"
    WARNING = "warning"
    URGENT = "urgent"
    OVERDUE = "overdue"
