"""
Order lifecycle state machine: statuses, allowed transitions and display metadata.
Both tables are read-only; nothing mutates them at runtime.
"""
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from order_service.errors import InvalidCurrentStatusError


class OrderStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    def __str__(self) -> str:
        return self.value


# Current status -> allowed next statuses
VALID_TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = MappingProxyType({
    OrderStatus.DRAFT: frozenset({OrderStatus.PENDING, OrderStatus.CANCELLED}),
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),  # terminal
    OrderStatus.REFUNDED: frozenset(),  # terminal
})

# Declaration order of the enum is lifecycle order
LIFECYCLE_ORDER: tuple[OrderStatus, ...] = tuple(OrderStatus)


def parse_status(value: str | OrderStatus) -> OrderStatus | None:
    """Return the OrderStatus for value, or None if it is not a known status."""
    try:
        return OrderStatus(value)
    except ValueError:
        return None


def allowed_next(current_status: str | OrderStatus) -> list[OrderStatus]:
    """Allowed successors of current_status in lifecycle order. Raises if current_status is unknown."""
    current = parse_status(current_status)
    if current is None:
        raise InvalidCurrentStatusError(current_status)
    allowed = VALID_TRANSITIONS[current]
    return [s for s in LIFECYCLE_ORDER if s in allowed]


def is_legal_transition(current_status: str | OrderStatus, new_status: str | OrderStatus) -> bool:
    """True if new_status is allowed after current_status."""
    new = parse_status(new_status)
    return new is not None and new in allowed_next(current_status)


def is_terminal(status: str | OrderStatus) -> bool:
    current = parse_status(status)
    return current is not None and not VALID_TRANSITIONS[current]


@dataclass(frozen=True)
class StatusMetadata:
    label: str
    color: str
    icon: str
    description: str
    customer_visible: bool
    can_edit: bool
    can_cancel: bool

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "color": self.color,
            "icon": self.icon,
            "description": self.description,
            "customer_visible": self.customer_visible,
            "can_edit": self.can_edit,
            "can_cancel": self.can_cancel,
        }


STATUS_METADATA: Mapping[OrderStatus, StatusMetadata] = MappingProxyType({
    OrderStatus.DRAFT: StatusMetadata(
        "Draft", "#6c757d", "edit", "Order is being prepared",
        customer_visible=False, can_edit=True, can_cancel=True,
    ),
    OrderStatus.PENDING: StatusMetadata(
        "Pending", "#ffc107", "clock", "Order awaiting confirmation",
        customer_visible=True, can_edit=False, can_cancel=True,
    ),
    OrderStatus.CONFIRMED: StatusMetadata(
        "Confirmed", "#17a2b8", "check-circle", "Order confirmed and payment received",
        customer_visible=True, can_edit=False, can_cancel=True,
    ),
    OrderStatus.PROCESSING: StatusMetadata(
        "Processing", "#007bff", "cog", "Order being prepared for shipment",
        customer_visible=True, can_edit=False, can_cancel=True,
    ),
    OrderStatus.SHIPPED: StatusMetadata(
        "Shipped", "#fd7e14", "truck", "Order has been shipped",
        customer_visible=True, can_edit=False, can_cancel=False,
    ),
    OrderStatus.DELIVERED: StatusMetadata(
        "Delivered", "#28a745", "check", "Order has been delivered",
        customer_visible=True, can_edit=False, can_cancel=False,
    ),
    OrderStatus.CANCELLED: StatusMetadata(
        "Cancelled", "#dc3545", "times-circle", "Order has been cancelled",
        customer_visible=True, can_edit=False, can_cancel=False,
    ),
    OrderStatus.REFUNDED: StatusMetadata(
        "Refunded", "#6f42c1", "undo", "Order has been refunded",
        customer_visible=True, can_edit=False, can_cancel=False,
    ),
})

UNKNOWN_STATUS_METADATA = StatusMetadata(
    "Unknown", "#6c757d", "question", "Unknown status",
    customer_visible=False, can_edit=False, can_cancel=False,
)


class TransitionContext(BaseModel):
    """
    Caller-supplied facts about the real world for one transition decision.
    Accepts snake_case or camelCase keys; unknown keys are rejected. Never persisted.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )

    payment_confirmed: bool = False
    inventory_reserved: bool = False
    shipping_arranged: bool = False
    tracking_number: str | None = None
    payment_id: str | None = None
    webhook_source: str | None = None
    automated_by: str | None = None
