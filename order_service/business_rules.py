"""
Business preconditions per transition. Pure: no I/O, no side effects.
"""
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping

from order_service.order_state import OrderStatus, TransitionContext, parse_status


@dataclass(frozen=True)
class TransitionRule:
    requires_payment: bool
    requires_inventory: bool
    requires_shipping: bool
    description: str

    def to_dict(self) -> dict:
        return {
            "requires_payment": self.requires_payment,
            "requires_inventory": self.requires_inventory,
            "requires_shipping": self.requires_shipping,
            "description": self.description,
        }


@dataclass(frozen=True)
class RuleViolation:
    code: str
    message: str


@dataclass(frozen=True)
class RuleEvaluation:
    ok: bool
    violations: tuple[RuleViolation, ...]
    rule: TransitionRule


S = OrderStatus

TRANSITION_RULES: Mapping[tuple[OrderStatus, OrderStatus], TransitionRule] = MappingProxyType({
    (S.DRAFT, S.PENDING): TransitionRule(False, False, False, "Order submitted for review"),
    (S.PENDING, S.CONFIRMED): TransitionRule(True, True, False, "Order confirmed and payment received"),
    (S.CONFIRMED, S.PROCESSING): TransitionRule(True, True, False, "Order being prepared for shipment"),
    (S.PROCESSING, S.SHIPPED): TransitionRule(True, True, True, "Order shipped to customer"),
    (S.SHIPPED, S.DELIVERED): TransitionRule(True, True, True, "Order delivered to customer"),
    (S.DELIVERED, S.REFUNDED): TransitionRule(False, False, False, "Order refunded to customer"),
    **{
        (source, S.CANCELLED): TransitionRule(False, False, False, "Order cancelled")
        for source in (S.DRAFT, S.PENDING, S.CONFIRMED, S.PROCESSING, S.SHIPPED)
    },
})

PAYMENT_REQUIRED = RuleViolation("paymentConfirmed", "Payment confirmation required for this status change")
INVENTORY_REQUIRED = RuleViolation("inventoryReserved", "Inventory must be reserved before proceeding")
SHIPPING_REQUIRED = RuleViolation("shippingArranged", "Shipping must be arranged before marking as shipped")
ZERO_TOTAL = RuleViolation("zeroTotalAmount", "Cannot confirm order with zero total amount")
TRACKING_REQUIRED = RuleViolation("trackingNumber", "Tracking number required when marking order as shipped")


def get_transition_rule(current_status: str | OrderStatus, new_status: str | OrderStatus) -> TransitionRule:
    """Rule for the edge, or a no-requirement rule for edges without one."""
    key = (parse_status(current_status), parse_status(new_status))
    rule = TRANSITION_RULES.get(key)  # type: ignore[arg-type]
    if rule is None:
        return TransitionRule(False, False, False, f"Status changed to {new_status}")
    return rule


def _total_amount(order: Mapping[str, Any]) -> Decimal:
    value = order.get("total_amount")
    if value is None:
        return Decimal(0)
    return Decimal(str(value))


def evaluate(
    order: Mapping[str, Any],
    new_status: str | OrderStatus,
    context: TransitionContext | None = None,
) -> RuleEvaluation:
    """
    Check every precondition of order.status -> new_status against context.
    All checks run, so the result lists every violation rather than the first.
    """
    context = context or TransitionContext()
    target = parse_status(new_status)
    rule = get_transition_rule(order["status"], new_status)
    violations: list[RuleViolation] = []

    if rule.requires_payment and not context.payment_confirmed:
        violations.append(PAYMENT_REQUIRED)
    if rule.requires_inventory and not context.inventory_reserved:
        violations.append(INVENTORY_REQUIRED)
    if rule.requires_shipping and not context.shipping_arranged:
        violations.append(SHIPPING_REQUIRED)

    if target is OrderStatus.CONFIRMED and _total_amount(order) <= 0:
        violations.append(ZERO_TOTAL)
    if target is OrderStatus.SHIPPED and not (context.tracking_number or "").strip():
        violations.append(TRACKING_REQUIRED)

    return RuleEvaluation(ok=not violations, violations=tuple(violations), rule=rule)
