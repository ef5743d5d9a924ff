"""
Status manager: stateless decisions about order status changes.

Combines the transition graph, the status metadata table and the business rules.
Holds no state; the status lives only in the order row.
"""
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from order_service.business_rules import TransitionRule, evaluate, get_transition_rule
from order_service.errors import (
    BusinessRuleViolationError,
    IllegalTransitionError,
    InvalidCurrentStatusError,
)
from order_service.order_state import (
    STATUS_METADATA,
    UNKNOWN_STATUS_METADATA,
    OrderStatus,
    StatusMetadata,
    TransitionContext,
    allowed_next,
    is_terminal,
    parse_status,
)

logger = logging.getLogger(__name__)

__all__ = [
    "NextStatus",
    "generate_automated_reason",
    "get_next_statuses",
    "get_status_metadata",
    "is_terminal",
    "validate_business_rules",
    "validate_transition",
]


@dataclass(frozen=True)
class NextStatus:
    status: OrderStatus
    metadata: StatusMetadata
    rule: TransitionRule

    def to_dict(self) -> dict:
        return {"status": self.status.value, **self.metadata.to_dict(), "rules": self.rule.to_dict()}


def validate_transition(current_status: str | OrderStatus, new_status: str | OrderStatus) -> None:
    """
    Raise unless new_status is a legal successor of current_status.
    InvalidCurrentStatusError: current_status is not a known status.
    IllegalTransitionError: edge not in the graph; carries the allowed successors.
    """
    try:
        allowed = allowed_next(current_status)
    except InvalidCurrentStatusError:
        logger.error("Order has unknown stored status %r", current_status)
        raise
    if parse_status(new_status) not in allowed:
        raise IllegalTransitionError(
            str(current_status), str(new_status), [s.value for s in allowed]
        )


def validate_business_rules(
    order: Mapping[str, Any],
    new_status: str | OrderStatus,
    context: TransitionContext | None = None,
) -> None:
    """Raise BusinessRuleViolationError listing every unmet precondition."""
    result = evaluate(order, new_status, context)
    if not result.ok:
        raise BusinessRuleViolationError(str(order["status"]), str(new_status), result.violations)


def get_next_statuses(current_status: str | OrderStatus) -> list[NextStatus]:
    """Legal next statuses with their metadata and rules. Empty for terminal or unknown statuses."""
    try:
        allowed = allowed_next(current_status)
    except InvalidCurrentStatusError:
        return []
    return [
        NextStatus(status, STATUS_METADATA[status], get_transition_rule(current_status, status))
        for status in allowed
    ]


def get_status_metadata(status: str | OrderStatus) -> StatusMetadata:
    """Display metadata for status. Unknown statuses get a safe default instead of an error."""
    known = parse_status(status)
    if known is None:
        return UNKNOWN_STATUS_METADATA
    return STATUS_METADATA[known]


def generate_automated_reason(
    current_status: str | OrderStatus,
    new_status: str | OrderStatus,
    context: TransitionContext | None = None,
) -> str:
    """Audit reason built from the rule description plus any context values present."""
    reason = get_transition_rule(current_status, new_status).description
    if context is None:
        return reason
    if context.payment_id:
        reason += f" (Payment ID: {context.payment_id})"
    if context.tracking_number:
        reason += f" (Tracking: {context.tracking_number})"
    if context.automated_by:
        reason += f" - Automated by {context.automated_by}"
    return reason
