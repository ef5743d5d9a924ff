"""
Error kinds raised by the order workflow.

Validation errors are raised inside the status-change transaction so it rolls back.
The HTTP layer maps each kind to its own status code.
"""
from typing import Any, Iterable


class OrderWorkflowError(Exception):
    """Base for every error the order workflow surfaces to callers."""

    code = "ORDER_WORKFLOW_ERROR"

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": str(self), "code": self.code}


class OrderNotFoundError(OrderWorkflowError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvalidCurrentStatusError(OrderWorkflowError):
    """Stored status is not a known status. Indicates corrupted data."""

    code = "INVALID_CURRENT_STATUS"

    def __init__(self, current_status: Any):
        self.current_status = current_status
        super().__init__(f"Invalid current status: {current_status}")


class IllegalTransitionError(OrderWorkflowError):
    code = "ILLEGAL_TRANSITION"

    def __init__(self, current_status: str, new_status: str, allowed: Iterable[str]):
        self.current_status = current_status
        self.new_status = new_status
        self.allowed = list(allowed)
        valid = ", ".join(self.allowed) or "none (terminal status)"
        super().__init__(
            f"Cannot transition from {current_status} to {new_status}. Valid transitions: {valid}"
        )

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body.update(
            current_status=self.current_status,
            requested_status=self.new_status,
            allowed_statuses=self.allowed,
        )
        return body


class BusinessRuleViolationError(OrderWorkflowError):
    code = "BUSINESS_RULE_VIOLATION"

    def __init__(self, current_status: str, new_status: str, violations: Iterable[Any]):
        self.current_status = current_status
        self.new_status = new_status
        self.violations = list(violations)
        super().__init__(
            f"Transition {current_status} -> {new_status} violates business rules: "
            + "; ".join(v.message for v in self.violations)
        )

    @property
    def violated_rules(self) -> list[str]:
        return [v.code for v in self.violations]

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body.update(
            current_status=self.current_status,
            requested_status=self.new_status,
            violations=[{"rule": v.code, "message": v.message} for v in self.violations],
        )
        return body


class PersistenceError(OrderWorkflowError):
    """Unexpected database failure. The surrounding transaction has been rolled back."""

    code = "PERSISTENCE_ERROR"


class NotificationDispatchError(OrderWorkflowError):
    """Notification could not be delivered. Never propagated past the status change."""

    code = "NOTIFICATION_DISPATCH_FAILED"


class RequestInProgressError(OrderWorkflowError):
    """Another request with the same idempotency key has not finished yet."""

    code = "REQUEST_IN_PROGRESS"

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"A request with idempotency key {idempotency_key} is still in progress")
