"""
Order status notifications, sent after a status change has committed.
Delivery failures raise NotificationDispatchError; the order service logs and absorbs them.
"""
import logging
from typing import Any, Mapping

import aiohttp

from order_service.customer_client import Customer
from order_service.errors import NotificationDispatchError
from order_service.order_state import OrderStatus, TransitionContext

logger = logging.getLogger(__name__)

ORDER_STATUS_PATH = "/order-status"


def build_status_notification(
    order: Mapping[str, Any],
    customer: Customer,
    old_status: str | OrderStatus,
    new_status: str | OrderStatus,
    reason: str,
    context: TransitionContext | None = None,
) -> dict[str, Any]:
    context = context or TransitionContext()
    return {
        "order_id": str(order["id"]),
        "order_number": order.get("order_number"),
        "old_status": str(old_status),
        "new_status": str(new_status),
        "customer_email": customer.email,
        "customer_name": customer.full_name,
        "reason": reason,
        "automated": bool(context.automated_by or context.webhook_source),
        "webhook_triggered": bool(context.webhook_source),
    }


class NotificationDispatcher:
    """Posts notification payloads to the notification service."""

    def __init__(self, session: aiohttp.ClientSession, base_url: str, timeout_seconds: float = 5.0):
        self._session = session
        self._url = base_url.rstrip("/") + ORDER_STATUS_PATH
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def dispatch(self, payload: dict[str, Any]) -> str | None:
        """Send payload. Returns the message id reported by the notification service."""
        try:
            async with self._session.post(self._url, json=payload, timeout=self._timeout) as resp:
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = None
                status = resp.status
        except (aiohttp.ClientError, TimeoutError) as e:
            raise NotificationDispatchError(f"Notification service unreachable: {e}") from e

        if status >= 300:
            raise NotificationDispatchError(f"Notification service returned HTTP {status}")
        if not isinstance(body, dict) or not body.get("success"):
            raise NotificationDispatchError("Notification service reported failure")

        message_id = (body.get("data") or {}).get("message_id")
        logger.info(
            "Notification sent for order %s (%s -> %s), message_id=%s",
            payload.get("order_id"), payload.get("old_status"), payload.get("new_status"), message_id,
        )
        return message_id
