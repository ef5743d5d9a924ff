"""
Customer lookup against customer-service: GET /customers/{id}.
Lookup failures return None; the caller decides whether that matters.
"""
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Customer:
    id: str
    email: str | None
    first_name: str | None = None
    last_name: str | None = None

    @property
    def full_name(self) -> str | None:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or None


class CustomerClient:
    def __init__(self, session: aiohttp.ClientSession, base_url: str, timeout_seconds: float = 5.0):
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def get_customer(self, customer_id: Any) -> Customer | None:
        url = f"{self._base_url}/customers/{customer_id}"
        try:
            async with self._session.get(url, timeout=self._timeout) as resp:
                if resp.status == 404:
                    logger.info("Customer not found: %s", customer_id)
                    return None
                if resp.status >= 400:
                    logger.warning("Customer lookup for %s failed with HTTP %d", customer_id, resp.status)
                    return None
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.warning("Customer lookup for %s failed: %s", customer_id, e)
            return None

        if not isinstance(body, dict) or not body.get("success"):
            return None
        data = body.get("data") or {}
        # customer-service nests the record under "customer" on some versions
        data = data.get("customer", data)
        return Customer(
            id=str(customer_id),
            email=data.get("email"),
            first_name=data.get("first_name") or data.get("firstName"),
            last_name=data.get("last_name") or data.get("lastName"),
        )
