import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import Response

from order_service.config import settings
from order_service.customer_client import CustomerClient
from order_service.db import close_pool, get_pool, init_schema
from order_service.errors import OrderWorkflowError
from order_service.http_client import close_http_session, get_http_session
from order_service.metrics import get_metrics_bytes, get_metrics_content_type
from order_service.notifications import NotificationDispatcher
from order_service.orders import OrderService
from order_service.redis_client import close_redis, get_redis
from order_service.routes import orders

GRACEFUL_SHUTDOWN_WAIT_SEC = 10

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    pool = await get_pool()
    await init_schema(pool)
    await get_redis()
    session = await get_http_session()
    app.state.order_service = OrderService(
        pool,
        dispatcher=NotificationDispatcher(
            session, settings.notification_service_url, settings.notification_timeout_seconds
        ),
        customers=CustomerClient(
            session, settings.customer_service_url, settings.customer_lookup_timeout_seconds
        ),
    )
    logger.info("Order service ready")
    yield
    await app.state.order_service.wait_for_notifications(timeout=GRACEFUL_SHUTDOWN_WAIT_SEC)
    await close_http_session()
    await close_redis()
    await close_pool()
    logger.info("Order service stopped")


app = FastAPI(title="Order Service", lifespan=lifespan)
app.include_router(orders.router)
app.add_exception_handler(OrderWorkflowError, orders.workflow_error_handler)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: status transitions, rejections, notification outcomes."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
