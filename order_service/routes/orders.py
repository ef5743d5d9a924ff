import logging
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from order_service import status_manager
from order_service.errors import (
    BusinessRuleViolationError,
    IllegalTransitionError,
    InvalidCurrentStatusError,
    OrderNotFoundError,
    OrderWorkflowError,
    PersistenceError,
    RequestInProgressError,
)
from order_service.order_state import OrderStatus
from order_service.orders import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, OrderService
from order_service.redis_client import (
    IDEMPOTENCY_IN_PROGRESS,
    claim_idempotency,
    complete_idempotency,
    release_idempotency,
)
from order_service.schemas import OrderCreate, SortField, SortOrder, StatusUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

ERROR_STATUS_CODES: dict[type[OrderWorkflowError], int] = {
    OrderNotFoundError: 404,
    IllegalTransitionError: 409,
    RequestInProgressError: 409,
    BusinessRuleViolationError: 400,
    InvalidCurrentStatusError: 500,
    PersistenceError: 503,
}

# NUMERIC money columns keep their exact cents on the wire
_ENCODERS = {Decimal: str}


def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service


async def workflow_error_handler(request: Request, exc: OrderWorkflowError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(exc.to_dict(), custom_encoder=_ENCODERS),
    )


def _ok(data: dict, status_code: int = 200, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": True, **extra, "data": data}, custom_encoder=_ENCODERS),
    )


@router.get("/statuses")
async def list_statuses() -> JSONResponse:
    """Display metadata and allowed next statuses for every status."""
    statuses = [
        {
            "status": s.value,
            **status_manager.get_status_metadata(s).to_dict(),
            "next_statuses": [n.status.value for n in status_manager.get_next_statuses(s)],
        }
        for s in OrderStatus
    ]
    return _ok({"statuses": statuses})


@router.post("")
async def create_order(
    body: OrderCreate,
    service: OrderService = Depends(get_order_service),
    x_user_id: str = Header(default="system"),
) -> JSONResponse:
    order = await service.create_order(body, created_by=x_user_id)
    return _ok({"order": order}, status_code=201, message="Order created successfully")


@router.get("")
async def list_orders(
    customer_id: UUID | None = None,
    status: OrderStatus | None = None,
    search: str | None = Query(default=None, max_length=255),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    sort_by: SortField = "created_at",
    sort_order: SortOrder = "desc",
    service: OrderService = Depends(get_order_service),
) -> JSONResponse:
    """Paginated orders, filtered by customer, status or a search over order number and notes."""
    result = await service.list_orders(
        customer_id=customer_id, status=status, search=search,
        page=page, limit=limit, sort_by=sort_by, sort_order=sort_order,
    )
    return _ok(result)


@router.get("/stats")
async def get_order_stats(service: OrderService = Depends(get_order_service)) -> JSONResponse:
    return _ok({"statistics": await service.get_order_stats()})


@router.get("/customer/{customer_id}")
async def list_customer_orders(
    customer_id: UUID,
    status: OrderStatus | None = None,
    search: str | None = Query(default=None, max_length=255),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    sort_by: SortField = "created_at",
    sort_order: SortOrder = "desc",
    service: OrderService = Depends(get_order_service),
) -> JSONResponse:
    result = await service.list_orders(
        customer_id=customer_id, status=status, search=search,
        page=page, limit=limit, sort_by=sort_by, sort_order=sort_order,
    )
    return _ok({"customer_id": customer_id, **result})


@router.get("/{order_id}")
async def get_order(order_id: UUID, service: OrderService = Depends(get_order_service)) -> JSONResponse:
    order = await service.get_order(order_id)
    if order is None:
        raise OrderNotFoundError(str(order_id))
    return _ok({
        "order": order,
        "status_metadata": status_manager.get_status_metadata(order["status"]).to_dict(),
    })


@router.get("/{order_id}/history")
async def get_order_history(order_id: UUID, service: OrderService = Depends(get_order_service)) -> JSONResponse:
    history = await service.get_status_history(order_id)
    if history is None:
        raise OrderNotFoundError(str(order_id))
    return _ok({"history": history})


@router.get("/{order_id}/next-statuses")
async def get_next_statuses(order_id: UUID, service: OrderService = Depends(get_order_service)) -> JSONResponse:
    next_statuses = await service.get_next_statuses(order_id)
    if next_statuses is None:
        raise OrderNotFoundError(str(order_id))
    return _ok({"next_statuses": [n.to_dict() for n in next_statuses]})


@router.put("/{order_id}/status")
async def update_order_status(
    order_id: UUID,
    body: StatusUpdate,
    service: OrderService = Depends(get_order_service),
    x_user_id: str = Header(default="system"),
    idempotency_key: str | None = Header(default=None),
) -> JSONResponse:
    """
    Move an order to body.status.

    With an Idempotency-Key, a key whose earlier request committed returns the current
    order with status "already_processed"; a key whose earlier request is still running
    gets 409. The key only counts as processed once the change has committed; any
    failure releases it so the client can retry.
    """
    key = f"idempotency:order-status:{order_id}:{idempotency_key}" if idempotency_key else None
    if key:
        state = await claim_idempotency(key)
        if state == IDEMPOTENCY_IN_PROGRESS:
            raise RequestInProgressError(idempotency_key)
        if state is not None:
            order = await service.get_order(order_id)
            if order is None:
                raise OrderNotFoundError(str(order_id))
            return _ok({"order": order}, status="already_processed")

    try:
        updated = await service.update_order_status(
            order_id, body.status, x_user_id, body.reason, body.context
        )
        if updated is None:
            raise OrderNotFoundError(str(order_id))
    except BaseException:
        if key:
            await release_idempotency(key)
        raise
    if key:
        try:
            await complete_idempotency(key)
        except RedisError:
            # change is committed; the key stays in_progress until its TTL runs out
            logger.warning("Could not mark idempotency key %s as processed", key, exc_info=True)
    return _ok({"order": updated}, message="Order status updated successfully")


@router.delete("/{order_id}")
async def cancel_order(
    order_id: UUID,
    service: OrderService = Depends(get_order_service),
    x_user_id: str = Header(default="system"),
) -> JSONResponse:
    """Orders are never deleted; this moves the order to cancelled."""
    cancelled = await service.cancel_order(order_id, x_user_id)
    if cancelled is None:
        raise OrderNotFoundError(str(order_id))
    return _ok({"order": cancelled}, message="Order cancelled successfully")
