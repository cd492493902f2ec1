from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.auth import require_role
from app.errors import ConflictError
from app.models import LineItem, Order, Principal, Role
from app.routes.deps import get_principal, get_services
from app.services import Services

router = APIRouter(prefix="/orders", tags=["orders"])


class PlaceOrderBody(BaseModel):
    restaurant_id: str = Field(..., min_length=1, description="Restaurant the order is placed with")
    line_items: list[LineItem] = Field(..., min_length=1, description="Items with their price at order time")


class OrderActionBody(BaseModel):
    order_id: str = Field(..., min_length=1, description="Order to act on")


def _order_response(order: Order, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "ok", "order": order.model_dump(mode="json")},
    )


def _orders_response(orders: list[Order]) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content={"status": "ok", "orders": [o.model_dump(mode="json") for o in orders]},
    )


@router.post("/create")
async def place_order(
    body: PlaceOrderBody,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """
    Place an order. With an Idempotency-Key header (and Redis configured), a
    retry with the same key returns the first order instead of creating another.
    """
    require_role(principal, Role.CUSTOMER)
    guard = services.idempotency
    if guard is None or not idempotency_key:
        order = await services.orders.place_order(principal, body.restaurant_id, body.line_items)
        return _order_response(order, status_code=201)

    previous = await guard.claim(idempotency_key)
    if previous:
        return _order_response(await services.orders.get_order(previous, principal))
    if previous == "":
        raise ConflictError("An order with this Idempotency-Key is still being placed")
    order = None
    try:
        order = await services.orders.place_order(principal, body.restaurant_id, body.line_items)
        await guard.remember(idempotency_key, order.id)
    finally:
        # Also runs on cancellation; an unplaced order must not hold the key until it expires.
        if order is None:
            await guard.release(idempotency_key)
    return _order_response(order, status_code=201)


@router.put("/accept")
async def accept_order(
    body: OrderActionBody,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    require_role(principal, Role.RESTAURANT)
    return _order_response(await services.orders.accept(body.order_id, principal))


@router.put("/prepared")
async def mark_prepared(
    body: OrderActionBody,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    require_role(principal, Role.RESTAURANT)
    return _order_response(await services.orders.mark_prepared(body.order_id, principal))


@router.put("/deliver")
async def dispatch_order(
    body: OrderActionBody,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Courier picks up a prepared order; the courier is assigned here."""
    require_role(principal, Role.COURIER)
    return _order_response(await services.orders.dispatch(body.order_id, principal))


@router.put("/delivered")
async def confirm_delivery(
    body: OrderActionBody,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Assigned courier confirms the hand-over."""
    require_role(principal, Role.COURIER)
    return _order_response(await services.orders.confirm_delivery(body.order_id, principal))


@router.put("/cancel")
async def cancel_order(
    body: OrderActionBody,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    require_role(principal, Role.CUSTOMER, Role.RESTAURANT)
    return _order_response(await services.orders.cancel(body.order_id, principal))


@router.get("/waiting")
async def waiting_orders(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    require_role(principal, Role.CUSTOMER, Role.RESTAURANT)
    return _orders_response(await services.orders.waiting_orders(principal))


@router.get("/active")
async def active_orders(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    require_role(principal, Role.CUSTOMER, Role.RESTAURANT)
    return _orders_response(await services.orders.active_orders(principal))


@router.get("/inactive")
async def inactive_orders(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    require_role(principal, Role.CUSTOMER, Role.RESTAURANT)
    return _orders_response(await services.orders.inactive_orders(principal))


@router.get("/to-deliver")
async def orders_to_deliver(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    require_role(principal, Role.COURIER)
    return _orders_response(await services.orders.orders_to_deliver(principal))


@router.get("/in-delivery")
async def orders_in_delivery(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    require_role(principal, Role.COURIER)
    return _orders_response(await services.orders.orders_in_delivery(principal))


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(get_services),
) -> JSONResponse:
    return _order_response(await services.orders.get_order(order_id, principal))
