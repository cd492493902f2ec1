"""
Order placement, status transitions and listings.

attempt_transition is the only path by which an order's status changes:
load, check the actor relates to the order, check the edge, check the
edge's actor rule, then persist with compare-and-set on the status that was
read. On success the restaurant and marketing topics are published and the
affected party is notified.
"""
import logging

from app import order_state
from app.bus import EventBus, marketing_topic, restaurant_topic
from app.errors import ConflictError, Forbidden, InvalidTransition, ValidationError
from app.metrics import (
    order_fanout_errors_total,
    order_transitions_rejected_total,
    order_transitions_total,
    orders_placed_total,
)
from app.models import LineItem, Order, OrderFilter, OrderStatus, Principal, Role, utcnow
from app.notifications import NotificationService, restaurant_recipient
from app.store import OrderStore

logger = logging.getLogger(__name__)

S = OrderStatus

CUSTOMER_MESSAGES = {
    S.ACCEPTED: "Your order {order_id} has been accepted by the restaurant",
    S.PREPARED: "Your order {order_id} is ready and waiting for a courier",
    S.OUT_FOR_DELIVERY: "Your order {order_id} is on its way",
    S.DELIVERED: "Your order {order_id} has been delivered",
    S.CANCELLED: "Your order {order_id} has been cancelled by the restaurant",
}
RESTAURANT_PLACED_MESSAGE = "New order {order_id} is waiting for acceptance"
RESTAURANT_CANCELLED_MESSAGE = "Order {order_id} has been cancelled by the customer"


class OrderService:

    def __init__(self, store: OrderStore, bus: EventBus, notifications: NotificationService):
        self.store = store
        self.bus = bus
        self.notifications = notifications

    async def place_order(self, actor: Principal, restaurant_id: str, line_items: list[LineItem]) -> Order:
        if actor.role != Role.CUSTOMER:
            raise Forbidden("Only customers can place orders")
        if not restaurant_id:
            raise ValidationError("restaurant_id is required")
        if not line_items:
            raise ValidationError("An order needs at least one line item")

        order = await self.store.create(Order.place(actor.id, restaurant_id, line_items))
        orders_placed_total.inc()
        logger.info("Order %s placed by customer=%s at restaurant=%s total=%s",
                    order.id, actor.id, restaurant_id, order.total_price)

        await self._fan_out(order, actor, placed=True)
        return order

    async def get_order(self, order_id: str, actor: Principal) -> Order:
        order = await self.store.find_by_id(order_id)
        if not order_state.may_view(order, actor):
            raise Forbidden("Order does not belong to you")
        return order

    async def attempt_transition(self, order_id: str, target: OrderStatus, actor: Principal) -> Order:
        order = await self.store.find_by_id(order_id)
        current = order.status

        if not order_state.relates_to(order, actor):
            self._reject("forbidden", order, target, actor)
            raise Forbidden("Order does not belong to you")
        if not order_state.is_valid_transition(current, target):
            self._reject("invalid_transition", order, target, actor)
            raise InvalidTransition(current_state=current.value, target=target.value)
        if not order_state.actor_may_transition(order, target, actor):
            self._reject("forbidden", order, target, actor)
            raise Forbidden(f"Role {actor.role.value} cannot move this order to {target.value}")

        changes: dict = {"status": target}
        if target == S.OUT_FOR_DELIVERY:
            changes["courier_id"] = actor.id
        elif target == S.DELIVERED:
            changes["delivered_at"] = utcnow()

        try:
            updated = await self.store.save(order.model_copy(update=changes), expected_status=current)
        except ConflictError:
            self._reject("conflict", order, target, actor)
            raise
        order_transitions_total.labels(target=target.value).inc()
        logger.info("Order %s moved %s -> %s by %s=%s",
                    order_id, current.value, target.value, actor.role.value, actor.id)

        await self._fan_out(updated, actor)
        return updated

    async def accept(self, order_id: str, actor: Principal) -> Order:
        return await self.attempt_transition(order_id, S.ACCEPTED, actor)

    async def mark_prepared(self, order_id: str, actor: Principal) -> Order:
        return await self.attempt_transition(order_id, S.PREPARED, actor)

    async def dispatch(self, order_id: str, actor: Principal) -> Order:
        return await self.attempt_transition(order_id, S.OUT_FOR_DELIVERY, actor)

    async def confirm_delivery(self, order_id: str, actor: Principal) -> Order:
        return await self.attempt_transition(order_id, S.DELIVERED, actor)

    async def cancel(self, order_id: str, actor: Principal) -> Order:
        return await self.attempt_transition(order_id, S.CANCELLED, actor)

    # Listings

    def _owner_filter(self, actor: Principal, statuses: tuple[OrderStatus, ...]) -> OrderFilter:
        if actor.role == Role.CUSTOMER:
            return OrderFilter(customer_id=actor.id, statuses=statuses)
        if actor.role == Role.RESTAURANT and actor.restaurant_id:
            return OrderFilter(restaurant_id=actor.restaurant_id, statuses=statuses)
        raise Forbidden("Only customers and restaurants can list their orders")

    async def waiting_orders(self, actor: Principal) -> list[Order]:
        return await self.store.find_by_filter(self._owner_filter(actor, order_state.WAITING_STATES))

    async def active_orders(self, actor: Principal) -> list[Order]:
        return await self.store.find_by_filter(self._owner_filter(actor, order_state.ACTIVE_STATES))

    async def inactive_orders(self, actor: Principal) -> list[Order]:
        return await self.store.find_by_filter(self._owner_filter(actor, order_state.INACTIVE_STATES))

    async def orders_to_deliver(self, actor: Principal) -> list[Order]:
        if actor.role != Role.COURIER:
            raise Forbidden("Only couriers can list orders to deliver")
        return await self.store.find_by_filter(OrderFilter(statuses=(S.PREPARED,)))

    async def orders_in_delivery(self, actor: Principal) -> list[Order]:
        if actor.role != Role.COURIER:
            raise Forbidden("Only couriers can list their deliveries")
        return await self.store.find_by_filter(OrderFilter(courier_id=actor.id, statuses=(S.OUT_FOR_DELIVERY,)))

    # Fan-out

    async def _fan_out(self, order: Order, actor: Principal, placed: bool = False) -> None:
        """
        Publish and notify after the change is stored. The change is already
        committed, so failures here are logged and counted, never raised.
        """
        try:
            await self._publish_order_changed(order)
            if placed:
                await self.notifications.notify(
                    restaurant_recipient(order.restaurant_id), RESTAURANT_PLACED_MESSAGE.format(order_id=order.id)
                )
            else:
                await self._notify_transition(order, actor)
        except Exception:
            order_fanout_errors_total.inc()
            logger.exception("Fan-out failed for order %s (status=%s)", order.id, order.status.value)

    async def _publish_order_changed(self, order: Order) -> None:
        await self.bus.publish(restaurant_topic(order.restaurant_id), order.restaurant_id)
        await self.bus.publish(marketing_topic())

    async def _notify_transition(self, order: Order, actor: Principal) -> None:
        if order.status == S.CANCELLED and actor.role == Role.CUSTOMER:
            await self.notifications.notify(
                restaurant_recipient(order.restaurant_id), RESTAURANT_CANCELLED_MESSAGE.format(order_id=order.id)
            )
            return
        message = CUSTOMER_MESSAGES.get(order.status)
        if message:
            await self.notifications.notify(order.customer_id, message.format(order_id=order.id))

    def _reject(self, reason: str, order: Order, target: OrderStatus, actor: Principal) -> None:
        order_transitions_rejected_total.labels(reason=reason).inc()
        logger.warning("Rejected %s -> %s on order %s by %s=%s (%s)",
                       order.status.value, target.value, order.id, actor.role.value, actor.id, reason)
