"""
Order lifecycle state machine. Valid transitions enforce business rules.

Each edge names the role allowed to take it and how the actor must relate to
the order. Delivered and Cancelled are terminal: they have no outgoing edges.
"""
from typing import Callable

from app.models import Order, OrderStatus, Principal, Role

S = OrderStatus


def _owning_restaurant(order: Order, actor: Principal) -> bool:
    return actor.role == Role.RESTAURANT and actor.restaurant_id is not None \
        and actor.restaurant_id == order.restaurant_id


def _placing_customer(order: Order, actor: Principal) -> bool:
    return actor.role == Role.CUSTOMER and actor.id == order.customer_id


def _unassigned_courier(order: Order, actor: Principal) -> bool:
    return actor.role == Role.COURIER and order.courier_id is None


def _assigned_courier(order: Order, actor: Principal) -> bool:
    # Delivery confirmation belongs to the courier carrying the order, never the customer.
    return actor.role == Role.COURIER and order.courier_id == actor.id


def _customer_or_restaurant(order: Order, actor: Principal) -> bool:
    return _placing_customer(order, actor) or _owning_restaurant(order, actor)


ActorRule = Callable[[Order, Principal], bool]

# (current status, target status) -> who may take the edge
VALID_TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], ActorRule] = {
    (S.PENDING, S.ACCEPTED): _owning_restaurant,
    (S.ACCEPTED, S.PREPARED): _owning_restaurant,
    (S.PREPARED, S.OUT_FOR_DELIVERY): _unassigned_courier,
    (S.OUT_FOR_DELIVERY, S.DELIVERED): _assigned_courier,
    (S.PENDING, S.CANCELLED): _customer_or_restaurant,
}

TERMINAL_STATES = frozenset({S.DELIVERED, S.CANCELLED})

# Listing buckets
WAITING_STATES = (S.PENDING,)
ACTIVE_STATES = (S.ACCEPTED, S.PREPARED, S.OUT_FOR_DELIVERY)
INACTIVE_STATES = (S.DELIVERED, S.CANCELLED)
COURIER_VISIBLE_STATES = (S.PREPARED, S.OUT_FOR_DELIVERY, S.DELIVERED)


def is_valid_transition(current_state: OrderStatus, target: OrderStatus) -> bool:
    """True if target is reachable from current_state in one step."""
    return (current_state, target) in VALID_TRANSITIONS


def actor_may_transition(order: Order, target: OrderStatus, actor: Principal) -> bool:
    rule = VALID_TRANSITIONS.get((order.status, target))
    return rule is not None and rule(order, actor)


def next_states(current_state: OrderStatus) -> list[OrderStatus]:
    return [to for (frm, to) in VALID_TRANSITIONS if frm == current_state]


def relates_to(order: Order, actor: Principal) -> bool:
    """Whether the actor may act on this order at all, before any edge is considered."""
    if actor.role == Role.COURIER:
        return order.status in COURIER_VISIBLE_STATES
    return _customer_or_restaurant(order, actor)


def may_view(order: Order, actor: Principal) -> bool:
    """Read access: couriers see open pickups and their own deliveries only."""
    if actor.role == Role.MARKETING:
        return True
    if actor.role == Role.COURIER:
        return order.status == S.PREPARED or order.courier_id == actor.id
    return _customer_or_restaurant(order, actor)
