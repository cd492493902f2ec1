import asyncio
from decimal import Decimal

import pytest

from _helper import (
    COURIER,
    CUSTOMER,
    ITEMS,
    MARKETING,
    OTHER_COURIER,
    OTHER_CUSTOMER,
    OTHER_RESTAURANT,
    RESTAURANT,
    BrokenNotificationStore,
    advance_to,
)
from app.bus import marketing_topic, restaurant_topic
from app.errors import ConflictError, Forbidden, InvalidTransition, NotFound, ValidationError
from app.memory_store import MemoryNotificationStore, MemoryOrderStore
from app.models import OrderStatus as S
from app.notifications import restaurant_recipient
from app.services import build_services


@pytest.mark.asyncio
async def test_place_order(services):
    order = await services.orders.place_order(CUSTOMER, "r-1", ITEMS)
    assert order.total_price == Decimal("25")
    assert order.status == S.PENDING
    stored = await services.order_store.find_by_id(order.id)
    assert stored == order


@pytest.mark.asyncio
async def test_place_order_requires_customer_and_items(services):
    with pytest.raises(Forbidden):
        await services.orders.place_order(RESTAURANT, "r-1", ITEMS)
    with pytest.raises(ValidationError):
        await services.orders.place_order(CUSTOMER, "r-1", [])


@pytest.mark.asyncio
async def test_full_lifecycle_follows_graph(services):
    order = await advance_to(services, [S.ACCEPTED, S.PREPARED, S.OUT_FOR_DELIVERY])
    assert order.courier_id == COURIER.id
    assert order.delivered_at is None

    order = await services.orders.confirm_delivery(order.id, COURIER)
    assert order.status == S.DELIVERED
    assert order.delivered_at is not None
    assert order.total_price == Decimal("25")
    assert [i.name for i in order.line_items] == ["Burger", "Fries"]


@pytest.mark.asyncio
async def test_unknown_order(services):
    with pytest.raises(NotFound):
        await services.orders.accept("missing", RESTAURANT)


@pytest.mark.asyncio
async def test_reapplying_transition_is_rejected(services):
    order = await advance_to(services, [S.ACCEPTED])
    with pytest.raises(InvalidTransition):
        await services.orders.accept(order.id, RESTAURANT)


@pytest.mark.asyncio
async def test_skipping_a_state_is_rejected(services):
    order = await services.orders.place_order(CUSTOMER, "r-1", ITEMS)
    with pytest.raises(InvalidTransition):
        await services.orders.mark_prepared(order.id, RESTAURANT)
    assert (await services.order_store.find_by_id(order.id)).status == S.PENDING


@pytest.mark.asyncio
async def test_other_restaurant_is_forbidden(services):
    order = await services.orders.place_order(CUSTOMER, "r-1", ITEMS)
    with pytest.raises(Forbidden):
        await services.orders.accept(order.id, OTHER_RESTAURANT)


@pytest.mark.asyncio
async def test_customer_cancels_pending_order(services):
    order = await services.orders.place_order(CUSTOMER, "r-1", ITEMS)
    cancelled = await services.orders.cancel(order.id, CUSTOMER)
    assert cancelled.status == S.CANCELLED


@pytest.mark.asyncio
async def test_customer_cannot_cancel_accepted_order(services):
    order = await advance_to(services, [S.ACCEPTED])
    with pytest.raises(InvalidTransition):
        await services.orders.cancel(order.id, CUSTOMER)


@pytest.mark.asyncio
async def test_other_customer_cannot_cancel(services):
    order = await services.orders.place_order(CUSTOMER, "r-1", ITEMS)
    with pytest.raises(Forbidden):
        await services.orders.cancel(order.id, OTHER_CUSTOMER)


@pytest.mark.asyncio
async def test_terminal_orders_stay_closed(services):
    delivered = await advance_to(services, [S.ACCEPTED, S.PREPARED, S.OUT_FOR_DELIVERY, S.DELIVERED])
    with pytest.raises(InvalidTransition):
        await services.orders.confirm_delivery(delivered.id, COURIER)

    order = await services.orders.place_order(CUSTOMER, "r-1", ITEMS)
    await services.orders.cancel(order.id, RESTAURANT)
    with pytest.raises(InvalidTransition):
        await services.orders.accept(order.id, RESTAURANT)


@pytest.mark.asyncio
async def test_second_courier_gets_invalid_transition(services):
    order = await advance_to(services, [S.ACCEPTED, S.PREPARED])
    dispatched = await services.orders.dispatch(order.id, COURIER)
    assert dispatched.courier_id == COURIER.id

    with pytest.raises(InvalidTransition):
        await services.orders.dispatch(order.id, OTHER_COURIER)
    assert (await services.order_store.find_by_id(order.id)).courier_id == COURIER.id


@pytest.mark.asyncio
async def test_only_assigned_courier_confirms(services):
    order = await advance_to(services, [S.ACCEPTED, S.PREPARED, S.OUT_FOR_DELIVERY])
    with pytest.raises(Forbidden):
        await services.orders.confirm_delivery(order.id, OTHER_COURIER)
    with pytest.raises(Forbidden):
        await services.orders.confirm_delivery(order.id, CUSTOMER)


class SlowReadStore(MemoryOrderStore):
    """Yields to the loop after reading, so concurrent attempts read the same state."""

    async def find_by_id(self, order_id):
        order = await super().find_by_id(order_id)
        await asyncio.sleep(0)
        return order


@pytest.mark.asyncio
async def test_concurrent_dispatch_has_one_winner(settings):
    services = build_services(settings, SlowReadStore(), MemoryNotificationStore())
    order = await advance_to(services, [S.ACCEPTED, S.PREPARED])

    results = await asyncio.gather(
        services.orders.dispatch(order.id, COURIER),
        services.orders.dispatch(order.id, OTHER_COURIER),
        return_exceptions=True,
    )
    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], (ConflictError, InvalidTransition))

    stored = await services.order_store.find_by_id(order.id)
    assert stored.courier_id == winners[0].courier_id


@pytest.mark.asyncio
async def test_transition_publishes_restaurant_and_marketing(services, bus):
    order = await services.orders.place_order(CUSTOMER, "r-1", ITEMS)
    seen = []
    bus.subscribe(restaurant_topic("r-1"), lambda *p: seen.append("restaurant"))
    bus.subscribe(restaurant_topic("r-2"), lambda *p: seen.append("other restaurant"))
    bus.subscribe(marketing_topic(), lambda *p: seen.append("marketing"))

    await services.orders.accept(order.id, RESTAURANT)
    assert seen == ["restaurant", "marketing"]


@pytest.mark.asyncio
async def test_rejected_transition_publishes_nothing(services, bus):
    order = await services.orders.place_order(CUSTOMER, "r-1", ITEMS)
    seen = []
    bus.subscribe(marketing_topic(), lambda *p: seen.append(p))
    with pytest.raises(InvalidTransition):
        await services.orders.mark_prepared(order.id, RESTAURANT)
    assert seen == []


@pytest.mark.asyncio
async def test_transitions_notify_the_right_party(services):
    order = await services.orders.place_order(CUSTOMER, "r-1", ITEMS)
    inbox = await services.notifications.unseen(restaurant_recipient("r-1"))
    assert len(inbox) == 1 and order.id in inbox[0].message

    await services.orders.accept(order.id, RESTAURANT)
    customer_inbox = await services.notifications.unseen(CUSTOMER.id)
    assert len(customer_inbox) == 1
    assert "accepted" in customer_inbox[0].message

    other = await services.orders.place_order(CUSTOMER, "r-1", ITEMS)
    await services.orders.cancel(other.id, CUSTOMER)
    inbox = await services.notifications.unseen(restaurant_recipient("r-1"))
    assert "cancelled by the customer" in inbox[-1].message


@pytest.mark.asyncio
async def test_listings(services):
    pending = await services.orders.place_order(CUSTOMER, "r-1", ITEMS)
    prepared = await advance_to(services, [S.ACCEPTED, S.PREPARED])
    in_delivery = await advance_to(services, [S.ACCEPTED, S.PREPARED, S.OUT_FOR_DELIVERY])
    delivered = await advance_to(services, [S.ACCEPTED, S.PREPARED, S.OUT_FOR_DELIVERY, S.DELIVERED])

    assert [o.id for o in await services.orders.waiting_orders(CUSTOMER)] == [pending.id]
    assert {o.id for o in await services.orders.active_orders(RESTAURANT)} == {prepared.id, in_delivery.id}
    assert [o.id for o in await services.orders.inactive_orders(CUSTOMER)] == [delivered.id]
    assert [o.id for o in await services.orders.orders_to_deliver(COURIER)] == [prepared.id]
    assert [o.id for o in await services.orders.orders_in_delivery(COURIER)] == [in_delivery.id]
    assert await services.orders.orders_in_delivery(OTHER_COURIER) == []
    assert await services.orders.waiting_orders(OTHER_RESTAURANT) == []

    with pytest.raises(Forbidden):
        await services.orders.waiting_orders(MARKETING)
    with pytest.raises(Forbidden):
        await services.orders.orders_to_deliver(CUSTOMER)


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_committed_changes(settings):
    services = build_services(settings, MemoryOrderStore(), BrokenNotificationStore())
    seen = []
    services.bus.subscribe(marketing_topic(), lambda *p: seen.append("marketing"))

    order = await services.orders.place_order(CUSTOMER, "r-1", ITEMS)
    accepted = await services.orders.accept(order.id, RESTAURANT)

    assert accepted.status == S.ACCEPTED
    assert (await services.order_store.find_by_id(order.id)).status == S.ACCEPTED
    assert seen == ["marketing", "marketing"]


@pytest.mark.asyncio
async def test_couriers_only_read_open_pickups_and_their_own_deliveries(services):
    delivered = await advance_to(services, [S.ACCEPTED, S.PREPARED, S.OUT_FOR_DELIVERY, S.DELIVERED])
    assert (await services.orders.get_order(delivered.id, COURIER)).id == delivered.id
    with pytest.raises(Forbidden):
        await services.orders.get_order(delivered.id, OTHER_COURIER)

    prepared = await advance_to(services, [S.ACCEPTED, S.PREPARED])
    assert (await services.orders.get_order(prepared.id, OTHER_COURIER)).id == prepared.id
    pending = await services.orders.place_order(CUSTOMER, "r-1", ITEMS)
    with pytest.raises(Forbidden):
        await services.orders.get_order(pending.id, COURIER)
    assert (await services.orders.get_order(pending.id, MARKETING)).id == pending.id
