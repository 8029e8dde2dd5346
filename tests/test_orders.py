import re
from datetime import timedelta

import pytest

from conftest import order_payload
from qistmarket.error_handler import ConflictError, NotFoundError, ValidationError
from qistmarket.models import db, Order, ROLE_VERIFICATION_OFFICER, USER_STATUS_INACTIVE
from qistmarket.services.orders import OrderLifecycleEngine


@pytest.fixture
def engine(app, notifier, clock):
    return OrderLifecycleEngine(db.session, notifier=notifier, clock=clock)


def make_orders(engine, creator, count):
    return [
        engine.create_order(order_payload(product_name=f"Product {index}"), creator.id)
        for index in range(count)
    ]


def test_create_order_generates_reference_and_token(engine, users, clock):
    order = engine.create_order(order_payload(), users["sales"].id)

    assert re.fullmatch(r"QIST-20240315-\d{4}", order.order_ref)
    assert 1000 <= int(order.order_ref[-4:]) <= 9999
    assert re.fullmatch(r"[0-9A-F]{8}", order.token_number)
    assert order.status == "new"
    assert order.created_by_user_id == users["sales"].id
    assert order.assigned_to_user_id is None
    assert order.created_at == clock.now


def test_create_order_requires_every_mandatory_field(engine, users):
    payload = order_payload(customer_name="   ")
    del payload["months"]

    with pytest.raises(ValidationError) as exc:
        engine.create_order(payload, users["sales"].id)

    assert exc.value.message == "Required fields are missing."
    assert "customer_name" in exc.value.details
    assert "months" in exc.value.details
    assert Order.query.count() == 0


def test_create_order_city_and_area_are_optional(engine, users):
    payload = order_payload()
    del payload["city"]
    del payload["area"]

    order = engine.create_order(payload, users["sales"].id)

    assert order.city is None
    assert order.area is None


def test_create_order_rejects_negative_amounts(engine, users):
    with pytest.raises(ValidationError):
        engine.create_order(order_payload(advance_amount=-1), users["sales"].id)


def test_duplicate_active_order_same_day_is_rejected(engine, users, clock):
    engine.create_order(order_payload(), users["sales"].id)
    clock.now = clock.now + timedelta(hours=5)

    with pytest.raises(ConflictError) as exc:
        engine.create_order(
            order_payload(whatsapp_number=" 03001234567 ", product_name="Honda CD 70 "),
            users["sales"].id,
        )

    assert exc.value.message == "Duplicate active order detected today."
    assert Order.query.count() == 1


def test_same_contact_and_product_allowed_next_day(engine, users, clock):
    engine.create_order(order_payload(), users["sales"].id)
    clock.now = clock.now + timedelta(days=1)

    order = engine.create_order(order_payload(), users["sales"].id)

    assert order.order_ref.startswith("QIST-20240316-")
    assert Order.query.count() == 2


def test_different_product_same_day_is_not_a_duplicate(engine, users):
    engine.create_order(order_payload(), users["sales"].id)
    engine.create_order(order_payload(product_name="Samsung A15"), users["sales"].id)

    assert Order.query.count() == 2


def test_cancelled_order_frees_the_slot_for_the_day(engine, users):
    first = engine.create_order(order_payload(), users["sales"].id)
    engine.update_status(first.id, "cancelled", actor_id=users["admin"].id)

    second = engine.create_order(order_payload(), users["sales"].id)

    assert db.session.get(Order, first.id).dedupe_key is None
    assert second.dedupe_key is not None


def test_update_status_validates_and_protects_terminal_orders(engine, users):
    order = engine.create_order(order_payload(), users["sales"].id)

    with pytest.raises(ValidationError):
        engine.update_status(order.id, "shipped")

    engine.update_status(order.id, "delivered")
    with pytest.raises(ConflictError):
        engine.update_status(order.id, "new")


def test_get_order_missing(engine):
    with pytest.raises(NotFoundError):
        engine.get_order(12345)


def test_assign_sets_officer_and_notifies(engine, users, notifier):
    order = engine.create_order(order_payload(), users["sales"].id)
    officer = users["officer1"]

    engine.assign(order.id, officer_id=officer.id, actor_id=users["admin"].id)

    assert db.session.get(Order, order.id).assigned_to_user_id == officer.id
    assert notifier.sent == [(officer.id, order.id)]


def test_assign_twice_conflicts_without_second_notification(engine, users, notifier):
    order = engine.create_order(order_payload(), users["sales"].id)
    engine.assign(order.id, officer_id=users["officer1"].id)

    with pytest.raises(ConflictError) as exc:
        engine.assign(order.id, officer_id=users["officer2"].id)

    assert exc.value.message == "Order is already assigned"
    assert db.session.get(Order, order.id).assigned_to_user_id == users["officer1"].id
    assert len(notifier.sent) == 1


def test_assign_rejects_non_officer_and_missing_user(engine, users):
    order = engine.create_order(order_payload(), users["sales"].id)

    with pytest.raises(ValidationError) as exc:
        engine.assign(order.id, officer_id=users["sales"].id)
    assert exc.value.message == "Invalid Verification Officer"

    with pytest.raises(ValidationError):
        engine.assign(order.id, officer_id=9999)

    with pytest.raises(ValidationError):
        engine.assign(order.id)


def test_unassign(engine, users, notifier):
    order = engine.create_order(order_payload(), users["sales"].id)

    with pytest.raises(ConflictError) as exc:
        engine.assign(order.id, action="unassign")
    assert exc.value.message == "Order is not assigned"

    engine.assign(order.id, officer_id=users["officer1"].id)
    engine.assign(order.id, action="unassign")

    assert db.session.get(Order, order.id).assigned_to_user_id is None
    assert len(notifier.sent) == 1


def test_assignment_does_not_change_status(engine, users):
    order = engine.create_order(order_payload(), users["sales"].id)
    engine.assign(order.id, officer_id=users["officer1"].id)

    assert db.session.get(Order, order.id).status == "new"


def test_notifier_failure_never_fails_assignment(engine, users, notifier):
    notifier.fail = True
    order = engine.create_order(order_payload(), users["sales"].id)

    engine.assign(order.id, officer_id=users["officer1"].id)

    assert db.session.get(Order, order.id).assigned_to_user_id == users["officer1"].id


def test_bulk_assign_is_all_or_nothing(engine, users, notifier):
    first, second, third = make_orders(engine, users["sales"], 3)
    engine.assign(second.id, officer_id=users["officer2"].id)

    with pytest.raises(ConflictError) as exc:
        engine.assign_bulk([first.id, second.id, third.id], officer_id=users["officer1"].id)

    assert exc.value.details == {"assigned_ids": [second.id]}
    assert db.session.get(Order, first.id).assigned_to_user_id is None
    assert db.session.get(Order, third.id).assigned_to_user_id is None
    assert notifier.sent == [(users["officer2"].id, second.id)]


def test_bulk_assign_success_notifies_each_order(engine, users, notifier):
    orders = make_orders(engine, users["sales"], 3)
    ids = [order.id for order in orders]

    result = engine.assign_bulk(ids, officer_id=users["officer1"].id)

    assert result["updated"] == 3
    assert {order.assigned_to_user_id for order in Order.query.all()} == {users["officer1"].id}
    assert sorted(order_id for _, order_id in notifier.sent) == sorted(ids)


def test_bulk_assign_reports_missing_orders(engine, users):
    (order,) = make_orders(engine, users["sales"], 1)

    with pytest.raises(NotFoundError) as exc:
        engine.assign_bulk([order.id, 777], officer_id=users["officer1"].id)

    assert exc.value.details == {"missing_ids": [777]}
    assert db.session.get(Order, order.id).assigned_to_user_id is None


def test_bulk_assign_validates_id_list(engine, users):
    with pytest.raises(ValidationError):
        engine.assign_bulk([], officer_id=users["officer1"].id)
    with pytest.raises(ValidationError):
        engine.assign_bulk("1,2", officer_id=users["officer1"].id)
    with pytest.raises(ValidationError):
        engine.assign_bulk([1, "x"], officer_id=users["officer1"].id)


def test_bulk_unassign_skips_unassigned_orders(engine, users):
    assigned, unassigned = make_orders(engine, users["sales"], 2)
    engine.assign(assigned.id, officer_id=users["officer1"].id)

    result = engine.assign_bulk([assigned.id, unassigned.id], action="unassign")

    assert result["updated"] == 1
    assert Order.query.filter(Order.assigned_to_user_id.isnot(None)).count() == 0


def test_auto_assign_balances_open_workload(engine, users, notifier):
    officer1, officer2 = users["officer1"], users["officer2"]
    busy = make_orders(engine, users["sales"], 2)
    for order in busy:
        engine.assign(order.id, officer_id=officer1.id)
    notifier.sent.clear()

    pending = [
        engine.create_order(order_payload(product_name=f"Pending {index}"), users["sales"].id)
        for index in range(3)
    ]

    result = engine.auto_assign()

    assert result["skipped"] == []
    assert result["assigned"] == [
        {"order_id": pending[0].id, "officer_id": officer2.id},
        {"order_id": pending[1].id, "officer_id": officer2.id},
        {"order_id": pending[2].id, "officer_id": officer1.id},
    ]
    assert len(notifier.sent) == 3


def test_auto_assign_ignores_closed_orders_and_inactive_officers(engine, users, make_user):
    officer1, officer2 = users["officer1"], users["officer2"]
    make_user("retired", ROLE_VERIFICATION_OFFICER, status=USER_STATUS_INACTIVE)

    (closed,) = make_orders(engine, users["sales"], 1)
    engine.assign(closed.id, officer_id=officer1.id)
    engine.update_status(closed.id, "cancelled")

    (open_order,) = make_orders(engine, users["sales"], 1)
    engine.assign(open_order.id, officer_id=officer2.id)

    new_order = engine.create_order(order_payload(product_name="Fresh"), users["sales"].id)
    result = engine.auto_assign()

    # officer1's only order is cancelled, so officer1 has the lighter load
    assert result["assigned"] == [{"order_id": new_order.id, "officer_id": officer1.id}]


def test_auto_assign_without_officers_leaves_orders_unassigned(app, users, clock):
    engine = OrderLifecycleEngine(db.session, clock=clock)
    for key in ("officer1", "officer2"):
        users[key].status = USER_STATUS_INACTIVE
    db.session.commit()
    orders = make_orders(engine, users["sales"], 2)

    result = engine.auto_assign()

    assert result == {"assigned": [], "skipped": [order.id for order in orders]}
    assert Order.query.filter(Order.assigned_to_user_id.isnot(None)).count() == 0


def test_scroll_orders_walks_ids_downwards(engine, users):
    ids = [order.id for order in make_orders(engine, users["sales"], 5)]

    first_page, meta = engine.scroll_orders(limit=2)
    assert [order.id for order in first_page] == [ids[4], ids[3]]
    assert meta == {"nextLastId": ids[3], "hasMore": True, "limit": 2, "count": 2, "totalCount": 5}

    second_page, meta = engine.scroll_orders(last_id=meta["nextLastId"], limit=2)
    assert [order.id for order in second_page] == [ids[2], ids[1]]

    last_page, meta = engine.scroll_orders(last_id=meta["nextLastId"], limit=2)
    assert [order.id for order in last_page] == [ids[0]]
    assert meta["hasMore"] is False
    assert meta["count"] == 1


def test_list_orders_paginates_and_searches(engine, users):
    make_orders(engine, users["sales"], 5)

    orders, pagination = engine.list_orders(page=2, limit=2)
    assert len(orders) == 2
    assert pagination == {"page": 2, "limit": 2, "total": 5, "totalPages": 3, "hasNext": True, "hasPrev": True}

    orders, pagination = engine.list_orders(search="Product 3")
    assert [order.product_name for order in orders] == ["Product 3"]
    assert pagination["total"] == 1


def test_list_orders_filters_by_assignee_username(engine, users):
    first, second = make_orders(engine, users["sales"], 2)
    engine.assign(first.id, officer_id=users["officer1"].id)

    orders, _ = engine.list_orders(filters={"assigned_to": "officer1"})
    assert [order.id for order in orders] == [first.id]

    orders, _ = engine.list_orders(filters={"created_by": "sales", "status": "new"})
    assert {order.id for order in orders} == {first.id, second.id}


def test_months_must_be_a_whole_number(engine, users):
    with pytest.raises(ValidationError) as exc:
        engine.create_order(order_payload(months=12.5), users["sales"].id)

    assert "months" in exc.value.details
    assert Order.query.count() == 0
    assert engine.create_order(order_payload(months="12"), users["sales"].id).months == 12
    assert engine.create_order(order_payload(months=6.0, product_name="Other"), users["sales"].id).months == 6


def test_duplicate_that_slips_past_the_lookup_hits_the_unique_key(engine, users, clock):
    order = engine.create_order(order_payload(), users["sales"].id)
    # Hide the first order from the same-day lookup, as an uncommitted concurrent insert would be
    order.created_at = clock.now - timedelta(days=1)
    db.session.commit()

    with pytest.raises(ConflictError) as exc:
        engine.create_order(order_payload(), users["sales"].id)

    assert exc.value.message == "Duplicate active order detected today."
    assert Order.query.count() == 1


def lose_assignment_race(monkeypatch, engine, order_id, winner):
    """Commit a competing assignment of order_id right before the engine's guarded update"""
    real_update = engine._conditional_update
    raced = []

    def racing_update(*args, **kwargs):
        if not raced:
            raced.append(order_id)
            db.session.query(Order).filter(Order.id == order_id).update(
                {Order.assigned_to_user_id: winner.id}, synchronize_session=False)
            db.session.commit()
        return real_update(*args, **kwargs)

    monkeypatch.setattr(engine, "_conditional_update", racing_update)


def test_assign_losing_a_race_conflicts_and_keeps_the_winner(engine, users, notifier, monkeypatch):
    order = engine.create_order(order_payload(), users["sales"].id)
    lose_assignment_race(monkeypatch, engine, order.id, users["officer2"])

    with pytest.raises(ConflictError) as exc:
        engine.assign(order.id, officer_id=users["officer1"].id)

    assert exc.value.message == "Order is already assigned"
    assert db.session.get(Order, order.id).assigned_to_user_id == users["officer2"].id
    assert notifier.sent == []


def test_bulk_assign_losing_a_race_changes_nothing(engine, users, notifier, monkeypatch):
    first, second, third = make_orders(engine, users["sales"], 3)
    lose_assignment_race(monkeypatch, engine, second.id, users["officer2"])

    with pytest.raises(ConflictError) as exc:
        engine.assign_bulk([first.id, second.id, third.id], officer_id=users["officer1"].id)

    assert exc.value.message == "Some orders were assigned concurrently, nothing was changed"
    assert db.session.get(Order, first.id).assigned_to_user_id is None
    assert db.session.get(Order, second.id).assigned_to_user_id == users["officer2"].id
    assert db.session.get(Order, third.id).assigned_to_user_id is None
    assert notifier.sent == []


def test_auto_assign_skips_orders_taken_mid_sweep(engine, users, notifier, monkeypatch):
    taken, free = make_orders(engine, users["sales"], 2)
    lose_assignment_race(monkeypatch, engine, taken.id, users["officer2"])

    result = engine.auto_assign()

    assert result == {
        "assigned": [{"order_id": free.id, "officer_id": users["officer1"].id}],
        "skipped": [taken.id],
    }
    assert db.session.get(Order, taken.id).assigned_to_user_id == users["officer2"].id
    assert notifier.sent == [(users["officer1"].id, free.id)]
