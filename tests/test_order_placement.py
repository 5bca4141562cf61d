"""
Test order placement: stock and quota checks, atomic decrement, and behaviour when another
writer changes inventory between our read and our write.
"""
from decimal import Decimal

import pytest
from rationshop.db import SessionLocal, run_transaction
from rationshop.errors import (
    Forbidden,
    InsufficientStock,
    NotFound,
    QuotaExceeded,
    TransactionConflict,
    ValidationFailed,
)
from rationshop.models import Order, PENDING
from rationshop.services.inventory import update_item
from rationshop.services.order_manager import get_order, list_orders, merge_lines, order_to_dict, place_order

from conftest import CUSTOMER_ID, competing_stock_write, stock_of


def _order_count():
    db = SessionLocal()
    try:
        return db.query(Order).count()
    finally:
        db.close()


def test_place_order_within_quota(world):
    """Full monthly rice quota: pending order, exact total, stock decremented by the ordered amount."""
    order = place_order(CUSTOMER_ID, [("rice", 10)])
    assert order["status"] == PENDING
    assert order["card_type"] == "BLUE"
    assert order["total_amount"] == Decimal("155.00")
    assert order["items"][0]["unit_price"] == Decimal("15.50")
    assert order["items"][0]["name"] == "Rice"
    assert stock_of("rice") == 90


def test_total_is_sum_of_line_subtotals(world):
    order = place_order(CUSTOMER_ID, [("rice", 3), ("wheat", 2)])
    assert order["total_amount"] == sum(line["subtotal"] for line in order["items"])
    assert order["total_amount"] == Decimal("70.50")


def test_quota_exceeded_changes_nothing(world):
    """Wheat quota is 5; asking for 6 fails and neither stock nor orders move."""
    with pytest.raises(QuotaExceeded) as exc:
        place_order(CUSTOMER_ID, [("rice", 2), ("wheat", 6)])
    assert exc.value.context["item_id"] == "wheat"
    assert exc.value.context["remaining"] == 5
    assert stock_of("rice") == 100
    assert stock_of("wheat") == 50
    assert _order_count() == 0


def test_quota_accumulates_across_orders(world):
    place_order(CUSTOMER_ID, [("wheat", 3)])
    with pytest.raises(QuotaExceeded):
        place_order(CUSTOMER_ID, [("wheat", 3)])
    place_order(CUSTOMER_ID, [("wheat", 2)])
    assert stock_of("wheat") == 45


def test_insufficient_stock(world):
    run_transaction(lambda db: update_item(db, "rice", {"quantity": 4}))
    with pytest.raises(InsufficientStock) as exc:
        place_order(CUSTOMER_ID, [("rice", 5)])
    assert exc.value.context["available"] == 4
    assert stock_of("rice") == 4
    assert _order_count() == 0


def test_stock_failure_reported_before_quota_failure(world):
    """When both limits are broken the stock check wins."""
    run_transaction(lambda db: update_item(db, "wheat", {"quantity": 1}))
    with pytest.raises(InsufficientStock):
        place_order(CUSTOMER_ID, [("wheat", 8)])


def test_placement_is_not_idempotent(world):
    """The same cart submitted twice creates two orders."""
    first = place_order(CUSTOMER_ID, [("rice", 2)])
    second = place_order(CUSTOMER_ID, [("rice", 2)])
    assert first["id"] != second["id"]
    assert stock_of("rice") == 96


def test_duplicate_lines_are_merged():
    assert merge_lines([("rice", 2), ("wheat", 1), ("rice", 3)]) == {"rice": 5, "wheat": 1}
    with pytest.raises(ValidationFailed):
        merge_lines([("rice", 0)])


def test_empty_cart_rejected(world):
    with pytest.raises(ValidationFailed):
        place_order(CUSTOMER_ID, [])


def test_unknown_item_and_customer(world):
    with pytest.raises(NotFound):
        place_order(CUSTOMER_ID, [("caviar", 1)])
    with pytest.raises(NotFound):
        place_order("cus_missing", [("rice", 1)])
    assert stock_of("rice") == 100


def test_stale_card_type_is_refused(world):
    """A client still holding an old card type cannot order against it."""
    with pytest.raises(Forbidden):
        place_order(CUSTOMER_ID, [("rice", 1)], card_type="YELLOW")
    assert _order_count() == 0


def test_price_snapshot_survives_price_change(world):
    placed = place_order(CUSTOMER_ID, [("rice", 2)])
    run_transaction(lambda db: update_item(db, "rice", {"prices": {"BLUE": 99}}))
    db = SessionLocal()
    try:
        stored = order_to_dict(get_order(db, placed["id"]))
    finally:
        db.close()
    assert stored["total_amount"] == Decimal("31.00")
    assert stored["items"][0]["unit_price"] == Decimal("15.50")


def test_admin_listing_includes_customer(world):
    place_order(CUSTOMER_ID, [("rice", 1)])
    db = SessionLocal()
    try:
        rows = list_orders(db)
        assert list_orders(db, status="approved") == []
    finally:
        db.close()
    assert rows[0]["customer_name"] == "Test Holder"
    assert rows[0]["customer_card_number"] == "APL-9001"


def test_concurrent_depletion_is_detected_and_rechecked(world):
    """Another writer drops rice to 5 after our read; the retry re-reads and refuses 8."""
    with competing_stock_write("rice", 5) as calls:
        with pytest.raises(InsufficientStock):
            place_order(CUSTOMER_ID, [("rice", 8)])
    assert calls["n"] == 1
    assert stock_of("rice") == 5
    assert _order_count() == 0


def test_concurrent_change_retried_from_fresh_read(world):
    """The competing write leaves enough stock; the retry succeeds against the new value."""
    with competing_stock_write("rice", 60):
        place_order(CUSTOMER_ID, [("rice", 8)])
    assert stock_of("rice") == 52
    assert _order_count() == 1


def test_persistent_conflict_surfaces(world):
    """A conflict on every attempt gives up after one retry without persisting anything."""
    with competing_stock_write("rice", 70, times=10) as calls:
        with pytest.raises(TransactionConflict):
            place_order(CUSTOMER_ID, [("rice", 2)])
    assert calls["n"] == 2
    assert stock_of("rice") == 70
    assert _order_count() == 0
