"""
Test back-office services: inventory, customers and customer issues.
"""
import pytest

from rationshop.db import SessionLocal, run_transaction
from rationshop.errors import InvalidTransition, NotFound, ValidationFailed
from rationshop.services import customers, inventory, issues, quota
from rationshop.services.order_manager import place_order

from conftest import AADHAAR, CUSTOMER_ID


def test_update_item_merges_prices(world):
    updated = run_transaction(lambda db: inventory.update_item(db, "rice", {"prices": {"BLUE": 16}, "quantity": 8}))
    assert updated["prices"] == {"YELLOW": 0, "PINK": 2, "BLUE": 16}
    assert updated["quantity"] == 8
    assert updated["low_stock"] is True


def test_item_validation(world):
    with pytest.raises(ValidationFailed):
        run_transaction(lambda db: inventory.update_item(db, "rice", {"quantity": -1}))
    with pytest.raises(ValidationFailed):
        run_transaction(lambda db: inventory.update_item(db, "rice", {"prices": {"GREEN": 1}}))
    with pytest.raises(ValidationFailed):
        run_transaction(lambda db: inventory.create_item(db, {"id": "rice", "name": "Rice again"}))
    with pytest.raises(NotFound):
        run_transaction(lambda db: inventory.update_item(db, "caviar", {"quantity": 1}))


def test_low_stock_items(world):
    run_transaction(lambda db: inventory.update_item(db, "wheat", {"quantity": 5}))
    db = SessionLocal()
    try:
        assert [i.id for i in inventory.low_stock_items(db)] == ["wheat"]
        assert [i.id for i in inventory.list_items(db)] == ["rice", "wheat"]
    finally:
        db.close()


def test_price_missing_for_card_type(world):
    """An item without a price for the customer's card type cannot be ordered."""
    run_transaction(lambda db: inventory.create_item(db, {
        "id": "dal", "name": "Dal", "quantity": 20, "prices": {"YELLOW": 30},
    }))
    run_transaction(lambda db: quota.set_card_quota(db, "BLUE", {"rice": 10, "wheat": 5, "dal": 2}))
    with pytest.raises(ValidationFailed):
        place_order(CUSTOMER_ID, [("dal", 1)])


def test_customer_validation(world):
    base = {"name": "X", "card_type": "BLUE", "card_number": "APL-1"}
    with pytest.raises(ValidationFailed):
        run_transaction(lambda db: customers.create_customer(db, {**base, "aadhaar_number": "12345"}))
    with pytest.raises(ValidationFailed):
        run_transaction(lambda db: customers.create_customer(db, {**base, "aadhaar_number": AADHAAR}))
    with pytest.raises(ValidationFailed):
        run_transaction(lambda db: customers.create_customer(
            db, {**base, "aadhaar_number": "444455556666", "phone": "12"}))
    with pytest.raises(ValidationFailed):
        run_transaction(lambda db: customers.create_customer(
            db, {**base, "aadhaar_number": "444455556666", "card_type": "GREEN"}))


def test_card_type_change_allowed_until_first_order(world):
    changed = run_transaction(lambda db: customers.update_customer(db, CUSTOMER_ID, {"card_type": "YELLOW"}))
    assert changed["card_type"] == "YELLOW"
    place_order(CUSTOMER_ID, [("rice", 1)])
    with pytest.raises(ValidationFailed):
        run_transaction(lambda db: customers.update_customer(db, CUSTOMER_ID, {"card_type": "BLUE"}))


def test_issue_lifecycle(world):
    issue = run_transaction(lambda db: issues.create_issue(db, CUSTOMER_ID, "  Shop closed on distribution day  "))
    assert issue["description"] == "Shop closed on distribution day"
    moved = run_transaction(lambda db: issues.set_issue_status(db, issue["id"], "in-progress"))
    assert moved["status"] == "in-progress"
    back = run_transaction(lambda db: issues.set_issue_status(db, issue["id"], "pending"))
    assert back["status"] == "pending"
    resolved = run_transaction(lambda db: issues.respond_to_issue(db, issue["id"], "Opened on Sunday"))
    assert resolved["status"] == "resolved"
    assert resolved["response"] == "Opened on Sunday"
    with pytest.raises(InvalidTransition):
        run_transaction(lambda db: issues.set_issue_status(db, issue["id"], "pending"))


def test_issue_validation(world):
    with pytest.raises(ValidationFailed):
        run_transaction(lambda db: issues.create_issue(db, CUSTOMER_ID, "   "))
    with pytest.raises(NotFound):
        run_transaction(lambda db: issues.create_issue(db, "cus_nobody", "Help"))
    issue = run_transaction(lambda db: issues.create_issue(db, CUSTOMER_ID, "Help"))
    with pytest.raises(InvalidTransition):
        run_transaction(lambda db: issues.set_issue_status(db, issue["id"], "closed"))
    with pytest.raises(ValidationFailed):
        run_transaction(lambda db: issues.respond_to_issue(db, issue["id"], ""))


def test_delete_item_until_ordered(world):
    run_transaction(lambda db: inventory.delete_item(db, "wheat"))
    with pytest.raises(NotFound):
        run_transaction(lambda db: inventory.delete_item(db, "wheat"))
    place_order(CUSTOMER_ID, [("rice", 1)])
    with pytest.raises(ValidationFailed):
        run_transaction(lambda db: inventory.delete_item(db, "rice"))
    db = SessionLocal()
    try:
        assert [i.id for i in inventory.list_items(db)] == ["rice"]
    finally:
        db.close()


def test_delete_customer_removes_their_issues(world):
    run_transaction(lambda db: customers.create_customer(db, {
        "id": "cus_gone", "aadhaar_number": "777788889999", "name": "Moved Away",
        "card_type": "PINK", "card_number": "BPL-77",
    }))
    run_transaction(lambda db: issues.create_issue(db, "cus_gone", "Transfer my card"))
    run_transaction(lambda db: customers.delete_customer(db, "cus_gone"))
    db = SessionLocal()
    try:
        with pytest.raises(NotFound):
            customers.get_customer(db, "cus_gone")
        assert issues.list_issues(db, customer_id="cus_gone") == []
    finally:
        db.close()


def test_customer_with_orders_cannot_be_deleted(world):
    place_order(CUSTOMER_ID, [("rice", 1)])
    with pytest.raises(ValidationFailed):
        run_transaction(lambda db: customers.delete_customer(db, CUSTOMER_ID))
    db = SessionLocal()
    try:
        assert customers.get_customer(db, CUSTOMER_ID).name == "Test Holder"
    finally:
        db.close()
