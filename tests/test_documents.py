"""
Test document schema adapters and collection import, including the startup seed.
"""
from datetime import datetime
from decimal import Decimal

import pytest

from rationshop.db import SessionLocal, run_transaction
from rationshop.documents import (
    upgrade_card_quota,
    upgrade_customer,
    upgrade_inventory,
    upgrade_issue,
    upgrade_order,
)
from rationshop.errors import ValidationFailed
from rationshop.services.customers import get_customer
from rationshop.services.importer import import_documents, seed_if_empty
from rationshop.services.inventory import get_item
from rationshop.services.order_manager import get_order

from conftest import stock_of

LEGACY_CUSTOMER = {
    "id": "cus_old",
    "aadhaarNumber": "555566667777",
    "name": "Old Record",
    "rationCardType": "PINK",
    "rationCardNumber": "BPL-0100",
    "familyMembers": [{"name": "Gopal", "relationship": "father", "age": 70}],
    "monthlyQuota": {"rice": 20},
    "createdAt": {"seconds": 1700000000, "nanoseconds": 0},
}

LEGACY_ORDER = {
    "id": "ord_old",
    "customerId": "cus_demo_blue",
    "rationCardType": "BLUE",
    "items": [{"itemId": "rice", "quantity": 2, "priceAtTime": 15}],
    "totalAmount": 30,
    "status": "completed",
    "orderDate": "2024-01-05T10:00:00Z",
}


def test_legacy_customer_is_upgraded():
    doc, upgraded = upgrade_customer(LEGACY_CUSTOMER)
    assert upgraded is True
    assert doc.card_type == "PINK"
    assert doc.family_members[0].relation == "father"
    assert doc.created_at == datetime(2023, 11, 14, 22, 13, 20)
    assert not hasattr(doc, "monthly_quota")


def test_current_customer_passes_through():
    raw = {**LEGACY_CUSTOMER, "familyMembers": [{"name": "Gopal", "relation": "father", "age": 70}],
           "schemaVersion": 2}
    raw.pop("monthlyQuota")
    doc, upgraded = upgrade_customer(raw)
    assert upgraded is False
    assert doc.family_members[0].relation == "father"


def test_unrecognised_documents_are_rejected():
    with pytest.raises(ValidationFailed):
        upgrade_customer({"id": "cus_x", "name": "No card"})
    with pytest.raises(ValidationFailed):
        upgrade_customer({**LEGACY_CUSTOMER, "rationCardType": "GREEN"})
    with pytest.raises(ValidationFailed):
        upgrade_customer({**LEGACY_CUSTOMER, "schemaVersion": 3})


def test_scalar_price_becomes_per_card_prices():
    doc, upgraded = upgrade_inventory({"id": "kerosene", "name": "Kerosene", "unit": "litre",
                                       "quantity": 10, "minimumStock": 2, "price": 42.75})
    assert upgraded is True
    assert doc.prices == {"YELLOW": 42.75, "PINK": 42.75, "BLUE": 42.75}
    assert doc.minimum_stock == 2


def test_card_quota_accepts_document_id_as_card_type():
    doc, upgraded = upgrade_card_quota({"id": "BLUE", "monthlyQuota": {"rice": 10}})
    assert doc.card_type == "BLUE"
    assert upgraded is False
    with pytest.raises(ValidationFailed):
        upgrade_card_quota({"cardType": "BLUE", "monthlyQuota": {"rice": -1}})


def test_legacy_order_lines_get_snapshots():
    catalog = {"rice": {"name": "Rice", "unit": "kg"}}
    doc, upgraded = upgrade_order(LEGACY_ORDER, catalog)
    assert upgraded is True
    line = doc.items[0]
    assert (line.name, line.unit, line.price) == ("Rice", "kg", Decimal("15"))
    assert doc.order_date == datetime(2024, 1, 5, 10, 0)


def test_order_total_recomputed_or_checked():
    raw = dict(LEGACY_ORDER)
    raw.pop("totalAmount")
    doc, upgraded = upgrade_order(raw)
    assert doc.total_amount == Decimal("30")
    assert upgraded is True
    with pytest.raises(ValidationFailed):
        upgrade_order({**LEGACY_ORDER, "totalAmount": 31})


def test_order_with_unknown_status_rejected():
    with pytest.raises(ValidationFailed):
        upgrade_order({**LEGACY_ORDER, "status": "shipped"})


def test_issue_admin_response_renamed():
    doc, upgraded = upgrade_issue({"id": "iss_old", "customerId": "cus_old", "description": "Short weight",
                                   "status": "resolved", "adminResponse": "Refilled"})
    assert upgraded is True
    assert doc.response == "Refilled"


def test_seed_if_empty_loads_seed_once():
    summary = seed_if_empty()
    assert summary["cardQuotas"]["imported"] == 3
    assert summary["inventory"] == {"imported": 4, "upgraded": 1, "skipped": 0, "rejected": 0}
    assert summary["customers"]["imported"] == 2
    assert summary["customers"]["upgraded"] == 1
    assert seed_if_empty() is None

    db = SessionLocal()
    try:
        assert get_item(db, "kerosene").prices["BLUE"] == 42.75
        assert get_customer(db, "cus_demo_blue").family_members[0]["relation"] == "spouse"
    finally:
        db.close()


def test_import_orders_skips_existing_and_rejects_bad():
    seed_if_empty()
    payload = {
        "customers": [LEGACY_CUSTOMER],
        "orders": [
            LEGACY_ORDER,
            {**LEGACY_ORDER, "id": "ord_bad_total", "totalAmount": 99},
            {**LEGACY_ORDER, "id": "ord_orphan", "customerId": "cus_nobody"},
        ],
        "customerIssues": [{"id": "iss_1", "customerId": "cus_old", "description": "Card lost"}],
    }
    summary = run_transaction(lambda db: import_documents(db, payload))
    assert summary["customers"] == {"imported": 1, "upgraded": 1, "skipped": 0, "rejected": 0}
    assert summary["orders"] == {"imported": 1, "upgraded": 1, "skipped": 0, "rejected": 2}
    assert summary["customerIssues"]["imported"] == 1

    again = run_transaction(lambda db: import_documents(db, {"orders": [LEGACY_ORDER]}))
    assert again["orders"]["skipped"] == 1

    db = SessionLocal()
    try:
        order = get_order(db, "ord_old")
        assert order.lines[0].name == "Rice"
        assert order.total_amount == Decimal("30.00")
    finally:
        db.close()
    # imported history does not move stock
    assert stock_of("rice") == 5000


def test_import_unknown_collection():
    with pytest.raises(ValidationFailed):
        run_transaction(lambda db: import_documents(db, {"prescriptions": []}))


@pytest.mark.parametrize("raw", [
    {**LEGACY_CUSTOMER, "createdAt": {"seconds": "oops"}},
    {**LEGACY_CUSTOMER, "createdAt": "yesterday"},
    {**LEGACY_CUSTOMER, "createdAt": 10 ** 20},
    {**LEGACY_CUSTOMER, "schemaVersion": "v1"},
    {**LEGACY_CUSTOMER, "familyMembers": ["Gopal"]},
    {**LEGACY_CUSTOMER, "familyMembers": "Gopal"},
])
def test_malformed_customer_rejected(raw):
    with pytest.raises(ValidationFailed):
        upgrade_customer(raw)


def test_malformed_order_lines_rejected():
    with pytest.raises(ValidationFailed):
        upgrade_order({**LEGACY_ORDER, "items": [7]})
    with pytest.raises(ValidationFailed):
        upgrade_order({**LEGACY_ORDER, "items": [{"itemId": ["rice"], "quantity": 1, "priceAtTime": 1}]})


def test_malformed_documents_do_not_stop_import():
    """Each bad document is counted as rejected; the good ones still land."""
    payload = {
        "inventory": [
            {"id": "salt", "name": "Salt", "quantity": 5, "prices": {"BLUE": 1}, "schemaVersion": "v1"},
            {"id": "oil", "name": "Oil", "quantity": 5, "prices": {"BLUE": 90}},
        ],
        "customers": [
            {**LEGACY_CUSTOMER, "createdAt": {"seconds": "oops"}},
            {**LEGACY_CUSTOMER, "id": "cus_ok", "aadhaarNumber": "555566668888"},
            "not a document",
        ],
    }
    summary = run_transaction(lambda db: import_documents(db, payload))
    assert summary["inventory"] == {"imported": 1, "upgraded": 0, "skipped": 0, "rejected": 1}
    assert summary["customers"] == {"imported": 1, "upgraded": 1, "skipped": 0, "rejected": 2}
    db = SessionLocal()
    try:
        assert get_item(db, "oil").name == "Oil"
        assert get_customer(db, "cus_ok").name == "Old Record"
    finally:
        db.close()
