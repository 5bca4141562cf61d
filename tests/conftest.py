"""
Pytest configuration: add backend to path, point the app at a test DB and give every test
a clean schema.
"""
import os
import sys
from contextlib import contextmanager
from pathlib import Path

import pytest
from sqlalchemy import event, update

# Project root = parent of tests/
ROOT = Path(__file__).resolve().parent.parent
BACKEND = ROOT / "backend"
DATA = ROOT / "data"
sys.path.insert(0, str(BACKEND))
os.environ["DATA_DIR"] = str(DATA)
# Use a test DB
os.environ["SQLITE_DB_PATH"] = str(DATA / "test_rationshop.db")
os.environ.setdefault("CARD_TYPES", "YELLOW,PINK,BLUE")
os.environ.setdefault("AUTH_SECRET_KEY", "test-secret-key-with-enough-length-for-hs256")

from rationshop.db import Base, SessionLocal, engine, init_db, run_transaction  # noqa: E402
from rationshop.models import InventoryItem  # noqa: E402
from rationshop.services import customers, inventory, quota  # noqa: E402

CUSTOMER_ID = "cus_test_blue"
AADHAAR = "111122223333"


@pytest.fixture(autouse=True)
def fresh_db():
    """Drop and recreate every table so tests do not see each other's rows."""
    Base.metadata.drop_all(bind=engine)
    init_db()
    yield


def build_world(db):
    """Rice and wheat on the shelf, BLUE quotas {rice: 10, wheat: 5}, one BLUE customer."""
    inventory.create_item(db, {
        "id": "rice", "name": "Rice", "unit": "kg", "quantity": 100, "minimum_stock": 10,
        "prices": {"YELLOW": 0, "PINK": 2, "BLUE": 15.5},
    })
    inventory.create_item(db, {
        "id": "wheat", "name": "Wheat", "unit": "kg", "quantity": 50, "minimum_stock": 5,
        "prices": {"YELLOW": 0, "PINK": 2, "BLUE": 12},
    })
    quota.set_card_quota(db, "BLUE", {"rice": 10, "wheat": 5}, "Blue - Non-Priority")
    quota.set_card_quota(db, "YELLOW", {"rice": 35, "wheat": 10}, "Yellow - AAY")
    customers.create_customer(db, {
        "id": CUSTOMER_ID,
        "aadhaar_number": AADHAAR,
        "name": "Test Holder",
        "phone": "9000000001",
        "card_type": "BLUE",
        "card_number": "APL-9001",
        "family_members": [{"name": "Asha", "relation": "daughter", "age": 9}],
    })


@pytest.fixture
def world(fresh_db):
    run_transaction(build_world, name="test_setup")
    return {"customer_id": CUSTOMER_ID, "aadhaar": AADHAAR}


def stock_of(item_id):
    """Current on-hand quantity, read through a fresh session."""
    db = SessionLocal()
    try:
        return inventory.get_item(db, item_id).quantity
    finally:
        db.close()


@contextmanager
def competing_stock_write(item_id, quantity, times=1):
    """
    Before our session flushes, commit a competing stock change from another connection,
    so the version read by our session is stale by the time it writes. Yields the call count.
    """
    calls = {"n": 0}

    def listener(session, flush_context, instances):
        if calls["n"] >= times:
            return
        calls["n"] += 1
        with engine.begin() as conn:
            conn.execute(
                update(InventoryItem)
                .where(InventoryItem.id == item_id)
                .values(quantity=quantity, version=InventoryItem.version + 1)
            )

    event.listen(SessionLocal, "before_flush", listener)
    try:
        yield calls
    finally:
        event.remove(SessionLocal, "before_flush", listener)
