"""
Admin back-office routes: customers, inventory, card quotas, orders, customer issues,
dashboard and document import. Every route requires a token with the admin claim.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from rationshop.auth import require_admin
from rationshop.db import get_db, run_transaction
from rationshop.models import Customer, Order, PENDING
from rationshop.schema import (
    CardQuotaResponse,
    CardQuotaUpdate,
    CustomerCreate,
    CustomerResponse,
    CustomerUpdate,
    DashboardStats,
    ImportRequest,
    ImportResponse,
    InventoryItemCreate,
    InventoryItemResponse,
    InventoryItemUpdate,
    IssueRespond,
    IssueResponse,
    IssueStatusUpdate,
    OrderResponse,
    OrderStatusUpdate,
)
from rationshop.services import customers, inventory, issues, quota
from rationshop.services.importer import import_documents
from rationshop.services.lifecycle import transition_order
from rationshop.services.order_manager import get_order, list_orders, order_to_dict

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


# --- Dashboard ---
@router.get("/dashboard", response_model=DashboardStats)
def dashboard(db: Session = Depends(get_db)):
    return DashboardStats(
        total_customers=db.query(func.count(Customer.id)).scalar() or 0,
        total_orders=db.query(func.count(Order.id)).scalar() or 0,
        pending_orders=db.query(func.count(Order.id)).filter(Order.status == PENDING).scalar() or 0,
        low_stock_items=len(inventory.low_stock_items(db)),
    )


# --- Customers ---
@router.get("/customers", response_model=list[CustomerResponse])
def list_customers(db: Session = Depends(get_db)):
    return [customers.customer_to_dict(c) for c in customers.list_customers(db)]


@router.post("/customers", response_model=CustomerResponse, status_code=201)
def create_customer(req: CustomerCreate):
    return run_transaction(lambda db: customers.create_customer(db, req.model_dump()), name="customer_create")


@router.get("/customers/{customer_id}", response_model=CustomerResponse)
def get_customer(customer_id: str, db: Session = Depends(get_db)):
    return customers.customer_to_dict(customers.get_customer(db, customer_id))


@router.patch("/customers/{customer_id}", response_model=CustomerResponse)
def update_customer(customer_id: str, req: CustomerUpdate):
    data = req.model_dump(exclude_none=True)
    return run_transaction(lambda db: customers.update_customer(db, customer_id, data), name="customer_update")


@router.delete("/customers/{customer_id}", status_code=204)
def delete_customer(customer_id: str):
    """Refused with 400 once the customer has orders."""
    run_transaction(lambda db: customers.delete_customer(db, customer_id), name="customer_delete")


# --- Inventory ---
@router.get("/inventory", response_model=list[InventoryItemResponse])
def list_inventory(low_stock: bool = False, db: Session = Depends(get_db)):
    items = inventory.low_stock_items(db) if low_stock else inventory.list_items(db)
    return [inventory.item_to_dict(i) for i in items]


@router.post("/inventory", response_model=InventoryItemResponse, status_code=201)
def create_inventory_item(req: InventoryItemCreate):
    return run_transaction(lambda db: inventory.create_item(db, req.model_dump()), name="inventory_create")


@router.get("/inventory/{item_id}", response_model=InventoryItemResponse)
def get_inventory_item(item_id: str, db: Session = Depends(get_db)):
    return inventory.item_to_dict(inventory.get_item(db, item_id))


@router.patch("/inventory/{item_id}", response_model=InventoryItemResponse)
def update_inventory_item(item_id: str, req: InventoryItemUpdate):
    data = req.model_dump(exclude_none=True)
    return run_transaction(lambda db: inventory.update_item(db, item_id, data), name="inventory_update")


@router.delete("/inventory/{item_id}", status_code=204)
def delete_inventory_item(item_id: str):
    """Refused with 400 once any order line references the item."""
    run_transaction(lambda db: inventory.delete_item(db, item_id), name="inventory_delete")


# --- Card quotas ---
@router.get("/card-quotas", response_model=list[CardQuotaResponse])
def list_card_quotas(db: Session = Depends(get_db)):
    return quota.list_card_quotas(db)


@router.get("/card-quotas/{card_type}", response_model=CardQuotaResponse)
def get_card_quota(card_type: str, db: Session = Depends(get_db)):
    return quota.card_quota_to_dict(quota.get_card_quota(db, card_type))


@router.put("/card-quotas/{card_type}", response_model=CardQuotaResponse)
def put_card_quota(card_type: str, req: CardQuotaUpdate):
    return run_transaction(
        lambda db: quota.set_card_quota(db, card_type, req.monthly_quota, req.description),
        name="card_quota_update",
    )


# --- Orders ---
@router.get("/orders", response_model=list[OrderResponse])
def admin_list_orders(status: Optional[str] = None, db: Session = Depends(get_db)):
    """All orders, newest first; optional ?status= filter."""
    return list_orders(db, status=status)


@router.get("/orders/{order_id}", response_model=OrderResponse)
def admin_get_order(order_id: str, db: Session = Depends(get_db)):
    order = get_order(db, order_id)
    return order_to_dict(order, db.get(Customer, order.customer_id))


@router.post("/orders/{order_id}/status", response_model=OrderResponse)
def admin_set_order_status(order_id: str, req: OrderStatusUpdate):
    return transition_order(order_id, req.status)


# --- Customer issues ---
@router.get("/issues", response_model=list[IssueResponse])
def admin_list_issues(db: Session = Depends(get_db)):
    return issues.list_issues(db)


@router.post("/issues/{issue_id}/status", response_model=IssueResponse)
def admin_set_issue_status(issue_id: str, req: IssueStatusUpdate):
    return run_transaction(lambda db: issues.set_issue_status(db, issue_id, req.status), name="issue_status")


@router.post("/issues/{issue_id}/respond", response_model=IssueResponse)
def admin_respond_issue(issue_id: str, req: IssueRespond):
    return run_transaction(lambda db: issues.respond_to_issue(db, issue_id, req.response), name="issue_respond")


# --- Import ---
@router.post("/import", response_model=ImportResponse)
def admin_import(req: ImportRequest):
    """Load a collection export through the schema adapters; existing ids are skipped."""
    return ImportResponse(summary=run_transaction(lambda db: import_documents(db, req.collections), name="import"))
