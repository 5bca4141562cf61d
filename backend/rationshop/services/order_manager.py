"""
Order Manager: validate a cart against live stock and remaining quota, then decrement
inventory and persist the order in one transaction.
Placement is not idempotent; submitting the same cart twice creates two orders.
"""
import logging
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from rationshop.db import run_transaction
from rationshop.errors import Forbidden, InsufficientStock, NotFound, QuotaExceeded, ValidationFailed
from rationshop.models import Customer, Order, OrderLine, PENDING
from rationshop.services.customers import get_customer
from rationshop.services.inventory import get_item, price_for
from rationshop.services.quota import remaining_for_customer
from rationshop.utils import generate_id, utcnow

logger = logging.getLogger(__name__)


def line_to_dict(line: OrderLine) -> dict:
    return {
        "item_id": line.item_id,
        "name": line.name,
        "quantity": line.quantity,
        "unit_price": line.unit_price,
        "unit": line.unit,
        "subtotal": line.unit_price * line.quantity,
    }


def order_to_dict(order: Order, customer: Optional[Customer] = None) -> dict:
    out = {
        "id": order.id,
        "customer_id": order.customer_id,
        "card_type": order.card_type,
        "items": [line_to_dict(line) for line in order.lines],
        "total_amount": order.total_amount,
        "status": order.status,
        "order_date": order.order_date.isoformat() if order.order_date else None,
        "updated_at": order.updated_at.isoformat() if order.updated_at else None,
    }
    if customer is not None:
        out["customer_name"] = customer.name
        out["customer_card_number"] = customer.card_number
    return out


def merge_lines(lines: Iterable[tuple[str, int]]) -> dict[str, int]:
    """Collapse (item_id, quantity) pairs into item_id -> total quantity, keeping first-seen order."""
    merged: dict[str, int] = {}
    for item_id, qty in lines:
        qty = int(qty)
        if qty <= 0:
            raise ValidationFailed("Quantities must be at least 1.", item_id=item_id)
        merged[item_id] = merged.get(item_id, 0) + qty
    return merged


def _place(db: Session, customer_id: str, requested: dict[str, int], card_type: Optional[str]) -> dict:
    customer = get_customer(db, customer_id)
    if card_type and card_type != customer.card_type:
        # client session is stale; quota and prices must follow the stored card type
        raise Forbidden("Your card details have changed. Please sign in again.")
    card_type = customer.card_type

    items = {item_id: get_item(db, item_id) for item_id in requested}
    remaining = remaining_for_customer(db, customer.id, card_type, item_ids=list(requested))

    for item_id, qty in requested.items():
        item = items[item_id]
        if item.quantity < qty:
            raise InsufficientStock(f"Insufficient stock for {item.name}.", item_id=item_id, available=item.quantity)
    for item_id, qty in requested.items():
        if qty > remaining[item_id]:
            raise QuotaExceeded(
                f"You can order at most {remaining[item_id]} {items[item_id].unit} of {items[item_id].name} this month.",
                item_id=item_id, remaining=remaining[item_id],
            )

    now = utcnow()
    order = Order(id=generate_id("ord"), customer_id=customer.id, card_type=card_type, status=PENDING, order_date=now)
    total = Decimal("0.00")
    for position, (item_id, qty) in enumerate(requested.items()):
        item = items[item_id]
        unit_price = price_for(item, card_type)
        order.lines.append(OrderLine(
            position=position,
            item_id=item.id,
            name=item.name,
            quantity=qty,
            unit_price=unit_price,
            unit=item.unit,
        ))
        total += unit_price * qty
        item.quantity -= qty
        item.last_updated = now
    order.total_amount = total
    # touching the customer row makes concurrent placements by the same customer conflict
    customer.last_order_at = now
    db.add(order)
    db.flush()
    logger.info("order_placed", extra={
        "order_id": order.id,
        "customer_id": customer.id,
        "lines": len(requested),
        "total_amount": str(total),
    })
    return order_to_dict(order)


def place_order(customer_id: str, lines: Iterable[tuple[str, int]], card_type: Optional[str] = None) -> dict:
    """
    Place an order for (item_id, quantity) pairs. Stock and remaining quota are re-read
    inside the transaction; on a concurrent modification it is retried once, then
    TransactionConflict surfaces. Nothing is persisted unless every line passes.
    """
    requested = merge_lines(lines)
    if not requested:
        raise ValidationFailed("Your cart is empty.")
    return run_transaction(lambda db: _place(db, customer_id, requested, card_type), name="place_order")


def get_order(db: Session, order_id: str) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found.", order_id=order_id)
    return order


def list_customer_orders(db: Session, customer_id: str) -> list[dict]:
    """Customer's own orders, newest first."""
    rows = (
        db.query(Order)
        .filter(Order.customer_id == customer_id)
        .order_by(Order.order_date.desc())
        .all()
    )
    return [order_to_dict(o) for o in rows]


def list_orders(db: Session, status: Optional[str] = None) -> list[dict]:
    """All orders for the admin view, newest first, with the customer's name and card number."""
    q = db.query(Order, Customer).join(Customer, Customer.id == Order.customer_id)
    if status:
        q = q.filter(Order.status == status)
    return [order_to_dict(o, c) for o, c in q.order_by(Order.order_date.desc()).all()]
