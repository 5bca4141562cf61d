"""
Order lifecycle state machine.

    pending  -> approved | rejected | cancelled
    approved -> completed | cancelled | rejected

completed, rejected and cancelled are terminal. Stock taken at placement is returned
whenever an order leaves pending/approved for rejected/cancelled; the stock restore and
the status change commit together. Customers may only cancel their own pending orders.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from rationshop.db import run_transaction
from rationshop.errors import Forbidden, InvalidTransition, NotFound
from rationshop.models import InventoryItem, PENDING, APPROVED, REJECTED, CANCELLED, COMPLETED, ORDER_STATUSES
from rationshop.services.order_manager import get_order, order_to_dict
from rationshop.utils import utcnow

logger = logging.getLogger(__name__)

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({APPROVED, REJECTED, CANCELLED}),
    APPROVED: frozenset({COMPLETED, CANCELLED, REJECTED}),
    COMPLETED: frozenset(),
    REJECTED: frozenset(),
    CANCELLED: frozenset(),
}
RESTOCK_TARGETS = frozenset({REJECTED, CANCELLED})
CUSTOMER_TRANSITIONS = {PENDING: frozenset({CANCELLED})}


def allowed_transitions(status: str) -> frozenset[str]:
    return TRANSITIONS.get(status, frozenset())


def is_terminal(status: str) -> bool:
    return not allowed_transitions(status)


def _restock(db: Session, order) -> None:
    """Return every line's quantity to inventory, line by line."""
    now = utcnow()
    for line in order.lines:
        item = db.get(InventoryItem, line.item_id)
        if item is None:
            raise NotFound(f"Inventory item {line.item_id} no longer exists; cannot restore stock.", item_id=line.item_id)
        item.quantity += line.quantity
        item.last_updated = now


def _transition(db: Session, order_id: str, target: str, customer_id: Optional[str]) -> dict:
    order = get_order(db, order_id)
    current = order.status
    if customer_id is not None:
        if order.customer_id != customer_id:
            raise Forbidden("This order does not belong to you.")
        if target not in CUSTOMER_TRANSITIONS.get(current, frozenset()):
            raise Forbidden("Only pending orders can be cancelled.")
    if target not in allowed_transitions(current):
        raise InvalidTransition(f"Cannot move an order from {current} to {target}.", current=current, target=target)
    if target in RESTOCK_TARGETS:
        _restock(db, order)
    order.status = target
    order.updated_at = utcnow()
    db.flush()
    logger.info("order_transition", extra={
        "order_id": order.id,
        "from": current,
        "to": target,
        "by": "customer" if customer_id is not None else "admin",
        "restocked": target in RESTOCK_TARGETS,
    })
    return order_to_dict(order)


def transition_order(order_id: str, target: str) -> dict:
    """Admin status change. Unknown or disallowed targets raise InvalidTransition."""
    if target not in ORDER_STATUSES:
        raise InvalidTransition(f"Unknown order status {target}.", target=target)
    return run_transaction(lambda db: _transition(db, order_id, target, None), name="order_transition")


def cancel_own_order(customer_id: str, order_id: str) -> dict:
    """Customer self-service cancel; only pending -> cancelled is permitted."""
    return run_transaction(lambda db: _transition(db, order_id, CANCELLED, customer_id), name="order_self_cancel")
