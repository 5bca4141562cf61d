"""
Quota accounting: remaining monthly allowance per commodity for a customer's card type.
remaining = max(0, monthly_quota[item] - quantity ordered this calendar month).
Cancelled and rejected orders do not consume quota.
"""
import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from rationshop.errors import NotFound, ValidationFailed
from rationshop.models import CardTypeQuota, InventoryItem, Order, CANCELLED, REJECTED
from rationshop.utils import get_card_types, month_start_utc, utcnow

logger = logging.getLogger(__name__)

NON_CONSUMING_STATUSES = frozenset({CANCELLED, REJECTED})


def consumed_quantities(orders: Iterable[Order]) -> dict[str, int]:
    """Sum ordered quantity per commodity across orders that still count toward the month."""
    used: dict[str, int] = {}
    for order in orders:
        if order.status in NON_CONSUMING_STATUSES:
            continue
        for line in order.lines:
            used[line.item_id] = used.get(line.item_id, 0) + int(line.quantity)
    return used


def compute_remaining(
    monthly_quota: dict[str, Any],
    orders: Iterable[Order],
    item_ids: Iterable[str],
) -> dict[str, int]:
    """
    Pure computation over already-fetched records.
    monthly_quota: commodity id -> allotted quantity (missing ids count as 0).
    orders: the customer's orders dated on/after the start of the current month.
    Returns commodity id -> remaining quantity, never below zero.
    """
    used = consumed_quantities(orders)
    return {
        item_id: max(0, int(monthly_quota.get(item_id, 0) or 0) - used.get(item_id, 0))
        for item_id in item_ids
    }


def get_card_quota(db: Session, card_type: str) -> CardTypeQuota:
    """Load the quota record for a card type; NotFound if none is configured."""
    quota = db.get(CardTypeQuota, card_type)
    if quota is None:
        raise NotFound(f"No monthly quota is configured for card type {card_type}.", card_type=card_type)
    return quota


def orders_this_month(db: Session, customer_id: str, now: Optional[datetime] = None) -> list[Order]:
    """Customer's orders dated on/after the first instant of the current calendar month."""
    start = month_start_utc(now)
    return (
        db.query(Order)
        .filter(Order.customer_id == customer_id, Order.order_date >= start)
        .all()
    )


def remaining_for_customer(
    db: Session,
    customer_id: str,
    card_type: str,
    item_ids: Optional[Iterable[str]] = None,
    now: Optional[datetime] = None,
) -> dict[str, int]:
    """Remaining quota for every inventory commodity (or the given ids), recomputed from the store."""
    quota = get_card_quota(db, card_type)
    if item_ids is None:
        item_ids = [row.id for row in db.query(InventoryItem.id).all()]
    orders = orders_this_month(db, customer_id, now)
    return compute_remaining(quota.monthly_quota or {}, orders, item_ids)


def card_quota_to_dict(quota: CardTypeQuota) -> dict:
    return {
        "card_type": quota.card_type,
        "description": quota.description,
        "monthly_quota": dict(quota.monthly_quota or {}),
        "last_updated": quota.last_updated.isoformat() if quota.last_updated else None,
    }


def list_card_quotas(db: Session) -> list[dict]:
    """
    One entry per configured card type. Types with no stored record are returned with
    zero allocations for every commodity, so the admin view can fill them in.
    """
    stored = {q.card_type: q for q in db.query(CardTypeQuota).all()}
    item_ids = [row.id for row in db.query(InventoryItem.id).order_by(InventoryItem.name).all()]
    out = []
    for card_type in get_card_types():
        if card_type in stored:
            out.append(card_quota_to_dict(stored[card_type]))
        else:
            out.append({
                "card_type": card_type,
                "description": None,
                "monthly_quota": {item_id: 0 for item_id in item_ids},
                "last_updated": None,
            })
    return out


def set_card_quota(db: Session, card_type: str, monthly_quota: dict[str, int], description: Optional[str] = None) -> dict:
    """Overwrite a card type's monthly allocation in place (no history kept)."""
    if card_type not in get_card_types():
        raise ValidationFailed(f"Unknown card type {card_type}.", card_type=card_type)
    cleaned: dict[str, int] = {}
    for item_id, qty in monthly_quota.items():
        qty = int(qty)
        if qty < 0:
            raise ValidationFailed(f"Quota for {item_id} cannot be negative.", item_id=item_id)
        cleaned[item_id] = qty
    quota = db.get(CardTypeQuota, card_type)
    if quota is None:
        quota = CardTypeQuota(card_type=card_type)
        db.add(quota)
    quota.monthly_quota = cleaned
    if description is not None:
        quota.description = description
    quota.last_updated = utcnow()
    db.flush()
    logger.info("card_quota_updated", extra={"card_type": card_type, "items": len(cleaned)})
    return card_quota_to_dict(quota)
