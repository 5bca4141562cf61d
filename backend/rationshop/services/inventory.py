"""
Inventory: commodities on hand, per-card-type prices and low-stock reporting.
"""
import logging
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from rationshop.errors import NotFound, ValidationFailed
from rationshop.models import InventoryItem, OrderLine
from rationshop.utils import generate_id, get_card_types, utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "unit", "quantity", "minimum_stock", "prices")


def price_for(item: InventoryItem, card_type: str) -> Decimal:
    """Unit price of an item for a card type, as an exact two-place Decimal."""
    prices = item.prices or {}
    if card_type not in prices:
        raise ValidationFailed(f"{item.name} has no price for card type {card_type}.", item_id=item.id)
    return Decimal(str(prices[card_type])).quantize(Decimal("0.01"))


def item_to_dict(item: InventoryItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "unit": item.unit,
        "quantity": item.quantity,
        "minimum_stock": item.minimum_stock,
        "prices": dict(item.prices or {}),
        "low_stock": item.quantity <= item.minimum_stock,
        "last_updated": item.last_updated.isoformat() if item.last_updated else None,
    }


def _validate(data: dict[str, Any]) -> None:
    if "quantity" in data and int(data["quantity"]) < 0:
        raise ValidationFailed("Quantity cannot be negative.")
    if "minimum_stock" in data and int(data["minimum_stock"]) < 0:
        raise ValidationFailed("Minimum stock cannot be negative.")
    if "prices" in data:
        known = set(get_card_types())
        for card_type, price in (data["prices"] or {}).items():
            if card_type not in known:
                raise ValidationFailed(f"Unknown card type {card_type}.", card_type=card_type)
            if float(price) < 0:
                raise ValidationFailed("Prices cannot be negative.", card_type=card_type)


def get_item(db: Session, item_id: str) -> InventoryItem:
    item = db.get(InventoryItem, item_id)
    if item is None:
        raise NotFound("Inventory item not found.", item_id=item_id)
    return item


def list_items(db: Session) -> list[InventoryItem]:
    """All commodities ordered by name."""
    return db.query(InventoryItem).order_by(InventoryItem.name).all()


def low_stock_items(db: Session) -> list[InventoryItem]:
    """Items at or below their minimum stock threshold."""
    return (
        db.query(InventoryItem)
        .filter(InventoryItem.quantity <= InventoryItem.minimum_stock)
        .order_by(InventoryItem.name)
        .all()
    )


def create_item(db: Session, data: dict[str, Any], item_id: Optional[str] = None) -> dict:
    """Add a commodity. ``prices`` should cover every configured card type."""
    _validate(data)
    item_id = item_id or data.get("id") or generate_id("itm")
    if db.get(InventoryItem, item_id) is not None:
        raise ValidationFailed(f"Inventory item {item_id} already exists.", item_id=item_id)
    item = InventoryItem(
        id=item_id,
        name=data["name"],
        unit=data.get("unit") or "kg",
        quantity=int(data.get("quantity", 0)),
        minimum_stock=int(data.get("minimum_stock", 0)),
        prices={k: float(v) for k, v in (data.get("prices") or {}).items()},
        last_updated=utcnow(),
    )
    db.add(item)
    db.flush()
    logger.info("inventory_item_created", extra={"item_id": item.id, "quantity": item.quantity})
    return item_to_dict(item)


def update_item(db: Session, item_id: str, data: dict[str, Any]) -> dict:
    """Partial update; unknown keys are ignored."""
    _validate(data)
    item = get_item(db, item_id)
    for field in UPDATABLE_FIELDS:
        if field not in data or data[field] is None:
            continue
        value = data[field]
        if field == "prices":
            value = {**(item.prices or {}), **{k: float(v) for k, v in value.items()}}
        elif field in ("quantity", "minimum_stock"):
            value = int(value)
        setattr(item, field, value)
    item.last_updated = utcnow()
    db.flush()
    logger.info("inventory_item_updated", extra={"item_id": item.id, "fields": sorted(k for k in data if k in UPDATABLE_FIELDS)})
    return item_to_dict(item)


def delete_item(db: Session, item_id: str) -> None:
    """Remove a commodity that no order line has referenced."""
    item = get_item(db, item_id)
    if db.query(OrderLine.id).filter(OrderLine.item_id == item_id).first() is not None:
        raise ValidationFailed(f"{item.name} appears in orders and cannot be deleted.", item_id=item_id)
    db.delete(item)
    db.flush()
    logger.info("inventory_item_deleted", extra={"item_id": item_id})
