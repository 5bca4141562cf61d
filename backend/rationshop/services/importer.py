"""
Import collection exports ({collection: [documents]}) into the database through the
schema adapters in rationshop.documents. Used for the startup seed and the admin import.
Existing ids are left untouched; imported orders never move stock.
"""
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from rationshop.db import SessionLocal
from rationshop.documents import (
    upgrade_card_quota,
    upgrade_customer,
    upgrade_inventory,
    upgrade_issue,
    upgrade_order,
)
from rationshop.errors import ValidationFailed
from rationshop.models import CardTypeQuota, Customer, CustomerIssue, InventoryItem, Order, OrderLine
from rationshop.utils import load_seed, utcnow

logger = logging.getLogger(__name__)

# dependency order: orders need customers and the inventory catalog
COLLECTIONS = ("cardQuotas", "inventory", "customers", "orders", "customerIssues")


def _new_counts() -> dict[str, int]:
    return {"imported": 0, "upgraded": 0, "skipped": 0, "rejected": 0}


def _import_card_quota(db: Session, raw: dict) -> Optional[bool]:
    """Each _import_* returns None when the id already exists, else whether the document was upgraded."""
    doc, upgraded = upgrade_card_quota(raw)
    if db.get(CardTypeQuota, doc.card_type) is not None:
        return None
    db.add(CardTypeQuota(
        card_type=doc.card_type,
        description=doc.description,
        monthly_quota=dict(doc.monthly_quota),
        last_updated=doc.last_updated or utcnow(),
    ))
    return upgraded


def _import_inventory(db: Session, raw: dict) -> Optional[bool]:
    doc, upgraded = upgrade_inventory(raw)
    if db.get(InventoryItem, doc.id) is not None:
        return None
    db.add(InventoryItem(
        id=doc.id,
        name=doc.name,
        unit=doc.unit,
        quantity=doc.quantity,
        minimum_stock=doc.minimum_stock,
        prices=dict(doc.prices),
        last_updated=doc.last_updated or utcnow(),
    ))
    return upgraded


def _import_customer(db: Session, raw: dict) -> Optional[bool]:
    doc, upgraded = upgrade_customer(raw)
    if db.get(Customer, doc.id) is not None:
        return None
    if db.query(Customer.id).filter(Customer.aadhaar_number == doc.aadhaar_number).first():
        raise ValidationFailed(f"customer document {doc.id!r} duplicates an existing Aadhaar number.")
    db.add(Customer(
        id=doc.id,
        aadhaar_number=doc.aadhaar_number,
        name=doc.name,
        phone=doc.phone,
        address=doc.address,
        card_type=doc.card_type,
        card_number=doc.card_number,
        family_members=[m.model_dump() for m in doc.family_members],
        created_at=doc.created_at or utcnow(),
    ))
    return upgraded


def _import_order(db: Session, raw: dict, catalog: dict[str, dict]) -> Optional[bool]:
    doc, upgraded = upgrade_order(raw, catalog)
    if db.get(Order, doc.id) is not None:
        return None
    if db.get(Customer, doc.customer_id) is None:
        raise ValidationFailed(f"order document {doc.id!r} references unknown customer {doc.customer_id!r}.")
    order = Order(
        id=doc.id,
        customer_id=doc.customer_id,
        card_type=doc.card_type,
        total_amount=doc.total_amount,
        status=doc.status,
        order_date=doc.order_date,
        updated_at=doc.order_date,
    )
    for position, line in enumerate(doc.items):
        order.lines.append(OrderLine(
            position=position,
            item_id=line.item_id,
            name=line.name,
            quantity=line.quantity,
            unit_price=line.price,
            unit=line.unit,
        ))
    db.add(order)
    return upgraded


def _import_issue(db: Session, raw: dict) -> Optional[bool]:
    doc, upgraded = upgrade_issue(raw)
    if db.get(CustomerIssue, doc.id) is not None:
        return None
    if db.get(Customer, doc.customer_id) is None:
        raise ValidationFailed(f"issue document {doc.id!r} references unknown customer {doc.customer_id!r}.")
    created = doc.created_at or utcnow()
    db.add(CustomerIssue(
        id=doc.id,
        customer_id=doc.customer_id,
        description=doc.description,
        status=doc.status,
        response=doc.response,
        created_at=created,
        updated_at=doc.updated_at or created,
    ))
    return upgraded


def import_documents(db: Session, payload: dict[str, list[dict[str, Any]]]) -> dict[str, dict[str, int]]:
    """
    Upgrade and insert every document; a rejected document is logged and counted, the rest
    of the import continues. Returns per-collection counts of imported/upgraded/skipped/rejected.
    The caller commits.
    """
    summary: dict[str, dict[str, int]] = {}
    unknown = set(payload) - set(COLLECTIONS)
    if unknown:
        raise ValidationFailed(f"Unknown collections: {', '.join(sorted(unknown))}.")
    for collection in COLLECTIONS:
        docs = payload.get(collection) or []
        counts = _new_counts()
        if collection == "orders":
            catalog = {i.id: {"name": i.name, "unit": i.unit} for i in db.query(InventoryItem).all()}
        for raw in docs:
            try:
                if not isinstance(raw, dict):
                    raise ValidationFailed(f"{collection} entry is not a document.")
                if collection == "cardQuotas":
                    result = _import_card_quota(db, raw)
                elif collection == "inventory":
                    result = _import_inventory(db, raw)
                elif collection == "customers":
                    result = _import_customer(db, raw)
                elif collection == "orders":
                    result = _import_order(db, raw, catalog)
                else:
                    result = _import_issue(db, raw)
                db.flush()
            except ValidationFailed as e:
                counts["rejected"] += 1
                logger.warning("document_rejected", extra={"collection": collection, "doc_id": raw.get("id") if isinstance(raw, dict) else None, "reason": e.message})
                continue
            if result is None:
                counts["skipped"] += 1
                continue
            counts["imported"] += 1
            if result:
                counts["upgraded"] += 1
        summary[collection] = counts
    logger.info("documents_imported", extra={"summary": summary})
    return summary


def seed_if_empty(payload: Optional[dict] = None) -> Optional[dict]:
    """Import DATA_DIR/seed.json at startup when the inventory table is empty."""
    db = SessionLocal()
    try:
        if db.query(InventoryItem.id).first() is not None:
            return None
        payload = payload if payload is not None else load_seed()
        if not payload:
            logger.info("seed_skipped", extra={"reason": "no seed.json"})
            return None
        summary = import_documents(db, payload)
        db.commit()
        return summary
    finally:
        db.close()
