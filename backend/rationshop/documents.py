"""
Versioned document shapes for the customers, inventory, cardQuotas, orders and
customerIssues collections, plus the adapters that upgrade older exports.

Schema version 1 (legacy) differences:
- customers carried their own ``monthlyQuota`` and family members used ``relationship``
- inventory items had one scalar ``price`` instead of a per-card-type ``prices`` map
- order lines were ``{itemId, quantity, priceAtTime}`` without name/unit snapshots
- customer issues stored the admin's answer as ``adminResponse``

Documents that fit neither version are rejected with ValidationFailed.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from rationshop.errors import ValidationFailed
from rationshop.models import ORDER_STATUSES, ISSUE_STATUSES
from rationshop.utils import get_card_types

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 2


def _coerce_timestamp(value: Any) -> Optional[datetime]:
    """Accept ISO strings, epoch seconds, or exported ``{"seconds", "nanoseconds"}`` maps; return naive UTC."""
    if value is None or isinstance(value, datetime):
        if isinstance(value, datetime) and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    try:
        if isinstance(value, dict) and "seconds" in value:
            seconds = value["seconds"] + value.get("nanoseconds", 0) / 1e9
            return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
        if isinstance(value, str):
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
            return parsed
    except (TypeError, ValueError, OverflowError, OSError) as e:
        # pydantic only turns ValueError into a validation error
        raise ValueError(f"Unrecognised timestamp {value!r}") from e
    raise ValueError(f"Unrecognised timestamp {value!r}")


class Document(BaseModel):
    """Base for store documents: camelCase aliases, unknown fields ignored."""

    class Config:
        populate_by_name = True
        extra = "ignore"


class FamilyMemberDoc(Document):
    name: str
    relation: str = ""
    age: int = Field(0, ge=0)
    aadhaar_number: Optional[str] = Field(None, alias="aadhaarNumber")


class CustomerDoc(Document):
    id: str
    aadhaar_number: str = Field(..., alias="aadhaarNumber", pattern=r"^\d{12}$")
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    card_type: str = Field(..., alias="rationCardType")
    card_number: str = Field(..., alias="rationCardNumber")
    family_members: list[FamilyMemberDoc] = Field(default_factory=list, alias="familyMembers")
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_timestamps(cls, v: Any) -> Optional[datetime]:
        return _coerce_timestamp(v)

    @field_validator("card_type")
    @classmethod
    def known_card_type(cls, v: str) -> str:
        if v not in get_card_types():
            raise ValueError(f"card type {v} is not enabled in this deployment")
        return v


class InventoryDoc(Document):
    id: str
    name: str
    unit: str = "kg"
    quantity: int = Field(0, ge=0)
    minimum_stock: int = Field(0, ge=0, alias="minimumStock")
    prices: dict[str, float]
    last_updated: Optional[datetime] = Field(None, alias="lastUpdated")

    @field_validator("last_updated", mode="before")
    @classmethod
    def parse_timestamps(cls, v: Any) -> Optional[datetime]:
        return _coerce_timestamp(v)


class CardQuotaDoc(Document):
    card_type: str = Field(..., alias="cardType")
    description: Optional[str] = None
    monthly_quota: dict[str, int] = Field(default_factory=dict, alias="monthlyQuota")
    last_updated: Optional[datetime] = Field(None, alias="lastUpdated")

    @field_validator("last_updated", mode="before")
    @classmethod
    def parse_timestamps(cls, v: Any) -> Optional[datetime]:
        return _coerce_timestamp(v)

    @field_validator("monthly_quota")
    @classmethod
    def non_negative(cls, v: dict[str, int]) -> dict[str, int]:
        if any(q < 0 for q in v.values()):
            raise ValueError("monthly quota cannot be negative")
        return v


class OrderLineDoc(Document):
    item_id: str = Field(..., alias="itemId")
    name: str
    quantity: int = Field(..., gt=0)
    price: Decimal
    unit: Optional[str] = None


class OrderDoc(Document):
    id: str
    customer_id: str = Field(..., alias="customerId")
    card_type: str = Field(..., alias="rationCardType")
    items: list[OrderLineDoc] = Field(..., min_length=1)
    total_amount: Optional[Decimal] = Field(None, alias="totalAmount")
    status: str
    order_date: datetime = Field(..., alias="orderDate")

    @field_validator("order_date", mode="before")
    @classmethod
    def parse_timestamps(cls, v: Any) -> Optional[datetime]:
        return _coerce_timestamp(v)

    @field_validator("status")
    @classmethod
    def known_status(cls, v: str) -> str:
        if v not in ORDER_STATUSES:
            raise ValueError(f"unknown order status {v}")
        return v


class IssueDoc(Document):
    id: str
    customer_id: str = Field(..., alias="customerId")
    description: str = Field(..., min_length=1)
    status: str = "pending"
    response: Optional[str] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def parse_timestamps(cls, v: Any) -> Optional[datetime]:
        return _coerce_timestamp(v)

    @field_validator("status")
    @classmethod
    def known_status(cls, v: str) -> str:
        if v not in ISSUE_STATUSES:
            raise ValueError(f"unknown issue status {v}")
        return v


def _parse(model: type[Document], raw: dict, kind: str) -> Document:
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        logger.warning("document_rejected", extra={"kind": kind, "doc_id": raw.get("id"), "errors": e.error_count()})
        raise ValidationFailed(f"{kind} document {raw.get('id')!r} does not match a known schema.") from e


def _version_of(raw: dict) -> Optional[int]:
    v = raw.get("schemaVersion")
    if v is None:
        return None
    try:
        version = int(v)
    except (TypeError, ValueError) as e:
        raise ValidationFailed(f"document {raw.get('id')!r} has an unreadable schema version {v!r}.") from e
    if version > CURRENT_SCHEMA_VERSION:
        raise ValidationFailed(f"document {raw.get('id')!r} uses schema version {v}, newer than this service understands.")
    return version


def upgrade_customer(raw: dict) -> tuple[CustomerDoc, bool]:
    """Return the current-shape customer and whether an upgrade was applied."""
    doc = dict(raw)
    members = doc.get("familyMembers") or []
    if not isinstance(members, list) or not all(isinstance(m, dict) for m in members):
        raise ValidationFailed(f"customer document {doc.get('id')!r} has malformed family members.")
    legacy = _version_of(doc) == 1 or "monthlyQuota" in doc or any("relationship" in m for m in members)
    if legacy:
        # per-customer quotas were replaced by card-type quotas
        doc.pop("monthlyQuota", None)
        doc["familyMembers"] = [
            {**{k: v for k, v in m.items() if k != "relationship"}, "relation": m.get("relation", m.get("relationship", ""))}
            for m in members
        ]
    return _parse(CustomerDoc, doc, "customer"), legacy


def upgrade_inventory(raw: dict) -> tuple[InventoryDoc, bool]:
    doc = dict(raw)
    legacy = _version_of(doc) == 1
    if "prices" not in doc and "price" in doc:
        legacy = True
        price = doc.pop("price")
        doc["prices"] = {card_type: price for card_type in get_card_types()}
    return _parse(InventoryDoc, doc, "inventory"), legacy


def upgrade_card_quota(raw: dict) -> tuple[CardQuotaDoc, bool]:
    doc = dict(raw)
    _version_of(doc)
    if "cardType" not in doc and "id" in doc:
        doc["cardType"] = doc["id"]
    return _parse(CardQuotaDoc, doc, "cardQuota"), False


def upgrade_order(raw: dict, catalog: Optional[dict[str, dict]] = None) -> tuple[OrderDoc, bool]:
    """
    catalog: item id -> {"name", "unit"} used to fill snapshots missing from legacy lines.
    A total that disagrees with the lines is rejected; a missing total is recomputed.
    """
    catalog = catalog or {}
    doc = dict(raw)
    lines = doc.get("items") or []
    if not isinstance(lines, list) or not all(isinstance(line, dict) for line in lines):
        raise ValidationFailed(f"order document {doc.get('id')!r} has malformed line items.")
    legacy = _version_of(doc) == 1 or any("priceAtTime" in line for line in lines)
    if legacy:
        upgraded = []
        for line in lines:
            line = dict(line)
            if "priceAtTime" in line:
                line["price"] = line.pop("priceAtTime")
            item_id = line.get("itemId")
            known = catalog.get(item_id, {}) if isinstance(item_id, str) else {}
            line.setdefault("name", known.get("name") or line.get("itemId"))
            line.setdefault("unit", known.get("unit"))
            upgraded.append(line)
        doc["items"] = upgraded
    order = _parse(OrderDoc, doc, "order")
    computed = sum((line.price * line.quantity for line in order.items), Decimal("0"))
    if order.total_amount is None:
        order = order.model_copy(update={"total_amount": computed})
        legacy = True
    if abs(order.total_amount - computed) > Decimal("0.005"):
        logger.warning("document_rejected", extra={"kind": "order", "doc_id": order.id, "reason": "total_mismatch"})
        raise ValidationFailed(f"order document {order.id!r} total does not match its lines.")
    return order, legacy


def upgrade_issue(raw: dict) -> tuple[IssueDoc, bool]:
    doc = dict(raw)
    legacy = _version_of(doc) == 1
    if "adminResponse" in doc and "response" not in doc:
        legacy = True
        doc["response"] = doc.pop("adminResponse")
    return _parse(IssueDoc, doc, "customerIssue"), legacy
