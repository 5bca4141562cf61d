"""
Customers: ration card holders, owned and mutated by admin operations.
"""
import logging
import re
from typing import Any, Optional

from sqlalchemy.orm import Session

from rationshop.errors import NotFound, ValidationFailed
from rationshop.models import Customer, CustomerIssue, Order
from rationshop.utils import generate_id, get_card_types

logger = logging.getLogger(__name__)

AADHAAR_RE = re.compile(r"^\d{12}$")
PHONE_RE = re.compile(r"^\d{10}$")
UPDATABLE_FIELDS = ("name", "phone", "address", "card_type", "card_number", "family_members")


def customer_to_dict(customer: Customer) -> dict:
    return {
        "id": customer.id,
        "aadhaar_number": customer.aadhaar_number,
        "name": customer.name,
        "phone": customer.phone,
        "address": customer.address,
        "card_type": customer.card_type,
        "card_number": customer.card_number,
        "family_members": list(customer.family_members or []),
        "created_at": customer.created_at.isoformat() if customer.created_at else None,
    }


def _validate(data: dict[str, Any]) -> None:
    if data.get("aadhaar_number") is not None and not AADHAAR_RE.match(data["aadhaar_number"]):
        raise ValidationFailed("Aadhaar number must be 12 digits.")
    if data.get("phone") and not PHONE_RE.match(data["phone"]):
        raise ValidationFailed("Phone number must be 10 digits.")
    if data.get("card_type") is not None and data["card_type"] not in get_card_types():
        raise ValidationFailed(f"Unknown card type {data['card_type']}.", card_type=data["card_type"])
    for member in data.get("family_members") or []:
        if member.get("aadhaar_number") and not AADHAAR_RE.match(member["aadhaar_number"]):
            raise ValidationFailed(f"Aadhaar number of {member.get('name')} must be 12 digits.")


def get_customer(db: Session, customer_id: str) -> Customer:
    customer = db.get(Customer, customer_id)
    if customer is None:
        raise NotFound("Customer not found.", customer_id=customer_id)
    return customer


def find_by_aadhaar(db: Session, aadhaar_number: str) -> Customer:
    customer = db.query(Customer).filter(Customer.aadhaar_number == aadhaar_number).first()
    if customer is None:
        raise NotFound("Customer not found.")
    return customer


def list_customers(db: Session) -> list[Customer]:
    return db.query(Customer).order_by(Customer.name).all()


def create_customer(db: Session, data: dict[str, Any], customer_id: Optional[str] = None) -> dict:
    _validate(data)
    if db.query(Customer.id).filter(Customer.aadhaar_number == data["aadhaar_number"]).first():
        raise ValidationFailed("A customer with this Aadhaar number already exists.")
    customer = Customer(
        id=customer_id or data.get("id") or generate_id("cus"),
        aadhaar_number=data["aadhaar_number"],
        name=data["name"],
        phone=data.get("phone"),
        address=data.get("address"),
        card_type=data["card_type"],
        card_number=data["card_number"],
        family_members=list(data.get("family_members") or []),
    )
    db.add(customer)
    db.flush()
    logger.info("customer_created", extra={"customer_id": customer.id, "card_type": customer.card_type})
    return customer_to_dict(customer)


def update_customer(db: Session, customer_id: str, data: dict[str, Any]) -> dict:
    """
    Partial update. The card type is frozen once any order exists for the customer,
    since orders snapshot it and quota history depends on it.
    """
    _validate(data)
    customer = get_customer(db, customer_id)
    new_type = data.get("card_type")
    if new_type and new_type != customer.card_type:
        has_orders = db.query(Order.id).filter(Order.customer_id == customer_id).first() is not None
        if has_orders:
            raise ValidationFailed("Card type cannot be changed once orders exist for this customer.")
    for field in UPDATABLE_FIELDS:
        if field in data and data[field] is not None:
            value = data[field]
            if field == "family_members":
                value = list(value)
            setattr(customer, field, value)
    db.flush()
    logger.info("customer_updated", extra={"customer_id": customer.id})
    return customer_to_dict(customer)


def delete_customer(db: Session, customer_id: str) -> None:
    """Remove a card holder and their support tickets. Refused once orders reference them."""
    customer = get_customer(db, customer_id)
    if db.query(Order.id).filter(Order.customer_id == customer_id).first() is not None:
        raise ValidationFailed("Customers with orders cannot be deleted.", customer_id=customer_id)
    db.query(CustomerIssue).filter(CustomerIssue.customer_id == customer_id).delete(synchronize_session=False)
    db.delete(customer)
    db.flush()
    logger.info("customer_deleted", extra={"customer_id": customer_id})
