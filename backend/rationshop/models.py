"""
SQLAlchemy models for customers, inventory, card-type quotas, orders and customer issues.
Every mutable table carries a ``version`` column used as SQLAlchemy's version_id_col, so an
UPDATE against a row that changed since it was read raises StaleDataError.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship

from rationshop.db import Base
from rationshop.utils import utcnow

# Order status vocabulary
PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
CANCELLED = "cancelled"
COMPLETED = "completed"
ORDER_STATUSES = (PENDING, APPROVED, REJECTED, CANCELLED, COMPLETED)

# Customer issue status vocabulary
ISSUE_PENDING = "pending"
ISSUE_IN_PROGRESS = "in-progress"
ISSUE_RESOLVED = "resolved"
ISSUE_STATUSES = (ISSUE_PENDING, ISSUE_IN_PROGRESS, ISSUE_RESOLVED)


class Customer(Base):
    """Ration card holder. Family members are embedded as a JSON list."""
    __tablename__ = "customers"

    id = Column(String(64), primary_key=True)
    aadhaar_number = Column(String(12), nullable=False, unique=True, index=True)
    name = Column(String(256), nullable=False)
    phone = Column(String(16), nullable=True)
    address = Column(Text, nullable=True)
    card_type = Column(String(32), nullable=False)
    card_number = Column(String(64), nullable=False)
    family_members = Column(JSON, nullable=False, default=list)
    last_order_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class InventoryItem(Base):
    """A commodity on hand; ``prices`` maps card type -> unit price."""
    __tablename__ = "inventory"

    id = Column(String(64), primary_key=True)
    name = Column(String(256), nullable=False)
    unit = Column(String(32), nullable=False, default="kg")
    quantity = Column(Integer, nullable=False, default=0)
    minimum_stock = Column(Integer, nullable=False, default=0)
    prices = Column(JSON, nullable=False, default=dict)
    last_updated = Column(DateTime, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class CardTypeQuota(Base):
    """Monthly allocation per card type; ``monthly_quota`` maps commodity id -> quantity."""
    __tablename__ = "card_quotas"

    card_type = Column(String(32), primary_key=True)
    description = Column(String(256), nullable=True)
    monthly_quota = Column(JSON, nullable=False, default=dict)
    last_updated = Column(DateTime, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class Order(Base):
    """Order header. Lines snapshot name and price at creation time."""
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    customer_id = Column(String(64), ForeignKey("customers.id"), nullable=False, index=True)
    card_type = Column(String(32), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(32), nullable=False, default=PENDING)
    order_date = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    lines = relationship("OrderLine", back_populates="order", order_by="OrderLine.position",
                         cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}


class OrderLine(Base):
    """One (commodity, quantity, price) triple of an order. Never updated after insert."""
    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(64), ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    item_id = Column(String(64), nullable=False)
    name = Column(String(256), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    unit = Column(String(32), nullable=True)

    order = relationship("Order", back_populates="lines")


class CustomerIssue(Base):
    """Support ticket raised by a customer and answered by an admin."""
    __tablename__ = "customer_issues"

    id = Column(String(64), primary_key=True)
    customer_id = Column(String(64), ForeignKey("customers.id"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    status = Column(String(32), nullable=False, default=ISSUE_PENDING)
    response = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
