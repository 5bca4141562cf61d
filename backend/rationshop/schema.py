"""
Pydantic schemas for API request/response validation.
"""
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator


def _money(v: Any) -> Any:
    """Order amounts are exact Decimals internally; JSON carries them as numbers."""
    return float(v) if isinstance(v, Decimal) else v


# --- Errors ---
class ErrorResponse(BaseModel):
    """Body returned for every handled failure."""
    error: str
    detail: str


# --- Auth ---
class AdminSignIn(BaseModel):
    """Request body for POST /auth/admin-token."""
    email: str
    password: str


class CustomerLookupRequest(BaseModel):
    """Request body for POST /auth/customer-lookup."""
    aadhaar_number: str = Field(..., pattern=r"^\d{12}$")


class CustomerLookupResponse(BaseModel):
    customer_id: str
    name: str


class CustomerTokenRequest(BaseModel):
    """Request body for POST /auth/customer-token (after the OTP check)."""
    customer_id: str = Field(..., min_length=1)
    aadhaar_number: str = Field(..., min_length=1)


# --- Customers ---
class FamilyMember(BaseModel):
    name: str
    relation: str
    age: int = Field(..., ge=0)
    aadhaar_number: Optional[str] = None


class CustomerCreate(BaseModel):
    """Request body for POST /admin/customers."""
    aadhaar_number: str
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    card_type: str
    card_number: str
    family_members: list[FamilyMember] = Field(default_factory=list)


class CustomerUpdate(BaseModel):
    """Request body for PATCH /admin/customers/{id}; omitted fields are left alone."""
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    card_type: Optional[str] = None
    card_number: Optional[str] = None
    family_members: Optional[list[FamilyMember]] = None


class CustomerResponse(BaseModel):
    id: str
    aadhaar_number: str
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    card_type: str
    card_number: str
    family_members: list[FamilyMember]
    created_at: Optional[str] = None


# --- Inventory ---
class InventoryItemCreate(BaseModel):
    """Request body for POST /admin/inventory."""
    id: Optional[str] = None
    name: str
    unit: str = "kg"
    quantity: int = Field(0, ge=0)
    minimum_stock: int = Field(0, ge=0)
    prices: dict[str, float] = Field(default_factory=dict, description="Card type -> unit price")


class InventoryItemUpdate(BaseModel):
    """Request body for PATCH /admin/inventory/{id}."""
    name: Optional[str] = None
    unit: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0)
    minimum_stock: Optional[int] = Field(None, ge=0)
    prices: Optional[dict[str, float]] = None


class InventoryItemResponse(BaseModel):
    id: str
    name: str
    unit: str
    quantity: int
    minimum_stock: int
    prices: dict[str, float]
    low_stock: bool
    last_updated: Optional[str] = None


class ShopItem(BaseModel):
    """One commodity as the customer sees it: their price and what is left of their quota."""
    id: str
    name: str
    unit: str
    price: Optional[float] = None
    in_stock: bool
    remaining_quota: int


class ShopResponse(BaseModel):
    card_type: str
    items: list[ShopItem]


# --- Card quotas ---
class CardQuotaUpdate(BaseModel):
    """Request body for PUT /admin/card-quotas/{card_type}."""
    monthly_quota: dict[str, int]
    description: Optional[str] = None


class CardQuotaResponse(BaseModel):
    card_type: str
    description: Optional[str] = None
    monthly_quota: dict[str, int]
    last_updated: Optional[str] = None


# --- Orders ---
class OrderItemRequest(BaseModel):
    item_id: str
    quantity: int = Field(..., ge=1)


class OrderCreate(BaseModel):
    """Request body for POST /orders."""
    items: list[OrderItemRequest] = Field(..., min_length=1)
    card_type: Optional[str] = Field(None, description="Card type the client believes it holds")


class OrderLineResponse(BaseModel):
    item_id: str
    name: str
    quantity: int
    unit_price: float
    unit: Optional[str] = None
    subtotal: float

    @field_validator("unit_price", "subtotal", mode="before")
    @classmethod
    def as_number(cls, v: Any) -> Any:
        return _money(v)


class OrderResponse(BaseModel):
    """Order record returned by API."""
    id: str
    customer_id: str
    card_type: str
    items: list[OrderLineResponse]
    total_amount: float
    status: str
    order_date: Optional[str] = None
    updated_at: Optional[str] = None
    customer_name: Optional[str] = None
    customer_card_number: Optional[str] = None

    @field_validator("total_amount", mode="before")
    @classmethod
    def as_number(cls, v: Any) -> Any:
        return _money(v)


class OrderStatusUpdate(BaseModel):
    """Request body for POST /admin/orders/{id}/status."""
    status: str


# --- Customer issues ---
class IssueCreate(BaseModel):
    description: str = Field(..., min_length=1)


class IssueStatusUpdate(BaseModel):
    status: str


class IssueRespond(BaseModel):
    response: str = Field(..., min_length=1)


class IssueResponse(BaseModel):
    id: str
    customer_id: str
    description: str
    status: str
    response: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# --- Admin ---
class DashboardStats(BaseModel):
    total_customers: int
    total_orders: int
    pending_orders: int
    low_stock_items: int


class ImportResponse(BaseModel):
    """Per-collection counts from POST /admin/import."""
    summary: dict[str, dict[str, int]]


class ImportRequest(BaseModel):
    """Collection export: collection name -> list of raw documents."""
    collections: dict[str, list[dict[str, Any]]]
