"""
API routes: sign-in, and the customer portal (profile, shop, orders, issues).
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rationshop.auth import (
    Identity,
    Token,
    authenticate_admin,
    create_customer_token,
    require_customer,
)
from rationshop.db import get_db, run_transaction
from rationshop.errors import Forbidden, NotFound
from rationshop.schema import (
    AdminSignIn,
    CustomerLookupRequest,
    CustomerLookupResponse,
    CustomerResponse,
    CustomerTokenRequest,
    IssueCreate,
    IssueResponse,
    OrderCreate,
    OrderResponse,
    ShopItem,
    ShopResponse,
)
from rationshop.services.customers import customer_to_dict, find_by_aadhaar, get_customer
from rationshop.services.inventory import list_items
from rationshop.services.issues import create_issue, list_issues
from rationshop.services.lifecycle import cancel_own_order
from rationshop.services.order_manager import list_customer_orders, place_order
from rationshop.services.quota import remaining_for_customer

logger = logging.getLogger(__name__)
router = APIRouter()


# --- Auth ---
@router.post("/auth/admin-token", response_model=Token)
def admin_token(req: AdminSignIn):
    """Password sign-in for the back-office."""
    return Token(access_token=authenticate_admin(req.email, req.password))


@router.post("/auth/customer-lookup", response_model=CustomerLookupResponse)
def customer_lookup(req: CustomerLookupRequest, db: Session = Depends(get_db)):
    """First login step: find the card holder by Aadhaar number before the OTP is sent."""
    customer = find_by_aadhaar(db, req.aadhaar_number)
    return CustomerLookupResponse(customer_id=customer.id, name=customer.name)


@router.post("/auth/customer-token", response_model=Token)
def customer_token(req: CustomerTokenRequest, db: Session = Depends(get_db)):
    """Issue a custom sign-in token scoped to one customer once the OTP check has passed."""
    try:
        customer = get_customer(db, req.customer_id)
    except NotFound:
        # same answer as a mismatch so ids cannot be enumerated
        raise Forbidden("Customer details do not match.")
    if customer.aadhaar_number != req.aadhaar_number:
        logger.info("customer_token_denied", extra={"customer_id": req.customer_id})
        raise Forbidden("Customer details do not match.")
    return Token(access_token=create_customer_token(customer.id, customer.card_type))


# --- Customer portal ---
@router.get("/me", response_model=CustomerResponse)
def me(identity: Identity = Depends(require_customer), db: Session = Depends(get_db)):
    return customer_to_dict(get_customer(db, identity.subject))


@router.get("/shop", response_model=ShopResponse)
def shop(identity: Identity = Depends(require_customer), db: Session = Depends(get_db)):
    """Inventory with the caller's price and live remaining quota per commodity."""
    customer = get_customer(db, identity.subject)
    items = list_items(db)
    remaining = remaining_for_customer(db, customer.id, customer.card_type, item_ids=[i.id for i in items])
    return ShopResponse(
        card_type=customer.card_type,
        items=[
            ShopItem(
                id=i.id,
                name=i.name,
                unit=i.unit,
                price=(i.prices or {}).get(customer.card_type),
                in_stock=i.quantity > 0,
                remaining_quota=remaining[i.id],
            )
            for i in items
        ],
    )


@router.post("/orders", response_model=OrderResponse, status_code=201)
def create_order_endpoint(req: OrderCreate, identity: Identity = Depends(require_customer)):
    """
    Place an order for the caller's cart. Stock and quota are re-checked server-side, and the card
    type the client holds (from the body, else from its token) must still match the customer.
    """
    return place_order(
        identity.subject,
        [(line.item_id, line.quantity) for line in req.items],
        card_type=req.card_type or identity.card_type,
    )


@router.get("/orders", response_model=list[OrderResponse])
def my_orders(identity: Identity = Depends(require_customer), db: Session = Depends(get_db)):
    return list_customer_orders(db, identity.subject)


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(order_id: str, identity: Identity = Depends(require_customer)):
    """Self-service cancel of a pending order."""
    return cancel_own_order(identity.subject, order_id)


@router.post("/issues", response_model=IssueResponse, status_code=201)
def raise_issue(req: IssueCreate, identity: Identity = Depends(require_customer)):
    return run_transaction(lambda db: create_issue(db, identity.subject, req.description), name="issue_create")


@router.get("/issues", response_model=list[IssueResponse])
def my_issues(identity: Identity = Depends(require_customer), db: Session = Depends(get_db)):
    return list_issues(db, customer_id=identity.subject)
