"""
Customer session and cart, held explicitly by the portal client instead of ambient storage.

The cart survives reloads through a versioned JSON cache. A cache written by another
cart version, for another customer, or that fails to parse is discarded. The cache is
cleared on logout and after a successful checkout.
"""
import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from rationshop.errors import QuotaExceeded, ValidationFailed

logger = logging.getLogger(__name__)

CART_CACHE_VERSION = 1


class Cart(BaseModel):
    """Commodity id -> quantity for one customer."""
    customer_id: str
    lines: dict[str, int] = Field(default_factory=dict)

    def quantity_of(self, item_id: str) -> int:
        return self.lines.get(item_id, 0)

    def add(self, item_id: str, quantity: int = 1, remaining: Optional[int] = None) -> int:
        """Add to a line; refuses to go past the remaining quota when it is known."""
        if quantity <= 0:
            raise ValidationFailed("Quantity must be at least 1.")
        new_qty = self.quantity_of(item_id) + quantity
        if remaining is not None and new_qty > remaining:
            raise QuotaExceeded("You have reached your quota limit for this item.", item_id=item_id, remaining=remaining)
        self.lines[item_id] = new_qty
        return new_qty

    def set_quantity(self, item_id: str, quantity: int, remaining: Optional[int] = None) -> None:
        if quantity < 0:
            raise ValidationFailed("Quantity cannot be negative.")
        if remaining is not None and quantity > remaining:
            raise QuotaExceeded("Quantity exceeds your remaining quota.", item_id=item_id, remaining=remaining)
        if quantity == 0:
            self.lines.pop(item_id, None)
        else:
            self.lines[item_id] = quantity

    def remove(self, item_id: str) -> None:
        self.lines.pop(item_id, None)

    def clear(self) -> None:
        self.lines.clear()

    def is_empty(self) -> bool:
        return not self.lines

    def item_count(self) -> int:
        return sum(self.lines.values())

    def total(self, prices: dict[str, float]) -> Decimal:
        """
        Estimated total for display; the authoritative total is computed at placement.
        Lines without a known price (cart restored before the shop was loaded, or no price
        for this card type) are left out.
        """
        return sum(
            (Decimal(str(prices[item_id])) * qty for item_id, qty in self.lines.items() if prices.get(item_id) is not None),
            Decimal("0"),
        )

    def to_order_items(self) -> list[dict]:
        return [{"item_id": item_id, "quantity": qty} for item_id, qty in self.lines.items()]

    def dump(self) -> str:
        return json.dumps({"version": CART_CACHE_VERSION, "customerId": self.customer_id, "lines": self.lines})

    @classmethod
    def load(cls, raw: Optional[str], customer_id: str) -> "Cart":
        """Restore a cached cart, or start empty when the cache is stale or unreadable."""
        if not raw:
            return cls(customer_id=customer_id)
        try:
            data = json.loads(raw)
            if data.get("version") != CART_CACHE_VERSION or data.get("customerId") != customer_id:
                logger.info("cart_cache_discarded", extra={"customer_id": customer_id, "cache_version": data.get("version")})
                return cls(customer_id=customer_id)
            return cls(customer_id=customer_id, lines=data.get("lines") or {})
        except (ValueError, AttributeError, ValidationError):
            logger.warning("cart_cache_unreadable", extra={"customer_id": customer_id})
            return cls(customer_id=customer_id)


class CartCache:
    """File-backed cart persistence for one device."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def save(self, cart: Cart) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(cart.dump(), encoding="utf-8")

    def load(self, customer_id: str) -> Cart:
        raw = self.path.read_text(encoding="utf-8") if self.path.exists() else None
        return Cart.load(raw, customer_id)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class CustomerSession(BaseModel):
    """Authenticated customer snapshot plus cart, passed explicitly between portal calls."""
    token: str
    customer_id: str
    name: str
    card_type: str
    card_number: str
    cart: Cart

    @property
    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}
