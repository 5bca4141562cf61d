"""
Customer portal client over the HTTP API.

Holds the CustomerSession explicitly and keeps the cart in a CartCache that is cleared
on logout and after checkout. Error responses are raised as the matching domain error.
"""
import logging
import os
from pathlib import Path
from typing import Optional

import httpx

from rationshop.errors import ERRORS_BY_CODE, UnexpectedError, ValidationFailed
from rationshop.session import CartCache, CustomerSession

logger = logging.getLogger(__name__)

BACKEND_URL = os.environ.get("BACKEND_URL", "http://localhost:8000")


class PortalClient:
    """
    One customer's portal session. Pass ``http`` to reuse a client (e.g. a TestClient); a passed-in
    client is left open by close(), one built here is closed with the portal.
    """

    def __init__(self, base_url: str = BACKEND_URL, http: Optional[httpx.Client] = None,
                 cache_path: Optional[Path] = None, timeout: float = 10.0):
        self._owns_http = http is None
        self.http = http if http is not None else httpx.Client(base_url=base_url, timeout=timeout)
        self.cache = CartCache(cache_path or Path.home() / ".rationshop" / "cart.json")
        self.session: Optional[CustomerSession] = None
        self._remaining: dict[str, int] = {}
        self._prices: dict[str, float] = {}

    def close(self) -> None:
        if self._owns_http:
            self.http.close()

    def __enter__(self) -> "PortalClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> dict | list:
        headers = kwargs.pop("headers", {})
        if self.session is not None:
            headers.update(self.session.auth_headers)
        resp = self.http.request(method, path, headers=headers, **kwargs)
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            code = body.get("error") if isinstance(body, dict) else None
            if code in ERRORS_BY_CODE:
                raise ERRORS_BY_CODE[code](body.get("detail"))
            if resp.status_code == 422:
                raise ValidationFailed()
            logger.warning("portal_request_failed", extra={"path": path, "status": resp.status_code})
            raise UnexpectedError()
        return resp.json()

    def _require_session(self) -> CustomerSession:
        if self.session is None:
            raise ValidationFailed("Please sign in first.")
        return self.session

    def lookup(self, aadhaar_number: str) -> dict:
        return self._request("POST", "/api/auth/customer-lookup", json={"aadhaar_number": aadhaar_number})

    def sign_in(self, customer_id: str, aadhaar_number: str) -> CustomerSession:
        """Exchange the verified identity for a token and restore any cached cart."""
        token = self._request("POST", "/api/auth/customer-token",
                              json={"customer_id": customer_id, "aadhaar_number": aadhaar_number})
        headers = {"Authorization": f"Bearer {token['access_token']}"}
        profile = self._request("GET", "/api/me", headers=headers)
        self.session = CustomerSession(
            token=token["access_token"],
            customer_id=profile["id"],
            name=profile["name"],
            card_type=profile["card_type"],
            card_number=profile["card_number"],
            cart=self.cache.load(profile["id"]),
        )
        return self.session

    def shop(self) -> list[dict]:
        """Fetch items with live remaining quota; refreshes the limits the cart checks against."""
        self._require_session()
        data = self._request("GET", "/api/shop")
        self._remaining = {i["id"]: i["remaining_quota"] for i in data["items"]}
        self._prices = {i["id"]: i["price"] for i in data["items"] if i["price"] is not None}
        return data["items"]

    def add_to_cart(self, item_id: str, quantity: int = 1) -> int:
        session = self._require_session()
        new_qty = session.cart.add(item_id, quantity, remaining=self._remaining.get(item_id))
        self.cache.save(session.cart)
        return new_qty

    def update_cart(self, item_id: str, quantity: int) -> None:
        session = self._require_session()
        session.cart.set_quantity(item_id, quantity, remaining=self._remaining.get(item_id))
        self.cache.save(session.cart)

    def remove_from_cart(self, item_id: str) -> None:
        session = self._require_session()
        session.cart.remove(item_id)
        self.cache.save(session.cart)

    def cart_total(self):
        return self._require_session().cart.total(self._prices)

    def checkout(self) -> dict:
        """Submit the cart. The cart and its cache are cleared only when the order was created."""
        session = self._require_session()
        if session.cart.is_empty():
            raise ValidationFailed("Your cart is empty.")
        order = self._request("POST", "/api/orders", json={
            "items": session.cart.to_order_items(),
            "card_type": session.card_type,
        })
        session.cart.clear()
        self.cache.clear()
        logger.info("checkout_complete", extra={"order_id": order["id"]})
        return order

    def orders(self) -> list[dict]:
        self._require_session()
        return self._request("GET", "/api/orders")

    def cancel(self, order_id: str) -> dict:
        self._require_session()
        return self._request("POST", f"/api/orders/{order_id}/cancel")

    def raise_issue(self, description: str) -> dict:
        self._require_session()
        return self._request("POST", "/api/issues", json={"description": description})

    def logout(self) -> None:
        if self.session is not None:
            self.session.cart.clear()
        self.cache.clear()
        self.session = None
        self._remaining = {}
        self._prices = {}
