"""
Cart reconciliation

A cart is backed either by the client (guest visitors) or by the cart and
cart_item collections (signed-in users). Both backends expose the same
operations; CartSession picks the backend and switches it on login/logout.

Totals are never stored: every snapshot recomputes them from its lines.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import find_product
from errors import InvalidQuantity, ProductNotFound
from schemas import CartLine, CartSnapshot, ProductRef, UserIdentity

logger = logging.getLogger(__name__)


def build_snapshot(lines: Iterable[CartLine]) -> CartSnapshot:
    lines = list(lines)
    total_items = sum(line.quantity for line in lines)
    total_price = sum(line.price * line.quantity for line in lines)
    return CartSnapshot(items=lines, total_items=total_items, total_price=total_price)


def check_quantity(quantity) -> int:
    # bool is an int subclass but never a quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity()
    return quantity


class CartBackend:
    kind = ""

    def add_item(self, product: ProductRef) -> None:
        raise NotImplementedError

    def remove_item(self, product_id: str) -> None:
        raise NotImplementedError

    def set_quantity(self, product_id: str, quantity: int) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def snapshot(self) -> CartSnapshot:
        raise NotImplementedError


class LocalCartBackend(CartBackend):
    """Guest cart whose lines live with the client.

    Nothing is validated on add; if product_exists is given, lines for
    products that have since been deleted are dropped when a snapshot is taken.
    """

    kind = "local"

    def __init__(self, items: Optional[Iterable] = None,
                 product_exists: Optional[Callable[[str], bool]] = None):
        self.items: List[CartLine] = [
            item if isinstance(item, CartLine) else CartLine.model_validate(item)
            for item in items or []
        ]
        self.product_exists = product_exists

    def _find(self, product_id: str) -> Optional[CartLine]:
        for line in self.items:
            if line.product_id == product_id:
                return line
        return None

    def add_item(self, product: ProductRef) -> None:
        line = self._find(product.product_id)
        if line:
            line.quantity += 1
        else:
            self.items.append(CartLine(
                product_id=product.product_id,
                name=product.name,
                price=product.price,
                image=product.image,
                quantity=1,
            ))

    def remove_item(self, product_id: str) -> None:
        self.items = [line for line in self.items if line.product_id != product_id]

    def set_quantity(self, product_id: str, quantity: int) -> None:
        if check_quantity(quantity) < 1:
            return self.remove_item(product_id)
        line = self._find(product_id)
        if line:
            line.quantity = quantity

    def clear(self) -> None:
        self.items = []

    def snapshot(self) -> CartSnapshot:
        if self.product_exists is not None:
            self.items = [line for line in self.items if self.product_exists(line.product_id)]
        return build_snapshot(line.model_copy() for line in self.items)

    def dump(self) -> List[dict]:
        """Lines in the shape the client stores them."""
        return [line.model_dump(by_alias=True) for line in self.items]


class RemoteCartBackend(CartBackend):
    """Server cart for a signed-in user.

    The cart row is created on the first add. Items are unique per
    (cart_id, product_id) and incremented with $inc, so concurrent adds
    never lose an increment.
    """

    kind = "remote"

    def __init__(self, db: Database, user_id: str):
        self.db = db
        self.user_id = user_id

    def _cart(self) -> Optional[dict]:
        return self.db["cart"].find_one({"user_id": self.user_id})

    def _get_or_create_cart(self) -> dict:
        now = datetime.now(timezone.utc)
        return self.db["cart"].find_one_and_update(
            {"user_id": self.user_id},
            {"$setOnInsert": {"created_at": now}, "$set": {"updated_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def add_item(self, product: ProductRef) -> None:
        if not find_product(self.db, product.product_id):
            raise ProductNotFound()
        cart = self._get_or_create_cart()
        self.db["cart_item"].update_one(
            {"cart_id": str(cart["_id"]), "product_id": product.product_id},
            {"$inc": {"quantity": 1}, "$setOnInsert": {"added_at": datetime.now(timezone.utc)}},
            upsert=True,
        )
        logger.debug("User %s added %s to cart", self.user_id, product.product_id)

    def remove_item(self, product_id: str) -> None:
        cart = self._cart()
        if not cart:
            return
        self.db["cart_item"].delete_many({"cart_id": str(cart["_id"]), "product_id": product_id})
        logger.debug("User %s removed %s from cart", self.user_id, product_id)

    def set_quantity(self, product_id: str, quantity: int) -> None:
        if check_quantity(quantity) < 1:
            return self.remove_item(product_id)
        cart = self._cart()
        if not cart:
            return
        self.db["cart_item"].update_many(
            {"cart_id": str(cart["_id"]), "product_id": product_id},
            {"$set": {"quantity": quantity}},
        )
        logger.debug("User %s set %s quantity to %d", self.user_id, product_id, quantity)

    def clear(self) -> None:
        cart = self._cart()
        if not cart:
            return
        self.db["cart_item"].delete_many({"cart_id": str(cart["_id"])})
        logger.debug("User %s cleared cart", self.user_id)

    def snapshot(self) -> CartSnapshot:
        cart = self._cart()
        if not cart:
            return build_snapshot([])
        lines = []
        for item in self.db["cart_item"].find({"cart_id": str(cart["_id"])}).sort("_id", 1):
            product = find_product(self.db, item["product_id"])
            if not product:
                # product deleted by an admin after it was added
                continue
            lines.append(CartLine(
                product_id=item["product_id"],
                name=product["name"],
                price=product["price"],
                image=product.get("image"),
                quantity=item["quantity"],
            ))
        return build_snapshot(lines)


class CartSession:
    """The cart as seen by one visitor.

    Anonymous visitors get a LocalCartBackend, signed-in users a
    RemoteCartBackend. Logging in abandons the guest cart and loads the
    server cart; the two are never merged.
    """

    def __init__(self, db: Database, identity: Optional[UserIdentity] = None,
                 guest_items: Optional[Iterable] = None):
        self.db = db
        self.identity = None
        self.backend: CartBackend = self._guest_backend(guest_items)
        if identity is not None:
            self.login(identity)

    def _guest_backend(self, items) -> LocalCartBackend:
        return LocalCartBackend(items, product_exists=lambda pid: find_product(self.db, pid) is not None)

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    def login(self, identity: UserIdentity) -> CartSnapshot:
        self.identity = identity
        self.backend = RemoteCartBackend(self.db, identity.id)
        return self.backend.snapshot()

    def logout(self, guest_items: Optional[Iterable] = None) -> CartSnapshot:
        self.identity = None
        self.backend = self._guest_backend(guest_items)
        return self.backend.snapshot()

    # Each mutation re-reads the backing store and returns the fresh cart.

    def add_item(self, product: ProductRef) -> CartSnapshot:
        self.backend.add_item(product)
        return self.backend.snapshot()

    def remove_item(self, product_id: str) -> CartSnapshot:
        self.backend.remove_item(product_id)
        return self.backend.snapshot()

    def set_quantity(self, product_id: str, quantity: int) -> CartSnapshot:
        self.backend.set_quantity(product_id, quantity)
        return self.backend.snapshot()

    def clear(self) -> CartSnapshot:
        self.backend.clear()
        return self.backend.snapshot()

    def snapshot(self) -> CartSnapshot:
        return self.backend.snapshot()
