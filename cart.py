"""
Cart and coupon reconciliation.

`Cart` is the in-memory line list used for pricing a checkout or a quote.
The module-level functions persist a shopper's cart on their user document.
"""
import logging
from typing import Iterable, List, Optional

import database
from schemas import CartItem

logger = logging.getLogger(__name__)

COUPON_CODE = "1NCEMORE"
COUPON_DISCOUNT = 20.0
FREE_SHIPPING_THRESHOLD = 500.0
SHIPPING_FEE = 60.0


def _as_item(item) -> CartItem:
    return item if isinstance(item, CartItem) else CartItem(**item)


class Cart:
    """Quantity-merged cart lines plus the applied coupon."""

    def __init__(self, items: Optional[Iterable] = None):
        self.items: List[CartItem] = []
        self.coupon_code = ""
        self.is_coupon_applied = False
        self.coupon_discount = 0.0
        for item in items or []:
            self.add_to_cart(item)

    def _index(self, item_id: str) -> int:
        for i, line in enumerate(self.items):
            if line.id == item_id:
                return i
        return -1

    def get_item_quantity(self, item_id: str) -> int:
        i = self._index(item_id)
        return self.items[i].quantity if i >= 0 else 0

    def add_to_cart(self, item) -> None:
        item = _as_item(item)
        if item.quantity <= 0:
            return
        i = self._index(item.id)
        if i >= 0:
            current = self.items[i]
            self.items[i] = current.model_copy(update={"quantity": current.quantity + item.quantity})
        else:
            self.items.append(item)

    def update_quantity(self, item_id: str, quantity: int) -> None:
        i = self._index(item_id)
        if i < 0:
            return
        quantity = max(0, int(quantity))
        if quantity == 0:
            del self.items[i]
        else:
            self.items[i] = self.items[i].model_copy(update={"quantity": quantity})

    def remove_from_cart(self, item_id: str) -> Optional[CartItem]:
        i = self._index(item_id)
        if i < 0:
            return None
        return self.items.pop(i)

    def clear_cart(self) -> None:
        self.items = []

    @property
    def total_items(self) -> int:
        return sum(line.quantity for line in self.items)

    @property
    def total_price(self) -> float:
        return round(sum(line.price * line.quantity for line in self.items), 2)

    def apply_coupon(self, code: str) -> bool:
        """Apply a coupon code. Returns False for unknown codes and repeats."""
        normalized = (code or "").strip().upper()
        if normalized != COUPON_CODE:
            return False
        if self.is_coupon_applied:
            return False
        self.coupon_code = normalized
        self.is_coupon_applied = True
        self.coupon_discount = COUPON_DISCOUNT
        return True

    def remove_coupon(self) -> None:
        self.coupon_code = ""
        self.is_coupon_applied = False
        self.coupon_discount = 0.0

    @property
    def final_total(self) -> float:
        return round(max(0.0, self.total_price - self.coupon_discount), 2)

    @property
    def shipping_cost(self) -> float:
        return 0.0 if self.final_total > FREE_SHIPPING_THRESHOLD else SHIPPING_FEE

    @property
    def grand_total(self) -> float:
        return round(self.final_total + self.shipping_cost, 2)

    def to_list(self) -> List[dict]:
        return [line.model_dump() for line in self.items]

    def summary(self) -> dict:
        return {
            "items": self.to_list(),
            "total_items": self.total_items,
            "total_price": self.total_price,
            "coupon_code": self.coupon_code or None,
            "coupon_discount": self.coupon_discount,
            "final_total": self.final_total,
            "shipping_cost": self.shipping_cost,
            "grand_total": self.grand_total,
        }


# ----------------------- Persistence -----------------------

def _users():
    return database.db["users"]


def load_cart(user_id: str) -> Optional[List[dict]]:
    oid = database.parse_object_id(user_id)
    if oid is None:
        return None
    user = _users().find_one({"_id": oid}, {"cart": 1})
    if user is None:
        return None
    return user.get("cart") or []


def replace_cart(user_id: str, items: Iterable) -> List[dict]:
    """Overwrite the whole stored cart. Duplicate lines are merged first."""
    merged = Cart(items).to_list()
    _users().update_one({"_id": database.parse_object_id(user_id)}, {"$set": {"cart": merged}})
    return merged


def _add_line(oid, item: CartItem) -> None:
    res = _users().update_one(
        {"_id": oid, "cart.id": item.id},
        {"$inc": {"cart.$.quantity": item.quantity}},
    )
    if res.matched_count:
        return
    res = _users().update_one(
        {"_id": oid, "cart.id": {"$ne": item.id}},
        {"$push": {"cart": item.model_dump()}},
    )
    if not res.matched_count:
        # another request pushed the same line in between
        _users().update_one(
            {"_id": oid, "cart.id": item.id},
            {"$inc": {"cart.$.quantity": item.quantity}},
        )


def apply_cart_action(user_id: str, action: str, item=None) -> List[dict]:
    """Apply one keyed line edit to the stored cart and return the new cart.

    Each action touches only the matching line, so edits from two devices
    to different lines are both kept.
    """
    oid = database.parse_object_id(user_id)
    if action == "clear":
        _users().update_one({"_id": oid}, {"$set": {"cart": []}})
    elif action == "add":
        if int(item.get("quantity", 1)) > 0:
            _add_line(oid, CartItem(**item))
    elif action == "update":
        quantity = max(0, int(item["quantity"]))
        if quantity == 0:
            _users().update_one({"_id": oid}, {"$pull": {"cart": {"id": item["id"]}}})
        else:
            fields = {"cart.$.quantity": quantity}
            for key in ("name", "price", "image"):
                if item.get(key) is not None:
                    fields[f"cart.$.{key}"] = item[key]
            _users().update_one({"_id": oid, "cart.id": item["id"]}, {"$set": fields})
    elif action == "remove":
        _users().update_one({"_id": oid}, {"$pull": {"cart": {"id": item["id"]}}})
    else:
        raise ValueError(f"Unknown cart action: {action}")
    return load_cart(user_id) or []


def merge_guest_cart(user_id: str, items: Iterable) -> List[dict]:
    """Fold a guest cart into the account cart, summing shared lines."""
    guest = Cart(items)
    oid = database.parse_object_id(user_id)
    for line in guest.items:
        _add_line(oid, line)
    logger.info("Merged %d guest cart lines into user %s", len(guest.items), user_id)
    return load_cart(user_id) or []
