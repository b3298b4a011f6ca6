"""
Order service.

Orders are immutable snapshots of the cart at checkout. After insert only
the status and assignment fields change. Stock decrements and admin
notifications run best effort after the insert; their outcome is kept on
the order under `side_effects` so partial failures can be found later.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from pymongo import DESCENDING, ReturnDocument

import database
import mailer
from schemas import Order

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
ORDER_TRANSITIONS = {
    "pending": ("processing", "cancelled"),
    "processing": ("shipped", "cancelled"),
    "shipped": ("delivered", "cancelled"),
    "delivered": (),
    "cancelled": (),
}


def _orders():
    return database.db["orders"]


def _products():
    return database.catalog_db["products"]


def is_forward_transition(current: Optional[str], target: str) -> bool:
    if current == target:
        return True
    return target in ORDER_TRANSITIONS.get(current, ())


def record_side_effect(order_id, name: str, outcome: str) -> None:
    oid = database.parse_object_id(order_id)
    if oid is None:
        return
    _orders().update_one({"_id": oid}, {"$set": {f"side_effects.{name}": outcome}})


def decrement_stock(items) -> bool:
    """Decrement catalog stock once per ordered line. Returns False if any line failed."""
    ok = True
    for item in items:
        pid = database.parse_object_id(item["id"])
        qty = int(item["quantity"])
        if pid is None:
            logger.warning("Cannot decrement stock for malformed product id %r", item["id"])
            ok = False
            continue
        res = _products().update_one(
            {"_id": pid, "stock": {"$gte": qty}},
            {"$inc": {"stock": -qty}},
        )
        if not res.matched_count:
            logger.warning("Stock not decremented for product %s (qty %d): missing or insufficient", pid, qty)
            ok = False
    return ok


def notify_admins_by_email(order: dict) -> str:
    admins = database.get_documents("users", {"role": "admin"})
    emails = [a["email"] for a in admins if a.get("email")]
    if not emails:
        return "skipped"
    return "ok" if mailer.send_new_order_email(emails, order) else "skipped"


def create_order(order: Order) -> dict:
    doc = order.model_dump(exclude={"assigned_to", "assigned_at", "assigned_by"})
    doc["status"] = "pending"
    doc["created_at"] = datetime.now(timezone.utc)
    doc["side_effects"] = {"stock": "pending", "email": "pending", "realtime": "pending"}
    result = _orders().insert_one(doc)
    doc["_id"] = result.inserted_id
    logger.info("Created order %s for %s (total %.2f)", result.inserted_id, doc["user_email"], doc["total_amount"])

    try:
        stock = "ok" if decrement_stock(doc["items"]) else "failed"
    except Exception:
        logger.exception("Failed to decrement product stock for order %s", result.inserted_id)
        stock = "failed"

    try:
        email = notify_admins_by_email(database.serialize_doc(doc))
    except Exception:
        logger.exception("Failed to send admin notification for order %s", result.inserted_id)
        email = "failed"

    doc["side_effects"].update({"stock": stock, "email": email})
    try:
        _orders().update_one(
            {"_id": result.inserted_id},
            {"$set": {"side_effects.stock": stock, "side_effects.email": email}},
        )
    except Exception:
        logger.exception("Failed to record side effects for order %s", result.inserted_id)

    return database.serialize_doc(doc)


def get_order(order_id: str) -> Optional[dict]:
    oid = database.parse_object_id(order_id)
    if oid is None:
        return None
    return database.serialize_doc(_orders().find_one({"_id": oid}))


def _find(query: dict) -> List[dict]:
    return [database.serialize_doc(o) for o in _orders().find(query).sort("created_at", DESCENDING)]


def get_user_orders(user_id: str) -> List[dict]:
    if not user_id:
        logger.warning("get_user_orders called without user id")
        return []
    return _find({"user_id": user_id})


def get_all_orders() -> List[dict]:
    return _find({})


def get_assigned_orders(admin_id: str) -> List[dict]:
    return _find({"assigned_to": admin_id})


def get_unassigned_orders() -> List[dict]:
    return _find({"$or": [{"assigned_to": {"$exists": False}}, {"assigned_to": None}]})


def update_order_status(order_id: str, status: str) -> Optional[dict]:
    """Set an order's status. Any known status is accepted; off-path moves are only logged."""
    status = status.strip().lower()
    if status not in ORDER_STATUSES:
        raise ValueError(f"Unknown order status: {status}")
    oid = database.parse_object_id(order_id)
    if oid is None:
        return None
    current = _orders().find_one({"_id": oid}, {"status": 1})
    if current is None:
        logger.warning("Order %s not found for status update", order_id)
        return None
    if not is_forward_transition(current.get("status"), status):
        logger.warning("Order %s moved off lifecycle: %s -> %s", order_id, current.get("status"), status)
    updated = _orders().find_one_and_update(
        {"_id": oid},
        {"$set": {"status": status, "status_updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Order %s status set to %s", order_id, status)
    return database.serialize_doc(updated)


def assign_order(order_id: str, admin_id: str, assigned_by: str) -> Optional[dict]:
    oid = database.parse_object_id(order_id)
    if oid is None:
        return None
    updated = _orders().find_one_and_update(
        {"_id": oid},
        {"$set": {
            "assigned_to": admin_id,
            "assigned_at": datetime.now(timezone.utc),
            "assigned_by": assigned_by,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        logger.warning("Order %s not found for assignment", order_id)
        return None
    logger.info("Order %s assigned to %s by %s", order_id, admin_id, assigned_by)
    return database.serialize_doc(updated)


def recent_order_notifications(limit: int = 20) -> List[dict]:
    cursor = _orders().find({}).sort("created_at", DESCENDING).limit(limit)
    return [
        {
            "order_id": str(o["_id"]),
            "user_email": o.get("user_email"),
            "total_amount": o.get("total_amount"),
            "created_at": database.serialize_value(o.get("created_at")),
        }
        for o in cursor
    ]
