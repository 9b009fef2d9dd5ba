"""
Web Push fan-out to registered admin devices.

Each subscription is delivered independently in a thread pool; one failure
never stops the others. Subscriptions whose push endpoint answers 404/410
are deleted as part of the same call.
"""
import json
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pywebpush import webpush, WebPushException

from database import db, get_documents, new_id

logger = logging.getLogger(__name__)

VAPID_PRIVATE_KEY = os.getenv("VAPID_PRIVATE_KEY")
VAPID_SUBJECT = os.getenv("VAPID_SUBJECT", "mailto:admin@maison-slimani.com")
MAX_WORKERS = 16
STALE_STATUS_CODES = (404, 410)
COLLECTION = "push_subscription"


class PushConfigurationError(RuntimeError):
    pass


@dataclass
class PushResult:
    matched: int = 0
    sent: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)


def upsert_subscription(user_id: str, platform: str, subscription: dict) -> dict:
    now = datetime.now(timezone.utc)
    db[COLLECTION].update_one(
        {"user_id": user_id, "platform": platform},
        {
            "$set": {"subscription": subscription, "updated_at": now},
            "$setOnInsert": {"_id": new_id(), "created_at": now},
        },
        upsert=True,
    )
    return db[COLLECTION].find_one({"user_id": user_id, "platform": platform})


def delete_subscription(user_id: str, platform: str) -> bool:
    res = db[COLLECTION].delete_one({"user_id": user_id, "platform": platform})
    return res.deleted_count == 1


def find_subscriptions(user_ids: Optional[List[str]] = None) -> List[dict]:
    query = {} if user_ids is None else {"user_id": {"$in": list(user_ids)}}
    return get_documents(COLLECTION, query)


def _status_code(exc: Exception) -> Optional[int]:
    response = getattr(exc, "response", None)
    return getattr(response, "status_code", None)


def _deliver(sub: dict, data: str) -> Optional[Exception]:
    try:
        webpush(
            subscription_info=sub["subscription"],
            data=data,
            vapid_private_key=VAPID_PRIVATE_KEY,
            vapid_claims={"sub": VAPID_SUBJECT},
        )
    except WebPushException as exc:
        return exc
    except Exception as exc:
        logger.warning("Push delivery to %s raised %r", sub.get("_id"), exc)
        return exc
    return None


def send_push(payload: dict, user_ids: Optional[List[str]] = None) -> PushResult:
    """Deliver `payload` to the subscriptions of `user_ids` (all when None)."""
    if not VAPID_PRIVATE_KEY:
        raise PushConfigurationError("VAPID_PRIVATE_KEY is not configured")

    subs = find_subscriptions(user_ids)
    result = PushResult(matched=len(subs))
    if not subs:
        return result

    data = json.dumps(payload)
    with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(subs))) as pool:
        outcomes = list(pool.map(lambda s: _deliver(s, data), subs))

    for sub, exc in zip(subs, outcomes):
        if exc is None:
            result.sent += 1
            continue
        status_code = _status_code(exc)
        result.failures.append({"id": sub["_id"], "status_code": status_code, "reason": str(exc)})
        if status_code in STALE_STATUS_CODES:
            result.removed.append(sub["_id"])

    if result.removed:
        db[COLLECTION].delete_many({"_id": {"$in": result.removed}})
        logger.info("Removed %d stale push subscription(s)", len(result.removed))
    if result.failures:
        logger.warning("Push delivery failed for %d of %d subscription(s)", len(result.failures), len(subs))
    return result


def new_order_payload(order: dict) -> dict:
    short = str(order["id"])[:8].upper()
    return {
        "title": "Nouvelle commande reçue !",
        "body": f"Commande #{short} - {order['nom_client']}",
        "icon": "/program-icon.png",
        "badge": "/chrome_icon.png",
        "data": {
            "type": "new_order",
            "order_id": order["id"],
            "order_number": short,
            "customer_name": order["nom_client"],
            "total": str(order["total"]),
            "url": f"/admin/commandes/{order['id']}",
        },
    }


def notify_new_order(order: dict):
    try:
        result = send_push(new_order_payload(order))
        logger.info("New order %s pushed to %d of %d device(s)", order["id"], result.sent, result.matched)
    except Exception:
        logger.exception("Failed to push new order %s", order.get("id"))
