"""
Order lifecycle: pricing and stock checks at checkout, stock moves on
cancellation.

Status changes are permissive: any of the four statuses may follow any other.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from fastapi import HTTPException

from database import db
from schemas import OrderCreate, STATUS_CANCELLED

logger = logging.getLogger(__name__)


def available_stock(product: dict, size: Optional[str]) -> Tuple[int, bool]:
    """Return (stock, size_specific) for the requested variant.

    Raises 400 when a size is requested that the product does not carry.
    """
    sizes = product.get("tailles") or []
    if size and sizes:
        for entry in sizes:
            if entry.get("nom") == size:
                return int(entry.get("stock") or 0), True
        raise HTTPException(status_code=400, detail=f'Taille "{size}" non disponible pour {product["nom"]}')
    return int(product.get("stock") or 0), False


def price_order(payload: OrderCreate) -> Tuple[List[dict], float]:
    """Validate every line against the catalog and compute the order total.

    Lines carry the catalog price, so the total is always the sum of
    price x quantity of the stored lines.
    """
    lines = []
    total = 0.0
    for item in payload.produits:
        product = db["produit"].find_one({"_id": str(item.id)})
        if not product:
            raise HTTPException(status_code=400, detail=f"Produit {item.nom} introuvable")

        stock, _ = available_stock(product, item.taille)
        if stock < item.quantite:
            variant = f" - Taille {item.taille}" if item.taille else ""
            raise HTTPException(
                status_code=400,
                detail=f"Stock insuffisant pour {product['nom']}{variant}. Stock disponible: {stock}",
            )

        price = float(product["prix"])
        total += price * item.quantite
        lines.append({
            "id": str(item.id),
            "nom": item.nom,
            "prix": price,
            "quantite": item.quantite,
            "image_url": item.image_url or product.get("image_url"),
            "taille": item.taille,
            "couleur": item.couleur,
        })
    return lines, round(total, 2)


def _adjust_stock(line: dict, delta: int) -> bool:
    """Add `delta` to the stock backing one order line. Returns False if it did not apply."""
    product = db["produit"].find_one({"_id": line["id"]})
    if not product:
        return False

    now = datetime.now(timezone.utc)
    if line.get("taille") and product.get("tailles"):
        # the stock test and the move happen in the same update
        size_match = {"nom": line["taille"]}
        if delta < 0:
            size_match["stock"] = {"$gte": -delta}
        res = db["produit"].update_one(
            {"_id": line["id"], "tailles": {"$elemMatch": size_match}},
            {"$inc": {"tailles.$.stock": delta}, "$set": {"updated_at": now}},
        )
        return res.modified_count == 1

    query = {"_id": line["id"]}
    if delta < 0:
        query["stock"] = {"$gte": -delta}
    res = db["produit"].update_one(query, {"$inc": {"stock": delta}, "$set": {"updated_at": now}})
    return res.modified_count == 1


def decrement_stock(lines: List[dict]):
    for line in lines:
        try:
            if not _adjust_stock(line, -int(line["quantite"])):
                logger.error("Stock decrement did not apply for product %s", line["id"])
        except Exception:
            logger.exception("Stock decrement failed for product %s", line.get("id"))


def restore_stock(lines: List[dict]):
    for line in lines:
        try:
            if not _adjust_stock(line, int(line["quantite"])):
                logger.error("Stock restore did not apply for product %s", line["id"])
        except Exception:
            logger.exception("Stock restore failed for product %s", line.get("id"))


def apply_status_stock_moves(order: dict, new_status: str):
    """Give stock back when an order is cancelled, take it again when un-cancelled."""
    previous = order.get("statut")
    lines = order.get("produits") or []
    if new_status == STATUS_CANCELLED and previous != STATUS_CANCELLED:
        restore_stock(lines)
    elif previous == STATUS_CANCELLED and new_status != STATUS_CANCELLED:
        decrement_stock(lines)
