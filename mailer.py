"""
Transactional emails sent through the Resend HTTP API.

Every public function here is meant to run as a background task: failures
are logged and swallowed, never raised to the request that triggered them.
"""
import html
import logging
import os
from typing import Optional

import httpx

from database import db
from schemas import STATUS_SHIPPED

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
RESEND_FROM_EMAIL = os.getenv("RESEND_FROM_EMAIL", "noreply@maison-slimani.com")
SITE_URL = os.getenv("SITE_URL", "https://maison-slimani.com")
SHOP_NAME = "Maison Slimani"


def short_id(order_id: str) -> str:
    return str(order_id)[:8].upper()


def get_contact_email() -> Optional[str]:
    try:
        settings = db["settings"].find_one({}) if db is not None else None
    except Exception:
        logger.exception("Could not load contact email from settings")
        return None
    return (settings or {}).get("email_entreprise") or None


def _items_rows(order: dict) -> str:
    rows = []
    for item in order.get("produits") or []:
        details = " / ".join(v for v in (item.get("taille"), item.get("couleur")) if v)
        rows.append(
            "<tr><td>{name}{details}</td><td>{qty}</td><td>{price:.2f} DH</td></tr>".format(
                name=html.escape(str(item.get("nom", ""))),
                details=f" ({html.escape(details)})" if details else "",
                qty=int(item.get("quantite", 0)),
                price=float(item.get("prix", 0)) * int(item.get("quantite", 0)),
            )
        )
    return "".join(rows)


def _footer(contact_email: Optional[str]) -> str:
    if not contact_email:
        return f"<p>{SHOP_NAME}</p>"
    return f"<p>Une question ? Écrivez-nous à {html.escape(contact_email)}.</p><p>{SHOP_NAME}</p>"


def build_confirmation_email(order: dict, contact_email: Optional[str] = None) -> str:
    return (
        f"<h1>Merci pour votre commande, {html.escape(order['nom_client'])} !</h1>"
        f"<p>Commande #{short_id(order['id'])} - statut : {html.escape(order['statut'])}</p>"
        "<table><tr><th>Produit</th><th>Quantité</th><th>Prix</th></tr>"
        f"{_items_rows(order)}</table>"
        f"<p><strong>Total : {float(order['total']):.2f} DH</strong></p>"
        f"<p>Livraison : {html.escape(order['adresse'])}, {html.escape(order['ville'])}</p>"
        f"<p><a href=\"{SITE_URL}/commande/{order['id']}\">Suivre ma commande</a></p>"
        f"{_footer(contact_email)}"
    )


def build_shipped_email(order: dict, contact_email: Optional[str] = None) -> str:
    return (
        f"<h1>Votre commande #{short_id(order['id'])} a été expédiée</h1>"
        f"<p>Bonjour {html.escape(order['nom_client'])}, votre colis est en route vers "
        f"{html.escape(order['adresse'])}, {html.escape(order['ville'])}.</p>"
        "<table><tr><th>Produit</th><th>Quantité</th><th>Prix</th></tr>"
        f"{_items_rows(order)}</table>"
        f"{_footer(contact_email)}"
    )


def send_email(to: str, subject: str, body_html: str) -> Optional[dict]:
    """POST one email to Resend. Raises on HTTP errors, skips when no API key is set."""
    if not RESEND_API_KEY:
        logger.warning("RESEND_API_KEY is not configured; email to %s not sent", to)
        return None
    response = httpx.post(
        RESEND_API_URL,
        headers={"Authorization": f"Bearer {RESEND_API_KEY}"},
        json={"from": RESEND_FROM_EMAIL, "to": [to], "subject": subject, "html": body_html},
        timeout=10,
    )
    response.raise_for_status()
    return response.json()


def send_order_confirmation(order: dict):
    if not order.get("email"):
        return
    try:
        send_email(
            order["email"],
            f"Confirmation de commande - {SHOP_NAME}",
            build_confirmation_email(order, get_contact_email()),
        )
        logger.info("Confirmation email sent for order %s", order["id"])
    except Exception:
        logger.exception("Failed to send confirmation email for order %s", order.get("id"))


def send_status_change_email(order: dict, previous_status: str, new_status: str):
    # customers are only emailed when their parcel leaves
    if new_status != STATUS_SHIPPED or previous_status == STATUS_SHIPPED or not order.get("email"):
        return
    try:
        send_email(
            order["email"],
            f"Votre commande #{short_id(order['id'])} a été expédiée - {SHOP_NAME}",
            build_shipped_email(order, get_contact_email()),
        )
        logger.info("Shipping email sent for order %s", order["id"])
    except Exception:
        logger.exception("Failed to send shipping email for order %s", order.get("id"))
