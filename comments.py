"""
Comment ownership tokens and rating aggregates.

Anonymous commenters receive an opaque token; presenting it is the only
check for editing or deleting their own comments.
"""
import uuid
from typing import Optional

from fastapi import Request, Response

from auth import SECURE_COOKIES
from database import db

TOKEN_COOKIE = "comment_session_token"
TOKEN_HEADER = "x-comment-token"
TOKEN_MAX_AGE = 7 * 24 * 60 * 60

PUBLIC_FIELDS = ("_id", "produit_id", "nom", "rating", "commentaire", "images", "created_at", "updated_at")


def generate_token() -> str:
    return str(uuid.uuid4())


def get_token(request: Request) -> Optional[str]:
    return request.cookies.get(TOKEN_COOKIE) or request.headers.get(TOKEN_HEADER) or None


def set_token_cookie(response: Response, token: str):
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        max_age=TOKEN_MAX_AGE,
        httponly=True,
        secure=SECURE_COOKIES,
        samesite="lax",
        path="/",
    )


def owns(comment: dict, token: Optional[str]) -> bool:
    return bool(token) and comment.get("session_token") == token


def public_view(comment: dict, token: Optional[str] = None) -> dict:
    out = {k: comment[k] for k in PUBLIC_FIELDS if k in comment}
    out["id"] = out.pop("_id")
    out["canEdit"] = owns(comment, token)
    return out


def refresh_product_rating(product_id: str):
    ratings = [c["rating"] for c in db["commentaire"].find({"produit_id": product_id, "approved": True})]
    average = round(sum(ratings) / len(ratings), 2) if ratings else 0
    db["produit"].update_one(
        {"_id": product_id},
        {"$set": {"average_rating": average, "rating_count": len(ratings)}},
    )
