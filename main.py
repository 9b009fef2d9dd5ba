import logging
import os
import re
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Request, Response, BackgroundTasks, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from database import db, create_document, get_documents, update_document, serialize
from schemas import (
    Admin, Product, ProductUpdate, Category, Order, OrderCreate, StatusUpdate,
    Comment, CommentCreate, CommentUpdate, CommentModeration,
    PushSubscriptionPayload, PushSubscriptionKey, PushSendPayload, Settings, LoginPayload,
)
from auth import (
    SESSION_COOKIE, create_session, verify_session, verify_password, hash_password,
    set_session_cookie, clear_session_cookie, require_admin,
)
from rate_limit import (
    rate_limited, LOGIN_LIMIT, LOGIN_WINDOW_SEC, COMMENT_LIMIT, COMMENT_WINDOW_SEC,
    ORDER_LIMIT, ORDER_WINDOW_SEC,
)
from errors import register_exception_handlers
from spam import is_suspicious
from recommendations import rank_similar, clamp_limit
from orders import price_order, decrement_stock, apply_status_stock_moves
from comments import get_token, generate_token, set_token_cookie, owns, public_view, refresh_product_rating
from mailer import send_order_confirmation, send_status_change_email
from notifications import (
    send_push, notify_new_order, upsert_subscription, delete_subscription, find_subscriptions,
    PushConfigurationError,
)

# Environment
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Maison Slimani API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Admin console pages (desktop and PWA) sit behind the session cookie
PROTECTED_PREFIXES = ("/admin", "/pwa")
NOINDEX_PREFIXES = ("/admin", "/pwa", "/login", "/api/admin", "/api/auth")
ROBOTS_HEADER = "noindex, nofollow, noarchive, nosnippet, noimageindex, nocache"


def _under(path: str, prefixes) -> bool:
    return any(path == p or path.startswith(p + "/") for p in prefixes)


@app.middleware("http")
async def admin_gate(request: Request, call_next):
    path = request.url.path
    if path == "/login" or _under(path, PROTECTED_PREFIXES):
        authenticated = verify_session(request.cookies.get(SESSION_COOKIE)) is not None
        if path == "/login" and authenticated:
            response = RedirectResponse(url="/", status_code=307)
        elif path != "/login" and not authenticated:
            response = RedirectResponse(url="/login", status_code=307)
        else:
            response = await call_next(request)
    else:
        response = await call_next(request)

    if _under(path, NOINDEX_PREFIXES):
        response.headers["X-Robots-Tag"] = ROBOTS_HEADER
    return response


login_rate_limit = rate_limited(
    "login", LOGIN_LIMIT, LOGIN_WINDOW_SEC,
    "Trop de tentatives de connexion. Veuillez réessayer dans quelques minutes.",
)
comment_rate_limit = rate_limited(
    "commentaires", COMMENT_LIMIT, COMMENT_WINDOW_SEC,
    "Trop de commentaires. Veuillez réessayer plus tard.",
)
order_rate_limit = rate_limited(
    "commandes", ORDER_LIMIT, ORDER_WINDOW_SEC,
    "Trop de tentatives. Veuillez réessayer dans une minute.",
)


def get_or_404(collection: str, doc_id: str, message: str) -> dict:
    doc = db[collection].find_one({"_id": doc_id})
    if not doc:
        raise HTTPException(status_code=404, detail=message)
    return doc


# Health checks
@app.get("/")
def root():
    return {"message": "Maison Slimani API running"}


@app.get("/test")
def test_database():
    connected = False
    if db is not None:
        try:
            db.list_collection_names()
            connected = True
        except Exception:
            logger.warning("Database health check failed", exc_info=True)
    return {"backend": "running", "database": "connected" if connected else "unavailable"}


# Admin auth
@app.post("/api/auth/login", dependencies=[Depends(login_rate_limit)])
def login(payload: LoginPayload, response: Response):
    admin = db["admin"].find_one({"email": payload.email.lower()})
    # same answer for unknown email and wrong password
    if not admin or not verify_password(payload.password, admin.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Email ou mot de passe incorrect")
    set_session_cookie(response, create_session(admin["email"]))
    logger.info("Admin %s logged in", admin["email"])
    return {"success": True}


@app.post("/api/auth/logout")
def logout(response: Response):
    clear_session_cookie(response)
    return {"success": True}


@app.get("/api/auth/session")
def session_status(request: Request):
    email = verify_session(request.cookies.get(SESSION_COOKIE))
    return {"authenticated": email is not None, "email": email}


# Catalog
SORTS = {
    "recent": [("created_at", -1)],
    "prix-asc": [("prix", 1), ("created_at", -1)],
    "prix-desc": [("prix", -1), ("created_at", -1)],
}


@app.get("/api/produits")
def list_products(
    categorie: Optional[str] = Query(None, max_length=100),
    vedette: Optional[bool] = None,
    search: Optional[str] = Query(None, min_length=1, max_length=200),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, gt=0),
    in_stock: Optional[bool] = None,
    sort: str = Query("recent", pattern="^(recent|prix-asc|prix-desc)$"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    filter_q = {}
    if categorie:
        filter_q["categorie"] = categorie
    if vedette is not None:
        filter_q["vedette"] = vedette
    if search:
        filter_q["nom"] = {"$regex": re.escape(search), "$options": "i"}
    if min_price is not None or max_price is not None:
        price_filter = {}
        if min_price is not None:
            price_filter["$gte"] = min_price
        if max_price is not None:
            price_filter["$lte"] = max_price
        filter_q["prix"] = price_filter
    if in_stock:
        filter_q["$or"] = [{"stock": {"$gt": 0}}, {"tailles.stock": {"$gt": 0}}]

    count = db["produit"].count_documents(filter_q)
    items = list(db["produit"].find(filter_q).sort(SORTS[sort]).skip(offset).limit(limit))
    return {"success": True, "data": [serialize(p) for p in items], "count": count}


@app.get("/api/produits/{product_id}")
def get_product(product_id: str):
    return {"success": True, "data": serialize(get_or_404("produit", product_id, "Produit introuvable"))}


@app.get("/api/produits/{product_id}/similar")
def similar_products(product_id: str, limit: Optional[str] = None):
    product = get_or_404("produit", product_id, "Produit introuvable")
    candidates = db["produit"].find({"categorie": product["categorie"], "_id": {"$ne": product_id}})
    ranked = rank_similar(product, candidates, clamp_limit(limit))
    return {"success": True, "data": [serialize(p) for p in ranked], "count": len(ranked)}


@app.get("/api/categories")
def list_categories():
    items = sorted(get_documents("categorie"), key=lambda c: c["nom"])
    return {"success": True, "data": [serialize(c) for c in items]}


@app.get("/api/settings")
def get_settings():
    doc = db["settings"].find_one({"_id": "shop"}) or {}
    doc.pop("_id", None)
    return {"success": True, "data": doc}


# Checkout
@app.post("/api/commandes", status_code=201, dependencies=[Depends(order_rate_limit)])
def create_order(payload: OrderCreate, background_tasks: BackgroundTasks):
    lines, total = price_order(payload)
    order = Order(
        nom_client=payload.nom_client,
        telephone=payload.telephone,
        email=payload.email,
        adresse=payload.adresse,
        ville=payload.ville,
        produits=lines,
        total=total,
    )
    doc = order.model_dump()
    doc["date_commande"] = datetime.now(timezone.utc)
    order_id = create_document("commande", doc)
    decrement_stock(lines)

    created = serialize(db["commande"].find_one({"_id": order_id}))
    logger.info("Order %s created (%d line(s), total %.2f)", order_id, len(lines), total)

    # run after the response is sent; both swallow and log their own failures
    background_tasks.add_task(notify_new_order, created)
    background_tasks.add_task(send_order_confirmation, created)
    return {"success": True, "data": created}


# Comments
COMMENT_SORTS = {
    "newest": [("created_at", -1)],
    "highest": [("rating", -1), ("created_at", -1)],
    "lowest": [("rating", 1), ("created_at", -1)],
}


@app.get("/api/commentaires")
def list_comments(
    request: Request,
    produit_id: str = Query(..., min_length=1),
    sort: str = Query("newest", pattern="^(newest|highest|lowest)$"),
    limit: int = Query(10, ge=1, le=50),
    offset: int = Query(0, ge=0),
):
    token = get_token(request)
    filter_q = {"produit_id": produit_id, "approved": True}
    count = db["commentaire"].count_documents(filter_q)
    items = db["commentaire"].find(filter_q).sort(COMMENT_SORTS[sort]).skip(offset).limit(limit)
    return {"success": True, "data": [public_view(c, token) for c in items], "count": count}


@app.post("/api/commentaires", dependencies=[Depends(comment_rate_limit)])
def create_comment(payload: CommentCreate, request: Request, response: Response):
    product_id = str(payload.produit_id)
    get_or_404("produit", product_id, "Produit introuvable")

    # a browser keeps one token for all of its comments
    token = get_token(request) or generate_token()
    comment = Comment(
        produit_id=product_id,
        nom=payload.nom,
        email=payload.email,
        rating=payload.rating,
        commentaire=payload.commentaire,
        images=[str(url) for url in payload.images],
        session_token=token,
        approved=True,
        flagged=is_suspicious(payload.commentaire),
    )
    comment_id = create_document("commentaire", comment)
    refresh_product_rating(product_id)
    if comment.flagged:
        logger.info("Comment %s flagged for review", comment_id)

    set_token_cookie(response, token)
    stored = db["commentaire"].find_one({"_id": comment_id})
    return {"success": True, "data": public_view(stored, token), "session_token": token}


def _comment_changes(payload: CommentUpdate) -> dict:
    data = payload.model_dump(exclude_unset=True, mode="json")
    changes = {k: v for k, v in data.items() if v is not None or k == "email"}
    if "commentaire" in changes:
        changes["flagged"] = is_suspicious(changes["commentaire"])
    return changes


@app.patch("/api/commentaires/{comment_id}")
def update_comment(comment_id: str, payload: CommentUpdate, request: Request):
    comment = get_or_404("commentaire", comment_id, "Commentaire introuvable")
    token = get_token(request)
    if not owns(comment, token):
        raise HTTPException(status_code=403, detail="Non autorisé")

    updated = update_document("commentaire", comment_id, _comment_changes(payload))
    refresh_product_rating(comment["produit_id"])
    return {"success": True, "data": public_view(updated, token)}


@app.delete("/api/commentaires/{comment_id}")
def delete_comment(comment_id: str, request: Request):
    comment = get_or_404("commentaire", comment_id, "Commentaire introuvable")
    if not owns(comment, get_token(request)):
        raise HTTPException(status_code=403, detail="Non autorisé")
    db["commentaire"].delete_one({"_id": comment_id})
    refresh_product_rating(comment["produit_id"])
    return {"success": True}


# Admin: orders
@app.get("/api/admin/commandes", dependencies=[Depends(require_admin)])
def admin_list_orders(
    statut: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    filter_q = {}
    if statut and statut.strip() not in ("tous", "all"):
        filter_q["statut"] = statut.strip()
    count = db["commande"].count_documents(filter_q)
    items = db["commande"].find(filter_q).sort("date_commande", -1).skip(offset).limit(limit)
    return {"success": True, "data": [serialize(o) for o in items], "count": count}


@app.get("/api/admin/commandes/{order_id}", dependencies=[Depends(require_admin)])
def admin_get_order(order_id: str):
    return {"success": True, "data": serialize(get_or_404("commande", order_id, "Commande introuvable"))}


@app.patch("/api/admin/commandes/{order_id}", dependencies=[Depends(require_admin)])
def admin_update_order_status(order_id: str, payload: StatusUpdate, background_tasks: BackgroundTasks):
    order = get_or_404("commande", order_id, "Commande introuvable")
    previous = order.get("statut")

    apply_status_stock_moves(order, payload.nouveau_statut)
    updated = serialize(update_document("commande", order_id, {"statut": payload.nouveau_statut}))
    logger.info("Order %s status %s -> %s", order_id, previous, payload.nouveau_statut)

    background_tasks.add_task(send_status_change_email, updated, previous, payload.nouveau_statut)
    return {"success": True, "data": updated}


@app.delete("/api/admin/commandes/{order_id}", dependencies=[Depends(require_admin)])
def admin_delete_order(order_id: str):
    get_or_404("commande", order_id, "Commande introuvable")
    db["commande"].delete_one({"_id": order_id})
    return {"success": True, "message": "Commande supprimée avec succès"}


# Admin: catalog
@app.post("/api/admin/produits", status_code=201, dependencies=[Depends(require_admin)])
def admin_create_product(payload: Product):
    product_id = create_document("produit", payload)
    return {"success": True, "data": serialize(db["produit"].find_one({"_id": product_id}))}


@app.put("/api/admin/produits/{product_id}", dependencies=[Depends(require_admin)])
def admin_update_product(product_id: str, payload: ProductUpdate):
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True, mode="json").items() if v is not None}
    updated = update_document("produit", product_id, changes)
    if updated is None:
        raise HTTPException(status_code=404, detail="Produit introuvable")
    return {"success": True, "data": serialize(updated)}


@app.delete("/api/admin/produits/{product_id}", dependencies=[Depends(require_admin)])
def admin_delete_product(product_id: str):
    get_or_404("produit", product_id, "Produit introuvable")
    db["produit"].delete_one({"_id": product_id})
    db["commentaire"].delete_many({"produit_id": product_id})
    return {"success": True}


@app.post("/api/admin/categories", status_code=201, dependencies=[Depends(require_admin)])
def admin_create_category(payload: Category):
    if db["categorie"].find_one({"$or": [{"slug": payload.slug}, {"nom": payload.nom}]}):
        raise HTTPException(status_code=400, detail="Catégorie déjà existante")
    category_id = create_document("categorie", payload)
    return {"success": True, "data": serialize(db["categorie"].find_one({"_id": category_id}))}


@app.delete("/api/admin/categories/{category_id}", dependencies=[Depends(require_admin)])
def admin_delete_category(category_id: str):
    category = get_or_404("categorie", category_id, "Catégorie introuvable")
    if db["produit"].find_one({"categorie": category["slug"]}):
        raise HTTPException(status_code=400, detail="Catégorie utilisée par des produits")
    db["categorie"].delete_one({"_id": category_id})
    return {"success": True}


@app.put("/api/admin/settings", dependencies=[Depends(require_admin)])
def admin_update_settings(payload: Settings):
    changes = payload.model_dump(exclude_unset=True, mode="json")
    changes["updated_at"] = datetime.now(timezone.utc)
    db["settings"].update_one({"_id": "shop"}, {"$set": changes}, upsert=True)
    return get_settings()


# Admin: comment moderation
@app.get("/api/admin/commentaires", dependencies=[Depends(require_admin)])
def admin_list_comments(
    flagged: Optional[bool] = None,
    produit_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    filter_q = {}
    if flagged is not None:
        filter_q["flagged"] = flagged
    if produit_id:
        filter_q["produit_id"] = produit_id
    count = db["commentaire"].count_documents(filter_q)
    items = db["commentaire"].find(filter_q).sort("created_at", -1).skip(offset).limit(limit)
    data = []
    for c in items:
        c.pop("session_token", None)
        data.append(serialize(c))
    return {"success": True, "data": data, "count": count}


@app.patch("/api/admin/commentaires/{comment_id}", dependencies=[Depends(require_admin)])
def admin_moderate_comment(comment_id: str, payload: CommentModeration):
    comment = get_or_404("commentaire", comment_id, "Commentaire introuvable")
    data = payload.model_dump(exclude_unset=True, mode="json")
    changes = {k: v for k, v in data.items() if v is not None or k == "email"}
    # an explicit flag from the admin wins over the heuristic
    if "commentaire" in changes and "flagged" not in changes:
        changes["flagged"] = is_suspicious(changes["commentaire"])

    updated = update_document("commentaire", comment_id, changes)
    refresh_product_rating(comment["produit_id"])
    updated.pop("session_token", None)
    return {"success": True, "data": serialize(updated)}


@app.delete("/api/admin/commentaires/{comment_id}", dependencies=[Depends(require_admin)])
def admin_delete_comment(comment_id: str):
    comment = get_or_404("commentaire", comment_id, "Commentaire introuvable")
    db["commentaire"].delete_one({"_id": comment_id})
    refresh_product_rating(comment["produit_id"])
    return {"success": True}


# Push notifications (admin devices)
@app.get("/api/push/subscriptions", dependencies=[Depends(require_admin)])
def list_push_subscriptions(userId: Optional[str] = None):
    subs = find_subscriptions([userId] if userId else None)
    return {"success": True, "data": [serialize(s) for s in subs]}


@app.post("/api/push/subscriptions", dependencies=[Depends(require_admin)])
def store_push_subscription(payload: PushSubscriptionPayload):
    sub = upsert_subscription(payload.userId, payload.platform, payload.subscription)
    return {"success": True, "data": serialize(sub)}


@app.delete("/api/push/subscriptions", dependencies=[Depends(require_admin)])
def remove_push_subscription(payload: PushSubscriptionKey):
    return {"success": True, "deleted": delete_subscription(payload.userId, payload.platform)}


@app.post("/api/push/send", dependencies=[Depends(require_admin)])
def send_push_notification(payload: PushSendPayload):
    broadcast = payload.target == "all"
    if not broadcast and not payload.userIds:
        raise HTTPException(status_code=400, detail="userIds[] and title are required")

    message = payload.model_dump(include={"title", "body", "data", "icon", "badge"})
    try:
        result = send_push(message, None if broadcast else payload.userIds)
    except PushConfigurationError as exc:
        logger.error("Push send refused: %s", exc)
        raise HTTPException(status_code=500, detail="Configuration push manquante")

    if result.matched == 0:
        raise HTTPException(status_code=404, detail="No subscribers matched request")
    return {"success": True, "sent": result.sent, "failures": result.failures}


# Seed the first admin and a sample catalog
SAMPLE_CATEGORIES = [
    {"nom": "Mocassins", "slug": "mocassins"},
    {"nom": "Richelieus", "slug": "richelieus"},
    {"nom": "Bottines", "slug": "bottines"},
    {"nom": "Sandales", "slug": "sandales"},
]

SAMPLE_PRODUCTS = [
    {"nom": "Mocassin cuir cognac", "categorie": "mocassins", "prix": 890, "vedette": True},
    {"nom": "Mocassin daim marine", "categorie": "mocassins", "prix": 790},
    {"nom": "Richelieu noir classique", "categorie": "richelieus", "prix": 1150, "vedette": True},
    {"nom": "Richelieu patiné bordeaux", "categorie": "richelieus", "prix": 1290},
    {"nom": "Bottine Chelsea marron", "categorie": "bottines", "prix": 1350},
    {"nom": "Sandale cuir tressé", "categorie": "sandales", "prix": 450},
]


@app.post("/api/auth/seed")
def seed(request: Request):
    # open for the very first run only, then an admin session is required
    if db["admin"].find_one({}):
        require_admin(request)

    from faker import Faker
    fake = Faker("fr_FR")
    created = {"admins": 0, "categories": 0, "produits": 0}

    if ADMIN_EMAIL and ADMIN_PASSWORD and not db["admin"].find_one({}):
        create_document("admin", Admin(email=ADMIN_EMAIL.lower(), password_hash=hash_password(ADMIN_PASSWORD)))
        created["admins"] += 1

    for c in SAMPLE_CATEGORIES:
        if not db["categorie"].find_one({"slug": c["slug"]}):
            create_document("categorie", Category(**c))
            created["categories"] += 1

    if db["produit"].count_documents({}) == 0:
        for p in SAMPLE_PRODUCTS:
            sizes = [{"nom": str(size), "stock": fake.random_int(0, 8)} for size in range(39, 46)]
            product = Product(description=fake.paragraph(nb_sentences=3), tailles=sizes, **p)
            create_document("produit", product)
            created["produits"] += 1

    return {"success": True, "created": created}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
