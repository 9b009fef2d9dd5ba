import os

os.environ.setdefault("ADMIN_SESSION_SECRET", "test-session-secret-with-more-than-32-chars")
os.environ["DATABASE_URL"] = "mongodb://localhost:27017"
os.environ["DATABASE_NAME"] = "maison_slimani_test"
os.environ.setdefault("VAPID_PRIVATE_KEY", "test-vapid-private-key")
os.environ.setdefault("ADMIN_EMAIL", "admin@maison-slimani.com")
os.environ.setdefault("ADMIN_PASSWORD", "Slimani@2024")
os.environ.pop("RESEND_API_KEY", None)
os.environ.pop("ENVIRONMENT", None)

# the app talks to an in-memory MongoDB during tests
import mongomock  # noqa: E402
import pymongo  # noqa: E402

pymongo.MongoClient = mongomock.MongoClient

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
from auth import SESSION_COOKIE, create_session, hash_password  # noqa: E402
from database import db, create_document  # noqa: E402
from rate_limit import limiter  # noqa: E402
from schemas import Admin, Product  # noqa: E402

ADMIN_EMAIL = "admin@maison-slimani.com"
ADMIN_PASSWORD = "Slimani@2024"
_ADMIN_HASH = hash_password(ADMIN_PASSWORD)


@pytest.fixture(autouse=True)
def clean_state():
    for name in db.list_collection_names():
        db.drop_collection(name)
    limiter.reset()
    yield


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def admin_user():
    create_document("admin", Admin(email=ADMIN_EMAIL, password_hash=_ADMIN_HASH))
    return {"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}


@pytest.fixture
def admin_client(admin_user):
    c = TestClient(main.app)
    c.cookies.set(SESSION_COOKIE, create_session(admin_user["email"]))
    return c


@pytest.fixture
def make_product():
    def _make(**overrides):
        fields = {"nom": "Mocassin cuir", "prix": 100, "stock": 5, "categorie": "mocassins"}
        fields.update(overrides)
        return create_document("produit", Product(**fields))
    return _make


@pytest.fixture
def push_calls(monkeypatch):
    """Record pywebpush deliveries instead of sending them."""
    import notifications

    calls = []

    def fake_webpush(subscription_info, data=None, vapid_private_key=None, vapid_claims=None, **kwargs):
        calls.append({"subscription": subscription_info, "data": data})

    monkeypatch.setattr(notifications, "webpush", fake_webpush)
    return calls
