import importlib
import os
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

import auth
from auth import JWT_AUDIENCE, JWT_ISSUER, SESSION_COOKIE, create_session, verify_session


def _claims(**overrides):
    now = datetime.now(timezone.utc)
    claims = {
        "email": "admin@maison-slimani.com",
        "sub": "admin@maison-slimani.com",
        "iat": now,
        "exp": now + timedelta(days=1),
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
    }
    claims.update(overrides)
    return claims


def test_session_round_trip():
    token = create_session("admin@maison-slimani.com")
    assert verify_session(token) == "admin@maison-slimani.com"


def test_token_signed_with_another_secret_is_rejected():
    token = jwt.encode(_claims(), "x" * 40, algorithm="HS256")
    assert verify_session(token) is None


def test_expired_token_is_rejected():
    token = create_session("admin@maison-slimani.com", now=datetime.now(timezone.utc) - timedelta(days=8))
    assert verify_session(token) is None


@pytest.mark.parametrize("overrides", [{"iss": "someone-else"}, {"aud": "another-app"}])
def test_wrong_issuer_or_audience_is_rejected(overrides):
    token = jwt.encode(_claims(**overrides), auth.SESSION_SECRET, algorithm="HS256")
    assert verify_session(token) is None


@pytest.mark.parametrize("token", [None, "", "not-a-jwt", "a.b.c"])
def test_garbage_is_rejected(token):
    assert verify_session(token) is None


def test_short_secret_refuses_to_start(monkeypatch):
    original = os.environ["ADMIN_SESSION_SECRET"]
    monkeypatch.setenv("ADMIN_SESSION_SECRET", "too-short")
    try:
        with pytest.raises(RuntimeError):
            importlib.reload(auth)
    finally:
        monkeypatch.setenv("ADMIN_SESSION_SECRET", original)
        importlib.reload(auth)


def test_login_sets_session_cookie(client, admin_user):
    resp = client.post("/api/auth/login", json=admin_user)
    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert SESSION_COOKIE in resp.cookies

    resp = client.get("/api/auth/session")
    assert resp.json() == {"authenticated": True, "email": admin_user["email"]}


def test_login_errors_do_not_reveal_which_field_was_wrong(client, admin_user):
    wrong_password = client.post("/api/auth/login", json={"email": admin_user["email"], "password": "nope"})
    unknown_email = client.post("/api/auth/login", json={"email": "ghost@maison-slimani.com", "password": "nope"})
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json()
    assert wrong_password.json()["error"] == "Email ou mot de passe incorrect"


def test_login_missing_fields_is_a_validation_error(client):
    resp = client.post("/api/auth/login", json={"email": "admin@maison-slimani.com"})
    assert resp.status_code == 400
    assert "password" in resp.json()["details"]["fieldErrors"]


def test_login_is_rate_limited(client, admin_user):
    for _ in range(5):
        client.post("/api/auth/login", json={"email": admin_user["email"], "password": "bad"})
    resp = client.post("/api/auth/login", json=admin_user)
    assert resp.status_code == 429
    assert int(resp.headers["Retry-After"]) > 0


def test_logout_clears_session(client, admin_user):
    client.post("/api/auth/login", json=admin_user)
    client.post("/api/auth/logout")
    assert client.get("/api/auth/session").json()["authenticated"] is False


def test_admin_api_requires_session(client):
    resp = client.get("/api/admin/commandes")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Non autorisé"}


def test_admin_pages_redirect_to_login(client):
    for path in ("/admin", "/admin/commandes", "/pwa/commandes/123"):
        resp = client.get(path, follow_redirects=False)
        assert resp.status_code == 307
        assert resp.headers["location"] == "/login"
        assert "noindex" in resp.headers["x-robots-tag"]


def test_lookalike_paths_are_not_gated(client):
    for path in ("/administrateur", "/pwa-manifest.json"):
        resp = client.get(path, follow_redirects=False)
        assert resp.status_code == 404
        assert "x-robots-tag" not in resp.headers


def test_login_page_redirects_when_authenticated(admin_client, client):
    resp = admin_client.get("/login", follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"] == "/"

    resp = client.get("/login", follow_redirects=False)
    assert resp.status_code != 307


def test_admin_pages_pass_through_with_session(admin_client):
    resp = admin_client.get("/admin/commandes", follow_redirects=False)
    assert resp.status_code != 307
