"""Tests for the session identity, access gate and question proxy."""
import httpx
import pytest
from app.auth import ANONYMOUS_USER, UserContext, is_allowed, user_from_session
from app.config import settings

ALLOWED_PROFILE = {"name": "Ryan Jobe", "login": "rjobe", "email": "ryan@example.com", "image": None}
STRANGER_PROFILE = {"name": "Stranger", "login": "stranger", "email": "stranger@example.com", "image": None}


@pytest.fixture
def allowed(session_headers):
    return session_headers({"user": ALLOWED_PROFILE})


@pytest.fixture
def upstream(monkeypatch):
    """Route the proxy's outgoing requests to a handler set by the test."""
    state = {"handler": None}
    real_client = httpx.AsyncClient

    def client_factory(*args, **kwargs):
        return real_client(transport=httpx.MockTransport(state["handler"]))

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)
    return state


class TestUserContext:

    def test_from_session(self):
        user = user_from_session({"user": ALLOWED_PROFILE})
        assert user.email == "ryan@example.com"
        assert user.username == "Ryan Jobe"

    def test_missing_email_is_anonymous(self):
        user = user_from_session({"user": {"login": "ghost"}})
        assert user.is_anonymous
        assert user.username == "ghost"

    def test_empty_session(self):
        assert user_from_session({}) is None
        assert ANONYMOUS_USER.is_anonymous

    def test_allow_list_uses_name_then_login(self):
        assert is_allowed(UserContext(email="a", name="Ryan Jobe"))
        assert is_allowed(UserContext(email="a", login="Superallyman"))
        assert not is_allowed(UserContext(email="a", name="Someone", login="Superallyman"))


class TestAccessGate:

    def test_signed_out_redirects_to_signin(self, raw_client):
        response = raw_client.get("/", follow_redirects=False)
        assert response.status_code in (302, 307)
        assert response.headers["location"] == "/api/auth/signin"

    def test_stranger_redirected_to_unauthorized(self, raw_client, session_headers):
        response = raw_client.get(
            "/", headers=session_headers({"user": STRANGER_PROFILE}), follow_redirects=False
        )
        assert response.status_code in (302, 307)
        assert response.headers["location"] == "/unauthorized"

    def test_allowed_user_reaches_home(self, raw_client, allowed):
        response = raw_client.get("/", headers=allowed)
        assert response.status_code == 200
        assert response.json()["user"] == {"name": "Ryan Jobe", "email": "ryan@example.com"}

    def test_questions_feed_is_gated(self, raw_client):
        response = raw_client.get("/api/questions", follow_redirects=False)
        assert response.headers["location"] == "/api/auth/signin"

    def test_other_paths_pass_through(self, raw_client):
        assert raw_client.get("/health").status_code == 200
        assert raw_client.get("/api/selector/categories").status_code == 200

    def test_unauthorized_page(self, raw_client):
        assert raw_client.get("/unauthorized").status_code == 403

    def test_signed_out_activity_is_anonymous(self, raw_client):
        response = raw_client.get("/api/history")
        assert response.status_code == 200
        assert response.json()["items"] == []


class TestSessionEndpoints:

    def test_session_signed_out(self, raw_client):
        assert raw_client.get("/api/auth/session").json() == {}

    def test_session_signed_in(self, raw_client, allowed):
        user = raw_client.get("/api/auth/session", headers=allowed).json()["user"]
        assert user["login"] == "rjobe"
        assert user["email"] == "ryan@example.com"

    def test_signout_expires_cookie(self, raw_client, allowed):
        response = raw_client.post("/api/auth/signout", headers=allowed, follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"] == "/api/auth/session"
        assert "1970" in response.headers["set-cookie"]

    def test_signin_requires_github_credentials(self, raw_client, monkeypatch):
        monkeypatch.setattr(settings, "GITHUB_CLIENT_ID", "")
        response = raw_client.get("/api/auth/signin", follow_redirects=False)
        assert response.status_code == 503


class TestQuestionProxy:

    def test_passes_upstream_json_through(self, raw_client, upstream, allowed):
        questions = [{"id": "q1", "question_text": "Which?"}]
        upstream["handler"] = lambda request: httpx.Response(200, json=questions)

        response = raw_client.get("/api/questions", headers=allowed)
        assert response.status_code == 200
        assert response.json() == questions

    def test_upstream_error_is_502(self, raw_client, upstream, allowed):
        upstream["handler"] = lambda request: httpx.Response(500, text="boom")

        response = raw_client.get("/api/questions", headers=allowed)
        assert response.status_code == 502
        assert response.json() == {"error": "Unable to load questions"}

    def test_unreachable_upstream_is_502(self, raw_client, upstream, allowed):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        upstream["handler"] = refuse
        assert raw_client.get("/api/questions", headers=allowed).status_code == 502

    def test_invalid_json_is_502(self, raw_client, upstream, allowed):
        upstream["handler"] = lambda request: httpx.Response(200, text="<html>")
        assert raw_client.get("/api/questions", headers=allowed).status_code == 502
