"""
Integration tests for session tokens and the agent shared secret
"""

import base64
import json

import pytest
from fastapi.testclient import TestClient

from shared.schemas import User
from orchestrator.auth import SESSION_TTL_SECONDS, SessionAuthenticator, SharedSecretGuard

from conftest import AGENT_SECRET, auth_headers, heartbeat


def _segment(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


@pytest.fixture
def user():
    return User(id="user_abc", email="ada@example.com", name="Ada", provider="github", provider_id="1")


class TestSessionAuthenticator:
    """Token issue and verification"""

    def test_issued_token_round_trips_claims(self, clock, user):
        """Test that a fresh token verifies to {sub, name, exp}"""
        auth = SessionAuthenticator("dev-secret", clock=clock)

        claims = auth.verify(auth.issue(user))

        assert claims["sub"] == "user_abc"
        assert claims["name"] == "Ada"
        assert claims["exp"] == int(clock()) + SESSION_TTL_SECONDS

    def test_token_has_three_base64url_segments(self, clock, user):
        token = SessionAuthenticator("dev-secret", clock=clock).issue(user)

        header, payload, signature = token.split(".")
        assert "=" not in token
        assert json.loads(base64.urlsafe_b64decode(header + "=" * (-len(header) % 4))) == {"alg": "HS256", "typ": "JWT"}

    def test_expired_token_is_rejected(self, clock, user):
        """Test that a token stops verifying once the 7 day window passes"""
        auth = SessionAuthenticator("dev-secret", clock=clock)
        token = auth.issue(user)

        clock.advance(SESSION_TTL_SECONDS - 1)
        assert auth.verify(token) is not None

        clock.advance(2)
        assert auth.verify(token) is None

    def test_token_signed_with_other_secret_is_rejected(self, clock, user):
        token = SessionAuthenticator("other-secret", clock=clock).issue(user)

        assert SessionAuthenticator("dev-secret", clock=clock).verify(token) is None

    def test_tampered_payload_is_rejected(self, clock, user):
        """Test that swapping the payload invalidates the signature"""
        auth = SessionAuthenticator("dev-secret", clock=clock)
        header, _, signature = auth.issue(user).split(".")
        forged = _segment({"sub": "user_admin", "name": "Eve", "exp": int(clock()) + 60})

        assert auth.verify(f"{header}.{forged}.{signature}") is None

    @pytest.mark.parametrize("token", [
        "",
        "not-a-token",
        "a.b",
        "a.b.c.d",
        "..",
        "a.b.ü",
    ])
    def test_malformed_tokens_are_rejected(self, clock, token):
        assert SessionAuthenticator("dev-secret", clock=clock).verify(token) is None

    def test_signed_garbage_payload_is_rejected(self, clock):
        """Test that a correctly signed but undecodable payload still fails"""
        auth = SessionAuthenticator("dev-secret", clock=clock)
        header = _segment({"alg": "HS256", "typ": "JWT"})
        payload = base64.urlsafe_b64encode(b"not json").rstrip(b"=").decode()
        signature = auth._sign(f"{header}.{payload}")

        assert auth.verify(f"{header}.{payload}.{signature}") is None

    def test_empty_secret_is_refused(self):
        with pytest.raises(ValueError):
            SessionAuthenticator("")


class TestSharedSecretGuard:
    """Heartbeat credential check"""

    def test_guard_applies_only_to_heartbeat_paths(self, audit_log):
        guard = SharedSecretGuard(AGENT_SECRET, audit_log)

        assert guard.applies_to("/api/agents/heartbeat")
        assert not guard.applies_to("/api/agent/tools/read_file")
        assert not guard.applies_to("/api/projects")

    def test_matching_secret_passes_without_audit(self, audit_log):
        guard = SharedSecretGuard(AGENT_SECRET, audit_log)

        assert guard.check(AGENT_SECRET, "10.0.0.9") is True
        assert audit_log.list() == []

    @pytest.mark.parametrize("presented", [None, "", "wrong", AGENT_SECRET + "x"])
    def test_rejection_is_audited_with_source(self, audit_log, presented):
        """Test that each rejected credential leaves a DENY entry"""
        guard = SharedSecretGuard(AGENT_SECRET, audit_log)

        assert guard.check(presented, "10.0.0.9") is False

        entries = audit_log.list()
        assert len(entries) == 1
        assert entries[0].action == "DENY"
        assert entries[0].description == "Unauthorized heartbeat attempt from 10.0.0.9"
        assert entries[0].actor == "Unknown"


class TestAuthenticatedRoutes:
    """Bearer checks at the HTTP boundary"""

    @pytest.mark.parametrize("path", ["/api/tasks", "/api/user/me", "/api/admin/audit-logs"])
    def test_missing_header_is_unauthorized(self, make_app, path):
        response = TestClient(make_app()).get(path)

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized"}

    def test_invalid_token_is_rejected(self, make_app):
        response = TestClient(make_app()).get("/api/tasks", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid Token"}

    def test_non_bearer_scheme_is_unauthorized(self, make_app):
        response = TestClient(make_app()).get("/api/tasks", headers={"Authorization": "Basic abc"})

        assert response.json() == {"detail": "Unauthorized"}

    def test_expired_token_is_rejected(self, make_app, session_user, clock):
        app = make_app()
        headers = auth_headers(app, session_user)
        clock.advance(SESSION_TTL_SECONDS + 1)

        response = TestClient(app).get("/api/tasks", headers=headers)

        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid Token"}

    def test_heartbeat_without_secret_is_rejected_and_audited(self, make_app, session_user):
        """Test the shared-secret gate on the heartbeat endpoint"""
        app = make_app()
        client = TestClient(app)

        response = client.post(
            "/api/agents/heartbeat",
            json={"agentId": "n1", "url": "http://x", "projects": []},
            headers={"CF-Connecting-IP": "203.0.113.7", "Origin": "https://app.example.com"},
        )

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized Agent"}
        assert response.headers["access-control-allow-origin"] in ("*", "https://app.example.com")
        assert response.headers["X-Edge-Region"] == "IAD"
        logs = client.get("/api/admin/audit-logs", headers=auth_headers(app, session_user)).json()
        assert logs[0]["action"] == "DENY"
        assert logs[0]["description"] == "Unauthorized heartbeat attempt from 203.0.113.7"

    def test_heartbeat_with_secret_registers(self, make_app):
        response = heartbeat(TestClient(make_app()))

        assert response.status_code == 200
        assert response.json() == {"status": "registered", "ttl": 60}
