# tests/test_security.py
"""
Security tests for the CreditWise API.
Tests caller identity, admin API key, security headers and CORS.
"""

import time
import pytest
import jwt
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.testclient import TestClient
from unittest.mock import patch

from creditwise import main
from creditwise.main import app, get_api_key, status_for, error_body
from creditwise.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    FlowError,
    InsufficientCreditsError,
    SessionError,
    TransitionFailedError,
    TransitionInProgressError,
)
from creditwise.core.security import (
    Identity,
    TokenVerifier,
    get_identity,
    is_valid_guest_id,
    new_guest_id,
    require_authenticated,
)

SECRET = "security-test-secret-0123456789abcdef"

client = TestClient(app)


def token_for(payload, secret=SECRET):
    return jwt.encode(payload, secret, algorithm="HS256")


def credentials(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


@pytest.mark.unit
class TestGuestIds:

    def test_new_guest_id_is_valid(self):
        guest_id = new_guest_id()

        assert guest_id.startswith("guest_")
        assert is_valid_guest_id(guest_id)
        assert new_guest_id() != guest_id

    @pytest.mark.parametrize("guest_id", [
        None, "", "guest_", "guest_short", "user_12345678", "guest_abc def ghi",
        "guest_" + "a" * 65, "guest_12345678/../x",
    ])
    def test_rejected(self, guest_id):
        assert not is_valid_guest_id(guest_id)

    def test_accepted(self):
        assert is_valid_guest_id("guest_1234-abcd")


@pytest.mark.unit
class TestTokenVerifier:

    def test_verify(self):
        token = token_for({"sub": "user-1", "name": "Олег"})

        identity = TokenVerifier(SECRET).verify(token)

        assert identity == Identity.authenticated("user-1", token=token, display_name="Олег")
        assert identity.durable

    def test_expired(self):
        token = token_for({"sub": "user-1", "exp": int(time.time()) - 60})

        with pytest.raises(AuthenticationError) as exc_info:
            TokenVerifier(SECRET).verify(token)
        assert exc_info.value.error_type == "expired"

    def test_wrong_signature(self):
        token = token_for({"sub": "user-1"}, secret="another-secret-0123456789abcdef0123")

        with pytest.raises(AuthenticationError):
            TokenVerifier(SECRET).verify(token)

    def test_missing_subject(self):
        with pytest.raises(AuthenticationError):
            TokenVerifier(SECRET).verify(token_for({"name": "x"}))

    def test_missing_secret(self):
        with pytest.raises(ConfigurationError):
            TokenVerifier("").verify("anything")


@pytest.mark.unit
class TestGetIdentity:

    async def test_bearer_wins_over_guest_id(self):
        token = token_for({"sub": "user-1"})

        identity = await get_identity(credentials(token), "guest_1234-abcd", TokenVerifier(SECRET))

        assert identity.user_id == "user-1"
        assert not identity.is_guest

    async def test_known_guest(self):
        identity = await get_identity(None, "guest_1234-abcd", TokenVerifier(SECRET))

        assert identity == Identity.guest("guest_1234-abcd")
        assert not identity.is_new_guest

    async def test_new_guest(self):
        identity = await get_identity(None, None, TokenVerifier(SECRET))

        assert identity.is_guest
        assert identity.is_new_guest
        assert is_valid_guest_id(identity.user_id)

    async def test_malformed_guest(self):
        with pytest.raises(AuthenticationError):
            await get_identity(None, "admin", TokenVerifier(SECRET))

    async def test_require_authenticated(self):
        with pytest.raises(AuthenticationError):
            await require_authenticated(Identity.guest("guest_1234-abcd"))

        user = Identity.authenticated("user-1")
        assert await require_authenticated(user) is user


@pytest.mark.unit
class TestAPIAuthentication:
    """Admin API key"""

    def test_protected_endpoint_without_api_key(self):
        response = client.get("/debug/flow")

        assert response.status_code == 401
        assert "Missing API Key" in response.json()["error"]

    def test_protected_endpoint_with_invalid_api_key(self):
        response = client.get("/debug/flow", headers={"X-API-Key": "invalid-key"})

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid API Key", "code": "UNAUTHORIZED"}

    def test_public_endpoints_without_api_key(self):
        for endpoint in ["/", "/health"]:
            assert client.get(endpoint).status_code == 200

    def test_api_key_from_settings(self):
        with patch.object(main.settings, "CREDITWISE_API_KEY", "configured-key"):
            assert get_api_key() == "configured-key"

    def test_api_key_generation(self):
        with patch.object(main.settings, "CREDITWISE_API_KEY", None):
            api_key = get_api_key()

        assert api_key is not None
        assert len(api_key) > 20


@pytest.mark.unit
class TestErrorMapping:

    @pytest.mark.parametrize("error,status", [
        (TransitionInProgressError("busy"), 409),
        (SessionError("gone"), 404),
        (InsufficientCreditsError("broke"), 402),
        (AuthenticationError("who"), 401),
        (ConfigurationError("unset"), 500),
        (TransitionFailedError("handler crashed"), 500),
        (FlowError("bad move"), 409),
    ])
    def test_status(self, error, status):
        assert status_for(error) == status

    def test_body_carries_message_not_details(self):
        error = SessionError("Session not found", details={"internal": "creditwise:sessions:u1"})

        assert error_body(error) == {"error": "Session not found", "code": "SESSION_ERROR"}


@pytest.mark.unit
class TestSecurityHeaders:

    def test_security_headers_on_all_responses(self):
        response = client.get("/health")

        assert response.headers.get("X-Content-Type-Options") == "nosniff"
        assert response.headers.get("X-Frame-Options") == "DENY"
        assert response.headers.get("X-XSS-Protection") == "1; mode=block"
        assert response.headers.get("Strict-Transport-Security") == "max-age=31536000; includeSubDomains"
        assert response.headers.get("Referrer-Policy") == "strict-origin-when-cross-origin"
        assert response.headers.get("Permissions-Policy") == "geolocation=(), microphone=(), camera=()"

    def test_server_header_removed(self):
        assert "Server" not in client.get("/health").headers

    def test_security_headers_on_error_responses(self):
        response = client.get("/debug/flow")

        assert response.status_code == 401
        assert response.headers.get("X-Frame-Options") == "DENY"
        assert response.headers.get("X-Content-Type-Options") == "nosniff"


@pytest.mark.unit
class TestCORSConfiguration:

    def test_allowed_origin(self):
        response = client.options("/chat/init", headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type,authorization,x-guest-id",
        })

        assert response.status_code == 200
        assert response.headers.get("access-control-allow-origin") == "http://localhost:5173"
        assert "POST" in response.headers.get("access-control-allow-methods", "")

    def test_disallowed_origin(self):
        response = client.options("/chat/init", headers={
            "Origin": "https://malicious-site.com",
            "Access-Control-Request-Method": "POST",
        })

        assert response.headers.get("access-control-allow-origin") != "https://malicious-site.com"

    def test_guest_id_header_exposed(self):
        response = client.get("/health", headers={"Origin": "http://localhost:3000"})

        assert "X-Guest-Id" in response.headers.get("access-control-expose-headers", "")
