"""Tests for the OAuth flow engine, PKCE helpers and pending states."""

from __future__ import annotations

import base64
import hashlib
from urllib.parse import parse_qs, urlparse

import pytest
import requests
from conftest import BASE_URL, T0, FakeClock, make_response

from mcp_gateway.auth.models import ProviderConfig
from mcp_gateway.auth.oauth import OAuthFlowEngine
from mcp_gateway.auth.pending import PendingAuthorizations
from mcp_gateway.auth.pkce import (
    build_state,
    code_challenge,
    generate_code_verifier,
    parse_state,
)
from mcp_gateway.utils.errors import (
    ConfigError,
    InvalidStateError,
    RegistrationError,
    UnknownProviderError,
)


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def _registering_provider(client_id: str | None = None) -> ProviderConfig:
    return ProviderConfig.model_validate(
        {
            "id": "linear",
            "mcpUrl": "https://mcp.linear.app/mcp",
            "oauth": {
                "authUrl": "https://mcp.linear.app/authorize",
                "tokenUrl": "https://mcp.linear.app/token",
                "clientId": client_id,
                "usePKCE": True,
                "registrationUrl": "https://mcp.linear.app/register",
            },
        }
    )


class TestPkceHelpers:
    """Tests for verifier, challenge and state helpers."""

    def test_verifier_is_unpadded_base64url_of_32_bytes(self):
        """Test verifier encodes 32 random bytes as 43 base64url characters."""
        verifier = generate_code_verifier()

        assert len(verifier) == 43
        assert "=" not in verifier
        assert "+" not in verifier and "/" not in verifier

    def test_challenge_is_sha256_of_verifier(self):
        """Test challenge is base64url(SHA-256(verifier)) without padding."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        expected = (
            base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
            .decode()
            .rstrip("=")
        )

        assert code_challenge(verifier) == expected
        assert code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_state_encodes_provider_user_and_hex_nonce(self):
        """Test state has the form providerId:userId:<64 hex chars>."""
        state = build_state("alpha", "alice")
        provider_id, user_id, nonce = state.split(":")

        assert (provider_id, user_id) == ("alpha", "alice")
        assert len(nonce) == 64
        int(nonce, 16)

    def test_states_are_unique(self):
        """Test two states for the same pair never collide."""
        assert build_state("alpha", "alice") != build_state("alpha", "alice")

    def test_parse_state_round_trip(self):
        """Test parse_state recovers provider and user."""
        assert parse_state(build_state("beta", "bob")) == ("beta", "bob")

    @pytest.mark.parametrize("state", ["", "alpha", ":alice:nonce", "alpha::nonce"])
    def test_parse_state_rejects_missing_parts(self, state):
        """Test malformed states raise InvalidStateError."""
        with pytest.raises(InvalidStateError) as exc_info:
            parse_state(state)

        assert exc_info.value.code == "INVALID_STATE"


class TestPendingAuthorizations:
    """Tests for the single-use pending state table."""

    def test_consume_is_single_use(self):
        """Test an entry can be consumed exactly once."""
        pending = PendingAuthorizations(clock=FakeClock())
        pending.store("s1", "verifier")

        first = pending.consume("s1")
        second = pending.consume("s1")

        assert first is not None and first.code_verifier == "verifier"
        assert second is None
        assert len(pending) == 0

    def test_expired_entry_is_treated_as_absent(self):
        """Test entries older than the TTL are not returned."""
        clock = FakeClock()
        pending = PendingAuthorizations(ttl_ms=1000, clock=clock)
        pending.store("s1", None)

        clock.advance(1001)

        assert pending.consume("s1") is None

    def test_cleanup_expired_removes_only_stale_entries(self):
        """Test cleanup drops expired entries and keeps fresh ones."""
        clock = FakeClock()
        pending = PendingAuthorizations(ttl_ms=1000, clock=clock)
        pending.store("old", None)
        clock.advance(800)
        pending.store("new", None)
        clock.advance(400)

        removed = pending.cleanup_expired()

        assert removed == 1
        assert len(pending) == 1
        assert pending.consume("new") is not None

    def test_store_drops_expired_entries(self):
        """Test issuing a new state evicts states older than the TTL."""
        clock = FakeClock()
        pending = PendingAuthorizations(ttl_ms=1000, clock=clock)
        for i in range(50):
            pending.store(f"stale-{i}", "verifier")
        clock.advance(36_000_000)

        pending.store("fresh", None)

        assert len(pending) == 1
        assert pending.consume("fresh") is not None

    def test_repeated_urls_stay_bounded_across_ttl(self, engine, clock):
        """Test handing out URLs over time keeps only unexpired states."""
        for _ in range(20):
            engine.get_authorization_url("alpha", "alice")
        clock.advance(36_000_000)
        for _ in range(20):
            engine.get_authorization_url("alpha", "alice")

        assert len(engine.pending) == 20


class TestAuthorizationUrl:
    """Tests for OAuthFlowEngine.get_authorization_url."""

    def test_pkce_url_contains_challenge_and_method(self, engine):
        """Test PKCE providers get code_challenge and S256 in the URL."""
        url = engine.get_authorization_url("alpha", "alice")
        query = _query(url)

        assert url.startswith("https://alpha.example.com/authorize?")
        assert query["response_type"] == "code"
        assert query["client_id"] == "alpha-client"
        assert query["redirect_uri"] == f"{BASE_URL}/oauth/callback"
        assert query["scope"] == "read write"
        assert query["code_challenge_method"] == "S256"
        assert "code_challenge" in query

    def test_pkce_verifier_stored_under_state(self, engine):
        """Test the stored verifier matches the challenge in the URL."""
        query = _query(engine.get_authorization_url("alpha", "alice"))

        entry = engine.consume_pending(query["state"])

        assert entry is not None
        assert code_challenge(entry.code_verifier) == query["code_challenge"]

    def test_non_pkce_url_has_no_challenge_or_scope(self, engine):
        """Test confidential providers get no PKCE params and no empty scope."""
        query = _query(engine.get_authorization_url("beta", "bob"))

        assert "code_challenge" not in query
        assert "code_challenge_method" not in query
        assert "scope" not in query
        assert query["state"].startswith("beta:bob:")

    def test_non_pkce_state_is_still_recorded(self, engine):
        """Test every issued state is tracked even without a verifier."""
        query = _query(engine.get_authorization_url("beta", "bob"))

        entry = engine.consume_pending(query["state"])

        assert entry is not None
        assert entry.code_verifier is None

    @pytest.mark.parametrize("provider_id", ["open", "missing"])
    def test_unknown_provider_raises(self, engine, provider_id):
        """Test providers without OAuth settings raise UnknownProviderError."""
        with pytest.raises(UnknownProviderError):
            engine.get_authorization_url(provider_id, "alice")

    def test_missing_client_id_without_registration_raises_config_error(self, http):
        """Test ConfigError when no client id and no registration endpoint."""
        provider = ProviderConfig.model_validate(
            {
                "id": "bare",
                "mcpUrl": "https://bare.example.com/mcp",
                "oauth": {
                    "authUrl": "https://bare.example.com/authorize",
                    "tokenUrl": "https://bare.example.com/token",
                },
            }
        )
        engine = OAuthFlowEngine({"bare": provider}, BASE_URL, http=http)

        with pytest.raises(ConfigError):
            engine.get_authorization_url("bare", "alice")
        http.post.assert_not_called()


class TestDynamicRegistration:
    """Tests for dynamic client registration."""

    def test_registers_once_and_caches_client_id(self, http):
        """Test registration happens once and the client id is reused."""
        http.post.return_value = make_response(201, {"client_id": "dyn-123"})
        engine = OAuthFlowEngine({"linear": _registering_provider()}, BASE_URL, http=http)

        first = _query(engine.get_authorization_url("linear", "alice"))
        second = _query(engine.get_authorization_url("linear", "bob"))

        assert first["client_id"] == "dyn-123"
        assert second["client_id"] == "dyn-123"
        http.post.assert_called_once()

    def test_registration_payload(self, http):
        """Test the registration request body and endpoint."""
        http.post.return_value = make_response(201, {"client_id": "dyn-123"})
        engine = OAuthFlowEngine(
            {"linear": _registering_provider()}, BASE_URL, http=http, client_name="gw"
        )

        engine.get_authorization_url("linear", "alice")

        args, kwargs = http.post.call_args
        assert args[0] == "https://mcp.linear.app/register"
        assert kwargs["json"] == {
            "client_name": "gw",
            "redirect_uris": [f"{BASE_URL}/oauth/callback"],
            "grant_types": ["authorization_code", "refresh_token"],
            "token_endpoint_auth_method": "none",
        }
        assert kwargs["timeout"] == 30.0

    def test_explicit_client_id_skips_registration(self, http):
        """Test a configured client id wins over registration."""
        engine = OAuthFlowEngine(
            {"linear": _registering_provider("static-id")}, BASE_URL, http=http
        )

        query = _query(engine.get_authorization_url("linear", "alice"))

        assert query["client_id"] == "static-id"
        http.post.assert_not_called()

    def test_empty_client_id_triggers_registration(self, http):
        """Test an empty configured client id counts as absent."""
        http.post.return_value = make_response(201, {"client_id": "dyn-9"})
        engine = OAuthFlowEngine({"linear": _registering_provider("")}, BASE_URL, http=http)

        assert _query(engine.get_authorization_url("linear", "alice"))["client_id"] == "dyn-9"

    def test_rejected_registration_raises_with_status(self, http):
        """Test a non-2xx registration raises RegistrationError with status."""
        http.post.return_value = make_response(400, {"error": "invalid_redirect_uri"})
        engine = OAuthFlowEngine({"linear": _registering_provider()}, BASE_URL, http=http)

        with pytest.raises(RegistrationError) as exc_info:
            engine.get_authorization_url("linear", "alice")

        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "REGISTRATION_FAILED"
        assert len(engine.pending) == 0

    def test_registration_without_client_id_raises(self, http):
        """Test a 2xx registration lacking client_id is a failure."""
        http.post.return_value = make_response(201, {"client_secret": "x"})
        engine = OAuthFlowEngine({"linear": _registering_provider()}, BASE_URL, http=http)

        with pytest.raises(RegistrationError):
            engine.get_authorization_url("linear", "alice")

    def test_registration_network_error_is_wrapped(self, http):
        """Test network failures become RegistrationError with no status."""
        http.post.side_effect = requests.ConnectionError("refused")
        engine = OAuthFlowEngine({"linear": _registering_provider()}, BASE_URL, http=http)

        with pytest.raises(RegistrationError) as exc_info:
            engine.get_authorization_url("linear", "alice")

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, requests.ConnectionError)

    def test_timeout_override_is_forwarded(self, http):
        """Test a per-call timeout reaches the registration request."""
        http.post.return_value = make_response(201, {"client_id": "dyn-1"})
        engine = OAuthFlowEngine({"linear": _registering_provider()}, BASE_URL, http=http)

        engine.get_authorization_url("linear", "alice", timeout=2.5)

        assert http.post.call_args.kwargs["timeout"] == 2.5


def test_redirect_uri_strips_trailing_slash(providers, http):
    """Test the redirect URI is built from a normalized base URL."""
    engine = OAuthFlowEngine(providers, "https://gw.example.com/", http=http)

    assert engine.redirect_uri == "https://gw.example.com/oauth/callback"


def test_pending_created_at_uses_clock(engine):
    """Test pending entries are stamped with the injected clock."""
    query = _query(engine.get_authorization_url("alpha", "alice"))

    assert engine.consume_pending(query["state"]).created_at == T0
