"""
Tests for sap_adt.core building blocks: config, errors, timeouts, cookies, state.
"""

import json

import pytest

from sap_adt.core.config import AdtConfig, config_from_env, config_signature
from sap_adt.core.cookies import CookieJar, parse_cookie_header, set_cookie_values
from sap_adt.core.errors import (
    AdtUpstreamError,
    ConfigurationError,
    CredentialsExpiredError,
    PermissionDeniedError,
)
from sap_adt.core.state import SessionMode, SessionSnapshot, SessionState
from sap_adt.core.timeouts import get_timeout, get_timeout_config


class TestAdtConfig:
    """Tests for AdtConfig and environment loading."""

    def test_default_values(self):
        cfg = AdtConfig(url="https://host:44300")
        assert cfg.auth_type == "basic"
        assert cfg.verify is True
        assert cfg.retries == 3
        assert cfg.csrf.retry_count == 3
        assert cfg.csrf.error_retry_count == 5
        assert cfg.csrf.endpoint == "/sap/bc/adt/core/discovery"

    def test_has_refresh_credentials(self, jwt_config):
        assert jwt_config.has_refresh_credentials()
        jwt_config.uaa_client_secret = None
        assert not jwt_config.has_refresh_credentials()

    def test_basic_from_env(self):
        cfg = config_from_env({
            "SAP_URL": "https://env.example.com  # dev box",
            "SAP_CLIENT": "200",
            "SAP_USERNAME": "envuser",
            "SAP_PASSWORD": "envpass",
        })
        assert cfg.url == "https://env.example.com"
        assert cfg.client == "200"
        assert cfg.auth_type == "basic"
        assert cfg.username == "envuser"

    def test_xsuaa_maps_to_jwt(self):
        cfg = config_from_env({
            "SAP_URL": "https://env.example.com",
            "SAP_AUTH_TYPE": "xsuaa",
            "SAP_JWT_TOKEN": "tok",
            "SAP_REFRESH_TOKEN": "ref",
            "UAA_URL": "https://uaa",
            "UAA_CLIENT_ID": "id",
            "UAA_CLIENT_SECRET": "secret",
        })
        assert cfg.auth_type == "jwt"
        assert cfg.jwt_token == "tok"
        assert cfg.has_refresh_credentials()

    def test_verify_tls_switch(self):
        cfg = config_from_env({
            "SAP_URL": "https://env.example.com",
            "SAP_USERNAME": "u",
            "SAP_PASSWORD": "p",
            "SAP_VERIFY_TLS": "false",
        })
        assert cfg.verify is False

    def test_invalid_url_raises(self):
        with pytest.raises(ConfigurationError, match="SAP_URL"):
            config_from_env({"SAP_URL": "ftp://nope"})

    def test_missing_jwt_token_raises(self):
        with pytest.raises(ConfigurationError, match="SAP_JWT_TOKEN"):
            config_from_env({"SAP_URL": "https://h", "SAP_AUTH_TYPE": "jwt"})

    def test_missing_basic_credentials_raises(self):
        with pytest.raises(ConfigurationError, match="SAP_USERNAME"):
            config_from_env({"SAP_URL": "https://h", "SAP_USERNAME": "u"})

    def test_signature_hides_secrets(self, basic_config):
        sig = json.loads(config_signature(basic_config))
        assert sig["password"] == "set"
        assert sig["jwtToken"] is None
        assert "secret" not in config_signature(basic_config)


class TestErrors:
    """Tests for the exception taxonomy."""

    def test_error_attributes(self):
        err = AdtUpstreamError(
            status=404,
            body="Not found",
            url="https://test.com/sap/bc/adt/x",
            headers={"x-request-id": "123"},
            method="GET",
        )
        assert err.status == 404
        assert err.body == "Not found"
        assert err.headers == {"x-request-id": "123"}
        assert "GET https://test.com/sap/bc/adt/x" in str(err)

    def test_error_message_truncation(self):
        err = AdtUpstreamError(500, "x" * 2000, "https://test.com")
        assert len(str(err)) < 1500
        assert len(err.body) == 2000

    def test_permission_and_expiry_wording_differ(self):
        upstream = AdtUpstreamError(403, "No authorization", "https://test.com")
        denied = PermissionDeniedError.from_upstream(upstream)
        expired = CredentialsExpiredError.from_upstream(upstream, "invalid_grant")
        assert "lacks authorization" in str(denied)
        assert "re-authenticate" in str(expired)
        assert "invalid_grant" in str(expired)
        assert denied.status == expired.status == 403

    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, ValueError)


class TestTimeouts:

    def test_defaults(self):
        cfg = get_timeout_config({})
        assert (cfg.default, cfg.csrf, cfg.long) == (45.0, 15.0, 60.0)

    def test_env_in_milliseconds(self):
        cfg = get_timeout_config({"SAP_TIMEOUT_CSRF": "5000", "SAP_TIMEOUT_LONG": "junk"})
        assert cfg.csrf == 5.0
        assert cfg.long == 60.0

    def test_number_passthrough(self):
        assert get_timeout(12) == 12.0

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            get_timeout("forever")


class TestCookieJar:

    def test_last_write_wins_across_responses(self):
        jar = CookieJar()
        jar.ingest(["SAP_SESSIONID_A4H_100=one; path=/; HttpOnly", "sap-usercontext=sap-client=100; path=/"])
        jar.ingest(["SAP_SESSIONID_A4H_100=two; path=/"])
        jar.ingest(["MYSAPSSO2=sso; secure", "SAP_SESSIONID_A4H_100=three"])
        assert jar.render() == (
            "SAP_SESSIONID_A4H_100=three; sap-usercontext=sap-client=100; MYSAPSSO2=sso"
        )
        assert len(jar) == 3

    def test_empty_jar_renders_none(self):
        assert CookieJar().render() is None

    def test_skips_nameless_entries(self):
        jar = CookieJar()
        assert jar.ingest(["=value; path=/", "", " a = b "]) == 1
        assert jar.as_dict() == {"a": "b"}

    def test_set_cookie_values_reads_every_line(self, make_response):
        r = make_response(set_cookies=["a=1; path=/", "b=2; path=/"])
        assert set_cookie_values(r) == ["a=1; path=/", "b=2; path=/"]
        assert set_cookie_values(None) == []

    def test_parse_cookie_header(self):
        assert parse_cookie_header("a=1; b=x=y") == {"a": "1", "b": "x=y"}
        assert parse_cookie_header(None) == {}


class TestSessionState:

    def test_clear_keeps_identity_and_mode(self, make_response):
        state = SessionState("fixed-id")
        state.session_mode = "stateful"
        state.csrf_token = "tok"
        state.ingest_response(make_response(set_cookies=["a=1"]))
        state.clear()
        assert state.session_id == "fixed-id"
        assert state.session_mode is SessionMode.STATEFUL
        assert state.csrf_token is None
        assert state.cookies is None

    def test_snapshot_none_when_empty(self):
        assert SessionState().snapshot() is None

    def test_snapshot_restore(self, make_response):
        state = SessionState()
        state.ingest_response(make_response(set_cookies=["a=1", "b=2"]))
        state.csrf_token = "tok"
        snap = state.snapshot()
        assert snap.to_dict() == {"cookies": "a=1; b=2", "csrf_token": "tok", "cookie_store": {"a": "1", "b": "2"}}

        other = SessionState()
        other.restore(snap)
        assert other.cookies == "a=1; b=2"
        assert other.csrf_token == "tok"

    def test_restore_from_cookie_string_and_camel_case(self):
        snap = SessionSnapshot.from_dict({"cookies": "x=1; y=2", "csrfToken": "t"})
        state = SessionState()
        state.restore(snap)
        assert state.cookie_store() == {"x": "1", "y": "2"}
        assert state.csrf_token == "t"

    def test_invalid_mode_rejected(self):
        with pytest.raises(ValueError):
            SessionState().session_mode = "sticky"
