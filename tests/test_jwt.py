"""
Tests for bearer (JWT) auth: permission classification, token refresh and
refresh de-duplication.
"""

import threading

import pytest
import requests
from unittest.mock import Mock, patch

from sap_adt.core.auth import BearerAuth
from sap_adt.core.connection import create_connection
from sap_adt.core.errors import (
    AdtUpstreamError,
    ConfigurationError,
    CredentialsExpiredError,
    PermissionDeniedError,
    TokenRefreshError,
)
from sap_adt.core.refresh import TokenRefreshCoordinator, refresh_jwt_token
from sap_adt.core.retry import FailureKind, classify_failure
from sap_adt.core.state import SessionState

from conftest import DISCOVERY_URL, build_response


OBJECT_URL = "/sap/bc/adt/oo/classes/zcl_demo"
TOKEN_URL = "https://acme.authentication.eu10.hana.ondemand.com/oauth/token"


def token_response(access="new-token", refresh=None):
    body = {"access_token": access, "token_type": "bearer"}
    if refresh:
        body["refresh_token"] = refresh
    return build_response(200, body, headers={"Content-Type": "application/json"})


def bearer_of(call):
    return call.headers["Authorization"].split(" ", 1)[1]


class TestRefreshJwtToken:

    @patch("sap_adt.core.refresh.requests.post")
    def test_refresh_request_shape(self, mock_post):
        mock_post.return_value = token_response("a2", "r2")

        result = refresh_jwt_token("r1", "https://uaa/", "cid", "csecret")

        assert (result.access_token, result.refresh_token) == ("a2", "r2")
        args, kwargs = mock_post.call_args
        assert args[0] == "https://uaa/oauth/token"
        assert kwargs["data"] == {"grant_type": "refresh_token", "refresh_token": "r1"}
        assert kwargs["auth"] == ("cid", "csecret")
        assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"

    @patch("sap_adt.core.refresh.requests.post")
    def test_keeps_refresh_token_when_not_rotated(self, mock_post):
        mock_post.return_value = token_response("a2")
        assert refresh_jwt_token("r1", "https://uaa", "c", "s").refresh_token == "r1"

    @patch("sap_adt.core.refresh.requests.post")
    def test_error_status(self, mock_post):
        mock_post.return_value = build_response(401, '{"error":"invalid_token"}')
        with pytest.raises(TokenRefreshError) as exc_info:
            refresh_jwt_token("r1", "https://uaa", "c", "s")
        assert exc_info.value.status == 401

    @patch("sap_adt.core.refresh.requests.post")
    def test_missing_access_token(self, mock_post):
        mock_post.return_value = build_response(200, {"token_type": "bearer"})
        with pytest.raises(TokenRefreshError, match="access_token"):
            refresh_jwt_token("r1", "https://uaa", "c", "s")

    @patch("sap_adt.core.refresh.requests.post")
    def test_transport_failure(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(TokenRefreshError):
            refresh_jwt_token("r1", "https://uaa", "c", "s")


class TestBearerAuth:

    def test_requires_token(self, jwt_config):
        jwt_config.jwt_token = None
        with pytest.raises(ConfigurationError, match="SAP_JWT_TOKEN"):
            create_connection(jwt_config)

    def test_rejects_basic_config(self, basic_config):
        with pytest.raises(ConfigurationError, match="jwt"):
            BearerAuth(basic_config)

    def test_header_and_no_client_requirement(self, fake_adt, jwt_config, make_response):
        jwt_config.client = None
        fake_adt.responses = [make_response(200)]
        sess = create_connection(jwt_config)

        sess.get(OBJECT_URL)

        call = fake_adt.calls[0]
        assert call.headers["Authorization"] == "Bearer old-token"
        assert "X-SAP-Client" not in call.headers

    def test_csrf_invalid_never_reported_for_bearer(self, jwt_config):
        auth = BearerAuth(jwt_config)
        err = AdtUpstreamError(403, "CSRF token validation failed", OBJECT_URL)
        assert classify_failure(err, "POST", True, auth) is FailureKind.UNAUTHORIZED
        denied = AdtUpstreamError(403, "<exc>No authorization for object</exc>", OBJECT_URL)
        assert classify_failure(denied, "GET", True, auth) is FailureKind.PERMISSION_DENIED


class TestRefreshOnRequest:

    @patch("sap_adt.core.refresh.requests.post")
    def test_permission_denied_is_not_refreshed(self, mock_post, fake_adt, jwt_config, make_response):
        fake_adt.handler = lambda call: make_response(403, "User DEVELOPER: No authorization for S_DEVELOP")
        sess = create_connection(jwt_config)

        with pytest.raises(PermissionDeniedError) as exc_info:
            sess.get(OBJECT_URL)

        assert not isinstance(exc_info.value, CredentialsExpiredError)
        assert "lacks authorization" in str(exc_info.value)
        mock_post.assert_not_called()
        assert len(fake_adt.calls) == 1
        assert jwt_config.jwt_token == "old-token"

    @patch("sap_adt.core.refresh.requests.post")
    def test_expired_mutation_is_replayed_with_fresh_session(self, mock_post, fake_adt, jwt_config, make_response):
        mock_post.return_value = token_response("new-token", "refresh-2")

        def handler(call):
            if bearer_of(call) == "old-token":
                return make_response(401, "expired", set_cookies=["SAP_SESSIONID=old"])
            if call.url == DISCOVERY_URL:
                return make_response(200, headers={"x-csrf-token": "csrf-new"}, set_cookies=["SAP_SESSIONID=new"])
            return make_response(201, "created")

        fake_adt.handler = handler
        sess = create_connection(jwt_config)
        sess.state.csrf_token = "csrf-old"

        r = sess.post(OBJECT_URL, data="x")

        assert r.status_code == 201
        mock_post.assert_called_once()
        assert mock_post.call_args.args[0] == TOKEN_URL
        assert jwt_config.jwt_token == "new-token"
        assert jwt_config.refresh_token == "refresh-2"

        replay = fake_adt.calls[-1]
        assert replay.method == "POST"
        assert bearer_of(replay) == "new-token"
        assert replay.headers["x-csrf-token"] == "csrf-new"
        assert replay.headers["Cookie"] == "SAP_SESSIONID=new"
        assert sess.cookies == "SAP_SESSIONID=new"

    @patch("sap_adt.core.refresh.requests.post")
    def test_second_rejection_is_terminal(self, mock_post, fake_adt, jwt_config, make_response):
        mock_post.return_value = token_response("new-token")
        fake_adt.handler = lambda call: make_response(401, "expired")
        sess = create_connection(jwt_config)

        with pytest.raises(CredentialsExpiredError, match="re-authenticate"):
            sess.get(OBJECT_URL)

        mock_post.assert_called_once()
        assert len(fake_adt.calls) == 2

    @patch("sap_adt.core.refresh.requests.post")
    def test_refresh_failure_is_terminal(self, mock_post, fake_adt, jwt_config, make_response):
        mock_post.return_value = build_response(400, '{"error":"invalid_grant"}')
        fake_adt.handler = lambda call: make_response(401, "expired")
        sess = create_connection(jwt_config)

        with pytest.raises(CredentialsExpiredError) as exc_info:
            sess.get(OBJECT_URL)

        assert "refresh failed" in str(exc_info.value)
        assert exc_info.value.status == 401
        assert len(fake_adt.calls) == 1

    def test_without_refresh_credentials(self, fake_adt, jwt_config, make_response):
        jwt_config.refresh_token = None
        fake_adt.handler = lambda call: make_response(401, "expired")
        sess = create_connection(jwt_config)

        with pytest.raises(CredentialsExpiredError, match="JWT token has expired"):
            sess.get(OBJECT_URL)
        assert len(fake_adt.calls) == 1

    def test_other_errors_pass_through(self, fake_adt, jwt_config, make_response):
        fake_adt.handler = lambda call: make_response(500, "dump")
        sess = create_connection(jwt_config)

        with pytest.raises(AdtUpstreamError) as exc_info:
            sess.get(OBJECT_URL)
        assert exc_info.value.status == 500

    def test_configured_permission_markers_are_honoured(self, fake_adt, jwt_config, make_response):
        jwt_config.permission_denied_markers = ("missing role ZADT_DEVELOPER",)
        fake_adt.handler = lambda call: make_response(403, "Missing role ZADT_DEVELOPER")
        sess = create_connection(jwt_config)

        with pytest.raises(PermissionDeniedError):
            sess.get(OBJECT_URL)
        assert len(fake_adt.calls) == 1

    @patch("sap_adt.core.refresh.requests.post")
    def test_permission_denied_after_refresh(self, mock_post, fake_adt, jwt_config, make_response):
        mock_post.return_value = token_response("new-token")

        def handler(call):
            if bearer_of(call) == "old-token":
                return make_response(401, "expired")
            return make_response(403, "No authorization for object ZCL_DEMO")

        fake_adt.handler = handler
        sess = create_connection(jwt_config)

        with pytest.raises(PermissionDeniedError) as exc_info:
            sess.get(OBJECT_URL)

        assert not isinstance(exc_info.value, CredentialsExpiredError)
        mock_post.assert_called_once()
        assert len(fake_adt.calls) == 2

    @patch("sap_adt.core.refresh.requests.post")
    def test_connect_refreshes_once(self, mock_post, fake_adt, jwt_config, make_response):
        mock_post.return_value = token_response("new-token")

        def handler(call):
            if bearer_of(call) == "old-token":
                return make_response(401, "expired")
            return make_response(200, headers={"x-csrf-token": "tok"})

        fake_adt.handler = handler
        sess = create_connection(jwt_config)

        sess.connect()

        assert sess.is_connected
        assert sess.csrf_token == "tok"
        mock_post.assert_called_once()

    def test_connect_propagates_permission_denied(self, fake_adt, jwt_config, make_response):
        fake_adt.handler = lambda call: make_response(403, "ExceptionResourceNoAccess")
        sess = create_connection(jwt_config)

        with pytest.raises(PermissionDeniedError):
            sess.connect()
        assert not sess.is_connected

    @patch("sap_adt.core.refresh.requests.post")
    def test_fetch_csrf_token_refreshes(self, mock_post, fake_adt, jwt_config, make_response):
        mock_post.return_value = token_response("new-token")

        def handler(call):
            if bearer_of(call) == "old-token":
                return make_response(403, "")
            return make_response(200, headers={"x-csrf-token": "tok"})

        fake_adt.handler = handler
        sess = create_connection(jwt_config)

        assert sess.fetch_csrf_token() == "tok"
        mock_post.assert_called_once()


class TestRefreshDeduplication:

    @patch("sap_adt.core.refresh.requests.post")
    def test_concurrent_401s_refresh_once(self, mock_post, fake_adt, jwt_config, make_response):
        mock_post.return_value = token_response("new-token")
        both_sent = threading.Barrier(2, timeout=5)

        def handler(call):
            if bearer_of(call) == "old-token":
                both_sent.wait()
                return make_response(401, "expired")
            return make_response(200, "ok")

        fake_adt.handler = handler
        sess = create_connection(jwt_config)
        results, errors = [], []

        def worker():
            try:
                results.append(sess.get(OBJECT_URL).text)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
        assert results == ["ok", "ok"]
        mock_post.assert_called_once()
        retried = [c for c in fake_adt.calls if bearer_of(c) == "new-token"]
        assert len(retried) == 2

    def test_waiters_share_the_in_flight_result(self, jwt_config):
        started = threading.Event()
        release = threading.Event()

        class SlowRefresher:
            calls = 0

            def get_token(self):
                return jwt_config.jwt_token

            def refresh_token(self):
                SlowRefresher.calls += 1
                started.set()
                release.wait(timeout=5)
                return "fresh"

        coordinator = TokenRefreshCoordinator(jwt_config, SessionState(), SlowRefresher())
        results = []
        owner = threading.Thread(target=lambda: results.append(coordinator.refresh("old-token")))
        owner.start()
        started.wait(timeout=5)
        assert coordinator.in_progress

        waiter = threading.Thread(target=lambda: results.append(coordinator.refresh("old-token")))
        waiter.start()
        release.set()
        owner.join(timeout=5)
        waiter.join(timeout=5)

        assert results == ["fresh", "fresh"]
        assert SlowRefresher.calls == 1
        assert not coordinator.in_progress

    def test_stale_caller_skips_refresh(self, jwt_config):
        refresher = Mock()
        refresher.get_token.return_value = "already-new"
        coordinator = TokenRefreshCoordinator(jwt_config, SessionState(), refresher)

        assert coordinator.refresh(stale_token="old-token") == "already-new"
        refresher.refresh_token.assert_not_called()

    def test_failure_clears_in_flight_marker(self, jwt_config):
        refresher = Mock()
        refresher.get_token.return_value = "old-token"
        refresher.refresh_token.side_effect = RuntimeError("broker down")
        coordinator = TokenRefreshCoordinator(jwt_config, SessionState(), refresher)

        with pytest.raises(TokenRefreshError, match="broker down"):
            coordinator.refresh("old-token")
        assert not coordinator.in_progress

    def test_refresh_clears_session_state(self, jwt_config, make_response):
        state = SessionState()
        state.csrf_token = "csrf"
        state.ingest_response(make_response(set_cookies=["a=1"]))
        refresher = Mock()
        refresher.get_token.return_value = "old-token"
        refresher.refresh_token.return_value = "fresh"

        TokenRefreshCoordinator(jwt_config, state, refresher).refresh("old-token")

        assert state.snapshot() is None
        assert jwt_config.jwt_token == "fresh"


class TestDelegatedRefresher:

    def test_request_uses_refresher_token(self, fake_adt, jwt_config, make_response):
        tokens = {"current": "broker-1"}
        refresher = Mock()
        refresher.get_token.side_effect = lambda: tokens["current"]

        def refresh():
            tokens["current"] = "broker-2"
            return "broker-2"

        refresher.refresh_token.side_effect = refresh

        def handler(call):
            if bearer_of(call) == "broker-1":
                return make_response(401, "expired")
            return make_response(200, "ok")

        fake_adt.handler = handler
        sess = create_connection(jwt_config, token_refresher=refresher)

        assert sess.get(OBJECT_URL).text == "ok"
        assert [bearer_of(c) for c in fake_adt.calls] == ["broker-1", "broker-2"]
        refresher.refresh_token.assert_called_once()
