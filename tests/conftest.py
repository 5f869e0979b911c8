"""
Pytest configuration and shared fixtures.
"""

import json
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest
import requests
from requests.structures import CaseInsensitiveDict
from unittest.mock import patch
from urllib3._collections import HTTPHeaderDict

from sap_adt.core.config import AdtConfig, CsrfSettings


BASE_URL = "https://sap.example.com:44300"
DISCOVERY_URL = BASE_URL + "/sap/bc/adt/core/discovery"


def build_response(
    status: int = 200,
    body: Any = "",
    headers: Optional[Dict[str, str]] = None,
    set_cookies: Sequence[str] = (),
    url: str = BASE_URL,
) -> requests.Response:
    """Build a real requests.Response, including raw multi-value Set-Cookie lines."""
    if not isinstance(body, (str, bytes)):
        body = json.dumps(body)
    r = requests.Response()
    r.status_code = status
    r._content = body.encode("utf-8") if isinstance(body, str) else body
    r.encoding = "utf-8"
    r.headers = CaseInsensitiveDict(headers or {})
    raw_headers = HTTPHeaderDict()
    for cookie in set_cookies:
        raw_headers.add("Set-Cookie", cookie)
    r.raw = SimpleNamespace(headers=raw_headers)
    r.url = url
    return r


@pytest.fixture
def make_response():
    """Factory for canned SAP responses."""
    return build_response


class FakeAdt:
    """
    Stand-in for the SAP system behind ``requests.Session.request``.

    Either queue responses in ``responses`` or set ``handler`` to a callable
    receiving the recorded call. Exceptions are raised instead of returned.
    """

    def __init__(self) -> None:
        self.calls: List[SimpleNamespace] = []
        self.responses: List[Any] = []
        self.handler: Optional[Callable[[SimpleNamespace], Any]] = None

    def __call__(self, method, url, params=None, headers=None, data=None, timeout=None, verify=None):
        call = SimpleNamespace(
            method=method,
            url=url,
            params=params,
            headers=CaseInsensitiveDict(headers or {}),
            data=data,
            timeout=timeout,
        )
        self.calls.append(call)
        result = self.handler(call) if self.handler else self.responses.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result

    def calls_to(self, method: str) -> List[SimpleNamespace]:
        return [c for c in self.calls if c.method == method]


@pytest.fixture
def fake_adt():
    """Patch requests.Session in the session module and route requests to a FakeAdt."""
    fake = FakeAdt()
    with patch("sap_adt.core.session.requests.Session") as mock_session_class:
        mock_session_class.return_value.request.side_effect = fake
        yield fake


@pytest.fixture
def fast_csrf():
    """No waiting between CSRF attempts."""
    return CsrfSettings(retry_count=0, retry_delay=0, error_retry_count=1, error_retry_delay=0)


@pytest.fixture
def basic_config(fast_csrf):
    return AdtConfig(
        url=BASE_URL,
        auth_type="basic",
        client="100",
        username="DEVELOPER",
        password="secret",
        csrf=fast_csrf,
    )


@pytest.fixture
def jwt_config(fast_csrf):
    return AdtConfig(
        url=BASE_URL,
        auth_type="jwt",
        client="100",
        jwt_token="old-token",
        refresh_token="refresh-1",
        uaa_url="https://acme.authentication.eu10.hana.ondemand.com",
        uaa_client_id="sb-client",
        uaa_client_secret="client-secret",
        csrf=fast_csrf,
    )
