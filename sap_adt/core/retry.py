"""
sap_adt.core.retry - Failure classification
============================================

Decides, per failed call, which recovery path (if any) the request
pipeline takes.
"""

from __future__ import annotations

import errno
import socket
from enum import Enum
from typing import TYPE_CHECKING

import requests

from sap_adt.core.errors import AdtNetworkError, AdtUpstreamError

if TYPE_CHECKING:
    from sap_adt.core.auth import AuthStrategy


MUTATING_METHODS = frozenset({"POST", "PUT", "DELETE"})

_NETWORK_ERRNOS = frozenset({
    errno.ECONNREFUSED,
    errno.ECONNRESET,
    errno.ECONNABORTED,
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.ETIMEDOUT,
    errno.EPIPE,
})


class FailureKind(str, Enum):
    NETWORK = "network"
    CSRF_INVALID = "csrf_invalid"
    UNAUTHORIZED = "unauthorized"
    PERMISSION_DENIED = "permission_denied"
    OTHER = "other"


def is_mutating(method: str) -> bool:
    return method.upper() in MUTATING_METHODS


def is_network_error(exc: BaseException) -> bool:
    """True for infrastructure failures: refused, timeout, DNS, reset, unreachable."""
    if isinstance(exc, AdtNetworkError):
        return True
    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    if isinstance(exc, (socket.gaierror, socket.timeout)):
        return True
    if isinstance(exc, OSError) and exc.errno in _NETWORK_ERRNOS:
        return True
    return False


def is_csrf_invalid(
    err: AdtUpstreamError, method: str, has_csrf_token: bool
) -> bool:
    body = err.body or ""
    if err.status == 403 and "CSRF" in body:
        return True
    if "CSRF token" in body:
        return True
    # a mutating call without a token may be answered with 401 instead of 403
    return err.status == 401 and is_mutating(method) and not has_csrf_token


def classify_failure(
    exc: BaseException,
    method: str,
    has_csrf_token: bool,
    auth: "AuthStrategy",
) -> FailureKind:
    """
    Classify a failed call.

    Network failures win over everything else. CSRF-invalid is never
    reported for strategies that recover from 401/403 themselves (bearer).
    """
    if is_network_error(exc):
        return FailureKind.NETWORK
    if not isinstance(exc, AdtUpstreamError):
        return FailureKind.OTHER
    if not auth.handles_auth_errors and is_csrf_invalid(exc, method, has_csrf_token):
        return FailureKind.CSRF_INVALID
    if exc.status in (401, 403):
        if auth.is_permission_denied(exc.body):
            return FailureKind.PERMISSION_DENIED
        return FailureKind.UNAUTHORIZED
    return FailureKind.OTHER
