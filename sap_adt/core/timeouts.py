"""
sap_adt.core.timeouts - Request timeouts
=========================================

Environment overrides are given in milliseconds; values are returned in
seconds, as ``requests`` expects.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Union


@dataclass(frozen=True)
class TimeoutConfig:
    default: float = 45.0
    csrf: float = 15.0
    long: float = 60.0


def _millis(environ: Mapping[str, str], name: str, fallback_ms: int) -> float:
    raw = environ.get(name)
    try:
        return int(raw) / 1000.0 if raw else fallback_ms / 1000.0
    except ValueError:
        return fallback_ms / 1000.0


def get_timeout_config(environ: Optional[Mapping[str, str]] = None) -> TimeoutConfig:
    env = os.environ if environ is None else environ
    return TimeoutConfig(
        default=_millis(env, "SAP_TIMEOUT_DEFAULT", 45000),
        csrf=_millis(env, "SAP_TIMEOUT_CSRF", 15000),
        long=_millis(env, "SAP_TIMEOUT_LONG", 60000),
    )


def get_timeout(kind: Union[str, float, int] = "default") -> float:
    """
    Resolve a timeout in seconds.

    Parameters
    ----------
    kind : str or number
        "default", "csrf" or "long"; a number is returned unchanged
    """
    if isinstance(kind, (int, float)):
        return float(kind)
    cfg = get_timeout_config()
    values = {"default": cfg.default, "csrf": cfg.csrf, "long": cfg.long}
    if kind not in values:
        raise ValueError(f"Unknown timeout kind: {kind!r}")
    return values[kind]
