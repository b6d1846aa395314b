"""Retry / backoff policy for the HTTP transport.

Provides ``run_with_retries`` which wraps a thunk performing one HTTP
request. Connection failures, timeouts and transient HTTP statuses
(429 / 502 / 503 / 504) are retried with exponential backoff and jitter;
an explicit ``Retry-After`` header wins over the computed backoff.

Environment overrides:
  FCISSUES_RETRY_ATTEMPTS (default 3)
  FCISSUES_RETRY_BASE (seconds base, default 0.5)
  FCISSUES_RETRY_MAX_SLEEP (cap in seconds, unset = no cap)

This policy belongs to the transport only: the pagination engine and the
resolver never retry on their own.
"""

from __future__ import annotations

import os
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import requests

from .logging import get_logger

TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})

_JITTER = random.SystemRandom()


def _env_int(name: str, default: str) -> int:
    return int(os.environ.get(name, default))


def _env_float(name: str, default: str) -> float:
    return float(os.environ.get(name, default))


@dataclass
class RetryConfig:
    attempts: int = field(default_factory=lambda: _env_int("FCISSUES_RETRY_ATTEMPTS", "3"))
    base_sleep: float = field(default_factory=lambda: _env_float("FCISSUES_RETRY_BASE", "0.5"))


def is_transient(response: requests.Response) -> bool:
    return response.status_code in TRANSIENT_STATUSES


def _retry_after(response: requests.Response | None) -> float | None:
    if response is None:
        return None
    value = response.headers.get("Retry-After") if response.headers else None
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds > 0 else None


def _compute_sleep(attempt: int, cfg: RetryConfig, response: requests.Response | None) -> float:
    explicit = _retry_after(response)
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = explicit if explicit is not None else backoff
    max_cap_env = os.environ.get("FCISSUES_RETRY_MAX_SLEEP")
    if max_cap_env:
        try:
            cap = float(max_cap_env)
            if cap >= 0:
                sleep_for = min(sleep_for, cap)
        except ValueError:  # pragma: no cover
            return sleep_for
    return sleep_for


def run_with_retries(
    fn: Callable[[], requests.Response], *, cfg: RetryConfig | None = None
) -> requests.Response:
    """Run ``fn`` until it yields a non-transient response or attempts run out.

    The final transient response (or the last network exception) is handed
    back to the caller unchanged so status handling stays in one place.
    """
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    logger = get_logger()
    for attempt in range(1, attempts + 1):
        try:
            response = fn()
        except (requests.ConnectionError, requests.Timeout) as exc:
            if attempt >= attempts:
                raise
            sleep_for = _compute_sleep(attempt, cfg, None)
            logger.warning(
                f"[retry] network error, attempt {attempt}/{attempts}, sleeping {sleep_for:.2f}s",
                error=str(exc),
            )
            time.sleep(sleep_for)
            continue
        if attempt >= attempts or not is_transient(response):
            return response
        sleep_for = _compute_sleep(attempt, cfg, response)
        logger.warning(
            f"[retry] HTTP {response.status_code}, attempt {attempt}/{attempts}, "
            f"sleeping {sleep_for:.2f}s"
        )
        time.sleep(sleep_for)
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "TRANSIENT_STATUSES", "is_transient", "run_with_retries"]
