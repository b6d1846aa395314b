from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from . import __version__
from .auth import RequestDescriptor
from .errors import TransportError, redact
from .retry import RetryConfig, run_with_retries

USER_AGENT = f"fcissues/{__version__}"
HTTP_ERROR_STATUS = 400


@dataclass
class Page:
    """One response from a collection (or single-item) endpoint."""

    items: list[dict[str, Any]]
    has_more: bool = False


class Transport(Protocol):
    def dispatch(self, request: RequestDescriptor) -> Page: ...


@dataclass
class HttpTransport:
    """Dispatches request descriptors over a ``requests.Session``.

    Freedcamp wraps every payload as ``{"data": {"issues": [...],
    "meta": {"has_more": bool}}}``; single-item endpoints use the same
    envelope with one entry in ``issues``.
    """

    timeout: float = 30.0
    retry: RetryConfig | None = None
    session: requests.Session | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Accept", "application/json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    def dispatch(self, request: RequestDescriptor) -> Page:
        url = request.full_url

        def _run() -> requests.Response:
            return self._session.request(
                request.method,
                url,
                params=request.params,
                timeout=self.timeout,
            )

        try:
            response = run_with_retries(_run, cfg=self.retry)
        except requests.RequestException as exc:
            raise TransportError(
                redact(f"Freedcamp {request.method} {url} failed: {exc}")
            ) from exc
        if response.status_code >= HTTP_ERROR_STATUS:
            raise TransportError(
                f"Freedcamp {request.method} {url} failed with {response.status_code}",
                status=response.status_code,
                response_text=redact(response.text),
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise TransportError(
                f"Freedcamp {request.method} {url} returned a non-JSON body",
                status=response.status_code,
                response_text=redact(response.text),
            ) from exc
        return parse_envelope(body, url=url)

    def close(self) -> None:
        self._session.close()


def parse_envelope(body: Any, *, url: str = "") -> Page:
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict):
        raise TransportError(f"Unexpected Freedcamp response shape from {url}: missing 'data'")
    issues = data.get("issues")
    if issues is None:
        issues = []
    elif isinstance(issues, dict):
        # Some single-item responses key issues by id
        issues = list(issues.values())
    if not isinstance(issues, list):
        raise TransportError(f"Unexpected Freedcamp response shape from {url}: 'issues'")
    meta = data.get("meta") if isinstance(data.get("meta"), dict) else {}
    return Page(
        items=[item for item in issues if isinstance(item, dict)],
        has_more=bool(meta.get("has_more", False)),
    )


__all__ = ["HttpTransport", "Page", "Transport", "USER_AGENT", "parse_envelope"]
