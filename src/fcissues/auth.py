"""Signed request construction for the Freedcamp API.

Freedcamp authenticates every request with query parameters rather than
headers: ``api_key``, a millisecond ``timestamp`` and ``hash``, the
HMAC-SHA1 hex digest of ``api_key + timestamp`` keyed by the account secret.
Requests are scoped to the primary project via ``project_id`` unless the
caller asks for global scope, in which case the API searches every project
the key can see.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .cache import Cache, create_cache
from .config import DEFAULT_BASE_URL, ClientSettings
from .env_auth import EnvAuthConfig, create_env_auth_manager
from .errors import ConfigError, mask_key
from .logging import get_logger

SCOPES = ("project", "global")


@dataclass
class RequestDescriptor:
    """Everything the transport needs to dispatch one request."""

    method: str = "GET"
    base_url: str = DEFAULT_BASE_URL
    url: str = ""
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def full_url(self) -> str:
        if self.url.startswith("http"):
            return self.url
        return f"{self.base_url.rstrip('/')}/{self.url.lstrip('/')}"


class FreedcampAuth:
    """Holds credentials and builds signed request descriptors.

    The auth object also owns the top-level cache; an ``IssuesClient``
    built from it inherits that cache unless handed its own.
    """

    def __init__(
        self,
        secret: str | None = None,
        apikey: str | None = None,
        project: str | None = None,
        *,
        settings: ClientSettings | None = None,
        cache: Cache | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or ClientSettings()
        self.secret = secret
        self.apikey = apikey
        self.project = str(project) if project is not None else None
        self.cache = cache
        self.clock = clock
        self.logger = get_logger()

    def init(
        self,
        secret: str | None = None,
        apikey: str | None = None,
        project: str | None = None,
        cache: str | Cache | None = None,
        *,
        env: EnvAuthConfig | None = None,
    ) -> FreedcampAuth:
        """Resolve credentials and set up the cache.

        Explicit arguments win over ``settings``, which win over the
        environment (and ``.env``). ``cache`` is either a backend selector
        (``memory`` / ``filesystem``) or a ready-made cache instance.
        """
        manager = create_env_auth_manager(env)
        creds = manager.resolve(
            secret=secret or self.secret or self.settings.secret,
            apikey=apikey or self.apikey or self.settings.apikey,
            project=project or self.project or self.settings.project,
            cache_method=cache if isinstance(cache, str) else None,
        )
        self.secret = creds.secret
        self.apikey = creds.apikey
        self.project = str(creds.project) if creds.project is not None else None

        if cache is not None and not isinstance(cache, str):
            self.cache = cache
        elif self.cache is None or isinstance(cache, str):
            self.cache = create_cache(
                creds.cache_method or self.settings.cache_method,
                namespace=self.settings.namespace,
                cache_dir=self.settings.cache_dir,
            )

        self.logger.log_operation(
            "auth_init",
            apikey=mask_key(self.apikey),
            project=self.project,
            cache=type(self.cache).__name__,
        )
        return self

    def sign(self, timestamp: int) -> str:
        if not self.secret or not self.apikey:
            raise ConfigError("Freedcamp secret and API key are required to sign requests")
        return hmac.new(
            self.secret.encode("utf-8"),
            f"{self.apikey}{timestamp}".encode(),
            hashlib.sha1,
        ).hexdigest()

    def build_request(
        self,
        method: str | None = None,
        url: str | None = None,
        params: dict[str, Any] | None = None,
        scope: str = "project",
    ) -> RequestDescriptor:
        """Return a request descriptor carrying fresh auth parameters.

        Caller ``params`` are merged last and therefore win, auth keys
        included when explicitly given.
        """
        if scope not in SCOPES:
            raise ConfigError(f"Unknown request scope {scope!r}; expected one of {SCOPES}")
        timestamp = int(self.clock() * 1000)
        auth_params: dict[str, Any] = {
            "api_key": self.apikey,
            "timestamp": timestamp,
            "hash": self.sign(timestamp),
        }
        if scope == "project":
            if not self.project:
                raise ConfigError(
                    "A primary project is required for project-scoped requests; "
                    "set FREEDCAMP_PROJECT or use global scope"
                )
            auth_params["project_id"] = self.project
        return RequestDescriptor(
            method=(method or "GET").upper(),
            base_url=self.settings.base_url,
            url=url or "",
            params={**auth_params, **(params or {})},
        )


__all__ = ["FreedcampAuth", "RequestDescriptor", "SCOPES"]
