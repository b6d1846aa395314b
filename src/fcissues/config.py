from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import yaml

from .cache import DEFAULT_NAMESPACE, Expiry, parse_expiry
from .errors import ConfigError

DEFAULT_BASE_URL = "https://freedcamp.com/api/v1"
CONFIG_DEFAULT = "fcissues.config.yaml"


@dataclass
class ClientSettings:
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 30.0
    # Cache configuration
    cache_method: str = "filesystem"
    cache_dir: str = ".fcissues_cache"
    namespace: str = DEFAULT_NAMESPACE
    issue_expiry: Expiry = "30m"
    fetch_expiry: Expiry = "30m"
    # Linkages are immutable for the lifetime of an issue
    linkage_expiry: Expiry = None
    # Keep the untransformed API payload on every record
    verbose: bool = False
    # Logging configuration
    logging_json_enabled: bool = False
    logging_level: str = "INFO"
    # Credentials, usually left to the environment
    secret: str | None = None
    apikey: str | None = None
    project: str | None = None

    def validate(self) -> ClientSettings:
        for name in ("issue_expiry", "fetch_expiry", "linkage_expiry"):
            parse_expiry(getattr(self, name))
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout!r}")
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigError(f"base_url must be an http(s) URL, got {self.base_url!r}")
        return self


def _resolve_env_var(value: Any) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith("$"):
        return os.getenv(value[1:]) or None
    return value


def _number(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc


def load_config(path: str | Path) -> ClientSettings:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Configuration file not found: {p}")
    try:
        raw = cast(dict[str, Any], yaml.safe_load(p.read_text()) or {})
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration root must be a mapping: {p}")
    fc = cast(dict[str, Any], raw.get("freedcamp", {}) or {})
    cache = cast(dict[str, Any], raw.get("cache", {}) or {})
    logging_config = cast(dict[str, Any], raw.get("logging", {}) or {})
    defaults = ClientSettings()

    settings = ClientSettings(
        base_url=fc.get("base_url", defaults.base_url),
        timeout=_number(fc.get("timeout", defaults.timeout), "freedcamp.timeout"),
        verbose=bool(fc.get("verbose", defaults.verbose)),
        secret=_resolve_env_var(fc.get("secret")),
        apikey=_resolve_env_var(fc.get("apikey")),
        project=_resolve_env_var(fc.get("project")),
        cache_method=cache.get("method", defaults.cache_method),
        cache_dir=str(cache.get("dir", defaults.cache_dir)),
        namespace=cache.get("namespace", defaults.namespace),
        issue_expiry=cache.get("issue_expiry", defaults.issue_expiry),
        fetch_expiry=cache.get("fetch_expiry", defaults.fetch_expiry),
        linkage_expiry=cache.get("linkage_expiry", defaults.linkage_expiry),
        logging_json_enabled=bool(logging_config.get("json_enabled", False)),
        logging_level=logging_config.get("level", "INFO"),
    )
    if settings.project is not None:
        settings.project = str(settings.project)
    return settings.validate()


__all__ = ["CONFIG_DEFAULT", "ClientSettings", "DEFAULT_BASE_URL", "load_config"]
