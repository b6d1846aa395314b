"""Environment-based credentials for fcissues.

Credentials are resolved in order: explicit arguments, then environment
variables, after optionally loading a ``.env`` file with python-dotenv
(existing environment variables are never overridden by the file).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigError, mask_key
from .logging import get_logger


@dataclass
class EnvAuthConfig:
    """Configuration for environment-based authentication."""

    load_dotenv: bool = True
    dotenv_path: str | None = None
    secret_var: str = "FREEDCAMP_SECRET"
    apikey_var: str = "FREEDCAMP_APIKEY"
    project_var: str = "FREEDCAMP_PROJECT"
    cache_method_var: str = "FREEDCAMP_CACHE_METHOD"


@dataclass
class Credentials:
    secret: str
    apikey: str
    project: str | None
    cache_method: str | None

    def __repr__(self) -> str:
        return (
            f"Credentials(secret='***', apikey={mask_key(self.apikey)!r}, "
            f"project={self.project!r}, cache_method={self.cache_method!r})"
        )


class EnvironmentAuthManager:
    """Resolves Freedcamp credentials from arguments, environment and .env files."""

    def __init__(self, config: EnvAuthConfig):
        self.config = config
        self.logger = get_logger()
        self._dotenv_loaded = False

        if config.load_dotenv:
            self._load_dotenv()

    def _load_dotenv(self) -> None:
        """Load .env file if available."""
        dotenv_path = self.config.dotenv_path or ".env"
        env_file = Path(dotenv_path)
        if env_file.exists():
            load_dotenv(str(env_file))
            self._dotenv_loaded = True
            self.logger.debug(f"Loaded environment variables from {env_file}")
            return
        for location in [".env.local", ".venv/.env"]:
            env_path = Path(location)
            if env_path.exists():
                load_dotenv(str(env_path))
                self._dotenv_loaded = True
                self.logger.debug(f"Loaded environment variables from {env_path}")
                break

    @property
    def dotenv_loaded(self) -> bool:
        return self._dotenv_loaded

    def _lookup(self, var: str) -> str | None:
        value = os.getenv(var)
        return value if value else None

    def get_secret(self) -> str | None:
        return self._lookup(self.config.secret_var)

    def get_api_key(self) -> str | None:
        return self._lookup(self.config.apikey_var)

    def get_project(self) -> str | None:
        return self._lookup(self.config.project_var)

    def get_cache_method(self) -> str | None:
        return self._lookup(self.config.cache_method_var)

    def resolve(
        self,
        secret: str | None = None,
        apikey: str | None = None,
        project: str | None = None,
        cache_method: str | None = None,
    ) -> Credentials:
        """Merge explicit values over the environment; fail fast on missing keys."""
        creds = Credentials(
            secret=secret or self.get_secret() or "",
            apikey=apikey or self.get_api_key() or "",
            project=project or self.get_project(),
            cache_method=cache_method or self.get_cache_method(),
        )
        missing = [
            var
            for var, value in (
                (self.config.secret_var, creds.secret),
                (self.config.apikey_var, creds.apikey),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing required Freedcamp credentials: {', '.join(missing)}")
        self.logger.debug("Resolved credentials", apikey=mask_key(creds.apikey))
        return creds

    def get_authentication_recommendations(self) -> list[str]:
        """Get setup recommendations for whatever is still missing."""
        recommendations: list[str] = []
        if not self.get_secret():
            recommendations.append(f"Set {self.config.secret_var} to your Freedcamp API secret")
        if not self.get_api_key():
            recommendations.append(f"Set {self.config.apikey_var} to your Freedcamp API key")
        if not self.get_project():
            recommendations.append(
                f"Set {self.config.project_var} to scope requests to one project "
                "(or use global lookups)"
            )
        if recommendations:
            recommendations.append("Or create .env file with these variables")
        return recommendations

    def create_sample_env_file(self, path: str = ".env") -> bool:
        """Create a sample .env file; returns False when one already exists."""
        sample_content = f"""# fcissues environment configuration

# Freedcamp API credentials (Account > Secure > API)
{self.config.secret_var}=your_secret_here
{self.config.apikey_var}=your_api_key_here

# Primary project id used when requests are project-scoped
{self.config.project_var}=1234567

# Optional: cache backend (filesystem | memory)
# {self.config.cache_method_var}=filesystem
"""
        env_path = Path(path)
        if env_path.exists():
            self.logger.debug(f"Environment file already exists: {env_path}")
            return False
        env_path.write_text(sample_content)
        self.logger.log_operation("sample_env_created", file_path=str(env_path))
        return True


def create_env_auth_manager(config: EnvAuthConfig | None = None) -> EnvironmentAuthManager:
    """Factory function to create environment authentication manager."""
    if config is None:
        config = EnvAuthConfig()
    return EnvironmentAuthManager(config)


__all__ = [
    "Credentials",
    "EnvAuthConfig",
    "EnvironmentAuthManager",
    "create_env_auth_manager",
]
