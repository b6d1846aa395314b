"""fcissues - Freedcamp issue tracker client with a fetch-and-cache layer.

High-level public API:

from fcissues import FreedcampAuth, IssuesClient

auth = FreedcampAuth().init()          # FREEDCAMP_SECRET / _APIKEY / _PROJECT from env or .env
issues = IssuesClient(auth)            # inherits auth.cache
everything = issues.fetch_all()        # paginated, memoized for 30 minutes
one = issues.get('ABC-1234', comments=True)

The CLI (``fcissues`` / ``python -m fcissues``) delegates to this library.
"""

from __future__ import annotations

__version__ = "0.3.0"

from .auth import FreedcampAuth, RequestDescriptor  # noqa: E402
from .cache import FileCache, MemoryCache, WorkerOptions, create_cache  # noqa: E402
from .config import ClientSettings, load_config  # noqa: E402
from .errors import (  # noqa: E402
    AmbiguousResultError,
    ConfigError,
    FreedcampError,
    NotFoundError,
    TransportError,
)
from .issues import FetchAllOptions, GetOptions, IssuesClient  # noqa: E402
from .models import Comment, Issue  # noqa: E402

__all__ = [
    "AmbiguousResultError",
    "ClientSettings",
    "Comment",
    "ConfigError",
    "FetchAllOptions",
    "FileCache",
    "FreedcampAuth",
    "FreedcampError",
    "GetOptions",
    "Issue",
    "IssuesClient",
    "MemoryCache",
    "NotFoundError",
    "RequestDescriptor",
    "TransportError",
    "WorkerOptions",
    "create_cache",
    "load_config",
    "__version__",
]
