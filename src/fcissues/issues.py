"""Freedcamp issues: paginated fetch-and-cache plus lookup by reference.

``IssuesClient.fetch_all`` walks ``/issues`` page by page inside the cache's
single-flight worker, normalizing every record (which also refreshes the
issue header and both linkage entries). ``IssuesClient.get`` resolves one
issue by its human-readable reference, trying in order:

1. the cached issue header (``issues/<ref>``),
2. a direct ``/issues/<id>`` request when the ``ref -> id`` linkage is known,
3. a reference search (or, with ``fallback="scan"``, a full ``fetch_all``),

and finally attaches comments with one more direct request when asked to and
the resolved issue does not already carry them.

Transport failures abort the operation as a unit: ``fetch_all`` never
returns a partial listing and a failed run is never memoized.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from .auth import FreedcampAuth, RequestDescriptor
from .cache import Cache, Expiry, WorkerOptions
from .config import ClientSettings
from .errors import AmbiguousResultError, ConfigError, NotFoundError
from .logging import get_logger
from .models import Issue
from .normalizer import IssueNormalizer, issue_key, linkage_by_ref_key
from .transport import HttpTransport, Page, Transport

FETCH_ALL_WORKER_ID = "workers/issues/fetchAll"
DEFAULT_LIMIT = 100
FALLBACKS = ("search", "scan")

_O = TypeVar("_O")


def _noop(*_: Any) -> None:
    return None


@dataclass
class FetchAllOptions:
    force: bool = False
    # -1 computes offsets from the page index; >= 0 fetches exactly one page there
    offset: int = -1
    limit: int = DEFAULT_LIMIT
    global_scope: bool = False
    on_fetch_page: Callable[[int], Any] | None = None
    on_request: Callable[[RequestDescriptor], Any] | None = None
    on_progress: Callable[[int], Any] | None = None

    def validate(self) -> FetchAllOptions:
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise ConfigError(f"limit must be a positive integer, got {self.limit!r}")
        if isinstance(self.offset, bool) or not isinstance(self.offset, int) or self.offset < -1:
            raise ConfigError(f"offset must be -1 or a non-negative integer, got {self.offset!r}")
        for name in ("on_fetch_page", "on_request", "on_progress"):
            callback = getattr(self, name)
            if callback is not None and not callable(callback):
                raise ConfigError(f"{name} must be callable")
        return self

    @property
    def worker_id(self) -> str:
        """Memo key; non-default walks never share the full-collection memo."""
        qualifiers = []
        if self.offset > -1:
            qualifiers.append(f"offset={self.offset}")
        if self.limit != DEFAULT_LIMIT:
            qualifiers.append(f"limit={self.limit}")
        if self.global_scope:
            qualifiers.append("scope=global")
        if not qualifiers:
            return FETCH_ALL_WORKER_ID
        return f"{FETCH_ALL_WORKER_ID}?{'&'.join(qualifiers)}"


@dataclass
class GetOptions:
    global_scope: bool = False
    comments: bool = False
    fallback: str = "search"

    def validate(self) -> GetOptions:
        if self.fallback not in FALLBACKS:
            raise ConfigError(f"fallback must be one of {FALLBACKS}, got {self.fallback!r}")
        return self


def _merge_options(options: _O | None, overrides: dict[str, Any], factory: type[_O]) -> _O:
    base = options if options is not None else factory()
    if not overrides:
        return base
    try:
        return dataclasses.replace(base, **overrides)  # type: ignore[type-var]
    except TypeError as exc:
        raise ConfigError(f"Invalid {factory.__name__} override: {exc}") from exc


class IssuesClient:
    """Issue listing and lookup on top of a ``FreedcampAuth``.

    The cache is taken from ``cache`` when given, otherwise inherited from
    ``auth``. ``verbose`` keeps the raw API payload on every record.
    """

    def __init__(
        self,
        auth: FreedcampAuth | None = None,
        *,
        cache: Cache | None = None,
        transport: Transport | None = None,
        settings: ClientSettings | None = None,
        verbose: bool | None = None,
    ) -> None:
        self.auth = auth
        self.settings = settings or (auth.settings if auth is not None else ClientSettings())
        resolved_cache = cache if cache is not None else (auth.cache if auth is not None else None)
        if resolved_cache is None:
            raise ConfigError("IssuesClient needs a cache (pass cache= or an initialised auth)")
        self.cache: Cache = resolved_cache
        self.transport: Transport = transport or HttpTransport(timeout=self.settings.timeout)
        self.verbose = self.settings.verbose if verbose is None else verbose
        self.issue_expiry: Expiry = self.settings.issue_expiry
        self.fetch_expiry: Expiry = self.settings.fetch_expiry
        self.normalizer = IssueNormalizer(
            self.cache,
            verbose=self.verbose,
            issue_expiry=self.settings.issue_expiry,
            linkage_expiry=self.settings.linkage_expiry,
        )
        self.logger = get_logger()

    def _require_auth(self) -> FreedcampAuth:
        if self.auth is None:
            raise ConfigError("Auth not set up")
        return self.auth

    @staticmethod
    def _scope(global_scope: bool) -> str:
        return "global" if global_scope else "project"

    # ---- Pagination engine --------------------------------------------
    def fetch_all(self, options: FetchAllOptions | None = None, **overrides: Any) -> list[Issue]:
        """Fetch every issue, memoized for ``fetch_expiry`` unless ``force``."""
        opts = _merge_options(options, overrides, FetchAllOptions).validate()
        self._require_auth()
        records = self.cache.worker(
            WorkerOptions(id=opts.worker_id, expiry=self.fetch_expiry, enabled=not opts.force),
            lambda: [issue.to_dict() for issue in self._walk(opts)],
        )
        return [Issue.from_dict(r) for r in records]

    def _walk(self, opts: FetchAllOptions) -> list[Issue]:
        auth = self._require_auth()
        on_fetch_page = opts.on_fetch_page or _noop
        on_request = opts.on_request or _noop
        on_progress = opts.on_progress or _noop
        explicit_offset = opts.offset > -1
        # Keyed by remote id so a record seen twice (shifting offsets) is kept once
        collected: dict[str, Issue] = {}
        page = 0

        with self.logger.timed_operation("fetch_all", limit=opts.limit, offset=opts.offset):
            while True:
                on_fetch_page(page)
                offset = opts.offset if explicit_offset else opts.limit * page
                request = auth.build_request(
                    "GET",
                    "/issues",
                    params={"limit": opts.limit, "offset": offset},
                    scope=self._scope(opts.global_scope),
                )
                on_request(request)
                self.logger.debug("Fetch page", page=page, offset=offset)
                result = self.transport.dispatch(request)
                with self.cache.batch():
                    for raw in result.items:
                        issue = self.normalizer.normalize(raw)
                        collected[issue.id] = issue
                on_progress(len(collected))
                self.logger.debug(f"Loaded {len(collected)} issues so far", page=page)

                if explicit_offset:
                    self.logger.debug(
                        f"Stopping after one page due to explicit offset {opts.offset}"
                    )
                    break
                if not result.has_more:
                    break
                page += 1

        self.logger.info(f"Found {len(collected)} issues", pages=page + 1)
        return list(collected.values())

    # ---- Lookup by reference ------------------------------------------
    def get(self, ref: str, options: GetOptions | None = None, **overrides: Any) -> Issue:
        """Resolve one issue by reference (e.g. ``ABC-1234``)."""
        opts = _merge_options(options, overrides, GetOptions).validate()
        ref = (ref or "").strip()
        if not ref:
            raise ConfigError("An issue reference is required")
        self._require_auth()

        data = self.cache.worker(
            WorkerOptions(id=issue_key(ref), expiry=self.issue_expiry),
            lambda: self._resolve(ref, opts).to_dict(),
        )
        issue = Issue.from_dict(data)

        if not opts.comments:
            issue.comments = None
        elif issue.comments is None:
            self.logger.debug("Fetching comments", ref=ref, issue_id=issue.id)
            enriched = self._fetch_by_id(issue.id, ref, opts)
            if enriched.comments is None:
                # Remember that this issue has no comments so we do not ask again
                enriched.comments = []
                self.cache.set(issue_key(enriched.ref), enriched.to_dict(), self.issue_expiry)
            issue = enriched
        return issue

    def _resolve(self, ref: str, opts: GetOptions) -> Issue:
        linked_id = self.cache.get(linkage_by_ref_key(ref))
        if linked_id is not None:
            self.logger.debug("Issue not cached, using linkage", ref=ref, issue_id=linked_id)
            return self._fetch_by_id(str(linked_id), ref, opts)

        self.logger.debug(
            f"Issue {ref!r} not cached and no linkage, falling back to {opts.fallback}"
        )
        if opts.fallback == "scan":
            matches = [i for i in self.fetch_all(global_scope=opts.global_scope) if i.ref == ref]
            return self._single(ref, matches)

        return self._search(ref, opts)

    def _search(self, ref: str, opts: GetOptions) -> Issue:
        """Page through ``substring`` results and keep exact reference matches.

        A short reference is a substring of many longer ones, so the exact
        record can sit on any page; every page is read before deciding.
        """
        auth = self._require_auth()
        matches: dict[str, dict[str, Any]] = {}
        page = 0
        while True:
            request = auth.build_request(
                "GET",
                "/issues",
                params={"substring": ref, "limit": DEFAULT_LIMIT, "offset": DEFAULT_LIMIT * page},
                scope=self._scope(opts.global_scope),
            )
            result = self.transport.dispatch(request)
            for raw in result.items:
                if str(raw.get("number_prefixed")) == ref:
                    matches[str(raw.get("id"))] = raw
            if not result.has_more:
                break
            page += 1
        self.logger.debug("Search finished", ref=ref, pages=page + 1, matches=len(matches))
        candidates = list(matches.values())
        self._single(ref, candidates)
        return self.normalizer.normalize(candidates[0])

    def _fetch_by_id(self, issue_id: str, ref: str, opts: GetOptions) -> Issue:
        request = self._require_auth().build_request(
            "GET", f"/issues/{issue_id}", scope=self._scope(opts.global_scope)
        )
        result: Page = self.transport.dispatch(request)
        candidates = result.items
        if len(candidates) > 1:
            candidates = [raw for raw in candidates if str(raw.get("id")) == issue_id]
        self._single(ref, candidates)
        return self.normalizer.normalize(candidates[0])

    @staticmethod
    def _single(ref: str, matches: list[_O]) -> _O:
        if not matches:
            raise NotFoundError(ref)
        if len(matches) > 1:
            raise AmbiguousResultError(ref, len(matches))
        return matches[0]


__all__ = [
    "FETCH_ALL_WORKER_ID",
    "FetchAllOptions",
    "GetOptions",
    "IssuesClient",
]
