"""Pytest configuration for fcissues tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`), and provides an
in-process stand-in for the Freedcamp API so no test touches the network.
"""

from __future__ import annotations

import re
import sys
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from fcissues.auth import FreedcampAuth, RequestDescriptor  # noqa: E402
from fcissues.cache import MemoryCache  # noqa: E402
from fcissues.errors import TransportError  # noqa: E402
from fcissues.issues import IssuesClient  # noqa: E402
from fcissues.transport import Page  # noqa: E402

SECRET = "s3cr3t-value"
APIKEY = "abcd1234efgh5678"
PROJECT = "123"
FIXED_NOW = 1_700_000_000.123

_BY_ID = re.compile(r"^/?issues/(?P<id>[^/?]+)$")


def make_raw_issue(n: int, *, prefix: str = "ABC-", project: str = PROJECT) -> dict[str, Any]:
    issue_id = str(5000 + n)
    return {
        "id": issue_id,
        "number_prefixed": f"{prefix}{1000 + n}",
        "title": f"Issue {n}",
        "assigned_to_fullname": "Ada Lovelace",
        "status_title": "Open",
        "priority_title": "High",
        "url": f"https://freedcamp.com/view/{project}/issuetracker/{issue_id}",
        "description": f"<p>Body {n}</p>",
        "project_id": project,
    }


def make_raw_comments(issue_id: str) -> list[dict[str, Any]]:
    return [
        {
            "id": f"{issue_id}-c1",
            "user_full_name": "Grace Hopper",
            "url": f"https://freedcamp.com/comments/{issue_id}-c1",
            "description": "<p>First!</p>",
            "created_ts": 1_600_000_000,
            "updated_ts": 1_600_000_000,
        },
        {
            "id": f"{issue_id}-c2",
            "user_full_name": "Alan Turing",
            "url": f"https://freedcamp.com/comments/{issue_id}-c2",
            "description": "<p>Edited reply</p>",
            "created_ts": 1_600_000_100,
            "updated_ts": 1_600_000_500,
        },
    ]


class FakeFreedcamp:
    """Transport double that behaves like the /issues endpoints.

    * ``GET /issues`` honours ``limit`` / ``offset``; ``substring`` narrows the
      collection first and the hits are paged the same way.
    * ``GET /issues/<id>`` returns the single issue with its comments.
    * ``fail_on`` maps a 1-based call number to an exception to raise.
    """

    def __init__(self, issues: list[dict[str, Any]], *, delay: float = 0.0) -> None:
        self.issues = issues
        self.delay = delay
        self.requests: list[RequestDescriptor] = []
        self.fail_on: dict[int, Exception] = {}
        self.with_comments = True
        self._mu = threading.Lock()

    @property
    def urls(self) -> list[str]:
        return [r.url for r in self.requests]

    def dispatch(self, request: RequestDescriptor) -> Page:
        with self._mu:
            self.requests.append(request)
            call_no = len(self.requests)
        if self.delay:
            time.sleep(self.delay)
        if call_no in self.fail_on:
            raise self.fail_on[call_no]

        m = _BY_ID.match(request.url)
        if m:
            found = [dict(i) for i in self.issues if i["id"] == m.group("id")]
            if self.with_comments:
                for item in found:
                    item["comments"] = make_raw_comments(item["id"])
            return Page(items=found)

        params = request.params
        substring = params.get("substring")
        pool = self.issues
        if substring is not None:
            pool = [i for i in self.issues if substring in i["number_prefixed"]]
        limit = int(params.get("limit", 20))
        offset = int(params.get("offset", 0))
        chunk = pool[offset : offset + limit]
        return Page(items=[dict(i) for i in chunk], has_more=offset + limit < len(pool))


@pytest.fixture
def make_remote() -> Callable[..., FakeFreedcamp]:
    def _make(count: int = 250, **kwargs: Any) -> FakeFreedcamp:
        return FakeFreedcamp([make_raw_issue(n) for n in range(count)], **kwargs)

    return _make


@pytest.fixture
def remote(make_remote: Callable[..., FakeFreedcamp]) -> FakeFreedcamp:
    return make_remote()


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def auth(cache: MemoryCache) -> FreedcampAuth:
    return FreedcampAuth(SECRET, APIKEY, PROJECT, cache=cache, clock=lambda: FIXED_NOW)


@pytest.fixture
def client(auth: FreedcampAuth, remote: FakeFreedcamp) -> IssuesClient:
    return IssuesClient(auth, transport=remote)


@pytest.fixture
def transport_error() -> TransportError:
    return TransportError("Freedcamp GET /issues failed with 502", status=502)
