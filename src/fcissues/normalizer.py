"""Raw Freedcamp records -> canonical ``Issue`` / ``Comment``.

``normalize_issue`` and ``normalize_comment`` are pure. ``IssueNormalizer``
adds the cache side effects: every normalized issue refreshes its header
entry and both linkage entries. No network I/O happens here.
"""

from __future__ import annotations

from typing import Any

from .cache import Cache, Expiry
from .models import Comment, Issue


def issue_key(ref: str) -> str:
    return f"issues/{ref}"


def linkage_by_ref_key(ref: str) -> str:
    return f"linkages/byRef/issues/{ref}"


def linkage_by_id_key(issue_id: str) -> str:
    return f"linkages/byId/issues/{issue_id}"


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _epoch_ms(value: Any) -> int:
    try:
        return int(float(value) * 1000)
    except (TypeError, ValueError):
        return 0


def normalize_comment(raw: dict[str, Any], *, verbose: bool = False) -> Comment:
    created = _epoch_ms(raw.get("created_ts"))
    edited = None
    if raw.get("updated_ts") is not None:
        updated = _epoch_ms(raw["updated_ts"])
        if updated != created:
            edited = updated
    return Comment(
        id=_text(raw.get("id")),
        user=_text(raw.get("user_full_name")),
        url=_text(raw.get("url")),
        html=_text(raw.get("description")),
        created=created,
        edited=edited,
        raw=raw if verbose else None,
    )


def normalize_issue(raw: dict[str, Any], *, verbose: bool = False) -> Issue:
    raw_comments = raw.get("comments")
    comments = None
    if isinstance(raw_comments, list):
        comments = [
            normalize_comment(c, verbose=verbose) for c in raw_comments if isinstance(c, dict)
        ]
    project = raw.get("project_id")
    return Issue(
        id=_text(raw.get("id")),
        ref=_text(raw.get("number_prefixed")),
        title=_text(raw.get("title")),
        assignee=_text(raw.get("assigned_to_fullname")),
        status=_text(raw.get("status_title")),
        priority=_text(raw.get("priority_title")),
        url=_text(raw.get("url")),
        html=_text(raw.get("description")),
        project=_text(project) if project is not None else None,
        raw=raw if verbose else None,
        comments=comments,
    )


class IssueNormalizer:
    def __init__(
        self,
        cache: Cache,
        *,
        verbose: bool = False,
        issue_expiry: Expiry = "30m",
        linkage_expiry: Expiry = None,
    ) -> None:
        self.cache = cache
        self.verbose = verbose
        self.issue_expiry = issue_expiry
        self.linkage_expiry = linkage_expiry

    def normalize(self, raw: dict[str, Any]) -> Issue:
        issue = normalize_issue(raw, verbose=self.verbose)
        with self.cache.batch():
            self.cache.set(issue_key(issue.ref), issue.to_dict(), self.issue_expiry)
            self.cache.set(linkage_by_ref_key(issue.ref), issue.id, self.linkage_expiry)
            self.cache.set(linkage_by_id_key(issue.id), issue.ref, self.linkage_expiry)
        return issue


__all__ = [
    "IssueNormalizer",
    "issue_key",
    "linkage_by_id_key",
    "linkage_by_ref_key",
    "normalize_comment",
    "normalize_issue",
]
