from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Comment:
    """A single comment on an issue; timestamps are epoch milliseconds."""

    id: str
    user: str
    url: str
    html: str
    created: int
    edited: int | None = None
    raw: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "user": self.user,
            "url": self.url,
            "html": self.html,
            "created": self.created,
        }
        if self.edited is not None:
            data["edited"] = self.edited
        if self.raw is not None:
            data["raw"] = self.raw
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Comment:
        return cls(
            id=str(data["id"]),
            user=data.get("user", ""),
            url=data.get("url", ""),
            html=data.get("html", ""),
            created=int(data.get("created", 0)),
            edited=data.get("edited"),
            raw=data.get("raw"),
        )


@dataclass
class Issue:
    """Canonical issue record.

    ``raw`` is only populated when the owning client runs verbose and
    ``comments`` only when a caller asked for them; both are omitted from
    ``to_dict`` when absent so cached payloads never carry explicit nulls.
    """

    id: str
    ref: str
    title: str
    assignee: str
    status: str
    priority: str
    url: str
    html: str
    project: str | None = None
    raw: dict[str, Any] | None = None
    comments: list[Comment] | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "ref": self.ref,
            "title": self.title,
            "assignee": self.assignee,
            "status": self.status,
            "priority": self.priority,
            "url": self.url,
            "html": self.html,
        }
        if self.project is not None:
            data["project"] = self.project
        if self.raw is not None:
            data["raw"] = self.raw
        if self.comments is not None:
            data["comments"] = [c.to_dict() for c in self.comments]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Issue:
        comments = data.get("comments")
        return cls(
            id=str(data["id"]),
            ref=str(data["ref"]),
            title=data.get("title", ""),
            assignee=data.get("assignee", ""),
            status=data.get("status", ""),
            priority=data.get("priority", ""),
            url=data.get("url", ""),
            html=data.get("html", ""),
            project=data.get("project"),
            raw=data.get("raw"),
            comments=[Comment.from_dict(c) for c in comments] if comments is not None else None,
        )


__all__ = ["Comment", "Issue"]
