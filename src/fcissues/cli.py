"""fcissues CLI.

Subcommands:
  list         -> fetch every issue (paginated, memoized) and print a table
  get          -> resolve one issue by reference, optionally with comments
  clear-cache  -> drop every cached issue, linkage and fetch memo
  init-env     -> write a sample .env with the credential variables
"""

from __future__ import annotations

import argparse
import html
import json
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .auth import FreedcampAuth
from .cache import CACHE_METHODS
from .config import CONFIG_DEFAULT, ClientSettings, load_config
from .env_auth import create_env_auth_manager
from .errors import FreedcampError, classify_error
from .issues import IssuesClient
from .logging import configure_logging
from .models import Issue
from .transport import HttpTransport, Transport
from .ux import print_error, print_success, print_summary_box, print_table

_MAX_HELP_WIDTH = 100
_TAG = re.compile(r"<[^>]+>")


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _build_parser() -> argparse.ArgumentParser:
    p = _FormatterArgumentParser(prog="fcissues", description="Freedcamp issue tracker client")
    p.add_argument("--config", default=CONFIG_DEFAULT, help="YAML settings file (optional)")
    p.add_argument("--secret", help="Freedcamp API secret (env: FREEDCAMP_SECRET)")
    p.add_argument("--apikey", help="Freedcamp API key (env: FREEDCAMP_APIKEY)")
    p.add_argument("--project", help="Primary project id (env: FREEDCAMP_PROJECT)")
    p.add_argument("--cache", choices=CACHE_METHODS, help="Cache backend")
    p.add_argument("--verbose", action="store_true", help="Keep raw API payloads")
    p.add_argument("--json-logs", action="store_true", help="Emit structured JSON logs")
    p.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress informational output (env: FCISSUES_QUIET=1)",
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    pl = sub.add_parser("list", help="List every issue")
    pl.add_argument("--limit", type=int, default=100, help="Page size")
    pl.add_argument("--offset", type=int, default=-1, help="Fetch a single page at this offset")
    pl.add_argument("--global", dest="global_scope", action="store_true", help="All projects")
    pl.add_argument("--force", action="store_true", help="Bypass the fetch memo")
    pl.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    pg = sub.add_parser("get", help="Show one issue by reference")
    pg.add_argument("ref", help="Issue reference, e.g. ABC-1234")
    pg.add_argument("--comments", action="store_true", help="Include comments")
    pg.add_argument("--global", dest="global_scope", action="store_true", help="All projects")
    pg.add_argument(
        "--scan", action="store_true", help="Fall back to a full listing instead of a search"
    )
    pg.add_argument("--json", action="store_true", help="Print JSON")

    sub.add_parser("clear-cache", help="Clear cached issues and linkages")

    pe = sub.add_parser("init-env", help="Write a sample .env file")
    pe.add_argument("--path", default=".env")
    return p


def _prepare_settings(args: argparse.Namespace) -> ClientSettings:
    config_path = Path(args.config)
    if config_path.exists():
        settings = load_config(config_path)
    elif args.config != CONFIG_DEFAULT:
        settings = load_config(config_path)  # raises ConfigError
    else:
        settings = ClientSettings()
    if args.verbose:
        settings.verbose = True
    if args.json_logs:
        settings.logging_json_enabled = True
    return settings


def _make_transport(settings: ClientSettings) -> Transport:
    return HttpTransport(timeout=settings.timeout)


def _build_client(args: argparse.Namespace, settings: ClientSettings) -> IssuesClient:
    auth = FreedcampAuth(settings=settings).init(
        secret=args.secret,
        apikey=args.apikey,
        project=args.project,
        cache=args.cache,
    )
    return IssuesClient(auth, transport=_make_transport(settings))


def _plain(text: str) -> str:
    return html.unescape(_TAG.sub("", text or "")).strip()


def _fmt_ms(value: int | None) -> str:
    if value is None:
        return ""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _print_issues(issues: list[Issue]) -> None:
    print_table(
        ("REF", "STATUS", "PRIORITY", "ASSIGNEE", "TITLE"),
        [(i.ref, i.status, i.priority, i.assignee, i.title) for i in issues],
    )


def _cmd_list(client: IssuesClient, args: argparse.Namespace) -> int:
    issues = client.fetch_all(
        force=args.force,
        offset=args.offset,
        limit=args.limit,
        global_scope=args.global_scope,
    )
    if args.json:
        print(json.dumps([i.to_dict() for i in issues], indent=2))
        return 0
    _print_issues(issues)
    if not args.quiet:
        print_success(f"{len(issues)} issues")
    return 0


def _cmd_get(client: IssuesClient, args: argparse.Namespace) -> int:
    issue = client.get(
        args.ref,
        comments=args.comments,
        global_scope=args.global_scope,
        fallback="scan" if args.scan else "search",
    )
    if args.json:
        print(json.dumps(issue.to_dict(), indent=2))
        return 0
    items: list[tuple[str, str | int]] = [
        ("id", issue.id),
        ("status", issue.status),
        ("priority", issue.priority),
        ("assignee", issue.assignee),
        ("url", issue.url),
    ]
    if issue.project:
        items.append(("project", issue.project))
    print_summary_box(f"{issue.ref}: {issue.title}", items)
    body = _plain(issue.html)
    if body:
        print(body)
    for comment in issue.comments or []:
        stamp = _fmt_ms(comment.created)
        if comment.edited is not None:
            stamp += f" (edited {_fmt_ms(comment.edited)})"
        print(f"\n--- {comment.user} @ {stamp}")
        print(_plain(comment.html))
    return 0


def _cmd_clear_cache(client: IssuesClient, args: argparse.Namespace) -> int:
    client.cache.clear()
    if not args.quiet:
        print_success("Cache cleared")
    return 0


def _cmd_init_env(args: argparse.Namespace) -> int:
    manager = create_env_auth_manager()
    if manager.create_sample_env_file(args.path):
        print_success(f"Wrote sample environment file to {args.path}")
        return 0
    print_error(f"{args.path} already exists; not overwriting")
    return 1


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.quiet and os.environ.get("FCISSUES_QUIET") == "1":
        args.quiet = True
    try:
        if args.cmd == "init-env":
            return _cmd_init_env(args)
        settings = _prepare_settings(args)
        configure_logging(
            json_logging=settings.logging_json_enabled,
            level="DEBUG" if os.environ.get("FCISSUES_DEBUG") == "1" else (
                "WARNING" if args.quiet else settings.logging_level
            ),
        )
        client = _build_client(args, settings)
        handlers = {
            "list": _cmd_list,
            "get": _cmd_get,
            "clear-cache": _cmd_clear_cache,
        }
        return handlers[args.cmd](client, args)
    except FreedcampError as exc:
        info = classify_error(exc)
        print_error(f"[{info.category}] {info.message}")
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
