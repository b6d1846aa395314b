from __future__ import annotations

from importlib import import_module
from typing import Any

import pytest


def test_dunder_all_exports() -> None:
    module = import_module("fcissues")
    exported = set(module.__all__)
    expected = {
        "FreedcampAuth",
        "IssuesClient",
        "Issue",
        "Comment",
        "ConfigError",
        "TransportError",
        "NotFoundError",
        "AmbiguousResultError",
        "__version__",
    }
    assert expected <= exported
    for name in exported:
        assert hasattr(module, name)


def test_transport_user_agent_tracks_version() -> None:
    module = import_module("fcissues")
    transport = import_module("fcissues.transport")
    assert transport.USER_AGENT == f"fcissues/{module.__version__}"


def test_module_main_run_invokes_cli(monkeypatch: pytest.MonkeyPatch) -> None:
    module = import_module("fcissues.__main__")
    called: dict[str, Any] = {}

    def fake_main(argv: Any) -> int:
        called["argv"] = argv
        return 123

    monkeypatch.setattr(module, "main", fake_main)

    result = module.run()
    assert called["argv"] is None
    assert result == 123
