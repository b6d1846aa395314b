from __future__ import annotations

import json

import pytest

from conftest import FakeFreedcamp, make_raw_issue
from fcissues import cli

ENV_VARS = (
    "FREEDCAMP_SECRET",
    "FREEDCAMP_APIKEY",
    "FREEDCAMP_PROJECT",
    "FREEDCAMP_CACHE_METHOD",
    "FCISSUES_QUIET",
    "FCISSUES_DEBUG",
)
CREDS = ["--secret", "s3cr3t", "--apikey", "abcd1234efgh5678", "--project", "123", "--cache"]


@pytest.fixture(autouse=True)
def _isolated(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for var in ENV_VARS:
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)


@pytest.fixture
def fake_remote(monkeypatch) -> FakeFreedcamp:
    remote = FakeFreedcamp([make_raw_issue(n) for n in range(3)])
    monkeypatch.setattr(cli, "_make_transport", lambda settings: remote)
    return remote


def _run(*args: str, cache: str = "memory") -> int:
    return cli.main([*CREDS, cache, *args])


def test_list_prints_table(fake_remote, capsys):
    assert _run("list") == 0
    out = capsys.readouterr().out
    assert "REF" in out and "TITLE" in out
    assert "ABC-1000" in out and "ABC-1002" in out
    assert "3 issues" in out


def test_list_json(fake_remote, capsys):
    assert _run("--quiet", "list", "--json", "--limit", "2") == 0
    data = json.loads(capsys.readouterr().out)
    assert [d["ref"] for d in data] == ["ABC-1000", "ABC-1001", "ABC-1002"]
    assert [r.params["offset"] for r in fake_remote.requests] == [0, 2]


def test_list_global_offset(fake_remote, capsys):
    assert _run("list", "--json", "--global", "--offset", "1", "--limit", "1") == 0
    data = json.loads(capsys.readouterr().out)
    assert [d["ref"] for d in data] == ["ABC-1001"]
    assert "project_id" not in fake_remote.requests[0].params


def test_get_with_comments(fake_remote, capsys):
    assert _run("get", "ABC-1001", "--comments") == 0
    out = capsys.readouterr().out
    assert "ABC-1001: Issue 1" in out
    assert "Body 1" in out
    assert "<p>" not in out
    assert "Grace Hopper" in out
    assert "edited" in out


def test_get_json(fake_remote, capsys):
    assert _run("get", "ABC-1002", "--json") == 0
    data = json.loads(capsys.readouterr().out)
    assert data["id"] == "5002"
    assert "comments" not in data


def test_get_scan_fallback(fake_remote, capsys):
    assert _run("get", "ABC-1000", "--scan", "--json") == 0
    assert "substring" not in fake_remote.requests[0].params


def test_get_missing_reports_not_found(fake_remote, capsys):
    assert _run("get", "ZZZ-1") == 1
    err = capsys.readouterr().err
    assert "[not_found]" in err
    assert "ZZZ-1" in err


def test_filesystem_cache_survives_between_runs(fake_remote, tmp_path, capsys):
    assert _run("get", "ABC-1001", cache="filesystem") == 0
    calls = len(fake_remote.requests)
    assert _run("get", "ABC-1001", cache="filesystem") == 0
    assert len(fake_remote.requests) == calls
    assert (tmp_path / ".fcissues_cache" / "cache.json").exists()

    assert _run("clear-cache", cache="filesystem") == 0
    assert "Cache cleared" in capsys.readouterr().out
    assert _run("get", "ABC-1001", cache="filesystem") == 0
    assert len(fake_remote.requests) == calls + 1


def test_missing_credentials_exit_with_config_error(capsys):
    assert cli.main(["--cache", "memory", "list"]) == 1
    assert "[config]" in capsys.readouterr().err


def test_explicit_missing_config_file_is_an_error(fake_remote, capsys):
    assert cli.main(["--config", "absent.yaml", *CREDS, "memory", "list"]) == 1
    assert "Configuration file not found" in capsys.readouterr().err


def test_config_file_is_applied(fake_remote, tmp_path, capsys):
    (tmp_path / "fcissues.config.yaml").write_text("freedcamp:\n  verbose: true\n")
    assert _run("get", "ABC-1000", "--json") == 0
    data = json.loads(capsys.readouterr().out)
    assert data["raw"]["number_prefixed"] == "ABC-1000"


def test_init_env_writes_sample(tmp_path):
    assert cli.main(["init-env"]) == 0
    assert "FREEDCAMP_APIKEY=" in (tmp_path / ".env").read_text()
    assert cli.main(["init-env"]) == 1


def test_bad_config_value_is_reported_not_raised(fake_remote, tmp_path, capsys):
    (tmp_path / "fcissues.config.yaml").write_text("freedcamp:\n  timeout: soon\n")
    assert _run("list") == 1
    assert "[config] freedcamp.timeout must be a number" in capsys.readouterr().err
