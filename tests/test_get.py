from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import make_raw_issue
from fcissues.errors import AmbiguousResultError, ConfigError, NotFoundError, TransportError
from fcissues.issues import GetOptions, IssuesClient


def test_get_uses_linkage_for_direct_request(client, remote, cache):
    cache.set("linkages/byRef/issues/ABC-1234", "5234")

    issue = client.get("ABC-1234")

    assert issue.ref == "ABC-1234"
    assert issue.id == "5234"
    assert remote.urls == ["/issues/5234"]


def test_linkage_example_issues_exactly_one_direct_request(make_remote, auth, cache):
    remote = make_remote(count=0)
    remote.issues.append({**make_raw_issue(0), "id": "555", "number_prefixed": "ABC-1234"})
    client = IssuesClient(auth, transport=remote)
    cache.set("linkages/byRef/issues/ABC-1234", "555")

    client.get("ABC-1234")

    assert remote.urls == ["/issues/555"]


def test_second_get_is_a_cache_hit(client, remote):
    first = client.get("ABC-1007")
    calls = len(remote.requests)
    second = client.get("ABC-1007")
    assert second == first
    assert len(remote.requests) == calls


def test_get_without_linkage_searches_by_reference(client, remote, cache):
    issue = client.get("ABC-1007")

    assert issue.id == "5007"
    assert len(remote.requests) == 1
    assert remote.requests[0].url == "/issues"
    assert remote.requests[0].params["substring"] == "ABC-1007"
    assert cache.get("linkages/byRef/issues/ABC-1007") == "5007"


def test_search_ignores_partial_matches(client, remote):
    # "ABC-100" is a substring of ABC-1000..ABC-1009 but an exact ref of none
    with pytest.raises(NotFoundError):
        client.get("ABC-100")


def test_unknown_reference_raises_not_found(client):
    with pytest.raises(NotFoundError) as excinfo:
        client.get("NOPE-1")
    assert excinfo.value.ref == "NOPE-1"


def test_duplicate_references_raise_ambiguous(client, remote):
    remote.issues.append({**make_raw_issue(900), "number_prefixed": "ABC-1003"})
    with pytest.raises(AmbiguousResultError) as excinfo:
        client.get("ABC-1003")
    assert excinfo.value.count == 2


def test_scan_fallback_uses_fetch_all(client, remote):
    issue = client.get("ABC-1200", fallback="scan")
    assert issue.id == "5200"
    assert [r.url for r in remote.requests] == ["/issues", "/issues", "/issues"]
    assert "substring" not in remote.requests[0].params


def test_get_matches_fetch_all_records(client, remote, cache):
    issues = client.fetch_all()
    calls = len(remote.requests)
    for issue in (issues[1], issues[5], issues[10], issues[200]):
        assert client.get(issue.ref) == issue
    assert len(remote.requests) == calls


def test_get_after_clearing_headers_matches_bulk_records(client, remote, cache):
    issues = client.fetch_all()
    cache.clear()
    for issue in (issues[10], issues[20], issues[30]):
        assert client.get(issue.ref) == issue


def test_comments_are_additive(client, remote):
    plain = client.get("ABC-1010")
    assert plain.comments is None

    with_comments = client.get("ABC-1010", comments=True)
    assert with_comments.comments
    assert [c.user for c in with_comments.comments] == ["Grace Hopper", "Alan Turing"]
    with_comments_fields = with_comments.to_dict()
    del with_comments_fields["comments"]
    assert with_comments_fields == plain.to_dict()


def test_comments_fetched_once_and_cached(client, remote):
    client.fetch_all()
    before = len(remote.requests)

    first = client.get("ABC-1042", comments=True)
    assert remote.urls[before:] == ["/issues/5042"]
    second = client.get("ABC-1042", comments=True)
    assert second == first
    assert len(remote.requests) == before + 1


def test_linkage_path_brings_comments_in_one_request(client, remote, cache):
    cache.set("linkages/byRef/issues/ABC-1001", "5001")
    issue = client.get("ABC-1001", GetOptions(comments=True))
    assert issue.comments and len(issue.comments) == 2
    assert remote.urls == ["/issues/5001"]


def test_issue_without_comments_is_remembered(client, remote):
    remote.with_comments = False
    client.fetch_all()
    before = len(remote.requests)

    assert client.get("ABC-1003", comments=True).comments == []
    assert client.get("ABC-1003", comments=True).comments == []
    assert len(remote.requests) == before + 1


def test_get_global_scope(client, remote):
    client.get("ABC-1002", global_scope=True)
    assert "project_id" not in remote.requests[0].params


def test_concurrent_gets_for_same_ref_resolve_once(make_remote, auth):
    remote = make_remote(delay=0.02)
    client = IssuesClient(auth, transport=remote)

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lambda _: client.get("ABC-1099"), range(4)))

    assert len(remote.requests) == 1
    assert all(r == results[0] for r in results)


def test_failed_lookup_is_not_cached(client, remote, transport_error):
    remote.fail_on[1] = transport_error
    with pytest.raises(TransportError):
        client.get("ABC-1005")
    assert client.get("ABC-1005").id == "5005"


def test_verbose_client_keeps_raw(auth, remote):
    client = IssuesClient(auth, transport=remote, verbose=True)
    issue = client.get("ABC-1004")
    assert issue.raw is not None
    assert issue.raw["number_prefixed"] == "ABC-1004"


@pytest.mark.parametrize("ref", ["", "   "])
def test_blank_reference_rejected(client, ref):
    with pytest.raises(ConfigError):
        client.get(ref)


def test_unknown_fallback_rejected(client):
    with pytest.raises(ConfigError):
        client.get("ABC-1000", fallback="guess")


def test_search_reads_every_page_for_an_exact_match(make_remote, auth, cache):
    # Every ABC-1xxx reference contains "ABC-1"; the exact one comes last
    remote = make_remote(count=150)
    remote.issues.append({**make_raw_issue(0), "id": "9001", "number_prefixed": "ABC-1"})
    client = IssuesClient(auth, transport=remote)

    issue = client.get("ABC-1")

    assert issue.id == "9001"
    assert [r.params["offset"] for r in remote.requests] == [0, 100]
    assert all(r.params["substring"] == "ABC-1" for r in remote.requests)
    assert cache.get("linkages/byRef/issues/ABC-1") == "9001"


def test_search_counts_matches_across_pages(make_remote, auth):
    remote = make_remote(count=150)
    remote.issues.insert(0, {**make_raw_issue(0), "id": "9001", "number_prefixed": "ABC-1"})
    remote.issues.append({**make_raw_issue(0), "id": "9002", "number_prefixed": "ABC-1"})
    client = IssuesClient(auth, transport=remote)

    with pytest.raises(AmbiguousResultError) as excinfo:
        client.get("ABC-1")
    assert excinfo.value.count == 2
