"""
Tests for pull-request cross references.
"""

import json

import pytest

from repokb.indexer.crossref import (
    RepoCrossReferences,
    StaticCrossReferenceProvider,
    pick_latest,
    pr_stats,
    prs_for_path,
    resolve,
)

from conftest import make_pr

EXPORT = {
    "acme/api": {
        "pullRequests": [
            {
                "number": 1, "title": "Docs pass", "state": "merged",
                "createdAt": "2024-01-01T00:00:00Z", "updatedAt": "2024-02-01T00:00:00Z",
                "url": "https://github.com/acme/api/pull/1", "files": ["docs/guide.md", "README.md"],
            },
            {
                "number": 2, "title": "Guide update", "state": "open",
                "createdAt": "2024-03-01T00:00:00Z", "updatedAt": "2024-03-05T00:00:00Z",
                "url": "https://github.com/acme/api/pull/2", "files": ["docs/guide.md"],
            },
            {
                "number": 3, "title": "Abandoned", "state": "closed",
                "createdAt": "2024-01-10T00:00:00Z", "updatedAt": "2024-01-11T00:00:00Z",
                "url": "https://github.com/acme/api/pull/3", "files": [],
            },
        ]
    }
}


class TestPickLatest:

    def test_most_recently_updated(self):
        prs = [make_pr(1, updated_at="2024-01-01T00:00:00Z"), make_pr(2, updated_at="2024-05-01T00:00:00Z")]
        assert pick_latest(prs).number == 2

    def test_tie_keeps_first(self):
        prs = [make_pr(1), make_pr(2)]
        assert pick_latest(prs).number == 1

    def test_offsets_compare_as_instants(self):
        prs = [
            make_pr(1, updated_at="2024-01-01T12:00:00+02:00"),
            make_pr(2, updated_at="2024-01-01T11:00:00Z"),
        ]
        assert pick_latest(prs).number == 2

    def test_unparseable_time_loses(self):
        prs = [make_pr(1, updated_at="yesterday"), make_pr(2, updated_at="2020-01-01T00:00:00Z")]
        assert pick_latest(prs).number == 2

    def test_empty(self):
        assert pick_latest([]) is None


class TestStats:

    def test_counts_by_state(self):
        prs = [make_pr(1, "open"), make_pr(2, "open"), make_pr(3, "merged"), make_pr(4, "closed")]
        stats = pr_stats("acme/api", prs)

        assert stats.to_dict() == {
            "repo": "acme/api", "totalPRs": 4, "openPRs": 2, "closedPRs": 1, "mergedPRs": 1,
        }


class TestPathLookup:

    def test_exact_and_suffix_keys(self):
        mapping = {"docs/guide.md": [make_pr(1)], "checkout/src/db.ts": [make_pr(2)]}

        assert prs_for_path(mapping, "docs/guide.md")[0].number == 1
        assert prs_for_path(mapping, "/docs/guide.md")[0].number == 1
        assert prs_for_path(mapping, "src/db.ts")[0].number == 2
        assert prs_for_path(mapping, "other.md") == []

    def test_matches_whole_path_components_only(self):
        mapping = {"docs/guide.md": [make_pr(1)]}
        assert prs_for_path(mapping, "guide.md")[0].number == 1
        assert prs_for_path(mapping, "uide.md") == []
        assert prs_for_path(mapping, "docs/guide.md.bak") == []


class TestStaticProvider:

    def test_from_file(self, tmp_path):
        path = tmp_path / "prs.json"
        path.write_text(json.dumps(EXPORT), encoding="utf-8")

        provider = StaticCrossReferenceProvider.from_file(path)

        assert [p.number for p in provider.pull_requests("acme/api")] == [1, 2, 3]
        assert provider.pull_requests("acme/unknown") == []

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "prs.json"
        path.write_text("[]", encoding="utf-8")
        with pytest.raises(ValueError):
            StaticCrossReferenceProvider.from_file(path)

    def test_file_mapping(self):
        mapping = StaticCrossReferenceProvider(EXPORT).files_to_pull_requests("acme/api")

        assert [p.number for p in mapping["docs/guide.md"]] == [1, 2]
        assert [p.number for p in mapping["README.md"]] == [1]
        assert mapping["README.md"][0].changed_files_count == 2


class TestResolve:

    def test_latest_for_path(self):
        refs = resolve(StaticCrossReferenceProvider(EXPORT), "acme/api")

        assert refs.stats.total_prs == 3
        assert refs.stats.open_prs == 1
        latest = refs.latest_for("docs/guide.md")
        assert latest.number == 2
        assert latest.state == "open"
        assert refs.latest_for("src/untouched.ts") is None

    def test_no_provider(self):
        refs = resolve(None, "acme/api")
        assert refs == RepoCrossReferences()

    def test_failing_provider_degrades(self):
        class Broken:
            def pull_requests(self, repo):
                raise ConnectionError("rate limited")

            def files_to_pull_requests(self, repo):
                return {"a.md": [make_pr(9)]}

        refs = resolve(Broken(), "acme/api")

        assert refs.stats is None
        assert refs.latest_for("a.md").number == 9
