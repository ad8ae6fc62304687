"""Tests for factoryjump analyze dispatcher."""

import os
import time

import pytest

from factoryjump.analyze import dispatch

USERS = "spec/factories/users.rb"
USERS_TEXT = "factory :user do\n  trait :admin do\n  end\nend\n"


@pytest.fixture
def project(tmp_path):
    path = tmp_path / USERS
    path.parent.mkdir(parents=True)
    path.write_text(USERS_TEXT)
    os.utime(path, (1_000_000, 1_000_000))
    (tmp_path / "spec/models").mkdir(parents=True)
    (tmp_path / "spec/models/user_spec.rb").write_text("let(:user) { create(:user, :admin) }\n")
    return tmp_path


def test_dispatch_extract(project):
    result = dispatch("extract", str(project), {"file": USERS})
    assert [f["name"] for f in result["factories"]] == ["user"]
    assert result["factories"][0]["traits"] == ["admin"]
    assert result["factories"][0]["location"] == {
        "file": USERS, "line": 0, "column": 0, "length": 13,
    }
    assert result["traits"][0]["factory"] == "user"


def test_dispatch_index(project):
    result = dispatch("index", str(project), {})
    assert result["stats"]["factory_count"] == 1
    assert result["stats"]["trait_count"] == 1
    assert result["stats"]["initialized"] is True
    assert [f["name"] for f in result["factories"]] == ["user"]


def test_dispatch_resolve_text(project):
    result = dispatch("resolve", str(project), {"text": "build(:user, :admin)"})
    assert result["total_references"] == 2
    kinds = [r["kind"] for r in result["references"]]
    assert kinds == ["factory", "trait"]
    assert result["references"][0]["target"]["file"] == USERS


def test_dispatch_resolve_file(project):
    result = dispatch("resolve", str(project), {"file": "spec/models/user_spec.rb"})
    assert [(r["kind"], r["start"]) for r in result["references"]] == [
        ("factory", 20), ("trait", 27),
    ]


def test_dispatch_respects_config_args(project):
    result = dispatch(
        "resolve", str(project), {"text": "create(:user)", "factory_methods": ["make"]},
    )
    assert result["total_references"] == 0


def test_dispatch_stats_before_index(project):
    result = dispatch("stats", str(project), {})
    assert result["initialized"] is False
    assert result["factory_count"] == 0
    assert result["expired_removed"] == 0


def test_dispatch_unknown_command():
    result = dispatch("nonexistent", ".", {})
    assert result.get("error") == "UnknownCommand"


def test_sessions_persist_between_requests(project):
    sessions = {}
    dispatch("index", str(project), {}, sessions=sessions)
    assert str(project) in sessions

    path = project / USERS
    path.write_text("factory :user do\nend\nfactory :member do\nend\n")
    future = time.time() + 100
    os.utime(path, (future, future))

    result = dispatch("changed", str(project), {"file": USERS}, sessions=sessions)
    assert result["reindexed"] is True
    assert result["stats"]["factory_count"] == 2
    assert result["stats"]["trait_count"] == 0

    stats = dispatch("stats", str(project), {}, sessions=sessions)
    assert stats["initialized"] is True
    assert stats["factory_count"] == 2


def test_poll_picks_up_new_files(project):
    sessions = {}
    first = dispatch("poll", str(project), {}, sessions=sessions)
    assert first["changes"] == []

    (project / "spec/factories/posts.rb").write_text("factory :post do\nend\n")
    second = dispatch("poll", str(project), {}, sessions=sessions)

    assert second["changes"] == [{"file": "spec/factories/posts.rb", "kind": "created"}]
    assert second["stats"]["factory_count"] == 2
