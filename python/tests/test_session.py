"""Tests for IndexSession: initialization, incremental updates, resolution."""

import asyncio
import os
import time

import pytest

from factoryjump.config import FactoryJumpConfig
from factoryjump.notifications import ErrorLevel, RecordingNotifier
from factoryjump.protocols import ChangeKind, ReferenceKind
from factoryjump.session import IndexSession
from factoryjump.workspace import LocalFileSource

SPEC_USERS = "spec/factories/users.rb"
TEST_USERS = "test/factories/users.rb"

PATHS = ("spec/factories/**/*.rb", "test/factories/**/*.rb")


def _write(root, rel, text, mtime=1_000_000):
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def project(tmp_path):
    _write(tmp_path, SPEC_USERS, "factory :user do\n  trait :admin do\n  end\nend\n")
    _write(
        tmp_path,
        TEST_USERS,
        "\n\nfactory :user do\n  trait :admin do\n  end\n  trait :legacy do\n  end\nend\n"
        "factory :legacy_post do\nend\n",
    )
    return tmp_path


def _session(root, **overrides):
    config = FactoryJumpConfig.from_dict({"factory_paths": list(PATHS), **overrides})
    source = LocalFileSource(root, watch_patterns=config.factory_paths)
    notifier = RecordingNotifier(debug=True)
    return IndexSession(config, source, notifier=notifier), notifier


@pytest.mark.asyncio
async def test_initialize_prefers_higher_priority_files(project):
    session, notifier = _session(project)

    assert await session.initialize()

    assert session.initialized
    assert session.find_factory("user").location.file_id == SPEC_USERS
    assert session.cache.get_trait("user", "admin").location.file_id == SPEC_USERS
    assert session.cache.get_trait("user", "legacy").location.file_id == TEST_USERS
    assert session.find_factory("legacy_post").location.file_id == TEST_USERS
    assert "session.initialized" in notifier.contexts()


@pytest.mark.asyncio
async def test_priority_holds_regardless_of_read_completion(project):
    session, _ = _session(project, batch_size=2)
    real_read = session.source.read_file

    async def slow_spec_read(file_id):
        if file_id == SPEC_USERS:
            await asyncio.sleep(0.05)
        return await real_read(file_id)

    session.source.read_file = slow_spec_read
    await session.initialize()

    assert session.find_factory("user").location.file_id == SPEC_USERS


@pytest.mark.asyncio
async def test_initialize_is_skipped_once_initialized(project):
    session, _ = _session(project)
    await session.initialize()
    await session.initialize()
    assert session.initialize_runs == 1

    await session.initialize(force=True)
    assert session.initialize_runs == 2


@pytest.mark.asyncio
async def test_overlapping_initialize_requests_rerun_once(project):
    session, _ = _session(project)

    results = await asyncio.gather(
        session.initialize(force=True), session.initialize(force=True),
    )

    assert results == [True, False]
    assert session.initialize_runs == 2
    assert session.initialized


@pytest.mark.asyncio
async def test_resolve_before_initialize_returns_nothing(project):
    session, _ = _session(project)
    assert session.resolve("create(:user, :admin)") == []


@pytest.mark.asyncio
async def test_resolve_after_initialize(project):
    session, _ = _session(project)
    await session.initialize()

    refs = session.resolve("create(:user, :admin, :legacy)")

    assert [(r.kind, r.target.file_id) for r in refs] == [
        (ReferenceKind.FACTORY, SPEC_USERS),
        (ReferenceKind.TRAIT, SPEC_USERS),
        (ReferenceKind.TRAIT, TEST_USERS),
    ]
    assert refs[2].target.line == 5


@pytest.mark.asyncio
async def test_changed_file_replaces_its_contributions(project):
    session, notifier = _session(project)
    await session.initialize()

    _write(
        project,
        SPEC_USERS,
        "factory :user do\nend\nfactory :member do\nend\n",
        mtime=time.time() + 100,
    )
    assert await session.handle_file_change(SPEC_USERS, "changed")

    assert session.cache.get_trait("user", "admin") is None
    assert session.find_factory("member").location.line == 2
    assert session.cache.get_trait("user", "legacy") is not None
    assert "session.file_reindexed" in notifier.contexts()


@pytest.mark.asyncio
async def test_unmodified_file_is_not_reindexed(project):
    session, _ = _session(project)
    await session.initialize()
    assert not await session.handle_file_change(SPEC_USERS, ChangeKind.CHANGED)


@pytest.mark.asyncio
async def test_deleted_file_drops_its_contributions(project):
    session, _ = _session(project)
    await session.initialize()

    (project / TEST_USERS).unlink()
    assert await session.handle_file_change(TEST_USERS, ChangeKind.DELETED)

    assert session.find_factory("legacy_post") is None
    assert session.cache.get_trait("user", "legacy") is None
    assert session.find_factory("user") is not None


@pytest.mark.asyncio
async def test_vanished_file_reports_stat_failure(project):
    session, notifier = _session(project)
    await session.initialize()

    (project / TEST_USERS).unlink()
    assert not await session.handle_file_change(TEST_USERS, ChangeKind.CHANGED)

    assert "session.stat_failed" in notifier.contexts()
    assert session.find_factory("legacy_post") is None


class _BrokenSource(LocalFileSource):
    broken = True

    def list_files(self, patterns):
        if self.broken:
            raise RuntimeError("listing failed")
        return super().list_files(patterns)


@pytest.mark.asyncio
async def test_initialize_failure_is_reported_with_retry(project):
    config = FactoryJumpConfig.from_dict({"factory_paths": list(PATHS)})
    source = _BrokenSource(project, watch_patterns=config.factory_paths)
    notifier = RecordingNotifier()
    session = IndexSession(config, source, notifier=notifier)

    assert not await session.initialize()

    event = notifier.events[-1]
    assert event.context == "session.initialize_failed"
    assert event.level == ErrorLevel.ERROR
    assert event.show_to_user

    source.broken = False
    assert await event.retry()
    assert session.find_factory("user") is not None


@pytest.mark.asyncio
async def test_apply_config_rebuilds_and_reindexes(project):
    session, _ = _session(project)
    await session.initialize()

    new_config = FactoryJumpConfig.from_dict({
        "factory_paths": ["spec/factories/**/*.rb"],
        "cache_timeout": 30,
        "factory_methods": ["make"],
    })
    assert await session.apply_config(new_config)

    assert session.cache.ttl_ms == 30_000
    assert session.find_factory("legacy_post") is None
    assert [r.kind for r in session.resolve("make(:user)")] == [ReferenceKind.FACTORY]
    assert session.resolve("create(:user)") == []


@pytest.mark.asyncio
async def test_apply_config_moves_the_watch_to_new_paths(project):
    session, _ = _session(project)
    await session.initialize()
    session.watch()

    await session.apply_config(FactoryJumpConfig.from_dict({
        "factory_paths": ["test/factories/**/*.rb"],
    }))
    assert session.source.watch_patterns == ["test/factories/**/*.rb"]

    now = time.time()
    _write(project, "test/factories/comments.rb", "factory :comment do\nend\n", mtime=now)
    _write(project, "spec/factories/tags.rb", "factory :tag do\nend\n", mtime=now)
    changes = await session.source.poll_changes()

    assert changes == [("test/factories/comments.rb", ChangeKind.CREATED)]
    assert session.find_factory("comment") is not None
    assert session.find_factory("tag") is None


@pytest.mark.asyncio
async def test_watch_routes_polled_changes(project):
    session, _ = _session(project)
    await session.initialize()
    session.watch()

    _write(project, "spec/factories/comments.rb", "factory :comment do\nend\n", mtime=time.time())
    await session.source.poll_changes()

    assert session.find_factory("comment").location.file_id == "spec/factories/comments.rb"
