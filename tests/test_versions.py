"""Tests for version numbering, snapshots, diff and restore."""

import pytest
from pydantic import ValidationError

from fakes import FakeClock
from overskill.errors import UnknownVersion
from overskill.file_store import InMemoryFileStore
from overskill.models import FileAction, FileDelta
from overskill.versions import InMemoryVersionStore, JsonVersionStore, next_version, version_key


@pytest.mark.parametrize("previous,expected", [
    (None, "1.0.0"),
    ("", "1.0.0"),
    ("1.0.0", "1.0.1"),
    ("1.0.9", "1.0.10"),
    ("2.3", "2.4"),
    ("1.0.beta", "1.0.beta.1"),
])
def test_next_version(previous, expected):
    assert next_version(previous) == expected


def test_version_key_orders_numerically():
    assert sorted(["1.0.10", "1.0.2", "1.0.9"], key=version_key) == ["1.0.2", "1.0.9", "1.0.10"]


@pytest.fixture
def versions():
    return InMemoryVersionStore(clock=FakeClock())


class TestVersionStore:
    def test_numbering(self, versions):
        a = versions.create_snapshot("app", {"a.js": "1"}, "first")
        b = versions.create_snapshot("app", {"a.js": "2"}, "second")
        assert (a.version_number, b.version_number) == ("1.0.0", "1.0.1")
        assert versions.latest() == b
        assert [s.version_number for s in versions.list()] == ["1.0.0", "1.0.1"]

    def test_snapshot_is_an_independent_copy(self, versions):
        files = {"a.js": "1"}
        snap = versions.create_snapshot("app", files, "first")
        files["a.js"] = "changed"
        assert snap.files_snapshot == {"a.js": "1"}
        assert versions.get("1.0.0").files_snapshot == {"a.js": "1"}

    def test_snapshots_are_frozen(self, versions):
        snap = versions.create_snapshot("app", {"a.js": "1"}, "first")
        with pytest.raises(ValidationError):
            snap.changelog = "rewritten"

    def test_file_actions_are_kept(self, versions):
        actions = [FileDelta(path="a.js", action=FileAction.created)]
        snap = versions.create_snapshot("app", {"a.js": "1"}, "first", actions)
        assert snap.file_actions == actions

    def test_unknown_version(self, versions):
        with pytest.raises(UnknownVersion) as exc:
            versions.get("9.9.9")
        assert exc.value.code == "not_found"

    def test_diff(self, versions):
        versions.create_snapshot("app", {"a.js": "1", "b.js": "1", "c.js": "1"}, "first")
        versions.create_snapshot("app", {"a.js": "2", "b.js": "1", "d.js": "1"}, "second")
        assert versions.diff("1.0.0", "1.0.1") == {"added": ["d.js"], "removed": ["c.js"], "changed": ["a.js"]}

    def test_restore(self, versions):
        versions.create_snapshot("app", {"a.js": "1", "b.js": "1"}, "first")
        store = InMemoryFileStore({"a.js": "2", "c.js": "new"})
        deltas = versions.restore("1.0.0", store)
        assert store.snapshot() == {"a.js": "1", "b.js": "1"}
        assert {(d.path, d.action) for d in deltas} == {
            ("c.js", FileAction.deleted),
            ("a.js", FileAction.updated),
            ("b.js", FileAction.created),
        }

    def test_restore_of_current_state_changes_nothing(self, versions):
        versions.create_snapshot("app", {"a.js": "1"}, "first")
        store = InMemoryFileStore({"a.js": "1"})
        assert versions.restore("1.0.0", store) == []

    def test_listeners_are_notified(self, versions):
        seen = []
        versions.on_snapshot(lambda s: seen.append(s.version_number))
        versions.create_snapshot("app", {"a.js": "1"}, "first")
        assert seen == ["1.0.0"]

    def test_failing_listener_does_not_lose_the_snapshot(self, versions):
        def deploy(snapshot):
            raise RuntimeError("deploy pipeline down")

        seen = []
        versions.on_snapshot(deploy)
        versions.on_snapshot(lambda s: seen.append(s.version_number))
        snap = versions.create_snapshot("app", {"a.js": "1"}, "first")
        assert versions.latest() == snap
        assert seen == ["1.0.0"]


class TestJsonVersionStore:
    def test_persists_across_instances(self, tmp_path):
        store = JsonVersionStore(tmp_path / "versions", clock=FakeClock())
        store.create_snapshot("app", {"a.js": "1"}, "first")
        store.create_snapshot("app", {"a.js": "2"}, "second")
        assert sorted(p.name for p in (tmp_path / "versions").iterdir()) == ["v1.0.0.json", "v1.0.1.json"]

        reopened = JsonVersionStore(tmp_path / "versions")
        assert [s.version_number for s in reopened.list()] == ["1.0.0", "1.0.1"]
        assert reopened.get("1.0.1").files_snapshot == {"a.js": "2"}
        assert reopened.create_snapshot("app", {"a.js": "3"}, "third").version_number == "1.0.2"

    def test_unreadable_files_are_skipped(self, tmp_path):
        directory = tmp_path / "versions"
        store = JsonVersionStore(directory)
        store.create_snapshot("app", {"a.js": "1"}, "first")
        (directory / "v9.9.9.json").write_text('{"app_id": "app"}', encoding="utf-8")
        (directory / "v8.0.0.json").write_text("not json", encoding="utf-8")
        assert [s.version_number for s in store.list()] == ["1.0.0"]
