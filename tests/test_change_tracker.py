"""Tests for change detection, stability scoring and cache tiers."""

import pytest

from fakes import FakeClock
from overskill.change_tracker import (
    CHANGE_LOG_MAX_SIZE,
    TIER_ACTIVE,
    TIER_CORE,
    TIER_LIBRARY,
    TIER_VOLATILE,
    TIERS,
    ChangeTracker,
)
from overskill.fs import sha256_text


@pytest.fixture
def hourly(clock):
    """Tracker with a one-hour frequency window so per-hour rates are easy to reason about."""
    return ChangeTracker(clock=clock, volatile_window=300, stability_window=3600)


def churn(tracker, clock, path, times):
    tracker.track(path, "v0")
    for i in range(1, times + 1):
        clock.advance(1)
        tracker.track(path, f"v{i}")


class TestTrack:
    def test_first_track_is_not_a_change(self, tracker):
        assert tracker.track("a.js", "x") is False
        assert tracker.current_hash("a.js") == sha256_text("x")

    def test_same_content_is_not_a_change(self, tracker):
        tracker.track("a.js", "x")
        assert tracker.track("a.js", "x") is False

    def test_different_content_is_a_change(self, tracker):
        tracker.track("a.js", "x")
        assert tracker.track("a.js", "y") is True
        assert tracker.current_hash("a.js") == sha256_text("y")

    def test_timestamp_refreshes_even_without_change(self, tracker, clock):
        tracker.track("a.js", "x")
        clock.advance(10)
        tracker.track("a.js", "x")
        assert tracker.record("a.js").last_changed_at == clock.now

    def test_track_many_returns_changed_paths(self, tracker):
        tracker.track_many({"a.js": "1", "b.js": "1"})
        assert tracker.track_many({"a.js": "2", "b.js": "1", "c.js": "1"}) == ["a.js"]

    def test_forget(self, tracker):
        tracker.track("a.js", "x")
        tracker.forget("a.js")
        assert tracker.current_hash("a.js") is None
        assert tracker.tracked_paths() == []
        assert tracker.track("a.js", "y") is False


class TestStability:
    def test_unchanged_path_is_fully_stable(self, tracker):
        tracker.track("a.js", "x")
        assert tracker.stability_score("a.js") == 10

    def test_more_recent_changes_never_raise_the_score(self, tracker, clock):
        tracker.track("a.js", "v0")
        scores = [tracker.stability_score("a.js")]
        for i in range(1, 6):
            clock.advance(1)
            tracker.track("a.js", f"v{i}")
            scores.append(tracker.stability_score("a.js"))
        assert scores == sorted(scores, reverse=True)
        assert scores[0] == 10
        assert scores[1] <= 4
        assert scores[-1] <= 1

    def test_score_recovers_once_changes_age_out(self, hourly, clock):
        churn(hourly, clock, "a.js", 3)
        assert hourly.stability_score("a.js") <= 1
        clock.advance(3601)
        assert hourly.stability_score("a.js") == 10

    def test_recently_changed_window(self, tracker, clock):
        tracker.track("a.js", "x")
        assert not tracker.recently_changed("a.js")
        tracker.track("a.js", "y")
        assert tracker.recently_changed("a.js")
        clock.advance(120)
        assert tracker.recently_changed("a.js", 300)
        assert not tracker.recently_changed("a.js", 60)

    def test_change_frequency_is_per_hour(self, hourly, clock):
        churn(hourly, clock, "a.js", 4)
        assert hourly.change_frequency("a.js") == pytest.approx(4.0)

    def test_changed_since(self, tracker, clock):
        tracker.track("a.js", "1")
        tracker.track("b.js", "1")
        start = clock.now
        clock.advance(5)
        tracker.track("b.js", "2")
        tracker.track("a.js", "2")
        tracker.track("b.js", "3")
        assert tracker.changed_since(start) == ["b.js", "a.js"]
        assert tracker.changed_since(clock.now + 1) == []


class TestTiers:
    def test_untracked_and_stable_paths_are_core(self, tracker):
        tracker.track("a.js", "x")
        assert tracker.tier_for("a.js") == TIER_CORE

    def test_recent_change_is_volatile(self, tracker):
        tracker.track("a.js", "x")
        tracker.track("a.js", "y")
        assert tracker.tier_for("a.js") == TIER_VOLATILE

    @pytest.mark.parametrize("changes,tier", [(1, TIER_CORE), (3, TIER_LIBRARY), (6, TIER_ACTIVE), (9, TIER_VOLATILE)])
    def test_tier_follows_change_rate(self, hourly, clock, changes, tier):
        churn(hourly, clock, "a.js", changes)
        clock.advance(301)
        assert hourly.tier_for("a.js") == tier

    def test_categorize_has_every_tier(self, tracker):
        tracker.track("stable.js", "x")
        tracker.track("hot.js", "x")
        tracker.track("hot.js", "y")
        groups = tracker.categorize(["stable.js", "hot.js"])
        assert list(groups) == list(TIERS)
        assert groups[TIER_CORE] == ["stable.js"]
        assert groups[TIER_VOLATILE] == ["hot.js"]

    def test_stats(self, tracker):
        tracker.track("a.js", "x")
        tracker.track("a.js", "y")
        tracker.track("b.js", "x")
        stats = tracker.stats()
        assert stats["total_tracked_files"] == 2
        assert stats["recent_changes_1h"] == 1
        assert stats["stability_distribution"][TIER_VOLATILE] == 1


class TestPersistence:
    def test_round_trip(self, clock):
        tracker = ChangeTracker(clock=clock)
        tracker.track("a.js", "x")
        tracker.track("a.js", "y")
        tracker.track("b.js", "z")
        restored = ChangeTracker.from_dict(tracker.to_dict(), clock=clock)
        assert restored.tracked_paths() == ["a.js", "b.js"]
        assert restored.current_hash("a.js") == sha256_text("y")
        assert restored.recently_changed("a.js")
        assert restored.track("b.js", "z") is False

    def test_malformed_data_is_skipped(self, clock):
        data = {
            "records": {"a.js": {"path": "a.js", "content_hash": "h", "last_changed_at": 1.0}, "bad": {"nope": 1}},
            "log": [[1.0, "a.js"], "garbage", [None, "x"]],
        }
        restored = ChangeTracker.from_dict(data, clock=clock)
        assert restored.tracked_paths() == ["a.js"]
        assert restored.to_dict()["log"] == [[1.0, "a.js"]]

    def test_none_gives_empty_tracker(self):
        assert ChangeTracker.from_dict(None, clock=FakeClock()).tracked_paths() == []

    def test_change_log_is_bounded(self, tracker, clock):
        tracker.track("a.js", "v0")
        for i in range(1, CHANGE_LOG_MAX_SIZE + 6):
            clock.advance(0.01)
            tracker.track("a.js", f"v{i}")
        assert len(tracker.to_dict()["log"]) == CHANGE_LOG_MAX_SIZE

    def test_clear(self, tracker):
        tracker.track("a.js", "x")
        tracker.track("a.js", "y")
        tracker.clear()
        assert tracker.tracked_paths() == []
        assert tracker.changed_since(0) == []
