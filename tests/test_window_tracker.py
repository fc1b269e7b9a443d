"""
单元测试：时间窗口追踪

测试覆盖：
- 首次窗口使用回看时长
- 相邻窗口首尾相接
- 时钟回拨时跳过
- 检查点只前进
"""

from datetime import timedelta

import pytest

from analytics_collector.models import TimeWindow
from analytics_collector.window_tracker import InMemoryCheckpointStore, TimeWindowTracker


@pytest.fixture
def tracker():
    return TimeWindowTracker(lookback=timedelta(minutes=5))


class TestNextWindow:
    """窗口计算测试"""

    def test_first_window_uses_lookback(self, tracker, t0):
        window = tracker.next_window("zone-a", t0)

        assert window == TimeWindow(since=t0 - timedelta(minutes=5), until=t0)

    def test_subsequent_window_starts_at_checkpoint(self, tracker, t0):
        first = tracker.next_window("zone-a", t0)
        tracker.commit("zone-a", first)

        second = tracker.next_window("zone-a", t0 + timedelta(seconds=60))

        assert second.since == first.until
        assert second.until == t0 + timedelta(seconds=60)

    def test_windows_are_contiguous(self, tracker, t0):
        """连续 N 个窗口覆盖 [firstSince, lastUntil) 不重不漏"""
        windows = []
        for i in range(5):
            window = tracker.next_window("zone-a", t0 + timedelta(seconds=37 * i + 1))
            tracker.commit("zone-a", window)
            windows.append(window)

        for prev, cur in zip(windows, windows[1:]):
            assert prev.until == cur.since
        total = sum(w.seconds for w in windows)
        assert total == (windows[-1].until - windows[0].since).total_seconds()

    def test_uncommitted_window_is_reissued(self, tracker, t0):
        """失败后不提交，下一次从同一个 since 开始"""
        first = tracker.next_window("zone-a", t0)
        retry = tracker.next_window("zone-a", t0 + timedelta(seconds=60))

        assert retry.since == first.since

    def test_failed_first_window_keeps_its_start(self, tracker, t0):
        """首个窗口未提交时，之后每次都从同一个 since 开始，直到提交"""
        first = tracker.next_window("zone-a", t0)
        tracker.next_window("zone-a", t0 + timedelta(seconds=60))
        retry = tracker.next_window("zone-a", t0 + timedelta(seconds=120))

        assert retry == TimeWindow(since=first.since, until=t0 + timedelta(seconds=120))

        tracker.commit("zone-a", retry)
        after = tracker.next_window("zone-a", t0 + timedelta(seconds=180))

        assert after.since == t0 + timedelta(seconds=120)

    def test_first_window_start_cleared_on_commit(self, tracker, t0):
        tracker.commit("zone-a", tracker.next_window("zone-a", t0))

        assert "zone-a" not in tracker._anchors

    def test_now_truncated_to_seconds(self, tracker, t0):
        window = tracker.next_window("zone-a", t0 + timedelta(microseconds=750000))

        assert window.until == t0

    def test_zones_are_independent(self, tracker, t0):
        window = tracker.next_window("zone-a", t0)
        tracker.commit("zone-a", window)

        assert tracker.checkpoint("zone-b") is None
        assert tracker.next_window("zone-b", t0).since == t0 - timedelta(minutes=5)


class TestClockDrift:
    """时钟回拨测试"""

    def test_skip_when_now_equals_checkpoint(self, tracker, t0):
        tracker.commit("zone-a", tracker.next_window("zone-a", t0))

        assert tracker.next_window("zone-a", t0) is None
        assert tracker.checkpoint("zone-a") == t0

    def test_skip_when_now_before_checkpoint(self, tracker, t0):
        tracker.commit("zone-a", tracker.next_window("zone-a", t0))

        assert tracker.next_window("zone-a", t0 - timedelta(seconds=30)) is None
        assert tracker.checkpoint("zone-a") == t0


class TestCommit:
    """检查点推进测试"""

    def test_commit_never_moves_backwards(self, tracker, t0):
        tracker.commit("zone-a", TimeWindow(t0 - timedelta(minutes=1), t0))
        tracker.commit("zone-a", TimeWindow(t0 - timedelta(minutes=2), t0 - timedelta(minutes=1)))

        assert tracker.checkpoint("zone-a") == t0

    def test_custom_store(self, t0):
        store = InMemoryCheckpointStore()
        tracker = TimeWindowTracker(lookback=timedelta(minutes=1), store=store)

        tracker.commit("zone-a", tracker.next_window("zone-a", t0))

        assert store.snapshot() == {"zone-a": t0}

    def test_lock_is_per_zone(self, tracker):
        assert tracker.lock_for("zone-a") is tracker.lock_for("zone-a")
        assert tracker.lock_for("zone-a") is not tracker.lock_for("zone-b")


def test_empty_window_rejected(t0):
    with pytest.raises(ValueError):
        TimeWindow(since=t0, until=t0)


def test_non_positive_lookback_rejected():
    with pytest.raises(ValueError):
        TimeWindowTracker(lookback=timedelta(0))
