import pytest

from conftest import emitted, run_inline
from data_models import UserStatus
from presence import PresenceTracker


@pytest.fixture
def tracker(store, mock_socketio, scheduler):
    return PresenceTracker(store, mock_socketio, schedule=scheduler, spawn=run_inline, inactivity_timeout=300)


def test_first_activity_brings_user_online(tracker, store, mock_socketio):
    tracker.record_activity("u1")

    assert tracker.is_online("u1")
    assert tracker.status("u1") == UserStatus.ONLINE
    assert store.status_updates == [("u1", UserStatus.ONLINE)]
    (data, to), = emitted(mock_socketio, "user_status_changed")
    assert data["userId"] == "u1"
    assert data["status"] == "online"
    assert "lastActiveAt" in data
    # Broadcast, not directed.
    assert to is None


def test_repeated_activity_publishes_once(tracker, store, mock_socketio):
    tracker.record_activity("u1")
    tracker.record_activity("u1")
    tracker.record_activity("u1")

    assert len(emitted(mock_socketio, "user_status_changed")) == 1
    assert store.status_updates == [("u1", UserStatus.ONLINE)]


def test_activity_keeps_a_single_live_timer(tracker, scheduler):
    tracker.record_activity("u1")
    tracker.record_activity("u1")

    assert len(scheduler.pending()) == 1


def test_inactivity_timeout_marks_user_offline(tracker, store, mock_socketio, scheduler):
    tracker.record_activity("u1")

    scheduler.advance(300)

    assert not tracker.is_online("u1")
    assert store.status_updates[-1] == ("u1", UserStatus.OFFLINE)
    statuses = [data["status"] for data, _ in emitted(mock_socketio, "user_status_changed")]
    assert statuses == ["online", "offline"]


def test_activity_resets_the_inactivity_window(tracker, scheduler):
    tracker.record_activity("u1")
    scheduler.advance(200)
    tracker.record_activity("u1")

    scheduler.advance(200)
    assert tracker.is_online("u1")

    scheduler.advance(100)
    assert not tracker.is_online("u1")


def test_disconnect_marks_offline_and_cancels_timer(tracker, store, scheduler):
    tracker.record_activity("u1")

    assert tracker.disconnect("u1") is True

    assert not tracker.is_online("u1")
    assert scheduler.pending() == []
    assert store.status_updates[-1] == ("u1", UserStatus.OFFLINE)


def test_disconnect_of_offline_user_publishes_nothing(tracker, mock_socketio):
    assert tracker.disconnect("u1") is False
    assert emitted(mock_socketio, "user_status_changed") == []


def test_stale_timer_callback_is_ignored(tracker, scheduler, mock_socketio):
    tracker.record_activity("u1")
    stale = scheduler.timers[0]
    tracker.record_activity("u1")

    # Simulate a timer that fired despite being cancelled.
    stale.func(*stale.args)

    assert tracker.is_online("u1")
    assert len(emitted(mock_socketio, "user_status_changed")) == 1


def test_store_failure_does_not_block_transition(tracker, store, mock_socketio):
    store.failing.add("set_user_status")

    tracker.record_activity("u1")

    assert tracker.is_online("u1")
    assert len(emitted(mock_socketio, "user_status_changed")) == 1


def test_shutdown_cancels_all_timers(tracker, scheduler):
    tracker.record_activity("u1")
    tracker.record_activity("u2")

    tracker.shutdown()

    assert scheduler.pending() == []
    assert tracker.online_user_ids() == []
