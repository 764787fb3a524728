"""
Tests for the change detector and its bounded subscriber queues.
"""
import time

import pytest

from kanfile.schema import utc_now
from kanfile.watcher import ChangeDetector, ChangeEvent


def _event(path="k.json"):
    return ChangeEvent(path=path, detected_at=utc_now())


def test_capacity_must_be_positive(data_file):
    with pytest.raises(ValueError):
        ChangeDetector(data_file, capacity=0)


def test_every_subscriber_receives_events(data_file):
    detector = ChangeDetector(data_file)
    a, b = detector.subscribe(), detector.subscribe()
    detector.publish(_event())
    assert a.try_recv() is not None
    assert b.try_recv() is not None
    assert a.try_recv() is None


def test_slow_subscriber_drops_oldest(data_file):
    """A full queue drops the oldest events and counts them"""
    detector = ChangeDetector(data_file, capacity=2)
    sub = detector.subscribe()
    events = [_event(str(n)) for n in range(5)]
    for event in events:
        detector.publish(event)
    assert sub.lagged == 3
    assert [e.path for e in sub.drain()] == ["3", "4"]


def test_close_unsubscribes(data_file):
    detector = ChangeDetector(data_file)
    sub = detector.subscribe()
    sub.close()
    assert detector.subscriber_count == 0
    assert sub.recv(timeout=0.01) is None


def test_notify_without_debounce_publishes_immediately(data_file):
    detector = ChangeDetector(data_file, debounce_ms=0)
    sub = detector.subscribe()
    detector.notify()
    event = sub.try_recv()
    assert event is not None
    assert event.path == str(data_file)


def test_debounce_coalesces_bursts(data_file):
    detector = ChangeDetector(data_file, debounce_ms=50)
    sub = detector.subscribe()
    for _ in range(5):
        detector.notify()
    assert sub.recv(timeout=2) is not None
    time.sleep(0.15)
    assert sub.try_recv() is None


def test_ignore_hook_suppresses_own_writes(data_file):
    detector = ChangeDetector(data_file, debounce_ms=0, ignore=lambda: True)
    sub = detector.subscribe()
    detector.notify()
    assert sub.try_recv() is None


def test_paused_detector_drops_events(data_file):
    detector = ChangeDetector(data_file, debounce_ms=0)
    sub = detector.subscribe()
    detector.pause()
    detector.notify()
    detector.resume()
    assert sub.try_recv() is None


def test_matches_normalizes_paths(data_file):
    detector = ChangeDetector(data_file)
    assert detector.matches(str(data_file.parent / "." / "k.json"))
    assert not detector.matches(str(data_file.parent / "other.json"))


def test_watching_a_real_file(data_file):
    """An external write through the filesystem reaches subscribers"""
    detector = ChangeDetector(data_file, debounce_ms=0)
    sub = detector.subscribe()
    detector.start_watching()
    try:
        assert detector.is_watching
        time.sleep(0.1)
        data_file.write_text("{}", encoding="utf-8")
        assert sub.recv(timeout=5) is not None
    finally:
        detector.stop_watching()
    assert not detector.is_watching
