import pytest

from tracker.connectivity import ConnectivityMonitor, reconnect_delay
from tracker.errors import StoreUnavailable


class Probe:
    def __init__(self):
        self.up = False
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if not self.up:
            raise StoreUnavailable("still down")


@pytest.mark.parametrize(
    "attempt, expected",
    [(1, 2), (2, 4), (4, 16), (5, 30), (12, 30)],
)
def test_reconnect_delay_is_capped(attempt, expected):
    assert reconnect_delay(attempt, ceiling=30) == expected


def test_going_offline_notifies_and_schedules_probe(timers):
    states = []
    monitor = ConnectivityMonitor(Probe(), timer_factory=timers)
    monitor.subscribe(states.append)

    monitor.mark_offline()

    assert states == [False]
    assert not monitor.online
    [timer] = timers.created
    assert timer.started and timer.daemon
    assert timer.interval == 2


def test_repeated_offline_keeps_single_timer(timers):
    monitor = ConnectivityMonitor(Probe(), timer_factory=timers)
    monitor.mark_offline()
    monitor.mark_offline()
    assert len(timers.created) == 1


def test_failed_probes_back_off(timers):
    probe = Probe()
    monitor = ConnectivityMonitor(probe, max_delay=5, timer_factory=timers)
    monitor.mark_offline()

    for _ in range(3):
        timers.created[-1].fire()

    assert [t.interval for t in timers.created] == [2, 4, 5, 5]
    assert probe.calls == 3
    assert not monitor.online


def test_successful_probe_goes_online(timers):
    states = []
    probe = Probe()
    monitor = ConnectivityMonitor(probe, timer_factory=timers)
    monitor.subscribe(states.append)
    monitor.mark_offline()

    probe.up = True
    timers.created[-1].fire()

    assert monitor.online
    assert states == [False, True]
    assert monitor.pending_timer is None


def test_mark_online_cancels_pending_retry(timers):
    probe = Probe()
    monitor = ConnectivityMonitor(probe, timer_factory=timers)
    monitor.mark_offline()
    pending = timers.created[-1]

    probe.up = True
    assert monitor.mark_online() is True

    assert pending.cancelled
    assert monitor.online


def test_manual_reconnect_failure_reschedules(timers):
    monitor = ConnectivityMonitor(Probe(), timer_factory=timers)
    monitor.mark_offline()
    first = timers.created[-1]

    assert monitor.attempt_reconnection() is False

    assert first.cancelled
    assert timers.created[-1] is not first
    assert not monitor.online


def test_attempt_reconnection_when_online_does_not_probe(timers):
    probe = Probe()
    monitor = ConnectivityMonitor(probe, timer_factory=timers)
    assert monitor.attempt_reconnection() is True
    assert probe.calls == 0


def test_unsubscribe_and_subscriber_errors(timers):
    seen = []

    def broken(_online):
        raise RuntimeError("boom")

    monitor = ConnectivityMonitor(Probe(), timer_factory=timers)
    monitor.subscribe(broken)
    unsubscribe = monitor.subscribe(seen.append)
    monitor.mark_offline()
    unsubscribe()
    monitor.close()
    monitor.mark_online()

    assert seen == [False]
