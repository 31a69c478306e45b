"""
Tests for the data refresh and status pollers.
"""
import sys
import threading
import time
from pathlib import Path
sys.path.append(str(Path(__file__).parent.parent))

import pytest

from ids_monitor.errors import FetchError
from ids_monitor.pollers import DataRefreshPoller, StatusPoller
from ids_monitor.store import FlowStore, StatusHolder

SCENARIO = (
    "Timestamp,Source IP,Destination IP,Source Port,Destination Port,Protocol,Label\n"
    "2024-01-01T00:00:00Z,10.0.0.1,10.0.0.2,443,55000,TCP,BENIGN\n"
    "2024-01-01T00:00:01Z,10.0.0.3,10.0.0.2,22,55001,TCP,BruteForce"
)


def scripted(*items):
    """Build a fetcher that returns (or raises) the given items in turn."""
    queue = list(items)
    lock = threading.Lock()

    def fetch():
        with lock:
            item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item
    return fetch


def test_failure_then_success_clears_error():
    store = FlowStore()
    poller = DataRefreshPoller(store, scripted(FetchError('connection refused'), SCENARIO))

    assert poller.poll_once() is False
    assert poller.error is not None
    assert poller.blocking_error == poller.error
    assert poller.last_updated is None
    assert len(store) == 0

    assert poller.poll_once() is True
    assert poller.error is None
    assert poller.blocking_error is None
    assert poller.last_updated is not None
    assert [r.src_ip for r in store.query()] == ['10.0.0.1', '10.0.0.3']


def test_failure_keeps_previous_records():
    store = FlowStore()
    poller = DataRefreshPoller(store, scripted(SCENARIO, FetchError('timeout'), ',,,\n1,2,3'))
    assert poller.poll_once() is True
    good = store.query()
    stamp = poller.last_updated

    assert poller.poll_once() is False
    assert store.query() is good
    assert poller.error is not None
    # Previous data exists, so the error is not blocking
    assert poller.blocking_error is None
    assert poller.last_updated == stamp

    # Unparseable payloads are treated the same way
    assert poller.poll_once() is False
    assert store.query() is good


def test_header_only_payload_replaces_with_empty_set():
    store = FlowStore()
    poller = DataRefreshPoller(store, scripted(SCENARIO, 'Timestamp,Source IP,Label\n'))
    poller.poll_once()
    poller.poll_once()
    assert len(store) == 0
    assert poller.error is None


def test_refresh_listeners():
    store = FlowStore()
    poller = DataRefreshPoller(store, scripted(SCENARIO, SCENARIO))
    received = []
    subscription = poller.subscribe(received.append)

    poller.refresh()
    assert len(received) == 1
    assert received[0] == store.query()

    subscription.cancel()
    poller.refresh()
    assert len(received) == 1


def test_stale_response_is_discarded():
    """A slow response arriving after a newer one has been applied is dropped."""
    store = FlowStore()
    slow_started = threading.Event()
    release = threading.Event()
    calls = []

    def fetch():
        calls.append(None)
        if len(calls) == 1:
            slow_started.set()
            release.wait(5)
            return 'Source IP,Label\n10.0.0.1,DoS'
        return 'Source IP,Label\n10.0.0.2,Bot'

    poller = DataRefreshPoller(store, fetch)
    results = {}
    slow = threading.Thread(target=lambda: results.setdefault('slow', poller.poll_once()))
    slow.start()
    assert slow_started.wait(5)

    assert poller.poll_once() is True
    release.set()
    slow.join(5)

    assert results['slow'] is False
    assert [r.src_ip for r in store.query()] == ['10.0.0.2']


def test_response_after_stop_is_dropped():
    store = FlowStore()
    started = threading.Event()
    release = threading.Event()

    def fetch():
        started.set()
        release.wait(5)
        return SCENARIO

    poller = DataRefreshPoller(store, fetch)
    results = {}
    worker = threading.Thread(target=lambda: results.setdefault('late', poller.poll_once()))
    worker.start()
    assert started.wait(5)
    poller.stop()
    release.set()
    worker.join(5)

    assert results['late'] is False
    assert len(store) == 0
    assert poller.last_updated is None
    assert poller.poll_once() is False


def test_start_fetches_immediately_and_stop_is_final():
    store = FlowStore()
    fetched = threading.Event()
    calls = []

    def fetch():
        calls.append(time.monotonic())
        if len(calls) >= 3:
            fetched.set()
        return SCENARIO

    poller = DataRefreshPoller(store, fetch, interval=0.02)
    poller.start()
    poller.start()
    assert fetched.wait(5)
    poller.stop()
    poller.stop()

    count = len(calls)
    time.sleep(0.1)
    assert len(calls) == count
    assert not poller.running
    assert len(store) == 2


def test_initial_fetch_happens_before_first_interval():
    fetched = threading.Event()

    def fetch():
        fetched.set()
        return SCENARIO

    poller = DataRefreshPoller(FlowStore(), fetch, interval=60)
    poller.start()
    try:
        assert fetched.wait(2)
    finally:
        poller.stop()


def test_start_after_stop_does_nothing():
    poller = DataRefreshPoller(FlowStore(), scripted(), interval=1)
    poller.stop()
    poller.start()
    assert not poller.running


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        StatusPoller(StatusHolder(), scripted(), interval=0)


def test_status_poller_replaces_and_soft_fails():
    holder = StatusHolder()
    poller = StatusPoller(holder, scripted(
        {'running': True, 'stats': {'total_traffic': 10, 'attack_traffic': 4}},
        FetchError('server down'),
        ['not', 'an', 'object'],
        {'running': False, 'stats': {'total_traffic': 12}},
    ))

    assert poller.poll_once() is True
    first = holder.current()
    assert first.running is True
    assert first.attack_traffic == 4

    assert poller.poll_once() is False
    assert holder.current() is first
    assert poller.poll_once() is False
    assert holder.current() is first

    assert poller.poll_once() is True
    assert holder.current().running is False
    assert holder.current().total_traffic == 12


def test_listeners_not_notified_when_stopped_during_apply():
    """Stopping between applying a refresh and notifying listeners silences the listeners."""
    poller = None

    class StoppingStore(FlowStore):
        def replace(self, records):
            snapshot = super().replace(records)
            poller.stop()
            return snapshot

    store = StoppingStore()
    poller = DataRefreshPoller(store, scripted(SCENARIO))
    received = []
    poller.subscribe(received.append)

    assert poller.poll_once() is True
    assert len(store) == 2
    assert received == []
