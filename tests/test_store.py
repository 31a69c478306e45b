"""
Tests for the flow store and status holder.
"""
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
sys.path.append(str(Path(__file__).parent.parent))

import pytest

from ids_monitor.parser import parse_status
from ids_monitor.schemas import FlowRecord
from ids_monitor.store import FlowStore, StatusHolder


def _record(second, src='10.0.0.1', label='BENIGN', protocol='TCP'):
    return FlowRecord(
        timestamp=datetime(2024, 1, 1, 0, 0, second, tzinfo=timezone.utc),
        src_ip=src,
        dst_ip='10.0.0.2',
        protocol=protocol,
        label=label,
    )


@pytest.fixture
def store():
    return FlowStore([
        _record(0),
        _record(1, src='10.0.0.3', label='DoS'),
        _record(2, src='10.0.0.4', label='PortScan', protocol='UDP'),
        _record(3, label='DoS'),
    ])


def test_replace_swaps_contents(store):
    old = store.query()
    version = store.version
    new = store.replace([_record(10)])
    assert store.query() == new
    assert len(store) == 1
    assert store.version == version + 1
    # The previous snapshot is untouched
    assert len(old) == 4


def test_filter_by_time_range_is_inclusive(store):
    start = datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc)
    end = datetime(2024, 1, 1, 0, 0, 2, tzinfo=timezone.utc)
    assert [r.timestamp.second for r in store.filter_by_time_range(start, end)] == [1, 2]


def test_filter_by_time_range_accepts_naive_bounds(store):
    records = store.filter_by_time_range(datetime(2024, 1, 1, 0, 0, 3), datetime(2024, 1, 2))
    assert len(records) == 1


def test_filter_by_label(store):
    assert [r.timestamp.second for r in store.filter_by_label('DoS')] == [1, 3]
    assert store.filter_by_label('Bot') == []


def test_filter_by_kind(store):
    assert len(store.filter_by_kind('all')) == 4
    assert len(store.filter_by_kind('benign')) == 1
    assert len(store.filter_by_kind('attacks')) == 3
    assert len(store.filter_by_kind('PortScan')) == 1


def test_search(store):
    assert len(store.search('udp')) == 1
    assert len(store.search('10.0.0.3')) == 1
    assert len(store.search('  ')) == 4


def test_labels_in_first_seen_order(store):
    assert store.labels() == ['BENIGN', 'DoS', 'PortScan']


def test_readers_never_see_mixed_snapshots():
    """Concurrent readers observe either the old or the new record set, never a mix."""
    old = [_record(0, label='OLD') for _ in range(500)]
    new = [_record(1, label='NEW') for _ in range(500)]
    store = FlowStore(old)
    mixed = []
    done = threading.Event()

    def reader():
        while not done.is_set():
            labels = {r.label for r in store.query()}
            if len(labels) > 1:
                mixed.append(labels)

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    for i in range(200):
        store.replace(new if i % 2 == 0 else old)
    done.set()
    for t in threads:
        t.join()
    assert mixed == []


def test_status_holder_replaces_wholesale():
    holder = StatusHolder()
    assert holder.current() is None
    first = parse_status({'running': True, 'stats': {'total_traffic': 5}})
    second = parse_status({'running': False, 'stats': {}})
    holder.replace(first)
    holder.replace(second)
    assert holder.current() is second
