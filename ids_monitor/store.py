"""In-memory holders for the current flow records and service status."""
import threading
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from ids_monitor.schemas import BENIGN, FlowRecord, ServiceStatus


def _as_aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def in_time_range(records: Iterable[FlowRecord], start: datetime, end: datetime) -> List[FlowRecord]:
    """Records whose timestamp falls in ``[start, end]`` inclusive. Naive bounds are taken as UTC."""
    start, end = _as_aware(start), _as_aware(end)
    return [r for r in records if start <= r.timestamp <= end]


def with_label(records: Iterable[FlowRecord], label: str) -> List[FlowRecord]:
    return [r for r in records if r.label == label]


def of_kind(records: Iterable[FlowRecord], kind: str) -> List[FlowRecord]:
    """Filter by ``all``, ``benign``, ``attacks`` or an exact label."""
    if kind == 'all':
        return list(records)
    if kind == 'benign':
        return with_label(records, BENIGN)
    if kind == 'attacks':
        return [r for r in records if r.is_attack]
    return with_label(records, kind)


def matching(records: Iterable[FlowRecord], text: str) -> List[FlowRecord]:
    """Case-insensitive substring match over source/destination IP, protocol and label."""
    needle = text.strip().lower()
    if not needle:
        return list(records)
    return [
        r for r in records
        if any(needle in field.lower() for field in (r.src_ip, r.dst_ip, r.protocol, r.label))
    ]


class FlowStore:
    """
    The single collection of current FlowRecords.

    Contents are held as an immutable tuple and swapped wholesale on
    ``replace``, so every read sees one complete snapshot. Each query method
    works on a single snapshot.
    """

    def __init__(self, records: Optional[Iterable[FlowRecord]] = None):
        self._lock = threading.Lock()
        self._records: Tuple[FlowRecord, ...] = tuple(records or ())
        self._version = 0

    def replace(self, records: Iterable[FlowRecord]) -> Tuple[FlowRecord, ...]:
        snapshot = tuple(records)
        with self._lock:
            self._records = snapshot
            self._version += 1
        return snapshot

    def query(self) -> Tuple[FlowRecord, ...]:
        """Return the current snapshot. Callers must treat it as read-only."""
        with self._lock:
            return self._records

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def __len__(self) -> int:
        return len(self.query())

    def filter_by_time_range(self, start: datetime, end: datetime) -> List[FlowRecord]:
        return in_time_range(self.query(), start, end)

    def filter_by_label(self, label: str) -> List[FlowRecord]:
        return with_label(self.query(), label)

    def filter_by_kind(self, kind: str) -> List[FlowRecord]:
        return of_kind(self.query(), kind)

    def attacks(self) -> List[FlowRecord]:
        return of_kind(self.query(), 'attacks')

    def search(self, text: str) -> List[FlowRecord]:
        return matching(self.query(), text)

    def labels(self) -> List[str]:
        """Distinct labels in first-seen order."""
        return list(dict.fromkeys(r.label for r in self.query()))


class StatusHolder:
    """Holds the most recent ServiceStatus; replaced wholesale on each poll."""

    def __init__(self, status: Optional[ServiceStatus] = None):
        self._lock = threading.Lock()
        self._status = status

    def replace(self, status: ServiceStatus) -> None:
        with self._lock:
            self._status = status

    def current(self) -> Optional[ServiceStatus]:
        with self._lock:
            return self._status
