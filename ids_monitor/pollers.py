"""
Background pollers that keep the flow store and the service status current.

Each poller fetches once immediately on ``start`` and then on a fixed
interval. Every fetch is numbered; a response is applied only if no later
request has been applied already and the poller has not been stopped, so a
slow response can never overwrite a newer one or land after teardown.
"""
import logging
import threading
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple

from ids_monitor.errors import StaleResponse
from ids_monitor.events import ObserverList, Subscription
from ids_monitor.parser import parse_records, parse_status
from ids_monitor.schemas import FlowRecord, ServiceStatus, utcnow
from ids_monitor.store import FlowStore, StatusHolder

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Any]


class IntervalPoller:
    name = 'poller'

    def __init__(self, fetch: Fetcher, interval: float):
        if interval <= 0:
            raise ValueError('interval must be positive')
        self._fetch = fetch
        self.interval = float(interval)
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._issued = 0
        self._applied = 0

    # ------------------------------------------------------------------
    def start(self) -> None:
        """Start polling in a daemon thread. Calling start twice, or after stop, does nothing."""
        with self._lock:
            if self._thread is not None or self._stop_event.is_set():
                return
            self._thread = threading.Thread(target=self._run, name=f'{self.name}-thread', daemon=True)
            self._thread.start()
        logger.info(f'{self.name} started (every {self.interval:g}s)')

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop polling. Safe to call more than once; late responses are dropped."""
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        self._on_stop()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info(f'{self.name} stopped')

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self.stopped

    def _run(self) -> None:
        self.poll_once()
        while not self._stop_event.wait(self.interval):
            self.poll_once()

    # ------------------------------------------------------------------
    def poll_once(self) -> bool:
        """Run one fetch-decode-apply cycle. Returns True when a fresh result was applied."""
        if self._stop_event.is_set():
            return False
        with self._lock:
            self._issued += 1
            sequence = self._issued
        self._on_begin()

        try:
            result = self._decode(self._fetch())
        except Exception as e:
            try:
                self._commit(sequence, lambda: self._on_failure(e))
            except StaleResponse as stale:
                logger.debug(f'{self.name}: discarded failed {stale}')
            return False

        try:
            applied = self._commit(sequence, lambda: self._on_success(result))
        except StaleResponse as stale:
            logger.debug(f'{self.name}: discarded {stale}')
            return False
        if not self._stop_event.is_set():
            self._after_success(applied)
        return True

    def _commit(self, sequence: int, apply: Callable[[], Any]) -> Any:
        with self._lock:
            if self._stop_event.is_set() or sequence <= self._applied:
                raise StaleResponse(sequence, max(self._applied, self._issued))
            self._applied = sequence
            return apply()

    # hooks -------------------------------------------------------------
    def _on_begin(self) -> None:
        pass

    def _on_stop(self) -> None:
        pass

    def _decode(self, payload: Any) -> Any:
        return payload

    def _on_success(self, result: Any) -> Any:
        raise NotImplementedError

    def _on_failure(self, error: Exception) -> None:
        raise NotImplementedError

    def _after_success(self, applied: Any) -> None:
        pass


class DataRefreshPoller(IntervalPoller):
    """
    Replaces the flow store with the latest record set from the data source.

    On failure the previous contents stay in place and ``error`` is set; the
    next successful refresh clears it. Listeners registered with ``subscribe``
    receive the new record tuple after every successful refresh.
    """

    name = 'data-refresh'

    def __init__(self, store: FlowStore, fetch: Fetcher, interval: float = 30.0):
        super().__init__(fetch, interval)
        self.store = store
        self.last_updated: Optional[datetime] = None
        self.error: Optional[str] = None
        self.loading = False
        self._listeners = ObserverList('data-refresh-listeners')

    def subscribe(self, listener: Callable[[tuple], Any]) -> Subscription:
        return self._listeners.subscribe(listener)

    def refresh(self) -> bool:
        return self.poll_once()

    @property
    def has_data(self) -> bool:
        return self.last_updated is not None

    @property
    def blocking_error(self) -> Optional[str]:
        """The error message when no refresh has ever succeeded, else None."""
        return self.error if not self.has_data else None

    def _on_begin(self) -> None:
        self.loading = True

    def _decode(self, payload: Any) -> List[FlowRecord]:
        return parse_records(payload)

    def _on_success(self, records: List[FlowRecord]) -> Tuple[FlowRecord, ...]:
        snapshot = self.store.replace(records)
        self.last_updated = utcnow()
        self.error = None
        self.loading = False
        logger.info(f'Loaded {len(snapshot)} flow records')
        return snapshot

    def _on_failure(self, error: Exception) -> None:
        self.error = f'Error loading IDS data: {error}'
        self.loading = False
        if self.has_data:
            logger.error(f'Data refresh failed, keeping previous {len(self.store)} records: {error}')
        else:
            logger.error(f'Initial data load failed: {error}')

    def _on_stop(self) -> None:
        # Waits for an in-flight notify; no listener runs after this returns.
        self._listeners.clear()

    def _after_success(self, snapshot: Tuple[FlowRecord, ...]) -> None:
        self._listeners.notify(snapshot)


class StatusPoller(IntervalPoller):
    """Polls the control endpoint; failures are logged and the previous status is kept."""

    name = 'status'

    def __init__(self, holder: StatusHolder, fetch: Fetcher, interval: float = 2.0):
        super().__init__(fetch, interval)
        self.holder = holder

    def _decode(self, payload: Any) -> ServiceStatus:
        return parse_status(payload)

    def _on_success(self, status: ServiceStatus) -> None:
        self.holder.replace(status)

    def _on_failure(self, error: Exception) -> None:
        logger.warning(f'Error fetching status: {error}')
