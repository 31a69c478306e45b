"""
The monitoring pipeline: one explicitly constructed object that owns the flow
store, the service-status holder, the attack-event channel and the pollers
feeding them. Consumers receive the pipeline (or its parts) by reference.
"""
import logging
from functools import partial
from typing import Any, Callable, Dict, Optional

import socketio

from ids_monitor.events import AttackEventChannel, SocketIOAttackFeed, Subscription
from ids_monitor.pollers import DataRefreshPoller, Fetcher, StatusPoller
from ids_monitor.schemas import AttackEvent, ServiceStatus, StatisticsSnapshot
from ids_monitor.sources import fetch_flow_payload, fetch_status
from ids_monitor.statistics import snapshot
from ids_monitor.store import FlowStore, StatusHolder
from ids_monitor.utils import DEFAULT_CONFIG

logger = logging.getLogger(__name__)


class MonitoringPipeline:
    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        data_fetcher: Optional[Fetcher] = None,
        status_fetcher: Optional[Fetcher] = None,
        event_client: Optional[socketio.Client] = None,
    ):
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        timeout = float(self.config['request_timeout'])
        attempts = int(self.config['fetch_attempts'])

        self.store = FlowStore()
        self.status = StatusHolder()
        self.events = AttackEventChannel()

        if data_fetcher is None:
            data_fetcher = partial(fetch_flow_payload, self.config['data_source'], timeout, attempts)
        if status_fetcher is None:
            status_fetcher = partial(fetch_status, self.config['server_url'], timeout, attempts)

        self.data_poller = DataRefreshPoller(
            self.store, data_fetcher, float(self.config['data_refresh_interval'])
        )
        self.status_poller = StatusPoller(
            self.status, status_fetcher, float(self.config['status_poll_interval'])
        )
        self._event_client = event_client
        self.feed: Optional[SocketIOAttackFeed] = None
        self._started = False
        self._stopped = False

    # ------------------------------------------------------------------
    def start(self, events: bool = True) -> None:
        """Start both pollers and, unless disabled, the attack feed. Idempotent."""
        if self._started or self._stopped:
            return
        self._started = True
        self.data_poller.start()
        self.status_poller.start()
        if events:
            self.feed = SocketIOAttackFeed(
                self.events,
                self.config['server_url'],
                event_name=self.config['event_name'],
                client=self._event_client,
                connect_timeout=float(self.config['request_timeout']),
            )
            self.feed.start()
        logger.info('Monitoring pipeline started')

    def stop(self) -> None:
        """Tear everything down. Safe to call more than once; no callbacks fire afterwards."""
        if self._stopped:
            return
        self._stopped = True
        self.data_poller.stop()
        self.status_poller.stop()
        if self.feed is not None:
            self.feed.stop()
        self.events.close()
        logger.info('Monitoring pipeline stopped')

    def __enter__(self) -> 'MonitoringPipeline':
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    # ------------------------------------------------------------------
    def statistics(self) -> StatisticsSnapshot:
        return snapshot(self.store, self.status.current(), int(self.config['top_sources_limit']))

    def service_status(self) -> Optional[ServiceStatus]:
        return self.status.current()

    def subscribe_attacks(self, callback: Callable[[AttackEvent], Any]) -> Subscription:
        return self.events.subscribe(callback)

    def subscribe_refresh(self, callback: Callable[[tuple], Any]) -> Subscription:
        return self.data_poller.subscribe(callback)

    def refresh(self) -> bool:
        return self.data_poller.refresh()
