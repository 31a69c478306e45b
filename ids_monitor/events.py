"""
Observer lists and the attack-event channel.

Subscribers register a callback and get back a Subscription handle; cancelling
the handle takes effect before the next delivered event. Delivery walks a
snapshot of the current subscribers in registration order, one event at a
time, so events reach every subscriber in arrival order. Nothing is buffered:
an event published with no subscribers is dropped.
"""
import logging
import threading
from typing import Any, Callable, List, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketIOConnectionError
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_when_event_set, wait_exponential

from ids_monitor.errors import FetchError
from ids_monitor.schemas import AttackEvent

logger = logging.getLogger(__name__)


class Subscription:
    """Cancellation handle returned by ``subscribe``. ``cancel`` may be called any number of times."""

    def __init__(self, owner: 'ObserverList', callback: Callable[..., Any]):
        self.callback = callback
        self.active = True
        self._owner = owner

    def cancel(self) -> None:
        self._owner.remove(self)

    def __enter__(self) -> 'Subscription':
        return self

    def __exit__(self, *exc_info) -> None:
        self.cancel()


class ObserverList:
    def __init__(self, name: str = 'observers'):
        self.name = name
        # Reentrant so a callback may cancel or subscribe during delivery.
        self._lock = threading.RLock()
        self._subscriptions: List[Subscription] = []

    def subscribe(self, callback: Callable[..., Any]) -> Subscription:
        if not callable(callback):
            raise TypeError(f'{self.name}: subscriber must be callable')
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def clear(self) -> None:
        with self._lock:
            for subscription in self._subscriptions:
                subscription.active = False
            self._subscriptions = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def notify(self, *args: Any) -> int:
        """Invoke every active subscriber once. Returns how many were called successfully."""
        delivered = 0
        with self._lock:
            current = list(self._subscriptions)
            for subscription in current:
                if not subscription.active:
                    continue
                try:
                    subscription.callback(*args)
                    delivered += 1
                except Exception:
                    logger.exception(f'{self.name}: subscriber {subscription.callback!r} failed')
        return delivered


class AttackEventChannel:
    """Republishes attack-detected notifications to subscribers as AttackEvents."""

    def __init__(self):
        self._observers = ObserverList('attack-events')
        self._closed = False

    def subscribe(self, callback: Callable[[AttackEvent], Any]) -> Subscription:
        return self._observers.subscribe(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._observers)

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, payload: Any) -> int:
        if self._closed:
            logger.debug('Attack event received after close, dropped')
            return 0
        event = AttackEvent.from_payload(payload)
        if not self._observers:
            logger.debug(f'Attack event {event.type!r} dropped, no subscribers')
            return 0
        return self._observers.notify(event)

    def close(self) -> None:
        self._closed = True
        self._observers.clear()


class SocketIOAttackFeed:
    """
    Keeps a Socket.IO connection to the detection server and feeds its attack
    events into a channel.

    If the server is unreachable at ``start``, connection attempts continue in
    a background thread with exponential backoff until one succeeds or the
    feed is stopped. Once connected, the client's own reconnection takes over.
    """

    def __init__(
        self,
        channel: AttackEventChannel,
        server_url: str,
        event_name: str = 'attack_detected',
        client: Optional[socketio.Client] = None,
        connect_timeout: float = 5.0,
        retry_interval: float = 1.0,
        max_retry_interval: float = 30.0,
    ):
        self.channel = channel
        self.server_url = server_url
        self.event_name = event_name
        self.connect_timeout = connect_timeout
        self.retry_interval = retry_interval
        self.max_retry_interval = max_retry_interval
        self.client = client if client is not None else socketio.Client(reconnection=True)
        self.client.on(event_name, handler=self._handle)
        self.client.on('connect', handler=self._on_connect)
        self.client.on('disconnect', handler=self._on_disconnect)
        self._stopped = threading.Event()
        self._connected = threading.Event()
        self._started = False
        self._retry_thread: Optional[threading.Thread] = None

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def wait_connected(self, timeout: Optional[float] = None) -> bool:
        return self._connected.wait(timeout)

    def _on_connect(self) -> None:
        logger.info(f'Attack feed connected to {self.server_url}')

    def _on_disconnect(self, *args) -> None:
        logger.info(f'Attack feed disconnected from {self.server_url}')

    def _handle(self, data: Any) -> None:
        if self._stopped.is_set():
            return
        logger.info(f'Attack detected: {data}')
        self.channel.publish(data)

    def connect(self) -> None:
        """Make one connection attempt. Raises FetchError when the server cannot be reached."""
        if self._stopped.is_set():
            raise FetchError('attack feed stopped', source=self.server_url)
        try:
            self.client.connect(self.server_url, wait_timeout=self.connect_timeout)
        except SocketIOConnectionError as e:
            raise FetchError(f'Cannot connect attack feed to {self.server_url}: {e}', source=self.server_url) from e
        self._connected.set()

    def start(self) -> None:
        """Connect to the server, retrying in the background while it is unreachable. Idempotent."""
        if self._started or self._stopped.is_set():
            return
        self._started = True
        try:
            self.connect()
        except FetchError as e:
            logger.warning(f'{e}; retrying in background')
            self._retry_thread = threading.Thread(
                target=self._retry_connect, name='attack-feed-connect', daemon=True
            )
            self._retry_thread.start()

    def _log_retry(self, retry_state: RetryCallState) -> None:
        logger.debug(
            f'Attack feed connection attempt {retry_state.attempt_number} failed, '
            f'next in {retry_state.next_action.sleep:.1f}s'
        )

    def _retry_connect(self) -> None:
        if self._stopped.wait(self.retry_interval):
            return
        retrying = Retrying(
            stop=stop_when_event_set(self._stopped),
            wait=wait_exponential(multiplier=self.retry_interval, min=self.retry_interval, max=self.max_retry_interval),
            retry=retry_if_exception_type(FetchError),
            sleep=self._stopped.wait,
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            retrying(self.connect)
        except FetchError:
            return
        if self._stopped.is_set():
            # stop() raced with the successful attempt
            self.client.disconnect()

    def stop(self) -> None:
        if self._stopped.is_set():
            return
        self._stopped.set()
        thread = self._retry_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(self.connect_timeout)
        if self._connected.is_set() and self.client.connected:
            self.client.disconnect()
