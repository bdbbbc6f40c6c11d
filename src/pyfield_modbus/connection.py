"""Connection lifecycle: reconnect with backoff, terminal failure, serialised exchanges."""

import logging
import threading
import time
from concurrent.futures import Future
from typing import Callable, TypeVar

from .config import ClientSettings
from .errors import ClientClosedError, ConnectionFailedError
from .events import Event
from .transport import Transport
from .types import ConnectionState

logger = logging.getLogger(__name__)

T = TypeVar("T")
TransportFactory = Callable[[ClientSettings], Transport]


class ConnectionManager:
    """
    Owns the transport of one client.

    State moves DISCONNECTED -> CONNECTING -> CONNECTED, back to CONNECTING when
    an exchange fails, and to FAILED once a reconnect sequence exceeds
    settings.reconnect_timeout. FAILED is terminal: every later call raises
    ConnectionFailedError without touching the wire.

    Two locks are involved. The reconnect lock admits one reconnect sequence at
    a time; the send lock admits one request/response exchange at a time. A
    caller never holds both, so a sender waiting for the wire cannot deadlock a
    running reconnect.
    """

    def __init__(self, transport_factory: TransportFactory, settings: ClientSettings, *, name: str = "modbus") -> None:
        self._factory = transport_factory
        self._settings = settings
        self._name = name

        self._reconnect_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._closing = threading.Event()

        self._state = ConnectionState.DISCONNECTED
        self._transport: Transport | None = None
        self._attempt: Transport | None = None
        self._was_connected = False
        self._disconnect_notified = False
        self._closed = False

        self._connecting_task: Future | None = None

        self.connected = Event("connected")
        self.disconnected = Event("disconnected")

    def __repr__(self) -> str:
        return f"<ConnectionManager {self._name} {self._state.value}>"

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @settings.setter
    def settings(self, value: ClientSettings) -> None:
        # an open handle keeps its settings; the next reconnect picks these up
        self._settings = value

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def was_connected(self) -> bool:
        return self._was_connected

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def connecting_task(self) -> Future | None:
        """Future of the most recent background reconnect, if any."""
        return self._connecting_task

    def check_open(self) -> None:
        if self._closed:
            raise ClientClosedError(self._name)

    def _check_not_failed(self) -> None:
        if self._state is ConnectionState.FAILED:
            raise ConnectionFailedError(
                "Reconnecting has failed; create a new client",
                was_connected=self._was_connected,
            )

    # ------------------------------------------------------------------
    # Reconnect
    # ------------------------------------------------------------------

    def reconnect(self) -> None:
        """
        Connect unless already connected. Blocks until connected, closed, or
        failed for good (ConnectionFailedError).
        """
        self.check_open()
        self._check_not_failed()
        if self._state is ConnectionState.CONNECTED:
            return
        # listeners run without the reconnect lock so they may call back into the client
        self._notify_disconnected()
        if self._connect():
            logger.info("%s: connected", self._name)
            self.connected.fire(self)

    def _connect(self) -> bool:
        """Run the attempt loop under the reconnect lock; False when another caller already connected."""
        with self._reconnect_lock:
            self.check_open()
            self._check_not_failed()
            if self._state is ConnectionState.CONNECTED:
                return False

            with self._state_lock:
                self._state = ConnectionState.CONNECTING
            settings = self._settings
            timeouts = settings.connect_timeouts()
            started = time.monotonic()
            attempt = 0

            while True:
                attempt += 1
                timeout = next(timeouts)
                transport = self._factory(settings)
                self._attempt = transport
                try:
                    transport.open(timeout)
                except OSError as e:
                    transport.close()
                    self.check_open()
                    elapsed = time.monotonic() - started
                    if settings.reconnect_timeout is None or elapsed <= settings.reconnect_timeout:
                        logger.warning(
                            "%s: connect attempt %d failed: %s; retrying in %ss",
                            self._name,
                            attempt,
                            e,
                            settings.retry_interval,
                        )
                        if self._closing.wait(settings.retry_interval):
                            raise ClientClosedError(self._name) from e
                        continue
                    raise self._fail(e) from e
                except Exception as e:
                    transport.close()
                    self.check_open()
                    raise self._fail(e) from e
                finally:
                    self._attempt = None
                break

            with self._state_lock:
                if self._closed:
                    transport.close()
                    raise ClientClosedError(self._name)
                self._transport = transport
                self._state = ConnectionState.CONNECTED
                self._was_connected = True
                self._disconnect_notified = False

            logger.debug("%s: open after %d attempt(s)", self._name, attempt)
            return True

    def _fail(self, cause: BaseException) -> ConnectionFailedError:
        with self._state_lock:
            self._state = ConnectionState.FAILED
        logger.error("%s: reconnect failed, giving up: %s", self._name, cause)
        return ConnectionFailedError(was_connected=self._was_connected, cause=cause)

    def ensure_connected(self) -> None:
        """Raise at once when closed or failed; otherwise drive or await a reconnect."""
        self.check_open()
        self._check_not_failed()
        if self._state is not ConnectionState.CONNECTED:
            self.reconnect()

    def reconnect_in_background(self) -> Future:
        """
        Run reconnect() on a daemon thread and return its Future; failures are
        logged and kept on the future. While one is still running it is returned
        instead of starting another.
        """
        self.check_open()
        with self._state_lock:
            task = self._connecting_task
            if task is not None and not task.done():
                return task
            future: Future = Future()
            future.add_done_callback(self._log_background_result)
            self._connecting_task = future
        thread = threading.Thread(
            target=self._run_background,
            args=(future,),
            name=f"{self._name}-reconnect",
            daemon=True,
        )
        thread.start()
        return future

    def _run_background(self, future: Future) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            self.reconnect()
        except Exception as e:
            future.set_exception(e)
        else:
            future.set_result(None)

    def _log_background_result(self, future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None and not isinstance(exc, ClientClosedError):
            logger.error("%s: background reconnect failed: %s", self._name, exc)

    # ------------------------------------------------------------------
    # Exchanges
    # ------------------------------------------------------------------

    def exchange(self, func: Callable[[Transport], T]) -> T:
        """
        Run func(transport) with exclusive use of the wire.

        A transport error (OSError, including TimeoutError) drops the handle,
        moving the state back to CONNECTING, and propagates to the caller.
        """
        while True:
            self.ensure_connected()
            with self._send_lock:
                self.check_open()
                transport = self._transport
                if self._state is not ConnectionState.CONNECTED or transport is None:
                    # lost while waiting for the lock
                    continue
                try:
                    return func(transport)
                except OSError:
                    self._drop(transport)
                    raise

    def _drop(self, transport: Transport) -> None:
        with self._state_lock:
            if self._transport is transport:
                self._transport = None
                if self._state is ConnectionState.CONNECTED:
                    self._state = ConnectionState.CONNECTING
        transport.close()

    def _notify_disconnected(self) -> None:
        with self._state_lock:
            if not self._was_connected or self._disconnect_notified:
                return
            self._disconnect_notified = True
        logger.debug("%s: firing disconnected", self._name)
        self.disconnected.fire(self)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def disconnect(self) -> None:
        """Close the current handle; the next exchange reconnects."""
        self.check_open()
        with self._send_lock:
            with self._state_lock:
                transport, self._transport = self._transport, None
                if self._state is ConnectionState.CONNECTED:
                    self._state = ConnectionState.DISCONNECTED
        if transport is not None:
            transport.close()
            logger.info("%s: disconnected", self._name)
            self._notify_disconnected()

    def close(self) -> None:
        """Dispose for good. Idempotent; unblocks pending connects, reads and retry sleeps."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            transport, self._transport = self._transport, None
            attempt = self._attempt
            task = self._connecting_task
            if self._state is not ConnectionState.FAILED:
                self._state = ConnectionState.DISCONNECTED
        self._closing.set()
        if attempt is not None:
            attempt.cancel()
        if transport is not None:
            transport.close()
        if task is not None:
            # only a task that has not started yet is cancelled; a running one sees _closing
            task.cancel()
        logger.debug("%s: closed", self._name)
        if transport is not None:
            self._notify_disconnected()
