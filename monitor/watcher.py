from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack
from typing import Any, Callable, List, Optional, Sequence

from models import DNS_KEY_PATTERNS, EMPTY_SNAPSHOT, EvidenceSnapshot, WatcherState
from rules import SearchDomainRule, ServerAddressRule

from .lifecycle import SourceLifecycle
from .merge import build_snapshot
from .stores import SetupError


logger = logging.getLogger(__name__)

DEFAULT_FRIENDLY_NAME = 'DNS Parameters'


class EvidenceWatcher:
    """Watches DNS configuration in a ConfigStoreClient and publishes merged snapshots.

    Every store read and every publish runs on one worker thread, in enqueue
    order. Each Running period is a generation: store callbacks and queued
    resyncs carry the generation that created them and are dropped once that
    generation has been stopped, so nothing from a previous period can touch
    the published snapshot.

    `current_snapshot()` never blocks; snapshots are immutable and swapped by
    reference.
    """

    name = 'DNS'
    rule_types = (SearchDomainRule, ServerAddressRule)

    def __init__(
        self,
        store: Any,
        display_name: Optional[Callable[[str], str]] = None,
        on_update: Optional[Callable[[EvidenceSnapshot], None]] = None,
        patterns: Sequence[str] = DNS_KEY_PATTERNS,
    ):
        self.store = store
        self._patterns: List[str] = list(patterns)
        self._display_name = display_name
        self._on_update = on_update

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='dnswatch-update')
        self._worker_ident: Optional[int] = None
        self._closed = False

        self._state_lock = threading.Lock()
        self._generation = 0
        self._active_generation: Optional[int] = None
        self._snapshot: EvidenceSnapshot = EMPTY_SNAPSHOT
        self._subscription = None

        self._lifecycle = SourceLifecycle(self.name, self._setup, self._teardown)

    # identity

    @property
    def friendly_name(self) -> str:
        if self._display_name is None:
            return DEFAULT_FRIENDLY_NAME
        try:
            return str(self._display_name(DEFAULT_FRIENDLY_NAME) or DEFAULT_FRIENDLY_NAME)
        except Exception as e:
            logger.warning("display name lookup failed (%s): %s", self.name, e)
            return DEFAULT_FRIENDLY_NAME

    # public contract

    @property
    def state(self) -> WatcherState:
        return self._lifecycle.state

    @property
    def running(self) -> bool:
        return self._lifecycle.running

    @property
    def data_present(self) -> bool:
        return self._snapshot.data_present

    def current_snapshot(self) -> EvidenceSnapshot:
        return self._snapshot

    def start(self) -> bool:
        """Subscribe and queue the initial resync. Returns False if already running.

        Raises SetupError (after rolling back to STOPPED) when the subscription
        cannot be established.
        """
        if self._closed:
            raise RuntimeError("watcher is closed")
        on_worker = self._on_worker()
        try:
            started = self._lifecycle.start(blocking=not on_worker)
        except SetupError as e:
            logger.error("cannot start %s watcher: %s", self.name, e)
            raise
        except Exception as e:
            logger.error("cannot start %s watcher: %s", self.name, e)
            raise SetupError(str(e)) from e
        if started is None:
            return self._defer('start')
        return started

    def stop(self) -> bool:
        """Unsubscribe now and queue the clear. Returns False if already stopped.

        Called from the worker (an `on_update` listener) while another thread
        is inside start()/stop(), the stop is queued behind that call instead.
        """
        stopped = self._lifecycle.stop(blocking=not self._on_worker())
        if stopped is None:
            return self._defer('stop')
        return stopped

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until every update queued so far has run."""
        if self._closed or self._on_worker():
            return
        try:
            marker = self._executor.submit(lambda: None)
        except RuntimeError:
            # shut down by a concurrent close()
            return
        marker.result(timeout)

    def close(self) -> None:
        """Stop, run the remaining queue and release the worker. Further starts fail."""
        if self._closed:
            return
        on_worker = self._on_worker()
        self.stop()
        self._closed = True
        # the worker cannot join itself; queued work still runs after this task
        self._executor.shutdown(wait=not on_worker)

    def __enter__(self) -> 'EvidenceWatcher':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # lifecycle hooks

    def _setup(self) -> None:
        # The previous generation's clear must run before anything new is queued.
        self.drain()
        with self._state_lock:
            self._generation += 1
            gen = self._generation

        with ExitStack() as stack:
            sub = self.store.subscribe(self._patterns, self._make_callback(gen))
            if sub is None:
                raise SetupError("store returned no subscription handle")
            stack.callback(self.store.unsubscribe, sub)

            with self._state_lock:
                self._active_generation = gen
            stack.callback(self._deactivate, gen)

            self._executor.submit(self._resync, gen)
            self._subscription = sub
            stack.pop_all()
        logger.debug("%s watcher generation %s subscribed on %s", self.name, gen, self._patterns)

    def _teardown(self) -> None:
        sub = self._subscription
        self._subscription = None
        with self._state_lock:
            self._active_generation = None
        if sub is not None:
            self.store.unsubscribe(sub)
        self.drain()
        try:
            self._executor.submit(self._clear)
        except RuntimeError:
            # close() already shut the queue down
            self._clear()

    def _on_worker(self) -> bool:
        return threading.get_ident() == self._worker_ident

    def _defer(self, action: str) -> bool:
        if self._closed:
            return False
        try:
            self._executor.submit(self._run_deferred, action)
        except RuntimeError:
            return False
        logger.debug("%s %s queued behind a lifecycle call in progress", self.name, action)
        return True

    def _run_deferred(self, action: str) -> None:
        self._worker_ident = threading.get_ident()
        try:
            getattr(self, action)()
        except Exception as e:
            logger.warning("queued %s of %s watcher failed: %s", action, self.name, e)

    def _deactivate(self, gen: int) -> None:
        with self._state_lock:
            if self._active_generation == gen:
                self._active_generation = None

    def _make_callback(self, gen: int) -> Callable[[List[str]], None]:
        def on_change(changed_keys: List[str]) -> None:
            with self._state_lock:
                if gen != self._active_generation or self._closed:
                    return
                self._executor.submit(self._resync, gen)
            logger.debug("%s change notification: %s", self.name, changed_keys)
        return on_change

    # worker tasks

    def _resync(self, gen: int) -> None:
        self._worker_ident = threading.get_ident()
        if gen != self._active_generation:
            return
        try:
            raw = self.store.snapshot_read(self._patterns)
        except Exception as e:
            logger.warning("%s store read failed: %s", self.name, e)
            raw = None
        snap = build_snapshot(raw)
        with self._state_lock:
            if gen != self._active_generation:
                return
            self._snapshot = snap
        logger.debug(
            "%s resync: domains=%s servers=%s",
            self.name,
            sorted(snap.search_domains),
            sorted(snap.dns_servers),
        )
        self._notify(snap)

    def _clear(self) -> None:
        self._worker_ident = threading.get_ident()
        with self._state_lock:
            self._snapshot = EMPTY_SNAPSHOT
        self._notify(EMPTY_SNAPSHOT)

    def _notify(self, snap: EvidenceSnapshot) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(snap)
        except Exception as e:
            logger.warning("%s update listener failed: %s", self.name, e)
