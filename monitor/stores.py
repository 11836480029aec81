from __future__ import annotations

import copy
import logging
import re
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import dns.name
import dns.resolver

from models import (
    PROP_DOMAIN_NAME,
    PROP_SEARCH_DOMAINS,
    PROP_SERVER_ADDRESSES,
    SETUP_SCOPE,
    STATE_SCOPE,
    dns_key,
)


logger = logging.getLogger(__name__)

ChangeCallback = Callable[[List[str]], None]

RESOLV_CONF_SERVICE = 'resolvconf'


class SetupError(RuntimeError):
    """Subscription or notification-key registration failed."""


class Subscription:
    """Handle returned by subscribe(); owned by the subscriber until unsubscribe()."""

    def __init__(self, patterns: Sequence[str], callback: ChangeCallback):
        self.patterns = tuple(str(p) for p in patterns)
        self._compiled = [re.compile(p) for p in self.patterns]
        self.callback = callback
        self.active = True

    def matching(self, keys: Iterable[str]) -> List[str]:
        return [k for k in keys if any(rx.fullmatch(k) for rx in self._compiled)]


class MemoryConfigStore:
    """Thread-safe in-process configuration store.

    Values are attribute dicts keyed by raw key (e.g.
    `State:/Network/Service/en0/DNS`). Key patterns are regular expressions
    matched against the whole key. Change callbacks run in the thread that
    applied the change, outside the store lock; all keys changed by one
    update() are delivered in a single batched call.
    unsubscribe() waits for a delivery in progress; once it returns the
    handle's callback is never called again.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._lock = threading.Lock()
        self._delivery_lock = threading.RLock()
        self._values: Dict[str, Any] = dict(initial or {})
        self._subs: List[Subscription] = []

    # ConfigStoreClient contract

    def subscribe(self, patterns: Sequence[str], callback: ChangeCallback) -> Subscription:
        if not patterns:
            raise SetupError("no notification keys given")
        try:
            sub = Subscription(patterns, callback)
        except re.error as e:
            raise SetupError(f"invalid notification key pattern: {e}") from e
        with self._lock:
            self._subs.append(sub)
        logger.debug("subscribed %s", list(sub.patterns))
        return sub

    def unsubscribe(self, handle: Subscription) -> None:
        with self._delivery_lock, self._lock:
            handle.active = False
            if handle in self._subs:
                self._subs.remove(handle)
        logger.debug("unsubscribed %s", list(handle.patterns))

    def snapshot_read(self, patterns: Sequence[str]) -> Optional[Dict[str, Any]]:
        rxs = [re.compile(p) for p in patterns]
        with self._lock:
            out = {k: copy.deepcopy(v) for k, v in self._values.items() if any(rx.fullmatch(k) for rx in rxs)}
        return out

    # mutation

    def set(self, key: str, value: Dict[str, Any]) -> None:
        self.update({key: value})

    def remove(self, key: str) -> None:
        self.update({key: None})

    def update(self, changes: Dict[str, Any]) -> List[str]:
        """Apply changes (None removes a key) and notify once with every changed key."""
        changed = []
        with self._lock:
            for key, value in (changes or {}).items():
                if value is None:
                    if key in self._values:
                        self._values.pop(key, None)
                        changed.append(key)
                    continue
                if self._values.get(key) != value:
                    self._values[key] = copy.deepcopy(value)
                    changed.append(key)
        if changed:
            self.notify(changed)
        return changed

    def replace(self, values: Dict[str, Any]) -> List[str]:
        """Make the store hold exactly `values`; notify with the keys that differ."""
        with self._lock:
            current = set(self._values)
        changes: Dict[str, Any] = {k: None for k in current if k not in values}
        changes.update(values)
        return self.update(changes)

    def notify(self, keys: Iterable[str]) -> None:
        """Deliver a change notification for `keys` to every matching subscriber."""
        keys = list(keys)
        with self._lock:
            subs = list(self._subs)
        for sub in subs:
            hit = sub.matching(keys)
            if not hit:
                continue
            with self._delivery_lock:
                if not sub.active:
                    continue
                try:
                    sub.callback(hit)
                except Exception as e:
                    logger.warning("store change callback failed (%s): %s", hit, e)


def read_resolv_conf(path: str) -> Optional[Dict[str, Any]]:
    """Parse resolv.conf with dnspython into a store attribute dict.

    Returns None when the file cannot be opened. A file without nameservers
    still contributes its search domains.
    """
    r = dns.resolver.Resolver(configure=False)
    r.domain = dns.name.root
    r.search = []
    servers: List[str] = []
    try:
        r.read_resolv_conf(path)
        servers = [str(ns) for ns in r.nameservers]
    except dns.resolver.NoResolverConfiguration as e:
        if not r.search and r.domain == dns.name.root:
            logger.debug("resolv.conf unusable (%s): %s", path, e)
            return None
    entry: Dict[str, Any] = {}
    if servers:
        entry[PROP_SERVER_ADDRESSES] = servers
    if r.search:
        entry[PROP_SEARCH_DOMAINS] = [n.to_text(omit_final_dot=True) for n in r.search]
    if r.domain is not None and r.domain != dns.name.root:
        entry[PROP_DOMAIN_NAME] = r.domain.to_text(omit_final_dot=True)
    return entry


def setup_scope_values(services: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Map configured static services onto `Setup:/Network/Service/<id>/DNS` keys."""
    out: Dict[str, Any] = {}
    for service_id, attrs in (services or {}).items():
        sid = str(service_id or '').strip()
        if not sid or '/' in sid or not isinstance(attrs, dict):
            logger.warning("skipping invalid static service %r", service_id)
            continue
        out[dns_key(SETUP_SCOPE, sid)] = dict(attrs)
    return out


class ResolvConfStore(MemoryConfigStore):
    """Linux adapter: State scope from resolv.conf, Setup scope from static config.

    A poller thread re-reads resolv.conf every `poll_interval` seconds while at
    least one subscription is active and delivers changes from that thread.
    """

    def __init__(self, resolv_conf: str = '/etc/resolv.conf', services: Optional[Dict[str, Any]] = None, poll_interval: float = 5.0):
        super().__init__()
        self.resolv_conf = resolv_conf
        self.poll_interval = max(0.1, float(poll_interval or 5.0))
        self._services = dict(services or {})
        self._poll_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._poller: Optional[threading.Thread] = None
        self.refresh()

    def _collect(self) -> Dict[str, Any]:
        values = setup_scope_values(self._services)
        state = read_resolv_conf(self.resolv_conf)
        if state is not None:
            values[dns_key(STATE_SCOPE, RESOLV_CONF_SERVICE)] = state
        return values

    def refresh(self) -> List[str]:
        """Re-read every source and notify subscribers about changed keys."""
        with self._poll_lock:
            try:
                values = self._collect()
            except Exception as e:
                logger.warning("resolv.conf read failed (%s): %s", self.resolv_conf, e)
                return []
            return self.replace(values)

    def set_services(self, services: Optional[Dict[str, Any]]) -> List[str]:
        self._services = dict(services or {})
        return self.refresh()

    def subscribe(self, patterns: Sequence[str], callback: ChangeCallback) -> Subscription:
        # the poller was idle while unsubscribed; the cached values may be stale
        self.refresh()
        sub = super().subscribe(patterns, callback)
        try:
            self._ensure_poller()
        except RuntimeError as e:
            self.unsubscribe(sub)
            raise SetupError(f"cannot start resolv.conf poller: {e}") from e
        return sub

    def unsubscribe(self, handle: Subscription) -> None:
        super().unsubscribe(handle)
        with self._lock:
            idle = not self._subs
        if idle:
            self._stop_poller()

    def close(self) -> None:
        self._stop_poller()

    def _ensure_poller(self) -> None:
        if self._poller is not None and self._poller.is_alive():
            return
        self._stop_event.clear()
        t = threading.Thread(target=self._poll_loop, name='resolvconf-poller', daemon=True)
        t.start()
        self._poller = t
        logger.info("watching %s every %.1fs", self.resolv_conf, self.poll_interval)

    def _stop_poller(self) -> None:
        t = self._poller
        self._poller = None
        self._stop_event.set()
        if t is not None and t is not threading.current_thread():
            t.join(timeout=self.poll_interval + 1.0)

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            changed = self.refresh()
            if changed:
                logger.debug("configuration changed: %s", changed)
