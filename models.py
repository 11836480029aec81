#!/usr/bin/env python3
"""dnswatch data models.

Explicit, typed structures passed between the store adapters, the merger,
the watcher and the rule layer. Kept lightweight and JSON-serializable.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple


SETUP_SCOPE = 'Setup'
STATE_SCOPE = 'State'

SERVICE_PREFIX = ':/Network/Service/'
DNS_KEY_PATTERNS = (
    SETUP_SCOPE + SERVICE_PREFIX + '[^/]+/DNS',
    STATE_SCOPE + SERVICE_PREFIX + '[^/]+/DNS',
)

# store attribute names
PROP_DOMAIN_NAME = 'DomainName'
PROP_SEARCH_DOMAINS = 'SearchDomains'
PROP_SERVER_ADDRESSES = 'ServerAddresses'

_KEY_RE = re.compile(r'^(?P<scope>Setup|State):/Network/Service/(?P<service>[^/]+)/DNS$')


class WatcherState(enum.Enum):
    STOPPED = 'stopped'
    STARTING = 'starting'
    RUNNING = 'running'


def dns_key(scope: str, service_id: str) -> str:
    """Build the raw store key for one service's DNS entity."""
    return f"{scope}{SERVICE_PREFIX}{service_id}/DNS"


def parse_service_key(key: Any) -> Optional[Tuple[str, str]]:
    """Split a raw key into (scope, service_id); None when it is not a DNS service key."""
    m = _KEY_RE.match(str(key or ''))
    if not m:
        return None
    return m.group('scope'), m.group('service')


def _str_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set, frozenset)):
        return None
    return [str(v).strip() for v in value if str(v or '').strip()]


@dataclass(frozen=True)
class RawScopeEntry:
    """DNS attributes of one service under one scope, as read from the store."""
    domain_name: Optional[str] = None
    search_domains: Optional[List[str]] = None
    server_addresses: Optional[List[str]] = None

    def domains(self) -> List[str]:
        out = []
        if self.domain_name:
            out.append(self.domain_name)
        out.extend(self.search_domains or [])
        return out

    def servers(self) -> List[str]:
        return list(self.server_addresses or [])

    @staticmethod
    def from_store(obj: Any) -> 'RawScopeEntry':
        if not isinstance(obj, dict):
            return RawScopeEntry()
        name = str(obj.get(PROP_DOMAIN_NAME) or '').strip() or None
        return RawScopeEntry(
            domain_name=name,
            search_domains=_str_list(obj.get(PROP_SEARCH_DOMAINS)),
            server_addresses=_str_list(obj.get(PROP_SERVER_ADDRESSES)),
        )


@dataclass(frozen=True)
class EvidenceSnapshot:
    """Immutable merged view of DNS evidence. Replaced wholesale on each resync."""
    search_domains: FrozenSet[str] = frozenset()
    dns_servers: FrozenSet[str] = frozenset()
    data_present: bool = field(init=False, default=False)

    def __post_init__(self):
        object.__setattr__(self, 'search_domains', frozenset(self.search_domains))
        object.__setattr__(self, 'dns_servers', frozenset(self.dns_servers))
        object.__setattr__(self, 'data_present', bool(self.search_domains or self.dns_servers))

    @staticmethod
    def build(domains: Iterable[str], servers: Iterable[str]) -> 'EvidenceSnapshot':
        return EvidenceSnapshot(search_domains=frozenset(domains), dns_servers=frozenset(servers))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON output."""
        return {
            'search_domains': sorted(self.search_domains),
            'dns_servers': sorted(self.dns_servers),
            'data_present': self.data_present,
        }


EMPTY_SNAPSHOT = EvidenceSnapshot()


@dataclass
class WatchConfig:
    resolv_conf: str = '/etc/resolv.conf'
    poll_interval: float = 5.0
    interval: int = 10  # rule evaluation period
    http_port: int = 8053

    rules: List[Dict[str, Any]] = field(default_factory=list)
    services: Dict[str, Dict[str, Any]] = field(default_factory=dict)  # Setup scope
    alerts: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_dict(obj: Any) -> 'WatchConfig':
        cfg = WatchConfig()
        if not isinstance(obj, dict):
            return cfg
        if obj.get('resolv_conf'):
            cfg.resolv_conf = str(obj['resolv_conf'])
        try:
            cfg.poll_interval = max(0.1, float(obj.get('poll_interval') or cfg.poll_interval))
        except (TypeError, ValueError):
            pass
        try:
            cfg.interval = max(1, int(obj.get('interval') or cfg.interval))
        except (TypeError, ValueError):
            pass
        try:
            cfg.http_port = int(obj['http_port']) if 'http_port' in obj else cfg.http_port
        except (TypeError, ValueError):
            pass
        rules = obj.get('rules')
        cfg.rules = list(rules) if isinstance(rules, list) else []
        services = obj.get('services')
        cfg.services = dict(services) if isinstance(services, dict) else {}
        alerts = obj.get('alerts')
        cfg.alerts = dict(alerts) if isinstance(alerts, dict) else {}
        return cfg
