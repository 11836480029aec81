from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Set, Tuple

from models import (
    EMPTY_SNAPSHOT,
    SETUP_SCOPE,
    STATE_SCOPE,
    EvidenceSnapshot,
    RawScopeEntry,
    parse_service_key,
)


logger = logging.getLogger(__name__)


def group_by_service(raw: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, RawScopeEntry]]:
    """Group a raw store read into service_id -> {scope: RawScopeEntry}.

    Keys outside the `<Scope>:/Network/Service/<id>/DNS` convention are skipped.
    """
    out: Dict[str, Dict[str, RawScopeEntry]] = {}
    for key, value in (raw or {}).items():
        parsed = parse_service_key(key)
        if parsed is None:
            logger.debug("ignoring unexpected store key %r", key)
            continue
        scope, service_id = parsed
        out.setdefault(service_id, {})[scope] = RawScopeEntry.from_store(value)
    return out


def _pick(scopes: Dict[str, RawScopeEntry], attr: str) -> list:
    # Setup wins when it carries a non-empty value; State is the fallback.
    for scope in (SETUP_SCOPE, STATE_SCOPE):
        entry = scopes.get(scope)
        if entry is None:
            continue
        values = getattr(entry, attr)()
        if values:
            return values
    return []


def merge_scopes(raw: Optional[Dict[str, Any]]) -> Tuple[Set[str], Set[str]]:
    """Merge a multi-scope store read into (search_domains, dns_servers).

    Precedence is decided per service and per attribute family, so one service
    may take its servers from Setup and its domains from State. An empty or
    absent read yields two empty sets.
    """
    domains: Set[str] = set()
    servers: Set[str] = set()
    for _service_id, scopes in group_by_service(raw).items():
        servers.update(_pick(scopes, 'servers'))
        domains.update(_pick(scopes, 'domains'))
    return domains, servers


def build_snapshot(raw: Optional[Dict[str, Any]]) -> EvidenceSnapshot:
    if not raw:
        return EMPTY_SNAPSHOT
    domains, servers = merge_scopes(raw)
    return EvidenceSnapshot.build(domains, servers)
