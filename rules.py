#!/usr/bin/env python3
"""Rule types evaluated against DNS evidence snapshots.

Rules are built by the watcher's owner from config dicts (see
`config_manager.normalize_rules`) and only ever read the published
`EvidenceSnapshot`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from dns_query import probe_server
from models import EvidenceSnapshot


logger = logging.getLogger(__name__)


def _norm_domain(value: Any) -> str:
    return str(value or '').strip().rstrip('.').lower()


class RuleType:
    """Base for rules answering "does the current evidence match?"."""

    type_name = ''

    def __init__(self, parameter: str, description: Optional[str] = None):
        self.parameter = str(parameter or '').strip()
        self.description = description or f"{self.type_name}:{self.parameter}"

    def matches(self, snapshot: EvidenceSnapshot) -> bool:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type_name, 'value': self.parameter, 'description': self.description}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.parameter!r})"


class SearchDomainRule(RuleType):
    """Matches when a search domain (or the service domain name) is configured."""

    type_name = 'domain'

    def matches(self, snapshot: EvidenceSnapshot) -> bool:
        want = _norm_domain(self.parameter)
        if not want:
            return False
        return any(_norm_domain(d) == want for d in snapshot.search_domains)


class ServerAddressRule(RuleType):
    """Matches when a DNS server address is configured (optionally: and answers)."""

    type_name = 'server'

    def __init__(self, parameter: str, description: Optional[str] = None, require_reachable: bool = False, timeout: float = 2.0):
        super().__init__(parameter, description)
        self.require_reachable = bool(require_reachable)
        self.timeout = timeout

    def matches(self, snapshot: EvidenceSnapshot) -> bool:
        if not self.parameter or self.parameter not in snapshot.dns_servers:
            return False
        if not self.require_reachable:
            return True
        return probe_server(self.parameter, timeout=self.timeout)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d['require_reachable'] = self.require_reachable
        return d


RULE_TYPES = {cls.type_name: cls for cls in (SearchDomainRule, ServerAddressRule)}


def build_rules(items: List[Dict[str, Any]]) -> List[RuleType]:
    """Instantiate rules from normalized rule dicts; unknown types are skipped."""
    out: List[RuleType] = []
    for it in items or []:
        if not isinstance(it, dict):
            continue
        typ = str(it.get('type') or '').lower()
        cls = RULE_TYPES.get(typ)
        if cls is None:
            logger.warning("unknown rule type %r, skipping", it.get('type'))
            continue
        value = str(it.get('value') or '').strip()
        if not value:
            continue
        if cls is ServerAddressRule:
            out.append(ServerAddressRule(value, it.get('description'), require_reachable=bool(it.get('require_reachable'))))
        else:
            out.append(cls(value, it.get('description')))
    return out


def evaluate_rules(rules: List[RuleType], snapshot: EvidenceSnapshot) -> List[Tuple[RuleType, bool]]:
    """Evaluate every rule; a rule that raises counts as not matched."""
    out = []
    for rule in rules or []:
        try:
            ok = bool(rule.matches(snapshot))
        except Exception as e:
            logger.warning("rule %s evaluation failed: %s", rule.description, e)
            ok = False
        out.append((rule, ok))
    return out
