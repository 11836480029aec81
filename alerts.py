#!/usr/bin/env python3
"""Alerting helpers: Teams webhook notifications for DNS rule transitions.

Initialized from the config file's `alerts` object and exposes
`alert_rule_changes(transitions)` where each transition is
(rule description, matched).
"""
import logging
from datetime import datetime, timezone
from typing import List, Tuple

import requests


logger = logging.getLogger(__name__)

_initialized = False
_teams_webhook = None


def _sanitize_webhook(url):
    """Return a usable webhook URL or None."""
    s = str(url or '').strip()
    if not s:
        return None
    # reject obvious placeholders
    if s in ('https://X', 'http://X', 'X'):
        return None
    if not (s.startswith('http://') or s.startswith('https://')):
        return None
    return s


def init_from_alerts(alerts: dict):
    """Initialize alerting from the config file's alerts dict."""
    global _initialized, _teams_webhook
    if not isinstance(alerts, dict):
        alerts = {}
    _teams_webhook = _sanitize_webhook(alerts.get('teams_webhook'))
    _initialized = True
    return bool(_teams_webhook)


def _send_teams(message: str, title: str = 'DNS Evidence Alert'):
    if not _teams_webhook:
        return False
    payload = {
        'title': title,
        'text': message
    }
    try:
        requests.post(_teams_webhook, json=payload, timeout=10)
        return True
    except Exception as e:
        logger.warning("Teams webhook send failed: %s", e)
        return False


def _normalize_transitions(transitions):
    """Return deduplicated (description, matched) tuples."""
    out = []
    seen = set()
    for item in transitions or []:
        if not isinstance(item, (list, tuple)) or len(item) < 2:
            continue
        desc = str(item[0] or '').strip()
        if not desc:
            continue
        key = (desc, bool(item[1]))
        if key in seen:
            continue
        seen.add(key)
        out.append(key)
    return sorted(out)


def _build_alert_body(entries, data_present=None):
    """Build a structured alert body."""
    ts_utc = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%SZ')

    lines = [
        f"Time (UTC): {ts_utc}",
        f"Count: {len(entries)}",
    ]
    if data_present is not None:
        lines.append(f"DNS data present: {'yes' if data_present else 'no'}")
    lines.append("Rules:")
    for desc, matched in entries:
        lines.append(f"- {desc} | {'matched' if matched else 'no longer matched'}")
    return "\n".join(lines)


def alert_rule_changes(transitions: List[Tuple[str, bool]], data_present=None):
    """Alert about rules whose match state changed.

    transitions: list of (rule description, matched)
    Sends a Teams webhook (best effort). Returns True when a message was sent.
    """
    if not _initialized:
        init_from_alerts({})
    entries = _normalize_transitions(transitions)
    if not entries:
        return False
    body = _build_alert_body(entries, data_present=data_present)
    return _send_teams(body, title='DNS Rule Change')


__all__ = ['init_from_alerts', 'alert_rule_changes']
