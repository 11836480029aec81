#!/usr/bin/env python3
"""
Config file management
"""
import ipaddress
import json
import logging

from models import WatchConfig


def read_config(path):
    """
    Read the JSON config file and return a dict.
    Returns an empty dict when the path is empty or the read fails.

    Args:
        path (str): config file path

    Returns:
        dict: file contents or an empty dict
    """
    if not path:
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f) or {}
    except Exception as e:
        logging.warning("read_config failed (%s): %s", path, e)
        return {}


def _guess_rule_type(value):
    try:
        ipaddress.ip_address(value)
        return 'server'
    except ValueError:
        return 'domain'


def normalize_rules(value):
    """
    Convert rule values into the normalized form.
    Returns: list of dicts: [{ 'type': 'domain', 'value': 'corp.example' }, { 'type': 'server', 'value': '9.9.9.9' }, ...]
    Accepted input:
      - dicts with 'type' and 'value' (plus optional 'description', 'require_reachable')
      - strings 'domain:corp.example' / 'server:9.9.9.9', comma or newline separated
      - bare strings: IP addresses become server rules, anything else a domain rule

    Args:
        value: rule info (string, list or dict)

    Returns:
        list: normalized rule list
    """
    if not value:
        return []
    out = []
    seen = set()
    items = value if isinstance(value, list) else [value]
    for it in items:
        if it is None:
            continue
        if isinstance(it, dict):
            val = str(it.get('value', '')).strip()
            typ = str(it.get('type') or '').strip().lower() or _guess_rule_type(val)
            key = (typ, val.lower())
            if not val or key in seen:
                continue
            d = {'type': typ, 'value': val}
            if it.get('description'):
                d['description'] = str(it['description'])
            if it.get('require_reachable'):
                d['require_reachable'] = True
            out.append(d)
            seen.add(key)
            continue
        s = str(it)
        # split comma/newline
        parts = [p.strip() for p in s.replace(',', '\n').splitlines() if p.strip()]
        for p in parts:
            typ, sep, val = p.partition(':')
            if sep and typ.strip().lower() in ('domain', 'server'):
                typ = typ.strip().lower()
                val = val.strip()
            else:
                val = p
                typ = _guess_rule_type(val)
            key = (typ, val.lower())
            if val and key not in seen:
                out.append({'type': typ, 'value': val})
                seen.add(key)
    return out


def load_watch_config(path, overrides=None):
    """
    Build a WatchConfig from the config file, then apply explicit overrides.

    Args:
        path (str): config file path (may be empty)
        overrides (dict): values given on the command line; None entries are ignored

    Returns:
        WatchConfig: merged configuration
    """
    raw = dict(read_config(path))
    for k, v in (overrides or {}).items():
        if v is not None:
            raw[k] = v
    cfg = WatchConfig.from_dict(raw)
    cfg.rules = normalize_rules(raw.get('rules'))
    return cfg
