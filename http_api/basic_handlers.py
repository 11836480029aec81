from __future__ import annotations

from typing import Any, Dict

from rules import evaluate_rules

from .context import HttpContext
from .utils import send_json, qs_bool


def handle_config(ctx: HttpContext, handler) -> None:
    with ctx.config_lock:
        cfg = {
            'resolv_conf': ctx.config.resolv_conf,
            'poll_interval': ctx.config.poll_interval,
            'interval': ctx.config.interval,
            'rules': list(ctx.config.rules),
            'services': dict(ctx.config.services),
        }
    send_json(handler, cfg)


def handle_evidence(ctx: HttpContext, handler) -> None:
    watcher = ctx.watcher
    snap = watcher.current_snapshot()
    send_json(handler, {
        'source': watcher.name,
        'name': watcher.friendly_name,
        'state': watcher.state.value,
        'evidence': snap.to_dict(),
    })


def handle_rules(ctx: HttpContext, handler, qs: Dict[str, Any]) -> None:
    try:
        matched_only = qs_bool(qs, 'matched_only', default=False)
        snap = ctx.watcher.current_snapshot()
        out = []
        for rule, ok in evaluate_rules(ctx.rules, snap):
            if matched_only and not ok:
                continue
            entry = rule.to_dict()
            entry['matched'] = ok
            out.append(entry)
        send_json(handler, {'data_present': snap.data_present, 'rules': out})
    except Exception as e:
        send_json(handler, {'error': str(e)}, 500)
