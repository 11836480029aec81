#!/usr/bin/env python3
"""
DNS configuration watcher (resolv.conf + static services, rule matching, status UI)
"""
import argparse
import logging
import signal
import sys
import threading

from alerts import alert_rule_changes, init_from_alerts
from config_manager import load_watch_config
from http_api.context import HttpContext
from http_server import make_server
from monitor.stores import ResolvConfStore, SetupError
from monitor.watcher import EvidenceWatcher
from rules import build_rules, evaluate_rules


logger = logging.getLogger('dns_watch')


def rule_transitions(previous, results):
    """
    Compare rule results against the previous cycle and record the new state.
    Rules seen for the first time are compared against "not matched".

    Args:
        previous (dict): rule description -> matched, updated in place
        results (list): [(rule, matched), ...] from evaluate_rules

    Returns:
        list: [(description, matched), ...] for rules whose state changed
    """
    out = []
    for rule, ok in results:
        desc = rule.description
        if previous.get(desc, False) != ok:
            out.append((desc, ok))
        previous[desc] = ok
    return out


def run_cycle(watcher, rules, previous):
    snap = watcher.current_snapshot()
    results = evaluate_rules(rules, snap)
    changes = rule_transitions(previous, results)
    for desc, ok in changes:
        logger.info("RULE %s -> %s", desc, 'matched' if ok else 'not matched')
    if changes:
        alert_rule_changes(changes, data_present=snap.data_present)
    return changes


def build_parser():
    parser = argparse.ArgumentParser(description="DNS configuration evidence watcher")
    parser.add_argument("-c", "--config", default="", help="config file (JSON)")
    parser.add_argument("--resolv-conf", default=None, help="resolv.conf path (default /etc/resolv.conf)")
    parser.add_argument("--poll-interval", type=float, default=None, help="resolv.conf poll interval (seconds)")
    parser.add_argument("-i", "--interval", type=int, default=None, help="rule evaluation interval (seconds)")
    parser.add_argument("--http-port", type=int, default=None, help="status UI port (0 disables)")
    parser.add_argument("-r", "--rules", default=None, help="rules, comma separated (domain:x, server:y)")
    parser.add_argument("--log-level", default="INFO", help="logging level")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # CLI values override the file only when given explicitly
    overrides = {
        'resolv_conf': args.resolv_conf,
        'poll_interval': args.poll_interval,
        'interval': args.interval,
        'http_port': args.http_port,
        'rules': args.rules,
    }
    cfg = load_watch_config(args.config, overrides)
    config_lock = threading.Lock()

    init_from_alerts(cfg.alerts)
    rules = build_rules(cfg.rules)
    logger.info("loaded %d rule(s)", len(rules))

    store = ResolvConfStore(cfg.resolv_conf, services=cfg.services, poll_interval=cfg.poll_interval)
    watcher = EvidenceWatcher(store)
    try:
        watcher.start()
    except SetupError as e:
        logger.error("DNS watcher setup failed: %s", e)
        watcher.close()
        store.close()
        return 1

    httpd = None
    if cfg.http_port:
        ctx = HttpContext(watcher=watcher, config=cfg, config_lock=config_lock, rules=rules)
        httpd = make_server(ctx, cfg.http_port)
        http_thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        http_thread.start()
        logger.info("HTTP status UI running on http://0.0.0.0:%s/", cfg.http_port)

    stop_event = threading.Event()
    reload_event = threading.Event()

    def handle_stop(signum, frame):
        stop_event.set()

    def handle_reload(signum, frame):
        reload_event.set()

    signal.signal(signal.SIGINT, handle_stop)
    signal.signal(signal.SIGTERM, handle_stop)
    if hasattr(signal, 'SIGHUP'):
        signal.signal(signal.SIGHUP, handle_reload)

    previous = {}
    try:
        while not stop_event.is_set():
            if reload_event.is_set():
                reload_event.clear()
                fresh = load_watch_config(args.config, overrides)
                with config_lock:
                    cfg.services = fresh.services
                changed = store.set_services(fresh.services)
                logger.info("reloaded static services (%d changed key(s))", len(changed))
            run_cycle(watcher, rules, previous)
            # sleep ticks
            for _ in range(cfg.interval):
                if stop_event.is_set() or reload_event.is_set():
                    break
                stop_event.wait(1)
    finally:
        watcher.close()
        store.close()
        if httpd is not None:
            httpd.shutdown()
            httpd.server_close()

    logger.info("Exiting DNS watcher.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
