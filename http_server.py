#!/usr/bin/env python3
"""
Read-only HTTP status server
"""
import logging
from http.server import BaseHTTPRequestHandler, HTTPServer
from socketserver import ThreadingMixIn
from urllib.parse import urlparse, parse_qs

from http_api.basic_handlers import handle_config, handle_evidence, handle_rules
from http_api.context import HttpContext
from http_api.utils import send_json


logger = logging.getLogger(__name__)


class ThreadingHTTPServer(ThreadingMixIn, HTTPServer):
    """Thread-per-request HTTP server"""
    daemon_threads = True


def make_handler(ctx: HttpContext):
    """
    Build the request handler class bound to one HttpContext.

    Args:
        ctx (HttpContext): watcher, rules and config shared with the handlers

    Returns:
        class: HTTP request handler class
    """

    class StatusHandler(BaseHTTPRequestHandler):
        def do_GET(self):
            parsed = urlparse(self.path)
            qs = parse_qs(parsed.query)

            if parsed.path == '/evidence':
                return handle_evidence(ctx, self)
            if parsed.path == '/rules':
                return handle_rules(ctx, self, qs)
            if parsed.path == '/config':
                return handle_config(ctx, self)
            return send_json(self, {'error': 'not found'}, 404)

        def log_message(self, format, *args):
            logger.debug("%s - %s", self.address_string(), format % args)

    return StatusHandler


def make_server(ctx: HttpContext, port: int, host: str = '0.0.0.0'):
    return ThreadingHTTPServer((host, port), make_handler(ctx))
