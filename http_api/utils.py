from __future__ import annotations

import json
from typing import Any, Dict


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"not JSON serializable: {type(obj).__name__}")


def send_json(handler, obj: Any, code: int = 200) -> None:
    """Send a JSON response with UTF-8 headers; status data is never cached."""
    b = json.dumps(obj, ensure_ascii=False, default=_json_default).encode('utf-8')
    handler.send_response(code)
    handler.send_header('Content-Type', 'application/json; charset=utf-8')
    handler.send_header('Content-Length', str(len(b)))
    handler.send_header('Cache-Control', 'no-store')
    handler.end_headers()
    handler.wfile.write(b)


def qs_bool(qs: Dict[str, Any], name: str, default: bool = False) -> bool:
    """Read a boolean query-string flag ('1', 'true', 'yes', 'on' ...)."""
    vals = qs.get(name)
    if not vals:
        return bool(default)
    raw = str(vals[0]).strip().lower()
    if raw in ('1', 'true', 'yes', 'on', 'y'):
        return True
    if raw in ('0', 'false', 'no', 'off', 'n'):
        return False
    return bool(default)
