from __future__ import annotations
import json
import re

_CONTROL_CHARS = re.compile(r'[\r\n\t\x00-\x1f\x7f-\x9f]')


def sanitize_for_log(value) -> str:
    """Strip control characters from request-derived values before they reach a log line."""
    if value is None:
        return 'null'
    if isinstance(value, (dict, list, tuple)):
        value = json.dumps(value, default=str)
    return _CONTROL_CHARS.sub('', str(value))
