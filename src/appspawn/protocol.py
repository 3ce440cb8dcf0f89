"""NDJSON message framing shared by the spawn manager and its callers.

Every message on the control channel is a single line:

- A JSON array of fields, encoded in compact form (no spaces)
- Terminated by a newline character
- Encoding: UTF-8

Message shapes:
- Caller → Manager: ["spawn_application", app_root, lower_privilege, lowest_user,
  environment, spawn_method, app_type, framework_spawner_timeout,
  app_spawner_timeout]
- Caller → Manager: ["reload"] or ["reload", app_root]
- Manager → Caller: ["ok"], then [pid, socket_path, socket_is_unix],
  then ["io"] carrying one descriptor as ancillary data
- Manager → Caller: ["error"], then [kind, message]

Example messages:
    ["spawn_application","/srv/app","true","nobody","production","smart","wsgi",5,5]\\n
    ["ok"]\\n
    [1234,"/tmp/nonexistant.socket",false]\\n
"""

from __future__ import annotations

__all__ = [
    "decode_ndjson",
    "encode_ndjson",
]

import json
from typing import Any


def encode_ndjson(fields: list[Any] | tuple[Any, ...]) -> bytes:
    """Encode a message for NDJSON transmission.

    Uses compact JSON (no spaces after separators) with newline delimiter.

    Args:
        fields: Message fields; must be JSON-serializable.

    Returns:
        UTF-8 encoded bytes with trailing newline.

    Example:
        >>> encode_ndjson(["ok"])
        b'["ok"]\\n'
    """
    return (json.dumps(list(fields), separators=(",", ":")) + "\n").encode("utf-8")


def decode_ndjson(line: bytes) -> list[Any] | None:
    """Decode an NDJSON message.

    Args:
        line: UTF-8 encoded bytes (with or without trailing newline).

    Returns:
        Decoded field list, or None if line is empty, contains invalid JSON,
        or is not a JSON array.

    Example:
        >>> decode_ndjson(b'[1234,"/tmp/app.sock",true]\\n')
        [1234, '/tmp/app.sock', True]
        >>> decode_ndjson(b'{"type":"event"}')
        None
    """
    if not line:
        return None
    try:
        result = json.loads(line.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(result, list):
        return None
    return result
