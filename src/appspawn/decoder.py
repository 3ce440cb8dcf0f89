"""Decode raw channel messages into validated commands.

Parsing only: no side effects. Every problem with a message is reported as
a request-local SpawnError so the manager can answer it and keep serving.
"""

from __future__ import annotations

__all__ = [
    "REQUEST_FIELDS",
    "decode_command",
    "decode_request",
]

import math
from typing import Any

from pydantic import ValidationError

from appspawn.constants import RELOAD_COMMAND, SPAWN_COMMAND
from appspawn.exceptions import MalformedRequest, UnknownAppType, UnknownSpawnMethod
from appspawn.models import AppType, SpawnMethod, SpawnRequest
from appspawn.protocol import decode_ndjson

# Wire order of spawn_application arguments
REQUEST_FIELDS: tuple[str, ...] = (
    "app_root",
    "lower_privilege",
    "lowest_user",
    "environment",
    "spawn_method",
    "app_type",
    "framework_spawner_timeout",
    "app_spawner_timeout",
)

_KNOWN_COMMANDS = frozenset({SPAWN_COMMAND, RELOAD_COMMAND})


def decode_command(raw: bytes | list[Any]) -> tuple[str, list[Any]]:
    """Split a message into its command name and arguments.

    Args:
        raw: Raw message line, or already-decoded fields.

    Returns:
        (command name, argument list).

    Raises:
        MalformedRequest: If the message is not a non-empty JSON array
            starting with a known command name.
    """
    fields = decode_ndjson(raw) if isinstance(raw, (bytes, bytearray)) else raw
    if not isinstance(fields, list) or not fields:
        raise MalformedRequest("Message is not a non-empty JSON array")

    name = fields[0]
    if not isinstance(name, str) or name not in _KNOWN_COMMANDS:
        raise MalformedRequest(f"Unknown command: {name!r}")
    return name, fields[1:]


def decode_request(args: list[Any]) -> SpawnRequest:
    """Validate spawn_application arguments.

    Args:
        args: The eight arguments in wire order (see REQUEST_FIELDS).

    Returns:
        Immutable SpawnRequest.

    Raises:
        MalformedRequest: Wrong field count, wrong types, or empty values.
        UnknownSpawnMethod: spawn_method is not a recognized token.
        UnknownAppType: app_type is not a recognized token.
    """
    if not isinstance(args, list) or len(args) != len(REQUEST_FIELDS):
        count = len(args) if isinstance(args, list) else 0
        raise MalformedRequest(f"Expected {len(REQUEST_FIELDS)} fields, got {count}")

    values = dict(zip(REQUEST_FIELDS, args))

    for name in ("app_root", "lowest_user", "environment", "spawn_method", "app_type"):
        if not isinstance(values[name], str):
            raise MalformedRequest(f"{name} must be a string")

    spawn_method = values["spawn_method"]
    if spawn_method not in {m.value for m in SpawnMethod}:
        raise UnknownSpawnMethod(f"Unknown spawn method: {spawn_method!r}")
    app_type = values["app_type"]
    if app_type not in {t.value for t in AppType}:
        raise UnknownAppType(f"Unknown application type: {app_type!r}")

    try:
        return SpawnRequest(
            app_root=values["app_root"],
            lower_privilege=_parse_bool("lower_privilege", values["lower_privilege"]),
            lowest_user=values["lowest_user"],
            environment=values["environment"],
            spawn_method=SpawnMethod(spawn_method),
            app_type=AppType(app_type),
            framework_spawner_timeout=_parse_seconds(
                "framework_spawner_timeout", values["framework_spawner_timeout"]
            ),
            app_spawner_timeout=_parse_seconds("app_spawner_timeout", values["app_spawner_timeout"]),
        )
    except ValidationError as e:
        problems = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise MalformedRequest(f"Invalid request fields: {problems}") from e


def _parse_bool(name: str, value: Any) -> bool:
    """Accept JSON booleans or the exact strings "true" and "false"."""
    if isinstance(value, bool):
        return value
    if value == "true":
        return True
    if value == "false":
        return False
    raise MalformedRequest(f"{name} must be 'true' or 'false', got {value!r}")


def _parse_seconds(name: str, value: Any) -> float:
    """Accept non-negative numbers or numeric strings."""
    if isinstance(value, bool):
        raise MalformedRequest(f"{name} must be a number of seconds")
    try:
        seconds = float(value)
    except (TypeError, ValueError) as e:
        raise MalformedRequest(f"{name} must be a number of seconds, got {value!r}") from e
    if not math.isfinite(seconds) or seconds < 0:
        raise MalformedRequest(f"{name} must be a finite number >= 0, got {value!r}")
    return seconds
