"""Tests for request decoding.

Tests decode_command() and decode_request(): field count, tokens, types,
and the mapping of every problem to a request-local error.
"""

from __future__ import annotations

from typing import Any

import pytest

from appspawn.decoder import REQUEST_FIELDS, decode_command, decode_request
from appspawn.exceptions import MalformedRequest, UnknownAppType, UnknownSpawnMethod
from appspawn.models import AppType, SpawnMethod


def _args(**overrides: Any) -> list[Any]:
    """Build a valid spawn_application argument list with overrides."""
    values: dict[str, Any] = {
        "app_root": "/srv/app",
        "lower_privilege": "true",
        "lowest_user": "nobody",
        "environment": "production",
        "spawn_method": "smart",
        "app_type": "rails",
        "framework_spawner_timeout": 5,
        "app_spawner_timeout": 5,
    }
    values.update(overrides)
    return [values[name] for name in REQUEST_FIELDS]


class TestDecodeCommand:
    """Tests for decode_command()."""

    def test_splits_name_and_args(self) -> None:
        """Raw bytes are decoded into (name, args)."""
        name, args = decode_command(b'["spawn_application","/srv/app"]')
        assert name == "spawn_application"
        assert args == ["/srv/app"]

    def test_accepts_decoded_fields(self) -> None:
        """Already-decoded lists are accepted as well."""
        assert decode_command(["reload"]) == ("reload", [])

    @pytest.mark.parametrize(
        "raw",
        [
            b"",
            b"not json",
            b"[]",
            b'{"command":"spawn_application"}',
            b"[42]",
            b'["launch_missiles"]',
        ],
    )
    def test_rejects_bad_messages(self, raw: bytes) -> None:
        """Anything other than a known command array is MalformedRequest."""
        with pytest.raises(MalformedRequest):
            decode_command(raw)


class TestDecodeRequest:
    """Tests for decode_request()."""

    def test_decodes_valid_request(self) -> None:
        """All eight fields map onto SpawnRequest."""
        request = decode_request(_args())

        assert request.app_root == "/srv/app"
        assert request.lower_privilege is True
        assert request.lowest_user == "nobody"
        assert request.environment == "production"
        assert request.spawn_method is SpawnMethod.SMART
        assert request.app_type is AppType.RAILS
        assert request.framework_spawner_timeout == 5.0
        assert request.app_spawner_timeout == 5.0

    @pytest.mark.parametrize("count", [0, 7, 9])
    def test_wrong_field_count(self, count: int) -> None:
        """Too few or too many fields is MalformedRequest."""
        args = (_args() + ["extra"])[:count]
        with pytest.raises(MalformedRequest, match="Expected 8 fields"):
            decode_request(args)

    def test_unknown_spawn_method(self) -> None:
        """An unrecognized spawn method gets its own error kind."""
        with pytest.raises(UnknownSpawnMethod):
            decode_request(_args(spawn_method="teleport"))

    def test_unknown_app_type(self) -> None:
        """An unrecognized app type gets its own error kind."""
        with pytest.raises(UnknownAppType):
            decode_request(_args(app_type="cobol"))

    def test_spawn_method_checked_before_app_type(self) -> None:
        """With both tokens wrong, the spawn method is reported."""
        with pytest.raises(UnknownSpawnMethod):
            decode_request(_args(spawn_method="teleport", app_type="cobol"))

    @pytest.mark.parametrize(
        "token,expected",
        [("true", True), ("false", False), (True, True), (False, False)],
    )
    def test_lower_privilege_tokens(self, token: Any, expected: bool) -> None:
        """Boolean fields accept JSON booleans and the exact strings true/false."""
        assert decode_request(_args(lower_privilege=token)).lower_privilege is expected

    @pytest.mark.parametrize("token", ["maybe", "", "TRUE", "False", " true", "1", "0", "yes", "no", 1, None])
    def test_rejects_bad_lower_privilege(self, token: Any) -> None:
        """Other spellings, including case variants and digits, are MalformedRequest."""
        with pytest.raises(MalformedRequest):
            decode_request(_args(lower_privilege=token))

    @pytest.mark.parametrize("value,expected", [(0, 0.0), (2.5, 2.5), ("7", 7.0)])
    def test_timeout_values(self, value: Any, expected: float) -> None:
        """Timeouts accept numbers and numeric strings; 0 means the default."""
        assert decode_request(_args(app_spawner_timeout=value)).app_spawner_timeout == expected

    @pytest.mark.parametrize("value", [-1, "soon", None, True, "nan", "inf"])
    def test_rejects_bad_timeouts(self, value: Any) -> None:
        """Negative, non-numeric, or non-finite timeouts are MalformedRequest."""
        with pytest.raises(MalformedRequest):
            decode_request(_args(framework_spawner_timeout=value))

    @pytest.mark.parametrize("field", ["app_root", "environment"])
    def test_rejects_empty_strings(self, field: str) -> None:
        """Empty app_root or environment is MalformedRequest."""
        with pytest.raises(MalformedRequest):
            decode_request(_args(**{field: ""}))

    def test_rejects_non_string_app_root(self) -> None:
        """String fields must be strings."""
        with pytest.raises(MalformedRequest, match="app_root"):
            decode_request(_args(app_root=42))
