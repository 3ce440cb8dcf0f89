"""Tests for control channel message framing.

Tests the NDJSON encoding shared by the manager and its callers.
"""

from __future__ import annotations

import pytest

from appspawn.protocol import decode_ndjson, encode_ndjson


class TestEncodeNdjson:
    """Tests for encode_ndjson()."""

    def test_encodes_fields_to_bytes(self) -> None:
        """Encodes a field list to UTF-8 bytes."""
        result = encode_ndjson(["ok"])
        assert isinstance(result, bytes)

    def test_ends_with_newline(self) -> None:
        """Encoded message ends with exactly one newline."""
        result = encode_ndjson(["error"])
        assert result.endswith(b"\n")
        assert result.count(b"\n") == 1

    def test_compact_json_no_spaces(self) -> None:
        """Uses compact JSON format (no spaces after separators)."""
        result = encode_ndjson((1234, "/tmp/nonexistant.socket", False))
        assert result == b'[1234,"/tmp/nonexistant.socket",false]\n'

    def test_tuple_encodes_as_array(self) -> None:
        """Tuples are sent as JSON arrays."""
        assert encode_ndjson(("a", 1)).startswith(b"[")

    def test_newline_in_field_is_escaped(self) -> None:
        """A newline inside a field cannot split the frame."""
        result = encode_ndjson(["AppLaunchFailed", "line one\nline two"])
        assert result.count(b"\n") == 1

    def test_unicode_round_trips(self) -> None:
        """Non-ASCII text survives encoding."""
        result = encode_ndjson(["/srv/ünïcode"])
        assert decode_ndjson(result) == ["/srv/ünïcode"]


class TestDecodeNdjson:
    """Tests for decode_ndjson()."""

    def test_decodes_array(self) -> None:
        """Decodes a JSON array with or without trailing newline."""
        assert decode_ndjson(b'[1234,"/tmp/a.sock",true]\n') == [1234, "/tmp/a.sock", True]
        assert decode_ndjson(b'["ok"]') == ["ok"]

    @pytest.mark.parametrize(
        "line",
        [
            b"",
            b"not json",
            b'{"type":"event"}',
            b'"ok"',
            b"42",
            b"\xff\xfe",
        ],
    )
    def test_returns_none_for_non_arrays(self, line: bytes) -> None:
        """Empty, invalid, or non-array input decodes to None."""
        assert decode_ndjson(line) is None
