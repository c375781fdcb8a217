from __future__ import annotations

import math

import pytest

from persistence.errors import IOFailure, MalformedDocument, Unencodable
from persistence.json_store import (
    decode_document,
    encode_document,
    read_bytes,
    read_json,
    temp_sibling,
    write_bytes_atomic,
)


def test_decode_encode_roundtrip_nested_value():
    value = {"grid": [[1, 2.5, None], {"ünï": "cödé", "ok": True}], "count": 0, "tags": []}
    assert decode_document(encode_document(value)) == value


def test_encode_is_pretty_utf8_with_trailing_newline():
    raw = encode_document({"name": "Zepha ✨"})
    assert raw.endswith(b"\n")
    assert "Zepha ✨".encode("utf-8") in raw
    assert b'\n  "name"' in raw


@pytest.mark.parametrize("raw", [b"", b"   \n", b"{\"count\": 5", b"\xff\xfe", b"NaN", b"{'a': 1}"])
def test_decode_rejects_malformed(raw):
    with pytest.raises(MalformedDocument):
        decode_document(raw, document_id="state.json")


def test_encode_rejects_cycles():
    cyclic: dict = {}
    cyclic["self"] = cyclic
    with pytest.raises(Unencodable):
        encode_document(cyclic)


@pytest.mark.parametrize("value", [{"x": math.nan}, {"x": math.inf}, {"x": {1, 2}}, {"x": object()}])
def test_encode_rejects_non_json_values(value):
    with pytest.raises(Unencodable):
        encode_document(value)


def test_write_bytes_atomic_replaces_and_leaves_no_temp(tmp_path):
    target = tmp_path / "nested" / "state.json"
    write_bytes_atomic(target, b'{"count": 1}\n')
    write_bytes_atomic(target, b'{"count": 2}\n')

    assert read_json(target) == {"count": 2}
    assert [p.name for p in target.parent.iterdir()] == ["state.json"]


def test_write_bytes_atomic_failure_is_io_failure(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")
    with pytest.raises(IOFailure):
        write_bytes_atomic(blocker / "state.json", b"{}")


def test_temp_siblings_are_unique(tmp_path):
    target = tmp_path / "state.json"
    names = {temp_sibling(target).name for _ in range(50)}
    assert len(names) == 50
    assert all(n.startswith("state.json.tmp.") for n in names)


def test_read_helpers_on_missing_and_invalid(tmp_path):
    missing = tmp_path / "missing.json"
    assert read_bytes(missing) is None
    assert read_json(missing) is None

    bad = tmp_path / "bad.json"
    bad.write_bytes(b"{not json")
    assert read_json(bad) is None
