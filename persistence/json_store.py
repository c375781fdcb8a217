from __future__ import annotations

import json
import os
import uuid
from pathlib import Path
from typing import Any

from .errors import IOFailure, MalformedDocument, Unencodable


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def decode_document(raw: bytes, *, document_id: str | None = None) -> Any:
    """
    Parse document bytes as JSON.

    Empty or whitespace-only content is malformed: a document that exists on disk
    must hold a value.
    """
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedDocument(f"not valid UTF-8: {e}", document_id=document_id) from e
    if not text.strip():
        raise MalformedDocument("empty document", document_id=document_id)
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except ValueError as e:
        raise MalformedDocument(f"invalid JSON: {e}", document_id=document_id) from e


def encode_document(value: Any, *, document_id: str | None = None) -> bytes:
    """
    Serialize a value tree to pretty-printed UTF-8 JSON.

    Raises Unencodable for cycles, NaN/Infinity, or non-JSON types.
    """
    try:
        text = json.dumps(value, indent=2, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError, RecursionError) as e:
        raise Unencodable(f"value is not JSON-representable: {e}", document_id=document_id) from e
    return (text + "\n").encode("utf-8")


def read_bytes(path: Path) -> bytes | None:
    """
    Read raw bytes from disk.

    Returns None for missing files; other OS errors propagate.
    """
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def temp_sibling(path: Path) -> Path:
    # Unique per attempt so overlapping writers never share a temp path.
    return path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex}")


def write_temp(path: Path, data: bytes) -> Path:
    """
    Write bytes to a fresh temp sibling of ``path`` and fsync it.

    The caller owns the returned temp file: replace it over ``path`` or unlink it.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = temp_sibling(path)
    try:
        with tmp_path.open("wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
    except OSError:
        discard(tmp_path)
        raise
    return tmp_path


def replace_atomic(tmp_path: Path, path: Path) -> None:
    os.replace(tmp_path, path)
    _fsync_dir(path.parent)


def discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def _fsync_dir(directory: Path) -> None:
    # Directory fds are not available everywhere (e.g. Windows).
    if not hasattr(os, "O_DIRECTORY"):
        return
    try:
        fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """
    Atomically write bytes to disk by writing to a temp file then replacing.

    OS errors surface as IOFailure; the target is untouched on failure.
    """
    try:
        tmp_path = write_temp(path, data)
    except OSError as e:
        raise IOFailure(f"failed to write temp file for {path}: {e}") from e
    try:
        replace_atomic(tmp_path, path)
    except OSError as e:
        discard(tmp_path)
        raise IOFailure(f"failed to replace {path}: {e}") from e


def atomic_write_json(path: Path, payload: Any) -> None:
    write_bytes_atomic(path, encode_document(payload))


def read_json(path: Path) -> Any | None:
    """
    Read JSON from disk.

    Returns None for missing, empty, unreadable or invalid files.
    """
    try:
        raw = read_bytes(path)
    except OSError:
        return None
    if raw is None:
        return None
    try:
        return decode_document(raw)
    except MalformedDocument:
        return None
