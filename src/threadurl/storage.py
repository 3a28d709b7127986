"""File I/O and record parsing for thread files."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from .errors import EmptyFile, InvalidEncoding, MalformedRecord, UnreadableFile
from .models import ThreadRecord

logger = logging.getLogger(__name__)


def read_thread_bytes(path: Path) -> bytes:
    """Read a backing file's raw bytes."""
    try:
        return path.read_bytes()
    except OSError as e:
        raise UnreadableFile(path, e.strerror or str(e)) from e


def decode_thread_bytes(data: bytes, path: Path) -> str:
    """Decode file content, rejecting empty and non-UTF-8 input.

    Raises:
        EmptyFile: If there are no bytes.
        InvalidEncoding: If the bytes are not valid UTF-8.
    """
    if not data:
        raise EmptyFile(path)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidEncoding(path, e.start) from e


def read_thread_text(path: Path) -> str:
    """Read and decode a backing file."""
    return decode_thread_bytes(read_thread_bytes(path), path)


def _role_or_kind(value: dict[str, Any], discriminator: str) -> str:
    """Pick the speaker role if the record has one, else its type."""
    for holder in (value.get("message"), value.get("payload"), value):
        if isinstance(holder, dict) and isinstance(holder.get("role"), str):
            return holder["role"]
    return discriminator or "unknown"


def _timestamp(value: dict[str, Any]) -> str | None:
    ts = value.get("timestamp")
    return ts if isinstance(ts, str) and ts else None


def split_lines(text: str) -> list[str]:
    """Split on ``\\n`` only, dropping one trailing ``\\r`` per line."""
    return [line[:-1] if line.endswith("\r") else line for line in text.split("\n")]


def parse_jsonl(text: str, path: Path) -> list[ThreadRecord]:
    """Parse line-delimited JSON into records.

    Blank lines are skipped. Any other line that is not a JSON object is
    a hard error.
    """
    records: list[ThreadRecord] = []
    for line_no, line in enumerate(split_lines(text), start=1):
        if not line.strip():
            continue
        try:
            value = json.loads(line)
        except json.JSONDecodeError as e:
            raise MalformedRecord(path, line_no, e.msg) from e
        if not isinstance(value, dict):
            raise MalformedRecord(path, line_no, "expected a JSON object")

        discriminator = value.get("type")
        discriminator = discriminator if isinstance(discriminator, str) else ""
        records.append(
            ThreadRecord(
                sequence_index=len(records),
                role_or_kind=_role_or_kind(value, discriminator),
                timestamp=_timestamp(value),
                payload=value,
                raw_discriminator=discriminator,
                line=line_no,
            )
        )
    return records


def parse_document(text: str, path: Path, entries_key: str = "messages") -> tuple[dict[str, Any], list[ThreadRecord]]:
    """Parse a single JSON document and walk its entry list in stored order.

    Returns:
        The whole document and one record per entry.
    """
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedRecord(path, e.lineno, e.msg) from e
    if not isinstance(doc, dict):
        raise MalformedRecord(path, None, "expected a JSON object")

    entries = doc.get(entries_key, [])
    if not isinstance(entries, list):
        raise MalformedRecord(path, None, f"'{entries_key}' is not a list")

    records: list[ThreadRecord] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise MalformedRecord(path, None, f"{entries_key}[{i}] is not an object")
        discriminator = entry.get("type")
        if not isinstance(discriminator, str):
            discriminator = entry.get("role") if isinstance(entry.get("role"), str) else ""
        records.append(
            ThreadRecord(
                sequence_index=i,
                role_or_kind=_role_or_kind(entry, discriminator),
                timestamp=_timestamp(entry),
                payload=entry,
                raw_discriminator=discriminator,
            )
        )
    return doc, records


def load_jsonl(path: Path) -> list[ThreadRecord]:
    """Read and parse a line-delimited thread file."""
    return parse_jsonl(read_thread_text(path), path)


def load_document(path: Path, entries_key: str = "messages") -> tuple[dict[str, Any], list[ThreadRecord]]:
    """Read and parse a single-document thread file."""
    return parse_document(read_thread_text(path), path, entries_key)


def read_head_objects(path: Path, limit: int) -> list[dict[str, Any]]:
    """Decode JSON objects from the first ``limit`` non-blank lines of a file.

    Used for cheap identity checks while scanning candidates. Lines that
    are not JSON objects are skipped; an unreadable file yields nothing.
    """
    objects: list[dict[str, Any]] = []
    try:
        with path.open("r", encoding="utf-8", newline="") as f:
            seen = 0
            for line in f:
                if not line.strip():
                    continue
                seen += 1
                if seen > limit:
                    break
                try:
                    value = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(value, dict):
                    objects.append(value)
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("skipping unreadable candidate %s: %s", path, e)
        return []
    return objects


def read_json_file(path: Path) -> Any:
    """Read a whole JSON file for scanning. Returns None if it cannot be decoded."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.debug("skipping undecodable file %s: %s", path, e)
        return None


def write_atomic(path: Path, content: str) -> None:
    """Write a file atomically.

    Uses write-to-temp-then-rename so readers never see a partial file.
    """
    dir_path = path.parent
    dir_path.mkdir(parents=True, exist_ok=True)

    # Write to temp file in same directory, then atomic rename
    with tempfile.NamedTemporaryFile(
        mode="w", encoding="utf-8", dir=dir_path, delete=False, suffix=".tmp"
    ) as f:
        f.write(content)
        temp_path = f.name

    os.replace(temp_path, path)  # Atomic on POSIX
