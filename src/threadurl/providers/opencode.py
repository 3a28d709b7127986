"""OpenCode sessions in the ``opencode.db`` sqlite store.

Messages and parts are materialized as JSONL in a temp directory so the
rest of the pipeline reads them like any other line-delimited thread.
"""

import json
import logging
import sqlite3
import tempfile
from pathlib import Path
from typing import Any

from ..errors import ThreadNotFound, UnreadableFile
from ..models import Provider, ResolutionPath, ThreadLocation, ThreadRecord, ThreadURI, TimelineEntry
from ..storage import write_atomic
from .base import ProviderLocator, as_str, dig, message_entry, tool_entries

logger = logging.getLogger(__name__)

TEXT_PART_TYPES = frozenset({"text", "reasoning"})


def materialized_path(session_id: str) -> Path:
    return Path(tempfile.gettempdir()) / "threadurl-opencode" / f"{session_id}.jsonl"


def _decode_rows(rows: list[tuple[str, str]], kind: str, warnings: list[str]) -> list[tuple[str, dict[str, Any]]]:
    decoded = []
    for row_id, data in rows:
        try:
            value = json.loads(data)
        except (TypeError, json.JSONDecodeError) as e:
            warnings.append(f"skipping opencode {kind} {row_id}: invalid JSON ({e})")
            continue
        if isinstance(value, dict):
            decoded.append((row_id, value))
        else:
            warnings.append(f"skipping opencode {kind} {row_id}: expected a JSON object")
    return decoded


class OpenCodeLocator(ProviderLocator):
    """OpenCode sessions under ``$XDG_DATA_HOME/opencode``."""

    provider = Provider.OPENCODE

    @property
    def db_path(self) -> Path:
        return self.root / "opencode.db"

    def _read_session(self, session_id: str) -> tuple[list, list] | None:
        """Fetch a session's message and part rows, or None if it does not exist.

        The database is opened read-only and closed before returning.
        """
        try:
            conn = sqlite3.connect(f"{self.db_path.as_uri()}?mode=ro", uri=True)
            try:
                if conn.execute("SELECT 1 FROM session WHERE id = ? LIMIT 1", (session_id,)).fetchone() is None:
                    return None
                messages = conn.execute(
                    "SELECT id, data FROM message WHERE session_id = ? ORDER BY time_created, id", (session_id,)
                ).fetchall()
                parts = conn.execute(
                    "SELECT message_id, data FROM part WHERE session_id = ? ORDER BY time_created, id", (session_id,)
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise UnreadableFile(self.db_path, str(e)) from e
        return messages, parts

    def locate(self, uri: ThreadURI) -> ThreadLocation:
        self.require_root()
        session_id = uri.main_id
        if not self.db_path.is_file():
            raise ThreadNotFound(self.provider.value, session_id, [self.db_path])

        rows = self._read_session(session_id)
        if rows is None:
            raise ThreadNotFound(self.provider.value, session_id, [self.db_path])

        warnings: list[str] = []
        messages = _decode_rows(rows[0], "message", warnings)
        parts_by_message: dict[str, list[dict[str, Any]]] = {}
        for message_id, part in _decode_rows(rows[1], "part", warnings):
            parts_by_message.setdefault(message_id, []).append(part)

        lines = [json.dumps({"type": "session", "sessionId": session_id})]
        for message_id, message in messages:
            lines.append(
                json.dumps(
                    {
                        "type": "message",
                        "id": message_id,
                        "sessionId": session_id,
                        "message": message,
                        "parts": parts_by_message.get(message_id, []),
                    }
                )
            )

        path = materialized_path(session_id)
        write_atomic(path, "\n".join(lines) + "\n")
        return self._location(session_id, path, ResolutionPath.INDEX_HIT, "opencode:sqlite", warnings=warnings)

    def entries_for(self, record: ThreadRecord) -> list[TimelineEntry]:
        if record.raw_discriminator != "message":
            return []
        role = as_str(dig(record.payload, "message", "role")) or ""
        parts = record.payload.get("parts")
        parts = [p for p in parts if isinstance(p, dict)] if isinstance(parts, list) else []

        texts = [p.get("text") for p in parts if p.get("type") in TEXT_PART_TYPES]
        text = "\n\n".join(t.strip() for t in texts if isinstance(t, str) and t.strip())
        tools = [as_str(p.get("tool")) or "tool" for p in parts if p.get("type") == "tool"]

        ts = None
        created = dig(record.payload, "message", "time", "created")
        if isinstance(created, (int, float)):
            ts = str(created)
        return message_entry(role, text, ts) + tool_entries(tools, ts)
