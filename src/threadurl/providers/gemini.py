"""Gemini CLI chats under ``tmp/<project>/chats/session-*.json``."""

import json
import logging
from pathlib import Path
from typing import Any

from ..errors import ThreadNotFound
from ..linkage import ORIGIN_LOG, ORIGIN_SCAN, ChildCandidate, ChildDiscovery, ChildReport
from ..models import (
    LifecycleEvent,
    Provider,
    ResolutionPath,
    StatusEvidence,
    ThreadLocation,
    ThreadRecord,
    ThreadURI,
    TimelineEntry,
)
from ..storage import load_document, read_json_file, split_lines
from ..uri import UUID_RE
from .base import (
    ProviderLocator,
    as_str,
    choose_latest,
    excerpt,
    extract_text,
    find_files,
    inferred_evidence,
    message_entry,
    tool_entries,
)

logger = logging.getLogger(__name__)

ROLE_BY_TYPE = {"user": "user", "gemini": "assistant", "assistant": "assistant"}
PARENT_ID_KEYS = ("sessionId", "session_id", "threadId", "thread_id", "id")


def _session_like(value: Any) -> str | None:
    if isinstance(value, str) and UUID_RE.match(value.strip()):
        return value.strip().lower()
    return None


def _collect_parent_ids(value: Any, found: set[str]) -> None:
    """Collect UUIDs stored under parent-session-like keys, at any depth."""
    if isinstance(value, dict):
        for key, nested in value.items():
            lowered = key.lower()
            if "parent" in lowered and ("session" in lowered or "thread" in lowered or "id" in lowered or lowered == "parent"):
                if isinstance(nested, dict):
                    candidates = [nested.get(k) for k in PARENT_ID_KEYS]
                else:
                    candidates = [nested]
                found.update(filter(None, (_session_like(c) for c in candidates)))
            _collect_parent_ids(nested, found)
    elif isinstance(value, list):
        for nested in value:
            _collect_parent_ids(nested, found)


def explicit_parent_ids(value: Any) -> set[str]:
    found: set[str] = set()
    _collect_parent_ids(value, found)
    return found


def read_log_entries(logs_path: Path, warnings: list[str]) -> list[dict[str, Any]]:
    """Read ``logs.json``: a JSON array, an object with ``entries``, or JSON lines."""
    if not logs_path.is_file():
        return []
    try:
        text = logs_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        warnings.append(f"cannot read gemini logs {logs_path}: {e}")
        return []

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = []
        for line_no, line in enumerate(split_lines(text), start=1):
            if not line.strip():
                continue
            try:
                data.append(json.loads(line))
            except json.JSONDecodeError:
                warnings.append(f"invalid gemini log entry at {logs_path} line {line_no}")

    if isinstance(data, dict):
        data = data.get("entries", [data])
    if not isinstance(data, list):
        warnings.append(f"unsupported gemini logs format in {logs_path}: expected JSON array or object")
        return []
    return [entry for entry in data if isinstance(entry, dict) and _session_like(entry.get("sessionId"))]


def infer_resume_relations(entries: list[dict[str, Any]]) -> list[tuple[str, str, str | None]]:
    """Sessions whose first user message is ``/resume``, paired with the session active just before.

    Returns:
        (child session, parent session, timestamp) tuples.
    """
    first_user_seen: set[str] = set()
    latest_session: str | None = None
    relations = []
    for entry in entries:
        session_id = _session_like(entry.get("sessionId"))
        entry_type = entry.get("type")
        if entry_type in (None, "user") and session_id not in first_user_seen:
            first_user_seen.add(session_id)
            message = entry.get("message")
            if (
                isinstance(message, str)
                and message.lstrip().startswith("/resume")
                and latest_session
                and latest_session != session_id
            ):
                relations.append((session_id, latest_session, as_str(entry.get("timestamp"))))
        latest_session = session_id
    return relations


class GeminiLocator(ProviderLocator):
    """Gemini chats under ``$GEMINI_CLI_HOME/.gemini/tmp``."""

    provider = Provider.GEMINI
    supports_children = True

    def chat_files(self, base: Path) -> list[Path]:
        return [p for p in find_files(base, "session-*.json") if p.parent.name == "chats"]

    def chat_session_id(self, path: Path) -> str | None:
        data = read_json_file(path)
        return _session_like(data.get("sessionId")) if isinstance(data, dict) else None

    def locate(self, uri: ThreadURI) -> ThreadLocation:
        self.require_root()
        session_id = uri.main_id
        tmp = self.root / "tmp"
        matches = [p for p in self.chat_files(tmp) if self.chat_session_id(p) == session_id]
        if not matches:
            raise ThreadNotFound(self.provider.value, session_id, [tmp])

        path, warnings = choose_latest(matches, self.provider, session_id)
        siblings = [p for p in sorted(path.parent.glob("session-*.json")) if p != path]
        return self._location(
            session_id, path, ResolutionPath.FILESYSTEM_SCAN, "gemini:chats", candidates=siblings, warnings=warnings
        )

    def load_records(self, location: ThreadLocation) -> list[ThreadRecord]:
        _, records = load_document(location.primary)
        return records

    def entries_for(self, record: ThreadRecord) -> list[TimelineEntry]:
        role = ROLE_BY_TYPE.get(record.raw_discriminator)
        if role is None:
            return []
        payload = record.payload
        text = extract_text(payload.get("displayContent")) or extract_text(payload.get("content"))
        calls = payload.get("toolCalls") if isinstance(payload.get("toolCalls"), list) else []
        names = [as_str(c.get("name")) or "tool" for c in calls if isinstance(c, dict)]
        return message_entry(role, text, record.timestamp) + tool_entries(names, record.timestamp)

    def discover_children(
        self, main_uri: ThreadURI, location: ThreadLocation, records: list[ThreadRecord]
    ) -> ChildDiscovery:
        main_id = main_uri.main_id
        discovery = ChildDiscovery()
        project_dir = location.primary.parent.parent

        chats: dict[str, Path] = {}
        for path in location.candidates:
            data = read_json_file(path)
            if not isinstance(data, dict):
                discovery.warnings.append(f"cannot read gemini chat {path}")
                continue
            session_id = _session_like(data.get("sessionId"))
            if session_id is None or session_id == main_id:
                continue
            chats[session_id] = path
            if main_id in explicit_parent_ids(data):
                discovery.candidates.append(
                    ChildCandidate(session_id, path, ORIGIN_SCAN, "child chat names the main session as parent")
                )

        for child_id, parent_id, ts in infer_resume_relations(read_log_entries(project_dir / "logs.json", discovery.warnings)):
            if parent_id != main_id or child_id == main_id:
                continue
            if any(c.agent_id == child_id for c in discovery.candidates):
                continue
            discovery.candidates.append(
                ChildCandidate(child_id, chats.get(child_id), ORIGIN_LOG, "logs.json /resume after main session activity")
            )
            discovery.parent_events.setdefault(child_id, []).append(
                LifecycleEvent(ts, "resume", "child session started with /resume")
            )
        return discovery

    def analyze_child(self, main_uri: ThreadURI, candidate: ChildCandidate) -> ChildReport:
        doc, records = load_document(candidate.path)
        parents = explicit_parent_ids(doc)
        back_reference = main_uri.main_id if main_uri.main_id in parents else next(iter(sorted(parents)), None)

        evidence = []
        events = []
        for record in records:
            if record.raw_discriminator == "error":
                evidence.append(StatusEvidence("child_rollout", "errored", "error message"))
                events.append(LifecycleEvent(record.timestamp, "error", "child reported an error"))

        entries = self.timeline(records)
        evidence.append(inferred_evidence(entries))
        return ChildReport(
            agent_id=candidate.agent_id,
            path=candidate.path,
            back_reference=back_reference,
            evidence=tuple(evidence),
            lifecycle=tuple(events),
            excerpt=excerpt(entries),
            last_update=as_str(doc.get("lastUpdated")) or as_str(doc.get("startTime")),
        )
