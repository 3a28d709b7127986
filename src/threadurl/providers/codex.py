"""Codex rollouts: sqlite thread index first, then the sessions tree."""

import json
import logging
import re
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import ThreadNotFound, ThreadUrlError
from ..linkage import ORIGIN_PARENT, ChildCandidate, ChildDiscovery, ChildReport
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
from ..storage import load_jsonl
from .base import (
    ProviderLocator,
    as_str,
    choose_latest,
    compact_entry,
    dig,
    excerpt,
    extract_text,
    find_files,
    infer_state_from_status_payload,
    inferred_evidence,
    last_timestamp,
    message_entry,
    mtime_ns,
    tool_entries,
)

logger = logging.getLogger(__name__)

# state.sqlite or state_<version>.sqlite
STATE_DB_RE = re.compile(r"^state(?:_(\d+))?\.sqlite$")

LIFECYCLE_CALLS = frozenset({"spawn_agent", "wait", "send_input", "resume_agent", "close_agent"})
TOOL_CALL_ITEMS = frozenset({"function_call", "custom_tool_call", "local_shell_call", "web_search_call"})

# Child events that report the child's own state
CHILD_STATE_EVENTS = {
    "task_started": "running",
    "task_complete": "completed",
    "turn_aborted": "errored",
}


@dataclass(frozen=True)
class IndexRow:
    db: Path
    rollout_path: Path
    archived: bool


@dataclass
class AgentTimeline:
    """Lifecycle calls the parent made for one agent."""

    events: list[LifecycleEvent] = field(default_factory=list)
    states: list[str] = field(default_factory=list)
    has_spawn: bool = False
    has_activity: bool = False


def _json_object(value: Any) -> dict[str, Any]:
    """Decode a tool call argument or output that may be JSON text."""
    if isinstance(value, dict):
        content = value.get("content")
        if isinstance(content, str):
            value = content
        else:
            return value
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def parse_parent_lifecycle(records: list[ThreadRecord]) -> tuple[dict[str, AgentTimeline], list[str]]:
    """Pair lifecycle tool calls with their outputs, per agent, in first-appearance order."""
    calls: list[tuple[str, str, dict[str, Any], str | None]] = []
    outputs: dict[str, dict[str, Any]] = {}
    for record in records:
        if record.raw_discriminator != "response_item":
            continue
        payload = record.payload.get("payload")
        if not isinstance(payload, dict):
            continue
        call_id = as_str(payload.get("call_id"))
        if payload.get("type") == "function_call" and payload.get("name") in LIFECYCLE_CALLS and call_id:
            calls.append((call_id, payload["name"], _json_object(payload.get("arguments")), record.timestamp))
        elif payload.get("type") == "function_call_output" and call_id:
            outputs[call_id] = _json_object(payload.get("output"))

    timelines: dict[str, AgentTimeline] = {}
    warnings: list[str] = []

    def timeline(agent_id: str) -> AgentTimeline:
        return timelines.setdefault(agent_id.lower(), AgentTimeline())

    for call_id, name, args, ts in calls:
        output = outputs.get(call_id, {})

        if name == "spawn_agent":
            agent_id = as_str(output.get("agent_id"))
            if not agent_id:
                warnings.append(f"spawn_agent call {call_id} has no agent_id in its output")
                continue
            t = timeline(agent_id)
            t.has_spawn = True
            t.events.append(LifecycleEvent(ts, "spawn_agent", "subagent spawned"))

        elif name == "wait":
            ids = args.get("ids") if isinstance(args.get("ids"), list) else []
            statuses = output.get("status") if isinstance(output.get("status"), dict) else {}
            for agent_id in ids:
                if not isinstance(agent_id, str):
                    continue
                state = infer_state_from_status_payload(statuses.get(agent_id))
                if state is None and output.get("timed_out") is True:
                    state = "running"
                t = timeline(agent_id)
                t.has_activity = True
                if state:
                    t.states.append(state)
                t.events.append(LifecycleEvent(ts, "wait", f"status={state}" if state else "waited"))

        elif name in ("send_input", "resume_agent", "close_agent"):
            agent_id = as_str(args.get("id"))
            if not agent_id:
                warnings.append(f"{name} call {call_id} has no target id")
                continue
            t = timeline(agent_id)
            t.has_activity = True
            detail = name.replace("_", " ")
            if name == "close_agent":
                state = infer_state_from_status_payload(output.get("status")) or "shutdown"
                t.states.append(state)
                detail = f"status={state}"
            t.events.append(LifecycleEvent(ts, name, detail))

    return timelines, warnings


def protocol_status(timeline: "AgentTimeline") -> str | None:
    """Fold an agent's lifecycle calls into one status."""
    for status in ("errored", "shutdown", "completed"):
        if status in timeline.states:
            return status
    if "running" in timeline.states or timeline.has_activity:
        return "running"
    if timeline.has_spawn:
        return "pendingInit"
    if "notFound" in timeline.states:
        return "notFound"
    return None


class CodexLocator(ProviderLocator):
    """Codex threads under ``$CODEX_HOME``."""

    provider = Provider.CODEX
    supports_children = True

    def index_paths(self) -> list[Path]:
        """Index databases, newest version first, then newest file."""
        found = []
        for entry in self.root.iterdir():
            m = STATE_DB_RE.match(entry.name)
            if m and entry.is_file():
                found.append((int(m.group(1) or 0), mtime_ns(entry), entry))
        found.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [path for _, _, path in found]

    def query_index(self, thread_id: str, warnings: list[str]) -> IndexRow | None:
        """Look the id up in each index until one has a row.

        Each database is opened read-only and closed before returning.
        """
        for db in self.index_paths():
            try:
                conn = sqlite3.connect(f"{db.as_uri()}?mode=ro", uri=True)
                try:
                    row = conn.execute(
                        "SELECT rollout_path, archived FROM threads WHERE id = ? LIMIT 1", (thread_id,)
                    ).fetchone()
                finally:
                    conn.close()
            except sqlite3.Error as e:
                warnings.append(f"failed to read codex index {db}: {e}")
                continue
            if row and row[0]:
                rollout = Path(row[0])
                if not rollout.is_absolute():
                    rollout = self.root / rollout
                return IndexRow(db, rollout, bool(row[1]))
            logger.debug("codex index %s has no row for %s", db, thread_id)
        return None

    def scan(self, subdir: str, thread_id: str) -> list[Path]:
        return find_files(self.root / subdir, f"rollout-*{thread_id}.jsonl")

    def locate(self, uri: ThreadURI) -> ThreadLocation:
        self.require_root()
        thread_id = uri.main_id
        warnings: list[str] = []
        row = self.query_index(thread_id, warnings)

        if row and not row.archived:
            if row.rollout_path.is_file():
                return self._location(
                    thread_id, row.rollout_path, ResolutionPath.INDEX_HIT, "codex:sqlite:sessions", warnings=warnings
                )
            warnings.append(f"codex index {row.db} points to a missing rollout: {row.rollout_path}")

        matches = self.scan("sessions", thread_id)
        if matches:
            path, dupes = choose_latest(matches, self.provider, thread_id)
            return self._location(
                thread_id, path, ResolutionPath.FILESYSTEM_FALLBACK, "codex:sessions", warnings=warnings + dupes
            )

        if row and row.archived:
            if row.rollout_path.is_file():
                return self._location(
                    thread_id,
                    row.rollout_path,
                    ResolutionPath.INDEX_HIT,
                    "codex:sqlite:archived_sessions",
                    warnings=warnings,
                )
            warnings.append(f"codex index {row.db} points to a missing archived rollout: {row.rollout_path}")

        matches = self.scan("archived_sessions", thread_id)
        if matches:
            path, dupes = choose_latest(matches, self.provider, thread_id)
            return self._location(
                thread_id,
                path,
                ResolutionPath.FILESYSTEM_FALLBACK,
                "codex:archived_sessions",
                warnings=warnings + dupes,
            )

        raise ThreadNotFound(
            self.provider.value,
            thread_id,
            [*self.index_paths(), self.root / "sessions", self.root / "archived_sessions"],
        )

    def entries_for(self, record: ThreadRecord) -> list[TimelineEntry]:
        kind = record.raw_discriminator
        payload = record.payload.get("payload")
        payload = payload if isinstance(payload, dict) else {}
        ts = record.timestamp

        if kind == "compacted":
            return [compact_entry(as_str(payload.get("message")), ts)]
        if kind == "event_msg":
            if payload.get("type") == "context_compacted":
                return [compact_entry(None, ts)]
            if payload.get("type") == "agent_message":
                return message_entry("assistant", extract_text(payload.get("message")), ts)
            return []
        if kind == "response_item":
            item_type = payload.get("type")
            if item_type == "message":
                return message_entry(str(payload.get("role")), extract_text(payload.get("content")), ts)
            if item_type in TOOL_CALL_ITEMS:
                return tool_entries([as_str(payload.get("name")) or item_type], ts)
        return []

    def timeline(self, records: list[ThreadRecord]) -> list[TimelineEntry]:
        # Codex logs assistant text twice: as an event and as a response item
        entries: list[TimelineEntry] = []
        last_assistant: str | None = None
        for entry in super().timeline(records):
            if entry.kind == "assistant":
                if entry.text == last_assistant:
                    continue
                last_assistant = entry.text
            elif entry.kind in ("user", "compact"):
                last_assistant = None
            entries.append(entry)
        return entries

    def _find_child(self, agent_id: str) -> tuple[Path | None, str | None]:
        """The child's rollout, or why it could not be chosen."""
        try:
            return self.locate(ThreadURI(self.provider, agent_id)).primary, None
        except ThreadNotFound:
            return None, None
        except ThreadUrlError as e:
            logger.debug("cannot locate codex child %s: %s", agent_id, e)
            return None, str(e)

    def discover_children(
        self, main_uri: ThreadURI, location: ThreadLocation, records: list[ThreadRecord]
    ) -> ChildDiscovery:
        timelines, warnings = parse_parent_lifecycle(records)
        discovery = ChildDiscovery(warnings=warnings)
        for agent_id, t in timelines.items():
            status = protocol_status(t)
            if status:
                discovery.parent_evidence[agent_id] = [StatusEvidence("protocol", status, "lifecycle tool calls")]
            discovery.parent_events[agent_id] = list(t.events)
            path, error = self._find_child(agent_id)
            discovery.candidates.append(
                ChildCandidate(agent_id, path, ORIGIN_PARENT, "spawned by lifecycle tool call", locate_error=error)
            )
        return discovery

    def analyze_child(self, main_uri: ThreadURI, candidate: ChildCandidate) -> ChildReport:
        records = load_jsonl(candidate.path)
        back_reference = None
        if records:
            back_reference = as_str(
                dig(records[0].payload, "payload", "source", "subagent", "thread_spawn", "parent_thread_id")
            )

        evidence = []
        events = []
        for record in records:
            payload = record.payload.get("payload")
            event_type = payload.get("type") if record.raw_discriminator == "event_msg" and isinstance(payload, dict) else None
            if event_type in CHILD_STATE_EVENTS:
                evidence.append(StatusEvidence("child_rollout", CHILD_STATE_EVENTS[event_type], event_type))
                events.append(LifecycleEvent(record.timestamp, event_type, "reported by child"))

        entries = self.timeline(records)
        evidence.append(inferred_evidence(entries))
        return ChildReport(
            agent_id=candidate.agent_id,
            path=candidate.path,
            back_reference=back_reference.lower() if back_reference else None,
            evidence=tuple(evidence),
            lifecycle=tuple(events),
            excerpt=excerpt(entries),
            last_update=last_timestamp(records),
        )
