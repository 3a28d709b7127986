"""Claude Code sessions under ``projects/<project>/``."""

import logging
from pathlib import Path

from ..errors import AmbiguousMatch, ThreadNotFound
from ..linkage import ORIGIN_PARENT, ORIGIN_SCAN, ChildCandidate, ChildDiscovery, ChildReport
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
from ..storage import load_jsonl, read_head_objects, read_json_file
from .base import (
    ProviderLocator,
    as_str,
    choose_latest,
    compact_entry,
    dig,
    excerpt,
    extract_text,
    find_files,
    inferred_evidence,
    last_timestamp,
    message_entry,
    tool_entries,
    tool_names,
)

logger = logging.getLogger(__name__)

HEADER_SCAN_LINES = 30
AGENT_PREFIX = "agent-"

# Task tool result statuses as the parent records them
TASK_STATUSES = {
    "completed": "completed",
    "async_launched": "running",
    "running": "running",
    "error": "errored",
    "failed": "errored",
    "killed": "shutdown",
    "cancelled": "shutdown",
}


def normalize_agent_id(agent_id: str) -> str:
    """Strip the optional ``agent-`` prefix."""
    return agent_id[len(AGENT_PREFIX):] if agent_id.startswith(AGENT_PREFIX) else agent_id


def _agent_file_id(path: Path) -> str | None:
    """Agent id from a transcript's first record, else from its file name."""
    head = read_head_objects(path, 1)
    agent_id = as_str(head[0].get("agentId")) if head else None
    if agent_id is None and path.stem.startswith(AGENT_PREFIX):
        agent_id = path.stem
    return normalize_agent_id(agent_id) if agent_id else None


class ClaudeLocator(ProviderLocator):
    """Claude sessions under ``$CLAUDE_CONFIG_DIR/projects``."""

    provider = Provider.CLAUDE
    supports_children = True

    @property
    def projects(self) -> Path:
        return self.root / "projects"

    def _index_matches(self, session_id: str) -> list[Path]:
        matches = []
        for index in find_files(self.projects, "sessions-index.json"):
            data = read_json_file(index)
            entries = data.get("entries") if isinstance(data, dict) else None
            for entry in entries if isinstance(entries, list) else []:
                if not isinstance(entry, dict) or entry.get("sessionId") != session_id:
                    continue
                full_path = as_str(entry.get("fullPath"))
                if full_path and Path(full_path).is_file():
                    matches.append(Path(full_path))
        return matches

    def _header_matches(self, session_id: str) -> list[Path]:
        matches = []
        for path in find_files(self.projects, "*.jsonl"):
            # Agent transcripts carry the parent's sessionId too
            if path.name.startswith(AGENT_PREFIX):
                continue
            if any(obj.get("sessionId") == session_id for obj in read_head_objects(path, HEADER_SCAN_LINES)):
                matches.append(path)
        return matches

    def agent_files(self, session_id: str, primary: Path) -> list[Path]:
        """Subagent transcripts that may belong to a session.

        Files in the session's own ``subagents`` directory are all
        candidates. Project-level ``agent-*.jsonl`` files are shared by
        every session in the project, so only those whose first record
        names this session are kept.
        """
        project = primary.parent
        nested = sorted((project / session_id / "subagents").glob("agent-*.jsonl"))
        flat = []
        for path in sorted(project.glob("agent-*.jsonl")):
            head = read_head_objects(path, 1)
            if head and head[0].get("sessionId") == session_id:
                flat.append(path)
        return [p for p in nested + flat if p.is_file()]

    def locate(self, uri: ThreadURI) -> ThreadLocation:
        self.require_root()
        session_id = uri.main_id

        steps = (
            (self._index_matches, ResolutionPath.INDEX_HIT, "claude:sessions-index"),
            (lambda sid: find_files(self.projects, f"{sid}.jsonl"), ResolutionPath.FILESYSTEM_FALLBACK, "claude:filename"),
            (self._header_matches, ResolutionPath.FILESYSTEM_FALLBACK, "claude:header-scan"),
        )
        for finder, resolution, source in steps:
            matches = finder(session_id)
            if not matches:
                logger.debug("claude %s: no match via %s", session_id, source)
                continue
            path, warnings = choose_latest(matches, self.provider, session_id)
            return self._location(
                session_id, path, resolution, source, candidates=self.agent_files(session_id, path), warnings=warnings
            )

        raise ThreadNotFound(self.provider.value, session_id, [self.projects])

    def entries_for(self, record: ThreadRecord) -> list[TimelineEntry]:
        kind = record.raw_discriminator
        payload = record.payload
        ts = record.timestamp

        if kind == "system" and payload.get("subtype") == "compact_boundary":
            return [compact_entry(None, ts)]
        if kind not in ("user", "assistant"):
            return []

        message = payload.get("message")
        message = message if isinstance(message, dict) else {}
        content = message.get("content")
        if payload.get("isCompactSummary"):
            return [compact_entry(extract_text(content), ts)]

        role = as_str(message.get("role")) or kind
        return message_entry(role, extract_text(content), ts) + tool_entries(tool_names(content), ts)

    def locate_child(self, uri: ThreadURI) -> Path:
        location = self.locate(uri.main())
        if uri.child_id is None:
            return location.primary
        wanted = normalize_agent_id(uri.child_id)
        matches = [p for p in location.candidates if _agent_file_id(p) == wanted]
        if not matches:
            raise ThreadNotFound(self.provider.value, str(uri), list(location.candidates))
        path, _ = choose_latest(matches, self.provider, wanted)
        return path

    def _parent_state(self, records: list[ThreadRecord], discovery: ChildDiscovery) -> list[str]:
        """Read Task results and agent progress records; returns agent ids in first-appearance order."""
        order: list[str] = []
        for record in records:
            agent_id = None
            result = record.payload.get("toolUseResult")
            if isinstance(result, dict) and as_str(result.get("agentId")):
                agent_id = normalize_agent_id(result["agentId"])
                raw_status = as_str(result.get("status"))
                status = TASK_STATUSES.get(raw_status or "")
                if status:
                    discovery.parent_evidence.setdefault(agent_id, []).append(
                        StatusEvidence("parent_rollout", status, f"task result status={raw_status}")
                    )
                event = LifecycleEvent(record.timestamp, "task_result", f"status={raw_status or 'unknown'}")
            elif record.raw_discriminator == "progress" and dig(record.payload, "data", "type") == "agent_progress":
                raw_id = as_str(dig(record.payload, "data", "agentId"))
                if not raw_id:
                    continue
                agent_id = normalize_agent_id(raw_id)
                discovery.parent_evidence.setdefault(agent_id, []).append(
                    StatusEvidence("parent_rollout", "running", "agent progress")
                )
                event = LifecycleEvent(record.timestamp, "agent_progress", "progress reported to parent")
            if agent_id is None:
                continue
            if agent_id not in order:
                order.append(agent_id)
            discovery.parent_events.setdefault(agent_id, []).append(event)
        return order

    def discover_children(
        self, main_uri: ThreadURI, location: ThreadLocation, records: list[ThreadRecord]
    ) -> ChildDiscovery:
        discovery = ChildDiscovery()

        by_agent: dict[str, list[Path]] = {}
        for path in location.candidates:
            agent_id = _agent_file_id(path)
            if agent_id is None:
                discovery.warnings.append(f"cannot read agent id from {path}")
                continue
            by_agent.setdefault(agent_id, []).append(path)

        files: dict[str, Path] = {}
        for agent_id, paths in by_agent.items():
            try:
                files[agent_id], dupes = choose_latest(paths, self.provider, agent_id)
            except AmbiguousMatch as e:
                discovery.warnings.append(str(e))
                continue
            discovery.warnings.extend(dupes)

        parent_order = self._parent_state(records, discovery)
        for agent_id in parent_order:
            discovery.candidates.append(
                ChildCandidate(agent_id, files.get(agent_id), ORIGIN_PARENT, "named in parent task results")
            )
        for agent_id, path in files.items():
            if agent_id not in parent_order:
                discovery.candidates.append(ChildCandidate(agent_id, path, ORIGIN_SCAN, "agent transcript"))
        return discovery

    def analyze_child(self, main_uri: ThreadURI, candidate: ChildCandidate) -> ChildReport:
        records = load_jsonl(candidate.path)
        first = records[0].payload if records else {}
        back_reference = as_str(first.get("sessionId")) if first.get("isSidechain") is True else None

        evidence = []
        events = []
        for record in records:
            if record.payload.get("isApiErrorMessage") or record.payload.get("error"):
                evidence.append(StatusEvidence("child_rollout", "errored", "error record"))
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
            last_update=last_timestamp(records),
        )
