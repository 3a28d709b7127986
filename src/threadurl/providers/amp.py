"""Amp threads stored as ``threads/<T-id>.json`` documents."""

import datetime
import logging
from pathlib import Path
from typing import Any

from ..errors import InvalidUri, ThreadNotFound, UnreadableFile
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
from ..storage import load_document
from ..uri import normalize_main_id
from .base import (
    ProviderLocator,
    as_str,
    excerpt,
    infer_state_from_status_payload,
    inferred_evidence,
    message_entry,
    tool_entries,
    tool_names,
)

logger = logging.getLogger(__name__)


def extract_amp_text(content: Any) -> str:
    """Join ``text`` and ``thinking`` items of an Amp message."""
    if not isinstance(content, list):
        return ""
    chunks = []
    for item in content:
        if not isinstance(item, dict):
            continue
        if item.get("type") == "text":
            chunks.append(item.get("text"))
        elif item.get("type") == "thinking":
            chunks.append(item.get("thinking"))
    return "\n\n".join(c.strip() for c in chunks if isinstance(c, str) and c.strip())


def extract_handoffs(doc: dict[str, Any], warnings: list[str], source: str) -> list[tuple[str, str | None, str | None]]:
    """Handoff relationships as (thread id, role, timestamp)."""
    relationships = doc.get("relationships")
    handoffs = []
    for rel in relationships if isinstance(relationships, list) else []:
        if not isinstance(rel, dict) or rel.get("type") != "handoff":
            continue
        raw_id = as_str(rel.get("threadID"))
        if raw_id is None:
            warnings.append(f"{source} thread handoff relationship missing threadID field")
            continue
        try:
            thread_id = normalize_main_id(Provider.AMP, raw_id)
        except InvalidUri:
            warnings.append(f"{source} thread handoff relationship has invalid threadID={raw_id}")
            continue
        role = as_str(rel.get("role"))
        ts = as_str(rel.get("timestamp")) or as_str(rel.get("updatedAt")) or as_str(rel.get("createdAt"))
        handoffs.append((thread_id, role.lower() if role else None, ts))
    return handoffs


def _message_timestamp(message: dict[str, Any]) -> str | None:
    meta = message.get("meta")
    sent_at = meta.get("sentAt") if isinstance(meta, dict) else None
    if isinstance(sent_at, (int, float)) and not isinstance(sent_at, bool):
        try:
            return datetime.datetime.fromtimestamp(sent_at / 1000, tz=datetime.timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError):
            logger.debug("ignoring out-of-range sentAt %r", sent_at)
            return None
    return as_str(message.get("timestamp"))


def thread_last_update(doc: dict[str, Any], records: list[ThreadRecord], path: Path) -> str:
    for key in ("lastUpdated", "updatedAt", "timestamp", "createdAt"):
        if as_str(doc.get(key)):
            return doc[key]
    stamps = [_message_timestamp(r.payload) for r in records]
    stamps = [s for s in stamps if s]
    if stamps:
        return stamps[-1]
    return datetime.datetime.fromtimestamp(path.stat().st_mtime, tz=datetime.timezone.utc).isoformat()


class AmpLocator(ProviderLocator):
    """Amp threads under ``$XDG_DATA_HOME/amp/threads``."""

    provider = Provider.AMP
    supports_children = True

    def thread_path(self, thread_id: str) -> Path:
        return self.root / "threads" / f"{thread_id}.json"

    def locate(self, uri: ThreadURI) -> ThreadLocation:
        self.require_root()
        path = self.thread_path(uri.main_id)
        if not path.is_file():
            raise ThreadNotFound(self.provider.value, uri.main_id, [path])
        return self._location(uri.main_id, path, ResolutionPath.FILESYSTEM_SCAN, "amp:threads")

    def load_records(self, location: ThreadLocation) -> list[ThreadRecord]:
        _, records = load_document(location.primary)
        return records

    def entries_for(self, record: ThreadRecord) -> list[TimelineEntry]:
        content = record.payload.get("content")
        ts = _message_timestamp(record.payload)
        return message_entry(record.role_or_kind, extract_amp_text(content), ts) + tool_entries(tool_names(content), ts)

    def discover_children(
        self, main_uri: ThreadURI, location: ThreadLocation, records: list[ThreadRecord]
    ) -> ChildDiscovery:
        discovery = ChildDiscovery()
        doc, _ = load_document(location.primary)
        for thread_id, role, ts in extract_handoffs(doc, discovery.warnings, "main"):
            # role=child means the main thread was itself handed off from this thread
            if thread_id == main_uri.main_id or role == "child":
                continue
            discovery.parent_events.setdefault(thread_id, []).append(
                LifecycleEvent(ts, "handoff", f"main handoff relationship (role={role or 'missing'})")
            )
            if any(c.agent_id == thread_id for c in discovery.candidates):
                continue
            path = self.thread_path(thread_id)
            discovery.candidates.append(
                ChildCandidate(thread_id, path if path.is_file() else None, ORIGIN_PARENT, "main thread handoff")
            )
        return discovery

    def analyze_child(self, main_uri: ThreadURI, candidate: ChildCandidate) -> ChildReport:
        doc, records = load_document(candidate.path)
        warnings: list[str] = []
        back_reference = None
        events = []
        for thread_id, role, ts in extract_handoffs(doc, warnings, "child"):
            if thread_id == main_uri.main_id:
                back_reference = thread_id
                events.append(LifecycleEvent(ts, "handoff_backlink", f"child handoff relationship (role={role or 'missing'})"))

        evidence = []
        state = infer_state_from_status_payload(doc.get("status")) or infer_state_from_status_payload(doc.get("state"))
        if state:
            evidence.append(StatusEvidence("child_rollout", state, "thread status field"))
        entries = self.timeline(records)
        evidence.append(inferred_evidence(entries))

        try:
            last_update = thread_last_update(doc, records, candidate.path)
        except OSError as e:
            raise UnreadableFile(candidate.path, e.strerror or str(e)) from e
        return ChildReport(
            agent_id=candidate.agent_id,
            path=candidate.path,
            back_reference=back_reference,
            evidence=tuple(evidence),
            lifecycle=tuple(events),
            excerpt=excerpt(entries),
            last_update=last_update,
            warnings=tuple(warnings),
        )
