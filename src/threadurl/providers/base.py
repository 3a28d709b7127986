"""Shared locator behaviour and record helpers."""

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ..errors import AmbiguousMatch, InvalidMode, RootNotFound
from ..linkage import ChildCandidate, ChildDiscovery, ChildReport
from ..models import (
    LIFECYCLE_STATUSES,
    Provider,
    ResolutionPath,
    StatusEvidence,
    ThreadLocation,
    ThreadRecord,
    ThreadURI,
    TimelineEntry,
)
from ..storage import load_jsonl

logger = logging.getLogger(__name__)

# Content item types that carry tool traffic rather than prose
TOOL_TYPES = frozenset({
    "tool_call",
    "tool_result",
    "tool_use",
    "function_call",
    "function_result",
    "function_response",
})
TOOL_CALL_TYPES = frozenset({"tool_call", "tool_use", "function_call", "toolCall"})

COMPACT_PLACEHOLDER = "Context was compacted."
EXCERPT_SIZE = 3

# Some tools write statuses in snake_case
STATUS_ALIASES = {"pending_init": "pendingInit", "not_found": "notFound", "error": "errored"}


def normalize_status(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = STATUS_ALIASES.get(value, value)
    return value if value in LIFECYCLE_STATUSES else None


def infer_state_from_status_payload(payload: Any) -> str | None:
    """Read a status out of a tool output: a bare string or a single-key object."""
    status = normalize_status(payload)
    if status:
        return status
    if isinstance(payload, dict):
        for key in payload:
            status = normalize_status(key)
            if status:
                return status
    return None


def dig(value: Any, *keys: str) -> Any:
    """Follow nested dict keys, returning None on the first miss."""
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def as_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def extract_text(content: Any) -> str:
    """Join the prose parts of a message content value.

    Accepts a plain string or a list of strings / ``{"text": ...}`` items.
    Tool items are skipped.
    """
    if isinstance(content, str):
        return content.strip()
    if not isinstance(content, list):
        return ""

    chunks = []
    for item in content:
        if isinstance(item, str):
            chunks.append(item)
        elif isinstance(item, dict):
            if item.get("type") in TOOL_TYPES:
                continue
            for key in ("text", "input_text", "output_text"):
                text = item.get(key)
                if isinstance(text, str):
                    chunks.append(text)
                    break
    return "\n\n".join(c.strip() for c in chunks if c.strip())


def tool_names(content: Any) -> list[str]:
    """Names of the tool calls inside a message content list."""
    if not isinstance(content, list):
        return []
    names = []
    for item in content:
        if isinstance(item, dict) and item.get("type") in TOOL_CALL_TYPES:
            names.append(as_str(item.get("name")) or item["type"])
    return names


def message_entry(role: str, text: str, timestamp: str | None) -> list[TimelineEntry]:
    """A user/assistant entry, or nothing for other roles or empty text."""
    if role not in ("user", "assistant") or not text:
        return []
    return [TimelineEntry(role, text, timestamp)]


def compact_entry(summary: str | None, timestamp: str | None) -> TimelineEntry:
    return TimelineEntry("compact", (summary or "").strip() or COMPACT_PLACEHOLDER, timestamp)


def tool_entries(names: Iterable[str], timestamp: str | None) -> list[TimelineEntry]:
    return [TimelineEntry("tool", name, timestamp) for name in names]


def excerpt(entries: Iterable[TimelineEntry], size: int = EXCERPT_SIZE) -> tuple[TimelineEntry, ...]:
    """The last ``size`` user/assistant messages."""
    messages = [e for e in entries if e.kind in ("user", "assistant")]
    return tuple(messages[-size:])


def inferred_evidence(entries: Iterable[TimelineEntry]) -> StatusEvidence:
    """Best-effort status from which roles have spoken."""
    kinds = {e.kind for e in entries}
    if "assistant" in kinds:
        return StatusEvidence("inferred", "completed", "child has assistant output")
    if "user" in kinds:
        return StatusEvidence("inferred", "running", "child has user input only")
    return StatusEvidence("inferred", "pendingInit", "child has no messages yet")


def last_timestamp(records: Iterable[ThreadRecord]) -> str | None:
    stamps = [r.timestamp for r in records if r.timestamp]
    return stamps[-1] if stamps else None


def mtime_ns(path: Path) -> int:
    return path.stat().st_mtime_ns


def choose_latest(paths: list[Path], provider: Provider, thread_id: str) -> tuple[Path, list[str]]:
    """Pick the most recently modified of several files claiming one id.

    Returns:
        The chosen path and any warnings about discarded duplicates.

    Raises:
        AmbiguousMatch: If the newest files share a modification time.
    """
    unique = sorted(set(paths))
    if len(unique) == 1:
        return unique[0], []

    ranked = sorted(unique, key=mtime_ns, reverse=True)
    newest = mtime_ns(ranked[0])
    tied = [p for p in ranked if mtime_ns(p) == newest]
    if len(tied) > 1:
        raise AmbiguousMatch(provider.value, thread_id, tied)

    warning = f"multiple matches found ({len(ranked)}) for {provider.value} id {thread_id}; using latest: {ranked[0]}"
    return ranked[0], [warning]


def find_files(base: Path, pattern: str) -> list[Path]:
    """Recursively find files under ``base`` matching a glob pattern."""
    if not base.is_dir():
        return []
    return sorted(p for p in base.rglob(pattern) if p.is_file())


class ProviderLocator:
    """Locate and read one provider's threads under its root."""

    provider: Provider
    supports_children = False

    def __init__(self, root: Path):
        self.root = root

    def require_root(self) -> None:
        if not self.root.is_dir():
            raise RootNotFound(self.provider.value, self.root)

    def locate(self, uri: ThreadURI) -> ThreadLocation:
        raise NotImplementedError

    def load_records(self, location: ThreadLocation) -> list[ThreadRecord]:
        return load_jsonl(location.primary)

    def entries_for(self, record: ThreadRecord) -> list[TimelineEntry]:
        raise NotImplementedError

    def timeline(self, records: Iterable[ThreadRecord]) -> list[TimelineEntry]:
        """Convert records into rendered timeline entries, in record order."""
        entries: list[TimelineEntry] = []
        for record in records:
            entries.extend(self.entries_for(record))
        return entries

    def discover_children(
        self, main_uri: ThreadURI, location: ThreadLocation, records: list[ThreadRecord]
    ) -> ChildDiscovery:
        """Collect child candidates and parent-side evidence about them."""
        raise InvalidMode(f"{self.provider.value} threads have no subagents")

    def analyze_child(self, main_uri: ThreadURI, candidate: ChildCandidate) -> ChildReport:
        """Read one child file and report its back-reference and state."""
        raise InvalidMode(f"{self.provider.value} threads have no subagents")

    def locate_child(self, uri: ThreadURI) -> Path:
        """Find a child's backing file without validating its linkage."""
        if uri.child_id is None:
            return self.locate(uri).primary
        return self.locate(ThreadURI(self.provider, uri.child_id)).primary

    def _location(
        self,
        thread_id: str,
        primary: Path,
        resolution_path: ResolutionPath,
        source: str,
        candidates: Iterable[Path] = (),
        warnings: Iterable[str] = (),
    ) -> ThreadLocation:
        logger.debug("%s %s resolved via %s: %s", self.provider.value, thread_id, source, primary)
        return ThreadLocation(
            provider=self.provider,
            thread_id=thread_id,
            primary=primary,
            resolution_path=resolution_path,
            source=source,
            candidates=tuple(candidates),
            warnings=tuple(warnings),
        )
