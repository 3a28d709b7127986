"""Pi sessions: one JSONL file per session holding a parent-pointer tree of entries."""

import logging
from dataclasses import dataclass
from pathlib import Path

from ..errors import LinkageRejected, ThreadNotFound, TreeCycleDetected
from ..linkage import validate_branch_path
from ..models import (
    BranchEntry,
    Provider,
    ResolutionPath,
    ThreadLocation,
    ThreadRecord,
    ThreadURI,
    TimelineEntry,
)
from ..storage import read_head_objects
from .base import (
    ProviderLocator,
    as_str,
    choose_latest,
    compact_entry,
    dig,
    extract_text,
    find_files,
    message_entry,
    tool_entries,
    tool_names,
)

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 96
SUMMARY_TYPES = frozenset({"compaction", "branch_summary"})


@dataclass(frozen=True)
class BranchTree:
    """Entries of one session in file order, linked by arena index."""

    records: tuple[ThreadRecord, ...]
    ids: tuple[str, ...]
    parent_ids: tuple[str | None, ...]
    index: dict[str, int]

    def parent_index(self, i: int) -> int | None:
        parent_id = self.parent_ids[i]
        if parent_id is None:
            return None
        found = self.index.get(parent_id)
        if found is None:
            raise LinkageRejected(f"pi entry {self.ids[i]} points at missing parent {parent_id}")
        return found


def build_tree(records: list[ThreadRecord]) -> BranchTree:
    """Arrange the non-header records that carry an id into an arena."""
    entries = [r for r in records if r.raw_discriminator != "session" and as_str(r.payload.get("id"))]
    ids = tuple(r.payload["id"].lower() for r in entries)
    parent_ids = tuple(
        as_str(r.payload.get("parentId")).lower() if as_str(r.payload.get("parentId")) else None for r in entries
    )
    index: dict[str, int] = {}
    for i, entry_id in enumerate(ids):
        index.setdefault(entry_id, i)
    return BranchTree(tuple(entries), ids, parent_ids, index)


def branch_path(tree: BranchTree, target: str | None = None) -> list[int]:
    """Arena indices from the root to ``target``, or to the last entry written.

    Raises:
        ThreadNotFound: If ``target`` is not an entry of the tree.
        TreeCycleDetected: If following parent pointers revisits an entry.
        LinkageRejected: If a parent pointer is dangling or points forward.
    """
    if not tree.ids:
        return []
    if target is None:
        current: int | None = len(tree.ids) - 1
    else:
        current = tree.index.get(target.lower())
        if current is None:
            raise ThreadNotFound(Provider.PI.value, target)

    visited: set[int] = set()
    path: list[int] = []
    while current is not None:
        if current in visited:
            cycle = " -> ".join(tree.ids[i] for i in path + [current])
            raise TreeCycleDetected(f"pi entries form a cycle: {cycle}")
        visited.add(current)
        path.append(current)
        current = tree.parent_index(current)
    path.reverse()

    validate_branch_path(path, [tree.index.get(p) if p else None for p in tree.parent_ids])
    return path


def _preview(record: ThreadRecord) -> str | None:
    payload = record.payload
    if record.raw_discriminator == "message":
        text = extract_text(dig(payload, "message", "content"))
    elif record.raw_discriminator in SUMMARY_TYPES:
        text = as_str(payload.get("summary")) or ""
    else:
        return None
    text = " ".join(text.split())
    if len(text) > PREVIEW_LENGTH:
        text = text[: PREVIEW_LENGTH - 1] + "…"
    return text or None


def branch_entries(tree: BranchTree) -> list[BranchEntry]:
    """Every entry in file order, with leaf flags."""
    has_children = {p for p in tree.parent_ids if p}
    return [
        BranchEntry(
            entry_id=entry_id,
            entry_type=record.raw_discriminator or "unknown",
            parent_id=tree.parent_ids[i],
            timestamp=record.timestamp,
            preview=_preview(record),
            is_leaf=entry_id not in has_children,
        )
        for i, (entry_id, record) in enumerate(zip(tree.ids, tree.records))
    ]


class PiLocator(ProviderLocator):
    """Pi sessions under ``$PI_CODING_AGENT_DIR/sessions``."""

    provider = Provider.PI

    def locate(self, uri: ThreadURI) -> ThreadLocation:
        self.require_root()
        session_id = uri.main_id
        sessions = self.root / "sessions"
        matches = []
        for path in find_files(sessions, "*.jsonl"):
            head = read_head_objects(path, 1)
            if head and head[0].get("type") == "session" and str(head[0].get("id", "")).lower() == session_id:
                matches.append(path)
        if not matches:
            raise ThreadNotFound(self.provider.value, session_id, [sessions])

        path, warnings = choose_latest(matches, self.provider, session_id)
        return self._location(session_id, path, ResolutionPath.FILESYSTEM_SCAN, "pi:sessions", warnings=warnings)

    def locate_child(self, uri: ThreadURI) -> Path:
        # Entries live inside the session file itself
        return self.locate(uri.main()).primary

    def entries_for(self, record: ThreadRecord) -> list[TimelineEntry]:
        kind = record.raw_discriminator
        ts = record.timestamp
        if kind in SUMMARY_TYPES:
            return [compact_entry(as_str(record.payload.get("summary")), ts)]
        if kind != "message":
            return []
        message = record.payload.get("message")
        message = message if isinstance(message, dict) else {}
        content = message.get("content")
        role = as_str(message.get("role")) or ""
        return message_entry(role, extract_text(content), ts) + tool_entries(tool_names(content), ts)

    def branch(self, records: list[ThreadRecord], target: str | None = None) -> list[ThreadRecord]:
        """Records on the path from the root to ``target``."""
        tree = build_tree(records)
        return [tree.records[i] for i in branch_path(tree, target)]

    def entries(self, records: list[ThreadRecord]) -> list[BranchEntry]:
        return branch_entries(build_tree(records))
