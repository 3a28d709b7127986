"""Data models for resolved threads."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class Provider(Enum):
    """Agent tools whose local threads we can read."""

    AMP = "amp"
    CODEX = "codex"
    CLAUDE = "claude"
    GEMINI = "gemini"
    PI = "pi"
    OPENCODE = "opencode"


# Providers whose second URI segment names a subagent thread
SUBAGENT_PROVIDERS = frozenset({Provider.AMP, Provider.CODEX, Provider.CLAUDE, Provider.GEMINI})
# Providers whose second URI segment names an entry in a branch tree
BRANCH_PROVIDERS = frozenset({Provider.PI})
DRILL_DOWN_PROVIDERS = SUBAGENT_PROVIDERS | BRANCH_PROVIDERS

# Valid lifecycle status values
LIFECYCLE_STATUSES = frozenset({"pendingInit", "running", "completed", "errored", "shutdown", "notFound"})

# Status evidence sources, strongest first
STATUS_SOURCES = ("protocol", "parent_rollout", "child_rollout", "inferred")


def validate_status(status: str, source: str) -> None:
    """Validate a status value and its source.

    Raises:
        ValueError: If either value is not recognized.
    """
    if status not in LIFECYCLE_STATUSES:
        raise ValueError(f"Invalid status '{status}'. Must be one of: {', '.join(sorted(LIFECYCLE_STATUSES))}")
    if source not in STATUS_SOURCES:
        raise ValueError(f"Invalid status source '{source}'. Must be one of: {', '.join(STATUS_SOURCES)}")


class ResolutionPath(Enum):
    """How a locator found the primary file."""

    INDEX_HIT = "index_hit"
    FILESYSTEM_FALLBACK = "filesystem_fallback"
    FILESYSTEM_SCAN = "filesystem_scan"


class LinkEvidence(Enum):
    """What a parent/child link rests on."""

    BACK_REFERENCE = "back_reference"  # child names the main id
    PARENT_REFERENCE = "parent_reference"  # only the parent names the child
    LOG_INFERENCE = "log_inference"  # reconstructed from activity logs
    MISSING_FILE = "missing_file"  # referenced, no child file exists


@dataclass(frozen=True)
class ThreadURI:
    """A parsed thread address: provider, main id and optional child/entry id."""

    provider: Provider
    main_id: str
    child_id: str | None = None

    @property
    def path_segments(self) -> tuple[str, ...]:
        if self.child_id is None:
            return (self.main_id,)
        return (self.main_id, self.child_id)

    def is_drill_down(self) -> bool:
        return self.child_id is not None

    def main(self) -> "ThreadURI":
        """Return the address of the main thread."""
        return ThreadURI(self.provider, self.main_id)

    def child(self, child_id: str) -> "ThreadURI":
        """Return the address of a child thread or entry under this main thread."""
        return ThreadURI(self.provider, self.main_id, child_id)

    def as_agents_uri(self) -> str:
        return f"agents://{self.provider.value}/{'/'.join(self.path_segments)}"

    def as_legacy_uri(self) -> str:
        return f"{self.provider.value}://{'/'.join(self.path_segments)}"

    def __str__(self) -> str:
        return self.as_agents_uri()


@dataclass(frozen=True)
class ThreadLocation:
    """Where a thread lives on disk and how it was found."""

    provider: Provider
    thread_id: str
    primary: Path
    resolution_path: ResolutionPath
    source: str  # e.g. "codex:sqlite:sessions"
    candidates: tuple[Path, ...] = ()  # child files found next to the thread
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class ThreadRecord:
    """One decoded record in file order."""

    sequence_index: int
    role_or_kind: str
    timestamp: str | None
    payload: dict[str, Any] = field(hash=False, compare=False)
    raw_discriminator: str = ""
    line: int | None = None  # 1-based line for line-delimited files


@dataclass(frozen=True)
class SubagentLink:
    """A candidate main -> child relationship."""

    main_id: str
    agent_id: str
    validated: bool
    evidence: LinkEvidence
    detail: str = ""


@dataclass(frozen=True)
class LifecycleStatus:
    """A derived status plus the evidence source it came from."""

    status: str
    source: str

    def __post_init__(self) -> None:
        validate_status(self.status, self.source)


@dataclass(frozen=True)
class StatusEvidence:
    """One observation about a child's state from one source."""

    source: str
    status: str
    detail: str = ""


@dataclass(frozen=True)
class LifecycleEvent:
    """A parent- or child-side event in a subagent's lifecycle."""

    timestamp: str | None
    event: str  # e.g. "spawn_agent", "handoff"
    detail: str = ""


@dataclass(frozen=True)
class TimelineEntry:
    """A rendered unit of a thread: message, compaction, or tool marker."""

    kind: str  # user | assistant | compact | tool
    text: str
    timestamp: str | None = None


@dataclass(frozen=True)
class AgentState:
    """A linked subagent with its resolved status."""

    agent_id: str
    uri: ThreadURI
    link: SubagentLink
    status: LifecycleStatus
    child_path: Path | None = None
    last_update: str | None = None
    lifecycle: tuple[LifecycleEvent, ...] = ()
    excerpt: tuple[TimelineEntry, ...] = ()


@dataclass(frozen=True)
class BranchEntry:
    """One entry of a branch-tree thread."""

    entry_id: str
    entry_type: str
    parent_id: str | None
    timestamp: str | None
    preview: str | None
    is_leaf: bool


@dataclass(frozen=True)
class ThreadMetadata:
    thread_source: Path
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResolvedThread:
    """Everything the renderer needs, built once per resolution."""

    uri: ThreadURI
    location: ThreadLocation
    records: tuple[ThreadRecord, ...]
    metadata: ThreadMetadata
    timeline: tuple[TimelineEntry, ...] = ()
    links: tuple[SubagentLink, ...] = ()
    agents: tuple[AgentState, ...] = ()
    entries: tuple[BranchEntry, ...] = ()
    focus: str | None = None  # agent or entry id when drilled down
