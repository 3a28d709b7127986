"""Parent/child linkage validation and lifecycle status resolution.

Providers report what they see (candidates, parent-side evidence, one
report per child file). Everything here is provider-agnostic and runs
after every child has been analyzed.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .errors import LinkageRejected, ThreadNotFound
from .models import (
    STATUS_SOURCES,
    AgentState,
    LifecycleEvent,
    LifecycleStatus,
    LinkEvidence,
    StatusEvidence,
    SubagentLink,
    ThreadURI,
    TimelineEntry,
)

logger = logging.getLogger(__name__)

# Lower rank wins when sources disagree
STATUS_PRECEDENCE = {source: rank for rank, source in enumerate(STATUS_SOURCES)}

# Where a child candidate came from
ORIGIN_PARENT = "parent"  # named by the parent thread
ORIGIN_SCAN = "scan"  # found by scanning the provider's files
ORIGIN_LOG = "log"  # reconstructed from activity logs


@dataclass(frozen=True)
class ChildCandidate:
    """A possible child thread of a main thread."""

    agent_id: str
    path: Path | None  # None when no file exists for the id
    origin: str
    detail: str = ""
    locate_error: str | None = None  # files exist but none could be chosen


@dataclass
class ChildDiscovery:
    """Candidates plus what the parent thread itself says about them."""

    candidates: list[ChildCandidate] = field(default_factory=list)
    parent_evidence: dict[str, list[StatusEvidence]] = field(default_factory=dict)
    parent_events: dict[str, list[LifecycleEvent]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ChildReport:
    """What one child file says about itself."""

    agent_id: str
    path: Path | None
    back_reference: str | None = None
    evidence: tuple[StatusEvidence, ...] = ()
    lifecycle: tuple[LifecycleEvent, ...] = ()
    excerpt: tuple[TimelineEntry, ...] = ()
    last_update: str | None = None
    warnings: tuple[str, ...] = ()
    error: str | None = None  # set when the child could not be read


@dataclass(frozen=True)
class ChildResolution:
    links: tuple[SubagentLink, ...]
    agents: tuple[AgentState, ...]
    warnings: tuple[str, ...]


def select_status(evidence: Iterable[StatusEvidence]) -> LifecycleStatus:
    """Pick the status from the strongest source present.

    Within the winning source the last observation wins. With no
    evidence at all the child is assumed not yet started.
    """
    evidence = list(evidence)
    if not evidence:
        return LifecycleStatus("pendingInit", "inferred")

    best_rank = min(STATUS_PRECEDENCE[e.source] for e in evidence)
    winner = [e for e in evidence if STATUS_PRECEDENCE[e.source] == best_rank][-1]
    return LifecycleStatus(winner.status, winner.source)


def resolve_status(has_file: bool, evidence: Iterable[StatusEvidence]) -> LifecycleStatus:
    """Status for one child. A child without a file is notFound whatever the parent claims."""
    if not has_file:
        return LifecycleStatus("notFound", "inferred")
    return select_status(evidence)


def validate_link(
    main_uri: ThreadURI, candidate: ChildCandidate, report: ChildReport, warnings: list[str]
) -> SubagentLink | None:
    """Decide whether a candidate is a confirmed child of the main thread.

    Only an exact back-reference confirms a link. Scanned candidates
    without one are dropped; parent- or log-named ones are kept
    unconfirmed. Each outcome other than confirmation adds one warning.

    Returns:
        The link, or None if the candidate is rejected outright.
    """
    main_id = main_uri.main_id
    child_uri = main_uri.child(candidate.agent_id)

    if candidate.path is None:
        if candidate.locate_error:
            warnings.append(f"cannot locate child {child_uri}: {candidate.locate_error}; link is unconfirmed")
            return SubagentLink(main_id, candidate.agent_id, False, LinkEvidence.PARENT_REFERENCE, candidate.detail)
        warnings.append(f"child {child_uri} is referenced by the parent but has no thread file")
        return SubagentLink(main_id, candidate.agent_id, False, LinkEvidence.MISSING_FILE, candidate.detail)

    if report.back_reference is not None and report.back_reference == main_id:
        return SubagentLink(main_id, candidate.agent_id, True, LinkEvidence.BACK_REFERENCE, candidate.detail)

    found = report.back_reference or "none"
    if candidate.origin == ORIGIN_SCAN:
        warnings.append(
            f"rejected child candidate {candidate.path}: back-reference {found} does not match main thread {main_id}"
        )
        return None

    if candidate.origin == ORIGIN_LOG:
        warnings.append(f"child {child_uri} is linked only by {candidate.detail or 'log activity'}; link is unconfirmed")
        return SubagentLink(main_id, candidate.agent_id, False, LinkEvidence.LOG_INFERENCE, candidate.detail)

    warnings.append(f"child {child_uri} does not reference main thread {main_id} (found {found}); link is unconfirmed")
    return SubagentLink(main_id, candidate.agent_id, False, LinkEvidence.PARENT_REFERENCE, candidate.detail)


def resolve_children(
    main_uri: ThreadURI, discovery: ChildDiscovery, reports: Sequence[ChildReport]
) -> ChildResolution:
    """Join every child report into links and per-agent states.

    ``reports`` must line up with ``discovery.candidates``. Agents keep
    the candidates' order, which providers build in first-appearance
    order; a repeated agent id keeps its first occurrence.
    """
    warnings = list(discovery.warnings)
    seen: dict[str, tuple[ChildCandidate, ChildReport]] = {}
    for candidate, report in zip(discovery.candidates, reports):
        if candidate.agent_id not in seen:
            seen[candidate.agent_id] = (candidate, report)

    links: list[SubagentLink] = []
    agents: list[AgentState] = []
    for agent_id, (candidate, report) in seen.items():
        warnings.extend(report.warnings)
        if report.error:
            warnings.append(f"failed to read child {main_uri.child(agent_id)}: {report.error}")

        link = validate_link(main_uri, candidate, report, warnings)
        if link is None:
            continue
        links.append(link)

        parent_events = discovery.parent_events.get(agent_id, [])
        evidence = [*discovery.parent_evidence.get(agent_id, []), *report.evidence]
        status = resolve_status(candidate.path is not None or candidate.locate_error is not None, evidence)
        last_update = report.last_update or _latest_timestamp(parent_events)

        agents.append(
            AgentState(
                agent_id=agent_id,
                uri=main_uri.child(agent_id),
                link=link,
                status=status,
                child_path=candidate.path,
                last_update=last_update,
                lifecycle=(*parent_events, *report.lifecycle),
                excerpt=report.excerpt,
            )
        )
        logger.debug("agent %s: %s (%s), validated=%s", agent_id, status.status, status.source, link.validated)

    return ChildResolution(tuple(links), tuple(agents), tuple(warnings))


def _latest_timestamp(events: Iterable[LifecycleEvent]) -> str | None:
    stamps = [e.timestamp for e in events if e.timestamp]
    return max(stamps) if stamps else None


def require_validated(agents: Iterable[AgentState], uri: ThreadURI) -> AgentState:
    """Return the drill-down target, which must be a confirmed child.

    Raises:
        ThreadNotFound: If no candidate claims the agent id.
        LinkageRejected: If the agent's link is not confirmed.
    """
    for agent in agents:
        if agent.agent_id == uri.child_id:
            if not agent.link.validated:
                raise LinkageRejected(
                    f"{uri} is not a confirmed child of {uri.main()} ({agent.link.evidence.value})"
                )
            return agent
    raise ThreadNotFound(uri.provider.value, str(uri))


def validate_branch_path(path: Sequence[int], parents: Sequence[int | None]) -> None:
    """Check a root-to-entry path of arena indices.

    Every step must point at an entry that appears earlier in the file.

    Raises:
        LinkageRejected: If a parent pointer goes forward or the root has a parent.
    """
    if path and parents[path[0]] is not None:
        raise LinkageRejected(f"branch path does not start at a root entry (index {path[0]})")
    for parent, child in zip(path, path[1:]):
        if parents[child] != parent or parent >= child:
            raise LinkageRejected(f"branch entry at index {child} does not follow an earlier parent")
