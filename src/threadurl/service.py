"""Resolution pipeline: URI -> located, parsed, linked ResolvedThread."""

import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path

from .errors import InvalidMode, ThreadUrlError
from .linkage import ChildCandidate, ChildReport, require_validated, resolve_children
from .models import BRANCH_PROVIDERS, ResolvedThread, ThreadMetadata, ThreadURI
from .providers import get_locator
from .providers.base import ProviderLocator
from .roots import ProviderRoots
from .storage import read_thread_text
from .uri import parse

logger = logging.getLogger(__name__)

MODES = ("timeline", "aggregate", "drill_down", "raw_passthrough")
MAX_CHILD_WORKERS = 4


def default_mode(uri: ThreadURI) -> str:
    """Drill down for a two-segment subagent URI, otherwise show the timeline."""
    if uri.is_drill_down() and uri.provider not in BRANCH_PROVIDERS:
        return "drill_down"
    return "timeline"


def _analyze_isolated(locator: ProviderLocator, main_uri: ThreadURI, candidate: ChildCandidate) -> ChildReport:
    """Analyze one child; a failure becomes part of its report."""
    if candidate.path is None:
        return ChildReport(candidate.agent_id, None)
    try:
        return locator.analyze_child(main_uri, candidate)
    except ThreadUrlError as e:
        logger.debug("child %s failed: %s", candidate.agent_id, e)
        return ChildReport(candidate.agent_id, candidate.path, error=str(e))
    except Exception as e:
        logger.debug("child %s failed unexpectedly", candidate.agent_id, exc_info=True)
        return ChildReport(candidate.agent_id, candidate.path, error=f"{type(e).__name__}: {e}")


def analyze_children(
    locator: ProviderLocator, main_uri: ThreadURI, candidates: list[ChildCandidate]
) -> list[ChildReport]:
    """Analyze every candidate in parallel, keeping candidate order."""
    if not candidates:
        return []
    with ThreadPoolExecutor(max_workers=min(MAX_CHILD_WORKERS, len(candidates))) as ex:
        return list(ex.map(partial(_analyze_isolated, locator, main_uri), candidates))


def _dedupe(warnings: list[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(warnings))


def resolve(uri: ThreadURI | str, roots: ProviderRoots, mode: str | None = None) -> ResolvedThread:
    """Locate, parse and (for aggregate and drill-down views) link a thread.

    Raises:
        ThreadUrlError: Any failure on the requested thread itself.
    """
    if isinstance(uri, str):
        uri = parse(uri)
    mode = mode or default_mode(uri)
    if mode not in MODES or mode == "raw_passthrough":
        raise InvalidMode(f"cannot resolve in mode '{mode}'")
    if mode == "aggregate" and uri.is_drill_down():
        raise InvalidMode(f"list view takes a main thread URI, got {uri}")
    if mode == "drill_down" and not uri.is_drill_down():
        raise InvalidMode(f"drill-down needs a child id in the URI, got {uri}")
    if mode == "timeline" and uri.is_drill_down() and uri.provider not in BRANCH_PROVIDERS:
        raise InvalidMode(f"{uri} names a subagent; use the drill-down view")

    locator = get_locator(uri.provider, roots)
    main_uri = uri.main()
    location = locator.locate(main_uri)
    records = locator.load_records(location)
    warnings = list(location.warnings)
    logger.debug("%s: %d records from %s", main_uri, len(records), location.primary)

    if uri.provider in BRANCH_PROVIDERS:
        if mode == "aggregate":
            return ResolvedThread(
                uri=uri,
                location=location,
                records=tuple(records),
                metadata=ThreadMetadata(location.primary, _dedupe(warnings)),
                entries=tuple(locator.entries(records)),
            )
        branch = locator.branch(records, uri.child_id)
        return ResolvedThread(
            uri=uri,
            location=location,
            records=tuple(records),
            metadata=ThreadMetadata(location.primary, _dedupe(warnings)),
            timeline=tuple(locator.timeline(branch)),
            focus=uri.child_id,
        )

    if mode == "timeline":
        return ResolvedThread(
            uri=uri,
            location=location,
            records=tuple(records),
            metadata=ThreadMetadata(location.primary, _dedupe(warnings)),
            timeline=tuple(locator.timeline(records)),
        )

    if not locator.supports_children:
        raise InvalidMode(f"{uri.provider.value} threads have no subagents")

    discovery = locator.discover_children(main_uri, location, records)
    reports = analyze_children(locator, main_uri, discovery.candidates)
    resolution = resolve_children(main_uri, discovery, reports)
    warnings.extend(resolution.warnings)

    agents = resolution.agents
    thread_source: Path = location.primary
    if mode == "drill_down":
        agent = require_validated(agents, uri)
        agents = (agent,)
        thread_source = agent.child_path or location.primary

    return ResolvedThread(
        uri=uri,
        location=location,
        records=tuple(records),
        metadata=ThreadMetadata(thread_source, _dedupe(warnings)),
        links=resolution.links,
        agents=agents,
        focus=uri.child_id,
    )


def read_raw(uri: ThreadURI | str, roots: ProviderRoots) -> tuple[Path, str]:
    """Locate a thread's backing file and return its text unchanged.

    A two-segment URI reads the child's own file; no linkage is checked.
    """
    if isinstance(uri, str):
        uri = parse(uri)
    locator = get_locator(uri.provider, roots)
    path = locator.locate_child(uri) if uri.is_drill_down() else locator.locate(uri).primary
    return path, read_thread_text(path)


def thread_path(uri: ThreadURI | str, roots: ProviderRoots) -> Path:
    """Absolute path of the file backing a thread."""
    if isinstance(uri, str):
        uri = parse(uri)
    locator = get_locator(uri.provider, roots)
    path = locator.locate_child(uri) if uri.is_drill_down() else locator.locate(uri).primary
    return path.resolve()
