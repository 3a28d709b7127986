"""Markdown + frontmatter rendering of resolved threads."""

from typing import Any

import frontmatter

from .errors import InvalidMode
from .models import (
    BRANCH_PROVIDERS,
    AgentState,
    BranchEntry,
    LifecycleEvent,
    ResolvedThread,
    TimelineEntry,
)

ENTRY_TITLES = {
    "user": "User",
    "assistant": "Assistant",
    "compact": "Context Compacted",
}

NO_MESSAGES = "_No user/assistant messages or compact events found._"
NO_AGENTS = "_No subagents found._"
NO_EVENTS = "_No lifecycle events recorded._"
NO_EXCERPT = "_No child messages found._"
UNFOCUSED_EXCERPT = "_Drill down to a single agent to see its transcript excerpt._"


def _cell(value: Any) -> str:
    """Make a value safe for a markdown table cell."""
    text = "" if value is None else str(value)
    return " ".join(text.split()).replace("|", "\\|") or "-"


def _document(metadata: dict[str, Any], body: str) -> str:
    post = frontmatter.Post(body, **metadata)
    return frontmatter.dumps(post, sort_keys=False).rstrip("\n") + "\n"


def _agent_summary(agent: AgentState) -> dict[str, Any]:
    return {
        "agent_id": agent.agent_id,
        "uri": agent.uri.as_agents_uri(),
        "status": agent.status.status,
        "status_source": agent.status.source,
        "validated": agent.link.validated,
        "evidence": agent.link.evidence.value,
        "last_update": agent.last_update,
        "thread_source": str(agent.child_path) if agent.child_path else None,
    }


def _parent_uri(resolved: ResolvedThread, entry: BranchEntry) -> str | None:
    if entry.parent_id is None:
        return None
    return resolved.uri.main().child(entry.parent_id).as_agents_uri()


def _entry_summary(resolved: ResolvedThread, entry: BranchEntry) -> dict[str, Any]:
    return {
        "entry_id": entry.entry_id,
        "uri": resolved.uri.main().child(entry.entry_id).as_agents_uri(),
        "entry_type": entry.entry_type,
        "parent_uri": _parent_uri(resolved, entry),
        "timestamp": entry.timestamp,
        "preview": entry.preview,
        "is_leaf": entry.is_leaf,
    }


def frontmatter_data(resolved: ResolvedThread, mode: str) -> dict[str, Any]:
    """The machine-readable header for a view."""
    location = resolved.location
    data: dict[str, Any] = {
        "uri": resolved.uri.as_agents_uri(),
        "thread_source": str(resolved.metadata.thread_source),
        "provider": resolved.uri.provider.value,
        "thread_id": location.thread_id,
        "mode": mode,
        "resolution": location.resolution_path.value,
    }
    if resolved.uri.provider in BRANCH_PROVIDERS:
        if mode == "aggregate":
            data["entries"] = [_entry_summary(resolved, e) for e in resolved.entries]
        elif resolved.focus:
            data["entry_id"] = resolved.focus
    elif mode == "aggregate":
        data["subagents"] = [_agent_summary(a) for a in resolved.agents]
    elif mode == "drill_down" and resolved.agents:
        agent = resolved.agents[0]
        data["main_uri"] = resolved.uri.main().as_agents_uri()
        data["agent_id"] = agent.agent_id
        data["status"] = agent.status.status
        data["status_source"] = agent.status.source
        data["evidence"] = agent.link.evidence.value
    return data


def _timeline_lines(entries: tuple[TimelineEntry, ...] | list[TimelineEntry], heading: str = "##") -> list[str]:
    """Numbered message sections, with runs of tool entries collapsed to one line."""
    lines: list[str] = []
    tools: list[str] = []
    count = 0

    def flush_tools() -> None:
        if tools:
            names = ", ".join(dict.fromkeys(tools))
            events = "event" if len(tools) == 1 else "events"
            lines.extend([f"> tools: {names} ({len(tools)} {events})", ""])
            tools.clear()

    for entry in entries:
        if entry.kind == "tool":
            tools.append(entry.text)
            continue
        flush_tools()
        count += 1
        lines.extend([f"{heading} {count}. {ENTRY_TITLES[entry.kind]}", "", entry.text, ""])
    flush_tools()

    if count == 0:
        lines.extend([NO_MESSAGES, ""])
    return lines


def render_timeline(resolved: ResolvedThread) -> str:
    lines = ["# Thread", ""]
    lines.extend(_timeline_lines(resolved.timeline))
    return _document(frontmatter_data(resolved, "timeline"), "\n".join(lines))


def _event_line(event: LifecycleEvent) -> str:
    when = f"`{event.timestamp}` " if event.timestamp else ""
    detail = f" {event.detail}" if event.detail else ""
    return f"- {when}**{event.event}**{detail}"


def _agents_body(resolved: ResolvedThread, title: str, focused: bool) -> list[str]:
    """The three-section status / lifecycle / excerpt layout."""
    agents = resolved.agents
    lines = [
        f"# {title}",
        "",
        f"- Provider: `{resolved.uri.provider.value}`",
        f"- Main Thread: `{resolved.uri.main().as_agents_uri()}`",
    ]
    if focused:
        lines.append(f"- Agent: `{resolved.uri.as_agents_uri()}`")
    lines.extend(["", "## Status Summary", ""])

    if not agents:
        lines.extend([NO_AGENTS, ""])
    else:
        lines.append("| # | Agent | Status | Source | Relation | Last Update |")
        lines.append("|---|---|---|---|---|---|")
        for i, agent in enumerate(agents, start=1):
            relation = "validated" if agent.link.validated else f"unconfirmed ({agent.link.evidence.value})"
            lines.append(
                f"| {i} | `{agent.uri.as_agents_uri()}` | `{agent.status.status}` | `{agent.status.source}` "
                f"| {relation} | {_cell(agent.last_update)} |"
            )
        lines.append("")

    lines.extend(["## Lifecycle (Parent Thread)", ""])
    if not agents:
        lines.extend([NO_EVENTS, ""])
    for i, agent in enumerate(agents, start=1):
        if not focused:
            lines.extend([f"### {i}. `{agent.uri.as_agents_uri()}`", ""])
        if agent.lifecycle:
            lines.extend(_event_line(e) for e in agent.lifecycle)
        else:
            lines.append(NO_EVENTS)
        lines.append("")

    lines.extend(["## Thread Excerpt (Child Thread)", ""])
    if not focused:
        lines.extend([UNFOCUSED_EXCERPT, ""])
    elif agents and agents[0].excerpt:
        if agents[0].child_path:
            lines.extend([f"- Child Thread: `{agents[0].child_path}`", ""])
        lines.extend(_timeline_lines(agents[0].excerpt, heading="###"))
    else:
        lines.extend([NO_EXCERPT, ""])
    return lines


def render_aggregate(resolved: ResolvedThread) -> str:
    if resolved.uri.provider in BRANCH_PROVIDERS:
        return render_entries(resolved)
    body = _agents_body(resolved, "Subagent Status", focused=False)
    return _document(frontmatter_data(resolved, "aggregate"), "\n".join(body))


def render_drill_down(resolved: ResolvedThread) -> str:
    if resolved.uri.provider in BRANCH_PROVIDERS:
        return render_timeline(resolved)
    body = _agents_body(resolved, "Subagent Thread", focused=True)
    return _document(frontmatter_data(resolved, "drill_down"), "\n".join(body))


def render_entries(resolved: ResolvedThread) -> str:
    """List view for branch-tree sessions."""
    lines = [
        "# Session Entries",
        "",
        f"- Provider: `{resolved.uri.provider.value}`",
        f"- Main Thread: `{resolved.uri.main().as_agents_uri()}`",
        "",
    ]
    if not resolved.entries:
        lines.extend(["_No entries found._", ""])
    else:
        lines.append("| # | Entry | Type | Parent | Leaf | Preview |")
        lines.append("|---|---|---|---|---|---|")
        for i, entry in enumerate(resolved.entries, start=1):
            uri = resolved.uri.main().child(entry.entry_id).as_agents_uri()
            leaf = "yes" if entry.is_leaf else "no"
            parent = _parent_uri(resolved, entry)
            parent = f"`{parent}`" if parent else "root"
            lines.append(
                f"| {i} | `{uri}` | `{entry.entry_type}` | {parent} | {leaf} | {_cell(entry.preview)} |"
            )
        lines.append("")
    return _document(frontmatter_data(resolved, "aggregate"), "\n".join(lines))


def render_head(resolved: ResolvedThread, mode: str) -> str:
    """Only the frontmatter block, with warnings listed."""
    data = frontmatter_data(resolved, mode)
    if resolved.metadata.warnings:
        data["warnings"] = sorted(set(resolved.metadata.warnings))
    return _document(data, "")


def view_data(resolved: ResolvedThread, mode: str) -> dict[str, Any]:
    """A view as plain data for JSON/YAML output."""
    data = frontmatter_data(resolved, mode)
    data["kind"] = "entries" if resolved.uri.provider in BRANCH_PROVIDERS and mode == "aggregate" else mode
    if mode == "timeline" or (resolved.uri.provider in BRANCH_PROVIDERS and mode != "aggregate"):
        data["timeline"] = [{"kind": e.kind, "text": e.text, "timestamp": e.timestamp} for e in resolved.timeline]
    if mode in ("aggregate", "drill_down") and resolved.uri.provider not in BRANCH_PROVIDERS:
        agents = []
        for agent in resolved.agents:
            summary = _agent_summary(agent)
            summary["lifecycle"] = [
                {"timestamp": e.timestamp, "event": e.event, "detail": e.detail} for e in agent.lifecycle
            ]
            if mode == "drill_down":
                summary["excerpt"] = [{"kind": e.kind, "text": e.text} for e in agent.excerpt]
            agents.append(summary)
        data.pop("subagents", None)
        data["agents"] = agents
    return data


def render(resolved: ResolvedThread, mode: str) -> str:
    """Render a resolved thread as markdown."""
    if mode == "timeline":
        return render_timeline(resolved)
    if mode == "aggregate":
        return render_aggregate(resolved)
    if mode == "drill_down":
        return render_drill_down(resolved)
    raise InvalidMode(f"unknown render mode '{mode}'")


def render_raw(text: str) -> str:
    """Raw passthrough: the decoded file content, unchanged."""
    return text
