"""Read commands: read, list, raw, path."""

from ..output import OutputFormat, dump_data, print_warnings, resolve_format, write_output
from ..render import frontmatter_data, render, render_head, render_raw, view_data
from ..roots import ProviderRoots
from ..service import default_mode, read_raw, resolve, thread_path
from ..uri import parse


def _show(
    uri_str: str,
    mode: str | None,
    head: bool,
    format_str: str,
    json_output: bool,
    output_path: str | None,
) -> None:
    uri = parse(uri_str)
    mode = mode or default_mode(uri)
    fmt = resolve_format(format_str, json_output)
    resolved = resolve(uri, ProviderRoots.from_environment(), mode)

    if fmt == OutputFormat.MARKDOWN:
        text = render_head(resolved, mode) if head else render(resolved, mode)
    else:
        data = frontmatter_data(resolved, mode) if head else view_data(resolved, mode)
        if head and resolved.metadata.warnings:
            data["warnings"] = sorted(set(resolved.metadata.warnings))
        text = dump_data(data, fmt)
    write_output(text, output_path)
    print_warnings(resolved.metadata.warnings)


def cmd_read(
    uri: str,
    head: bool = False,
    format_str: str = "markdown",
    json_output: bool = False,
    output_path: str | None = None,
) -> None:
    """Print a thread: its timeline, or a subagent's drill-down view."""
    _show(uri, None, head, format_str, json_output, output_path)


def cmd_list(
    uri: str,
    head: bool = False,
    format_str: str = "markdown",
    json_output: bool = False,
    output_path: str | None = None,
) -> None:
    """Print the subagents of a main thread (entries for branch sessions)."""
    _show(uri, "aggregate", head, format_str, json_output, output_path)


def cmd_raw(uri: str, output_path: str | None = None) -> None:
    """Print the backing file of a thread unchanged."""
    _, text = read_raw(uri, ProviderRoots.from_environment())
    write_output(render_raw(text), output_path)


def cmd_path(uri: str) -> None:
    """Print the absolute path of the file backing a thread."""
    print(thread_path(uri, ProviderRoots.from_environment()))
