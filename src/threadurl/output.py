"""Output format selection and writing."""

import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any

import yaml


class OutputFormat(Enum):
    """Output format for rendered views."""

    MARKDOWN = "markdown"
    JSON = "json"
    YAML = "yaml"


def parse_format(s: str) -> OutputFormat:
    """Parse a format string into OutputFormat."""
    try:
        return OutputFormat(s.lower())
    except ValueError:
        return OutputFormat.MARKDOWN


def resolve_format(format_str: str, json_output: bool = False) -> OutputFormat:
    """Resolve the output format, honoring the --json shorthand."""
    if json_output:
        return OutputFormat.JSON
    return parse_format(format_str)


def dump_data(data: dict[str, Any], fmt: OutputFormat) -> str:
    """Serialize a machine-readable view."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    if fmt == OutputFormat.YAML:
        return yaml.dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
    raise ValueError(f"Not a data format: {fmt.value}")


def write_output(text: str, output_path: str | None = None) -> None:
    """Write primary output to a file, or to stdout."""
    if output_path:
        path = Path(output_path)
        if path.parent != Path(""):
            path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return
    sys.stdout.write(text)


def print_warnings(warnings: tuple[str, ...] | list[str]) -> None:
    """Report warnings on stderr."""
    for warning in warnings:
        print(f"warning: {warning}", file=sys.stderr)
