"""Write command: create or continue a provider thread."""

import sys

from ..output import write_output
from ..write import read_prompt, write_thread


def cmd_write(uri: str, data: list[str], output_path: str | None = None) -> None:
    """Send a prompt to a provider and print the reply."""
    prompt = read_prompt(data)
    result = write_thread(uri, prompt)

    text = result.text if result.text.endswith("\n") or not result.text else result.text + "\n"
    write_output(text, output_path)
    verb = "created" if result.created else "updated"
    print(f"{verb}: {result.uri.as_agents_uri()}", file=sys.stderr)
