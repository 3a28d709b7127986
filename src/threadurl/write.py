"""Create or continue threads through the providers' own command-line tools."""

import json
import logging
import subprocess
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from .errors import InvalidMode, ProviderCommandFailed, ProviderCommandNotFound, UnreadableFile, WriteUnsupported
from .models import Provider, ThreadURI
from .storage import split_lines
from .uri import normalize_main_id, parse_write_target

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WriteResult:
    """The thread that was written and the assistant's reply."""

    uri: ThreadURI
    text: str
    created: bool


def run_provider(args: list[str]) -> subprocess.CompletedProcess[str]:
    """Run a provider command, capturing its output."""
    logger.debug("running %s", " ".join(args[:3]))
    try:
        result = subprocess.run(args, capture_output=True, text=True, check=False)
    except FileNotFoundError as e:
        raise ProviderCommandNotFound(f"'{args[0]}' not found on PATH") from e
    if result.returncode != 0:
        stderr = result.stderr.strip() or result.stdout.strip()
        raise ProviderCommandFailed(f"{args[0]} exited with status {result.returncode}: {stderr}")
    return result


def write_codex(prompt: str, session_id: str | None) -> tuple[str, str]:
    """Run ``codex exec --json`` and read the thread id and reply from its event stream."""
    args = ["codex", "exec", "--json"]
    if session_id:
        args.extend(["resume", session_id])
    args.append(prompt)
    result = run_provider(args)

    thread_id = session_id
    replies = []
    for line in split_lines(result.stdout):
        if not line.strip():
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("ignoring non-JSON codex output: %s", line)
            continue
        if not isinstance(event, dict):
            continue
        if event.get("type") == "thread.started" and isinstance(event.get("thread_id"), str):
            thread_id = event["thread_id"]
        item = event.get("item")
        if event.get("type") == "item.completed" and isinstance(item, dict) and item.get("type") == "agent_message":
            if isinstance(item.get("text"), str):
                replies.append(item["text"])

    if not thread_id:
        raise ProviderCommandFailed("codex did not report a thread id")
    return thread_id, replies[-1] if replies else ""


def write_claude(prompt: str, session_id: str | None) -> tuple[str, str]:
    """Run ``claude -p`` with JSON output and read the session id and result."""
    args = ["claude", "-p", prompt, "--output-format", "json"]
    if session_id:
        args.extend(["--resume", session_id])
    result = run_provider(args)

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ProviderCommandFailed(f"claude returned invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise ProviderCommandFailed("claude returned an unexpected result")
    if data.get("is_error"):
        raise ProviderCommandFailed(f"claude reported an error: {data.get('result', '')}")
    thread_id = data.get("session_id") or session_id
    if not isinstance(thread_id, str) or not thread_id:
        raise ProviderCommandFailed("claude did not report a session id")
    reply = data.get("result")
    return thread_id, reply if isinstance(reply, str) else ""


WRITERS: dict[Provider, Callable[[str, str | None], tuple[str, str]]] = {
    Provider.CODEX: write_codex,
    Provider.CLAUDE: write_claude,
}


def read_prompt(data: list[str], stdin: TextIO | None = None) -> str:
    """Assemble a prompt from ``-d`` values: literal text, ``@file`` or ``@-`` for stdin."""
    chunks = []
    for item in data:
        if item == "@-":
            chunks.append((stdin or sys.stdin).read())
        elif item.startswith("@"):
            path = Path(item[1:])
            try:
                chunks.append(path.read_text(encoding="utf-8"))
            except OSError as e:
                raise UnreadableFile(path, e.strerror or str(e)) from e
        else:
            chunks.append(item)
    prompt = "\n".join(chunks).strip()
    if not prompt:
        raise InvalidMode("write needs a non-empty prompt (-d)")
    return prompt


def write_thread(target: str, prompt: str) -> WriteResult:
    """Create a thread (``agents://<provider>``) or continue one (``agents://<provider>/<id>``)."""
    provider, session_id = parse_write_target(target)
    writer = WRITERS.get(provider)
    if writer is None:
        supported = ", ".join(p.value for p in WRITERS)
        raise WriteUnsupported(f"cannot write to {provider.value} threads (supported: {supported})")

    thread_id, reply = writer(prompt, session_id)
    uri = ThreadURI(provider, normalize_main_id(provider, thread_id))
    return WriteResult(uri=uri, text=reply, created=session_id is None)
