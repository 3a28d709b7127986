"""Shared fixtures: provider roots under a temporary directory."""

import json
import os
from pathlib import Path

import pytest

from threadurl.roots import ProviderRoots

CODEX_MAIN = "019c871c-b1f9-7f60-9c4f-87ed09f13592"
CODEX_CHILD = "019c87fb-38b9-7843-92b1-832f02598495"
CLAUDE_SESSION = "2823d1df-720a-4c31-ac55-ae8ba726721f"
CLAUDE_AGENT = "acompact-69d537"
AMP_MAIN = "T-019c0797-c402-7389-bd80-d785c98df295"
GEMINI_SESSION = "29d207db-ca7e-40ba-87f7-e14c9de60613"
PI_SESSION = "12cb4c19-2774-4de4-a0d0-9fa32fbae29f"
OPENCODE_SESSION = "ses_43a90e3adffejRgrTdlJa48CtE"


def _write_jsonl(path: Path, records: list[dict]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(json.dumps(r) + "\n" for r in records), encoding="utf-8")
    return path


def _write_json(path: Path, value) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(value, indent=2), encoding="utf-8")
    return path


def _set_mtime(path: Path, seconds: int) -> None:
    os.utime(path, ns=(seconds * 1_000_000_000, seconds * 1_000_000_000))


@pytest.fixture
def roots(tmp_path):
    """Provider roots under tmp_path; each root directory exists."""
    r = ProviderRoots.under(tmp_path / "providers")
    for field in ("amp", "codex", "claude", "gemini", "pi", "opencode"):
        getattr(r, field).mkdir(parents=True)
    return r


@pytest.fixture
def write_jsonl():
    return _write_jsonl


@pytest.fixture
def write_json():
    return _write_json


@pytest.fixture
def set_mtime():
    return _set_mtime


@pytest.fixture
def cli_env(roots, monkeypatch):
    """Point every provider's environment variable at the temporary roots."""
    monkeypatch.setenv("CODEX_HOME", str(roots.codex))
    monkeypatch.setenv("CLAUDE_CONFIG_DIR", str(roots.claude))
    monkeypatch.setenv("PI_CODING_AGENT_DIR", str(roots.pi))
    # Gemini and XDG roots get a fixed suffix appended
    gemini_home = roots.gemini.parent / "gemini-home"
    (gemini_home / ".gemini").mkdir(parents=True)
    monkeypatch.setenv("GEMINI_CLI_HOME", str(gemini_home))
    xdg = roots.amp.parent / "xdg"
    (xdg / "amp").mkdir(parents=True)
    (xdg / "opencode").mkdir(parents=True)
    monkeypatch.setenv("XDG_DATA_HOME", str(xdg))
    return ProviderRoots.from_environment()
