"""Tests for Gemini chat resolution and session relations."""

import json

import pytest

from threadurl.errors import ThreadNotFound
from threadurl.models import LinkEvidence, Provider, ResolutionPath, ThreadURI
from threadurl.providers.gemini import GeminiLocator, explicit_parent_ids, infer_resume_relations, read_log_entries
from threadurl.service import resolve

from conftest import GEMINI_SESSION

MAIN_URI = f"agents://gemini/{GEMINI_SESSION}"
CHILD = "3f1e2d4c-5b6a-4789-9abc-def012345678"
RESUMED = "7a8b9c0d-1e2f-4a3b-8c4d-5e6f7a8b9c0d"


def chat(session_id, messages, **extra):
    return {
        "sessionId": session_id,
        "startTime": "2026-02-01T10:00:00Z",
        "lastUpdated": "2026-02-01T10:10:00Z",
        "messages": messages,
        **extra,
    }


@pytest.fixture
def project_dir(roots):
    path = roots.gemini / "tmp" / "a1b2c3"
    (path / "chats").mkdir(parents=True)
    return path


@pytest.fixture
def main_chat(project_dir, write_json):
    return write_json(
        project_dir / "chats" / "session-2026-02-01T10-00-29d207db.json",
        chat(
            GEMINI_SESSION,
            [
                {"type": "user", "content": "Find the bug", "timestamp": "2026-02-01T10:00:01Z"},
                {
                    "type": "gemini",
                    "content": "Looking",
                    "toolCalls": [{"name": "read_file"}, {"name": "grep"}],
                    "timestamp": "2026-02-01T10:00:02Z",
                },
                {"type": "info", "content": "Model switched"},
                {"type": "gemini", "content": [{"text": "Found it"}], "timestamp": "2026-02-01T10:00:05Z"},
            ],
        ),
    )


class TestGeminiLocate:
    def test_scan(self, roots, main_chat):
        location = GeminiLocator(roots.gemini).locate(ThreadURI(Provider.GEMINI, GEMINI_SESSION))
        assert location.primary == main_chat
        assert location.resolution_path == ResolutionPath.FILESYSTEM_SCAN

    def test_not_found(self, roots, project_dir):
        with pytest.raises(ThreadNotFound):
            GeminiLocator(roots.gemini).locate(ThreadURI(Provider.GEMINI, GEMINI_SESSION))

    def test_timeline(self, roots, main_chat):
        resolved = resolve(MAIN_URI, roots)
        assert [(e.kind, e.text) for e in resolved.timeline] == [
            ("user", "Find the bug"),
            ("assistant", "Looking"),
            ("tool", "read_file"),
            ("tool", "grep"),
            ("assistant", "Found it"),
        ]


class TestRelations:
    def test_explicit_parent_ids(self):
        doc = {"sessionId": CHILD, "meta": {"parentSession": {"sessionId": GEMINI_SESSION.upper()}}}
        assert explicit_parent_ids(doc) == {GEMINI_SESSION}

    def test_resume_relation(self):
        entries = [
            {"sessionId": GEMINI_SESSION, "type": "user", "message": "hi", "timestamp": "t1"},
            {"sessionId": RESUMED, "type": "user", "message": "/resume", "timestamp": "t2"},
            {"sessionId": RESUMED, "type": "user", "message": "/resume", "timestamp": "t3"},
        ]
        assert infer_resume_relations(entries) == [(RESUMED, GEMINI_SESSION, "t2")]

    def test_log_lines_keep_unicode_separators(self, tmp_path):
        """JSON-lines logs split on \\n only."""
        logs = tmp_path / "logs.json"
        lines = [
            json.dumps({"sessionId": GEMINI_SESSION, "type": "user", "message": "one\u2028two"}, ensure_ascii=False),
            json.dumps({"sessionId": RESUMED, "type": "user", "message": "/resume"}),
        ]
        logs.write_text("\n".join(lines) + "\n", encoding="utf-8")
        warnings = []
        entries = read_log_entries(logs, warnings)
        assert [e["message"] for e in entries] == ["one\u2028two", "/resume"]
        assert warnings == []


class TestGeminiSubagents:
    def test_explicit_child_validated(self, roots, project_dir, main_chat, write_json):
        child = write_json(
            project_dir / "chats" / "session-2026-02-01T10-05-3f1e2d4c.json",
            chat(CHILD, [{"type": "user", "content": "sub task"}], parentSessionId=GEMINI_SESSION),
        )
        resolved = resolve(MAIN_URI, roots, "aggregate")
        agent = resolved.agents[0]
        assert agent.agent_id == CHILD
        assert agent.link.validated
        assert agent.child_path == child
        assert (agent.status.status, agent.status.source) == ("running", "inferred")
        assert agent.last_update == "2026-02-01T10:10:00Z"

    def test_resume_from_logs_is_unconfirmed(self, roots, project_dir, main_chat, write_json):
        write_json(
            project_dir / "chats" / "session-2026-02-01T11-00-7a8b9c0d.json",
            chat(RESUMED, [{"type": "user", "content": "/resume"}, {"type": "gemini", "content": "Resumed"}]),
        )
        (project_dir / "logs.json").write_text(
            json.dumps(
                [
                    {"sessionId": GEMINI_SESSION, "messageId": 0, "type": "user", "message": "Find the bug"},
                    {"sessionId": RESUMED, "messageId": 0, "type": "user", "message": "/resume"},
                ]
            ),
            encoding="utf-8",
        )
        resolved = resolve(MAIN_URI, roots, "aggregate")
        agent = resolved.agents[0]
        assert agent.agent_id == RESUMED
        assert not agent.link.validated
        assert agent.link.evidence == LinkEvidence.LOG_INFERENCE
        assert len(resolved.metadata.warnings) == 1

    def test_error_message(self, roots, project_dir, main_chat, write_json):
        write_json(
            project_dir / "chats" / "session-2026-02-01T10-05-3f1e2d4c.json",
            chat(
                CHILD,
                [{"type": "user", "content": "sub task"}, {"type": "error", "content": "quota exceeded"}],
                parentSessionId=GEMINI_SESSION,
            ),
        )
        resolved = resolve(MAIN_URI, roots, "aggregate")
        assert (resolved.agents[0].status.status, resolved.agents[0].status.source) == ("errored", "child_rollout")

    def test_unrelated_sibling_ignored(self, roots, project_dir, main_chat, write_json):
        write_json(project_dir / "chats" / "session-2026-02-01T12-00-3f1e2d4c.json", chat(CHILD, []))
        resolved = resolve(MAIN_URI, roots, "aggregate")
        assert resolved.agents == ()
        assert resolved.metadata.warnings == ()
