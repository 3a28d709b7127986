"""Tests for Amp thread documents and handoff linkage."""

import pytest

from threadurl.errors import ThreadNotFound
from threadurl.models import LinkEvidence
from threadurl.providers.amp import AmpLocator
from threadurl.service import resolve

from conftest import AMP_MAIN

MAIN_URI = f"agents://amp/{AMP_MAIN}"
AMP_CHILD = "T-019c07a0-1111-7222-8333-444455556666"
AMP_ORIGIN = "T-019c0700-aaaa-7bbb-8ccc-dddddddddddd"


def thread(thread_id, messages, relationships=(), **extra):
    return {"v": 1, "id": thread_id, "messages": list(messages), "relationships": list(relationships), **extra}


def message(role, *items, sent_at=None):
    value = {"role": role, "content": list(items)}
    if sent_at is not None:
        value["meta"] = {"sentAt": sent_at}
    return value


def handoff(thread_id, role):
    return {"type": "handoff", "threadID": thread_id, "role": role}


@pytest.fixture
def threads_dir(roots):
    path = roots.amp / "threads"
    path.mkdir()
    return path


@pytest.fixture
def main_thread(threads_dir, write_json):
    return write_json(
        threads_dir / f"{AMP_MAIN}.json",
        thread(
            AMP_MAIN,
            [
                message("user", {"type": "text", "text": "Refactor the parser"}, sent_at=1769940000000),
                message(
                    "assistant",
                    {"type": "thinking", "thinking": "Plan first"},
                    {"type": "text", "text": "Handing off"},
                    {"type": "tool_use", "name": "Bash"},
                ),
            ],
            [handoff(AMP_CHILD, "parent"), handoff(AMP_ORIGIN, "child")],
        ),
    )


class TestAmpThread:
    def test_timeline(self, roots, main_thread):
        resolved = resolve(MAIN_URI, roots)
        assert [(e.kind, e.text) for e in resolved.timeline] == [
            ("user", "Refactor the parser"),
            ("assistant", "Plan first\n\nHanding off"),
            ("tool", "Bash"),
        ]
        assert resolved.timeline[0].timestamp == "2026-02-01T10:00:00+00:00"

    def test_not_found(self, roots, threads_dir):
        with pytest.raises(ThreadNotFound):
            resolve(MAIN_URI, roots)


class TestAmpHandoffs:
    def test_validated_child(self, roots, main_thread, threads_dir, write_json):
        child = write_json(
            threads_dir / f"{AMP_CHILD}.json",
            thread(
                AMP_CHILD,
                [message("user", {"type": "text", "text": "Continue"}), message("assistant", {"type": "text", "text": "Done"})],
                [handoff(AMP_MAIN, "child")],
                updatedAt="2026-02-01T11:00:00Z",
            ),
        )
        resolved = resolve(MAIN_URI, roots, "aggregate")
        # The thread this one was handed off from is not a child
        assert [a.agent_id for a in resolved.agents] == [AMP_CHILD]
        agent = resolved.agents[0]
        assert agent.link.validated
        assert agent.child_path == child
        assert (agent.status.status, agent.status.source) == ("completed", "inferred")
        assert agent.last_update == "2026-02-01T11:00:00Z"
        assert [e.event for e in agent.lifecycle] == ["handoff", "handoff_backlink"]

    def test_status_field(self, roots, main_thread, threads_dir, write_json):
        write_json(
            threads_dir / f"{AMP_CHILD}.json",
            thread(AMP_CHILD, [message("user", {"type": "text", "text": "Go"})], [handoff(AMP_MAIN, "child")], status="error"),
        )
        resolved = resolve(MAIN_URI, roots, "aggregate")
        assert (resolved.agents[0].status.status, resolved.agents[0].status.source) == ("errored", "child_rollout")

    def test_missing_child(self, roots, main_thread):
        resolved = resolve(MAIN_URI, roots, "aggregate")
        agent = resolved.agents[0]
        assert agent.status.status == "notFound"
        assert agent.link.evidence == LinkEvidence.MISSING_FILE

    def test_invalid_handoff_id_warns(self, roots, threads_dir, write_json):
        write_json(threads_dir / f"{AMP_MAIN}.json", thread(AMP_MAIN, [], [handoff("not-an-id", "parent")]))
        resolved = resolve(MAIN_URI, roots, "aggregate")
        assert resolved.agents == ()
        assert len(resolved.metadata.warnings) == 1

    def test_drill_down(self, roots, main_thread, threads_dir, write_json):
        write_json(
            threads_dir / f"{AMP_CHILD}.json",
            thread(AMP_CHILD, [message("user", {"type": "text", "text": "Continue"})], [handoff(AMP_MAIN, "child")]),
        )
        resolved = resolve(f"{MAIN_URI}/{AMP_CHILD}", roots)
        assert resolved.agents[0].excerpt[0].text == "Continue"

    def test_out_of_range_sent_at(self, roots, main_thread, threads_dir, write_json):
        write_json(
            threads_dir / f"{AMP_CHILD}.json",
            thread(
                AMP_CHILD,
                [message("user", {"type": "text", "text": "Continue"}, sent_at=1e20)],
                [handoff(AMP_MAIN, "child")],
            ),
        )
        resolved = resolve(MAIN_URI, roots, "aggregate")
        assert [a.agent_id for a in resolved.agents] == [AMP_CHILD]
        assert resolved.agents[0].link.validated
        assert resolved.agents[0].last_update is not None

    def test_unexpected_child_failure_isolated(self, roots, main_thread, threads_dir, write_json, monkeypatch):
        """A crash while reading one child becomes a warning, not a failed resolution."""
        write_json(
            threads_dir / f"{AMP_CHILD}.json",
            thread(AMP_CHILD, [message("user", {"type": "text", "text": "Continue"})], [handoff(AMP_MAIN, "child")]),
        )

        def explode(self, main_uri, candidate):
            raise RuntimeError("boom")

        monkeypatch.setattr(AmpLocator, "analyze_child", explode)
        resolved = resolve(MAIN_URI, roots, "aggregate")
        assert [a.agent_id for a in resolved.agents] == [AMP_CHILD]
        assert any("RuntimeError: boom" in w for w in resolved.metadata.warnings)


class TestAmpTimestamps:
    @pytest.mark.parametrize("sent_at", [1e20, float("nan")])
    def test_unusable_sent_at_is_dropped(self, roots, threads_dir, write_json, sent_at):
        write_json(
            threads_dir / f"{AMP_MAIN}.json",
            thread(AMP_MAIN, [message("user", {"type": "text", "text": "Hi"}, sent_at=sent_at)]),
        )
        resolved = resolve(MAIN_URI, roots)
        assert [(e.text, e.timestamp) for e in resolved.timeline] == [("Hi", None)]
