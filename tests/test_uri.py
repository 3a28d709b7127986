"""Tests for thread URI parsing."""

import pytest

from threadurl.errors import InvalidUri, UnknownProvider
from threadurl.models import Provider, ThreadURI
from threadurl.uri import parse, parse_write_target

from conftest import AMP_MAIN, CLAUDE_AGENT, CLAUDE_SESSION, CODEX_CHILD, CODEX_MAIN, OPENCODE_SESSION, PI_SESSION


class TestParse:
    """Both address forms parse to the same value."""

    def test_unified_main(self):
        uri = parse(f"agents://codex/{CODEX_MAIN}")
        assert uri == ThreadURI(Provider.CODEX, CODEX_MAIN)
        assert not uri.is_drill_down()

    def test_legacy_equals_unified(self):
        """Legacy and unified forms of the same thread compare equal."""
        for provider, main, child in [
            ("codex", CODEX_MAIN, CODEX_CHILD),
            ("claude", CLAUDE_SESSION, CLAUDE_AGENT),
            ("pi", PI_SESSION, "d1b2c3d4"),
        ]:
            assert parse(f"{provider}://{main}") == parse(f"agents://{provider}/{main}")
            assert parse(f"{provider}://{main}/{child}") == parse(f"agents://{provider}/{main}/{child}")

    def test_drill_down(self):
        uri = parse(f"agents://codex/{CODEX_MAIN}/{CODEX_CHILD}")
        assert uri.is_drill_down()
        assert uri.child_id == CODEX_CHILD
        assert uri.main() == ThreadURI(Provider.CODEX, CODEX_MAIN)

    def test_codex_threads_alias(self):
        assert parse(f"codex://threads/{CODEX_MAIN}") == parse(f"codex://{CODEX_MAIN}")

    def test_ids_are_lowercased(self):
        assert parse(f"codex://{CODEX_MAIN.upper()}").main_id == CODEX_MAIN
        assert parse(f"amp://{AMP_MAIN.lower()}").main_id == AMP_MAIN

    def test_claude_agent_prefix_stripped(self):
        uri = parse(f"claude://{CLAUDE_SESSION}/agent-{CLAUDE_AGENT}")
        assert uri.child_id == CLAUDE_AGENT

    def test_opencode_id(self):
        uri = parse(f"agents://opencode/{OPENCODE_SESSION}")
        assert uri.main_id == OPENCODE_SESSION

    def test_round_trip_rendering(self):
        uri = parse(f"codex://{CODEX_MAIN}/{CODEX_CHILD}")
        assert uri.as_agents_uri() == f"agents://codex/{CODEX_MAIN}/{CODEX_CHILD}"
        assert uri.as_legacy_uri() == f"codex://{CODEX_MAIN}/{CODEX_CHILD}"
        assert parse(str(uri)) == uri


class TestParseErrors:
    """Malformed URIs fail closed."""

    @pytest.mark.parametrize(
        "raw",
        [
            "codex:/nope",
            "://abc",
            "agents://",
            "agents://codex",
            "agents://codex/",
            f"agents://codex/{CODEX_MAIN}//",
            f"agents://codex/{CODEX_MAIN}/{CODEX_CHILD}/extra",
            "agents://codex/not-a-uuid",
            "amp://019c0797-c402-7389-bd80-d785c98df295",
            "opencode://session-1",
            f"pi://{PI_SESSION}/zzzz",
        ],
    )
    def test_invalid(self, raw):
        with pytest.raises(InvalidUri):
            parse(raw)

    def test_opencode_has_no_children(self):
        """A second segment is rejected for providers without subagents."""
        with pytest.raises(InvalidUri):
            parse(f"agents://opencode/{OPENCODE_SESSION}/child")

    def test_unknown_provider(self):
        with pytest.raises(UnknownProvider):
            parse(f"cursor://{CODEX_MAIN}")
        with pytest.raises(UnknownProvider):
            parse(f"agents://cursor/{CODEX_MAIN}")

    def test_error_category(self):
        with pytest.raises(InvalidUri) as exc:
            parse("agents://codex")
        assert exc.value.category == "InvalidUri"
        assert str(exc.value).startswith("InvalidUri: ")


class TestParseWriteTarget:
    def test_bare_provider_creates(self):
        assert parse_write_target("agents://codex") == (Provider.CODEX, None)
        assert parse_write_target("claude://") == (Provider.CLAUDE, None)

    def test_existing_thread(self):
        assert parse_write_target(f"agents://codex/{CODEX_MAIN}") == (Provider.CODEX, CODEX_MAIN)

    def test_child_rejected(self):
        with pytest.raises(InvalidUri):
            parse_write_target(f"agents://codex/{CODEX_MAIN}/{CODEX_CHILD}")
