"""Tests for provider root resolution."""

from pathlib import Path

from threadurl.models import Provider
from threadurl.roots import ProviderRoots, roots_from_environment


class TestRootsFromEnvironment:
    def test_defaults(self):
        home = Path("/home/u")
        roots = ProviderRoots.from_environment({}, home)
        assert roots.amp == home / ".local/share/amp"
        assert roots.codex == home / ".codex"
        assert roots.claude == home / ".claude"
        assert roots.gemini == home / ".gemini"
        assert roots.pi == home / ".pi/agent"
        assert roots.opencode == home / ".local/share/opencode"

    def test_overrides(self):
        env = {
            "XDG_DATA_HOME": "/data",
            "CODEX_HOME": "/c",
            "CLAUDE_CONFIG_DIR": "/cl",
            "GEMINI_CLI_HOME": "/g",
            "PI_CODING_AGENT_DIR": "/p",
        }
        roots = ProviderRoots.from_environment(env, Path("/home/u"))
        assert roots.amp == Path("/data/amp")
        assert roots.codex == Path("/c")
        assert roots.claude == Path("/cl")
        assert roots.gemini == Path("/g/.gemini")
        assert roots.pi == Path("/p")
        assert roots.opencode == Path("/data/opencode")

    def test_empty_value_is_unset(self):
        home = Path("/home/u")
        assert roots_from_environment(Provider.CODEX, {"CODEX_HOME": ""}, home) == home / ".codex"
        assert roots_from_environment(Provider.AMP, {"XDG_DATA_HOME": "  "}, home) == home / ".local/share/amp"

    def test_root_for(self, tmp_path):
        roots = ProviderRoots.under(tmp_path)
        assert roots.root_for(Provider.GEMINI) == tmp_path / "gemini"
