"""Provider base directories resolved from an environment snapshot."""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .models import Provider


def _env(environ: Mapping[str, str], name: str) -> str | None:
    """Return a variable's value, treating empty as unset."""
    value = environ.get(name, "").strip()
    return value or None


def roots_from_environment(
    provider: Provider, environ: Mapping[str, str] | None = None, home: Path | None = None
) -> Path:
    """Compute one provider's base directory.

    The path is not checked for existence; a missing root is reported by
    the locator so it can be told apart from a missing thread.
    """
    if environ is None:
        environ = os.environ
    if home is None:
        home = Path.home()

    if provider == Provider.AMP:
        xdg = _env(environ, "XDG_DATA_HOME")
        return Path(xdg) / "amp" if xdg else home / ".local" / "share" / "amp"
    if provider == Provider.CODEX:
        codex_home = _env(environ, "CODEX_HOME")
        return Path(codex_home) if codex_home else home / ".codex"
    if provider == Provider.CLAUDE:
        config_dir = _env(environ, "CLAUDE_CONFIG_DIR")
        return Path(config_dir) if config_dir else home / ".claude"
    if provider == Provider.GEMINI:
        gemini_home = _env(environ, "GEMINI_CLI_HOME")
        return Path(gemini_home) / ".gemini" if gemini_home else home / ".gemini"
    if provider == Provider.PI:
        agent_dir = _env(environ, "PI_CODING_AGENT_DIR")
        return Path(agent_dir) if agent_dir else home / ".pi" / "agent"
    if provider == Provider.OPENCODE:
        xdg = _env(environ, "XDG_DATA_HOME")
        return Path(xdg) / "opencode" if xdg else home / ".local" / "share" / "opencode"
    raise ValueError(f"Unhandled provider: {provider}")


@dataclass(frozen=True)
class ProviderRoots:
    """Base directory per provider, fixed for one invocation."""

    amp: Path
    codex: Path
    claude: Path
    gemini: Path
    pi: Path
    opencode: Path

    @classmethod
    def from_environment(
        cls, environ: Mapping[str, str] | None = None, home: Path | None = None
    ) -> "ProviderRoots":
        """Snapshot every provider's root from the environment."""
        return cls(**{p.value: roots_from_environment(p, environ, home) for p in Provider})

    @classmethod
    def under(cls, base: Path) -> "ProviderRoots":
        """Place every provider root in its own subdirectory of ``base``."""
        return cls(**{p.value: base / p.value for p in Provider})

    def root_for(self, provider: Provider) -> Path:
        return getattr(self, provider.value)
