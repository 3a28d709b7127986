"""Per-provider locators. The provider set is closed."""

from ..models import Provider
from ..roots import ProviderRoots
from .amp import AmpLocator
from .base import ProviderLocator
from .claude import ClaudeLocator
from .codex import CodexLocator
from .gemini import GeminiLocator
from .opencode import OpenCodeLocator
from .pi import PiLocator

LOCATORS: dict[Provider, type[ProviderLocator]] = {
    Provider.AMP: AmpLocator,
    Provider.CODEX: CodexLocator,
    Provider.CLAUDE: ClaudeLocator,
    Provider.GEMINI: GeminiLocator,
    Provider.PI: PiLocator,
    Provider.OPENCODE: OpenCodeLocator,
}


def get_locator(provider: Provider, roots: ProviderRoots) -> ProviderLocator:
    """Build the locator for a provider rooted at its configured base directory."""
    return LOCATORS[provider](roots.root_for(provider))
