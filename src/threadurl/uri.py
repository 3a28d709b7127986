"""Thread URI parsing.

Two address forms name the same thread:

    agents://<provider>/<main>[/<child>]
    <provider>://<main>[/<child>]

Parsing is pure and fails closed.
"""

import re

from .errors import InvalidUri, UnknownProvider
from .models import DRILL_DOWN_PROVIDERS, Provider, ThreadURI

UNIFIED_SCHEME = "agents"

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
AMP_ID_RE = re.compile(r"^T-[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
OPENCODE_ID_RE = re.compile(r"^ses_[0-9A-Za-z]+$")
PI_SHORT_ENTRY_RE = re.compile(r"^[0-9a-f]{8}$", re.IGNORECASE)
CLAUDE_AGENT_RE = re.compile(r"^[0-9A-Za-z][0-9A-Za-z_-]*$")

# Literal namespace segment some providers accept before the id
ALIAS_PREFIXES = {
    Provider.CODEX: "threads/",
}


def parse_provider(name: str) -> Provider:
    """Map a provider name or legacy scheme to a Provider."""
    try:
        return Provider(name.lower())
    except ValueError:
        known = ", ".join(p.value for p in Provider)
        raise UnknownProvider(f"unknown provider '{name}' (expected one of: {known})") from None


def _split_scheme(raw: str) -> tuple[Provider, str]:
    """Split a URI into provider and target text."""
    scheme, sep, rest = raw.partition("://")
    if not sep or not scheme:
        raise InvalidUri(f"expected <scheme>://..., got '{raw}'")

    if scheme.lower() == UNIFIED_SCHEME:
        provider_name, _, target = rest.partition("/")
        if not provider_name:
            raise InvalidUri(f"missing provider in '{raw}'")
        return parse_provider(provider_name), target

    return parse_provider(scheme), rest


def normalize_main_id(provider: Provider, value: str) -> str:
    """Validate and normalize a main thread id.

    Raises:
        InvalidUri: If the id is not valid for the provider.
    """
    if provider == Provider.AMP:
        if not AMP_ID_RE.match(value):
            raise InvalidUri(f"invalid amp thread id '{value}' (expected T-<uuid>)")
        return "T-" + value[2:].lower()
    if provider == Provider.OPENCODE:
        if not OPENCODE_ID_RE.match(value):
            raise InvalidUri(f"invalid opencode session id '{value}' (expected ses_<id>)")
        return value
    if not UUID_RE.match(value):
        raise InvalidUri(f"invalid {provider.value} session id '{value}' (expected a UUID)")
    return value.lower()


def normalize_child_id(provider: Provider, value: str) -> str:
    """Validate and normalize a child, agent, or entry id.

    Raises:
        InvalidUri: If the id is not valid for the provider.
    """
    if provider == Provider.AMP:
        return normalize_main_id(provider, value)
    if provider == Provider.CLAUDE:
        # Claude agent ids are free-form tokens like "acompact-69d537"
        if not CLAUDE_AGENT_RE.match(value):
            raise InvalidUri(f"invalid claude agent id '{value}'")
        value = value[len("agent-"):] if value.startswith("agent-") else value
        if not value:
            raise InvalidUri("empty claude agent id")
        return value
    if provider == Provider.PI:
        if PI_SHORT_ENTRY_RE.match(value) or UUID_RE.match(value):
            return value.lower()
        raise InvalidUri(f"invalid pi entry id '{value}' (expected 8 hex chars or a UUID)")
    if not UUID_RE.match(value):
        raise InvalidUri(f"invalid {provider.value} agent id '{value}' (expected a UUID)")
    return value.lower()


def parse(raw: str) -> ThreadURI:
    """Parse a thread URI in either address form.

    Raises:
        InvalidUri: On structural problems or malformed ids.
        UnknownProvider: If the scheme or provider name is not recognized.
    """
    raw = raw.strip()
    provider, target = _split_scheme(raw)

    alias = ALIAS_PREFIXES.get(provider)
    if alias and target.startswith(alias):
        target = target[len(alias):]

    if not target:
        raise InvalidUri(f"missing thread id in '{raw}'")

    segments = target.split("/")
    if len(segments) > 2:
        raise InvalidUri(f"too many path segments in '{raw}' (at most <main>/<child>)")
    if any(not s for s in segments):
        raise InvalidUri(f"empty path segment in '{raw}'")
    if len(segments) == 2 and provider not in DRILL_DOWN_PROVIDERS:
        raise InvalidUri(f"{provider.value} threads have no children; '{raw}' has a second segment")

    main_id = normalize_main_id(provider, segments[0])
    child_id = normalize_child_id(provider, segments[1]) if len(segments) == 2 else None
    return ThreadURI(provider, main_id, child_id)


def parse_write_target(raw: str) -> tuple[Provider, str | None]:
    """Parse a write target: a bare provider collection or an existing thread.

    ``agents://codex`` creates a thread; ``agents://codex/<id>`` continues one.

    Raises:
        InvalidUri: If the target names a child thread or is malformed.
    """
    raw = raw.strip()
    provider, target = _split_scheme(raw)
    if not target.strip("/"):
        return provider, None

    uri = parse(raw)
    if uri.is_drill_down():
        raise InvalidUri(f"cannot write to a child thread: '{raw}'")
    return uri.provider, uri.main_id
