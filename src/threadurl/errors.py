"""Error categories for thread resolution.

Every fatal failure is one of these. The CLI prints them as
``ERROR: <Category>: <message>`` and exits 1.
"""

from pathlib import Path


class ThreadUrlError(Exception):
    """Base class for categorized resolution failures."""

    @property
    def category(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        return f"{self.category}: {super().__str__()}"


class InvalidUri(ThreadUrlError):
    """The URI is structurally broken or carries an invalid id."""


class UnknownProvider(ThreadUrlError):
    """The scheme or provider name is not one we know how to read."""


class RootNotFound(ThreadUrlError):
    """A provider's base directory does not exist."""

    def __init__(self, provider: str, root: Path):
        super().__init__(f"{provider} root not found: {root}")
        self.provider = provider
        self.root = root


class ThreadNotFound(ThreadUrlError):
    """The root exists but holds nothing matching the requested id."""

    def __init__(self, provider: str, thread_id: str, searched: list[Path] | None = None):
        searched = searched or []
        where = ", ".join(str(p) for p in searched) or "(nothing searched)"
        super().__init__(f"{provider} thread not found: {thread_id} (searched: {where})")
        self.provider = provider
        self.thread_id = thread_id
        self.searched = searched


class AmbiguousMatch(ThreadUrlError):
    """More than one file claims the same id and none can be preferred."""

    def __init__(self, provider: str, thread_id: str, paths: list[Path]):
        listed = ", ".join(str(p) for p in paths)
        super().__init__(f"{provider} id {thread_id} is claimed by several files: {listed}")
        self.paths = paths


class UnreadableFile(ThreadUrlError):
    """The backing file exists but could not be read."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"cannot read {path}: {reason}")
        self.path = path


class EmptyFile(ThreadUrlError):
    """The backing file has no content."""

    def __init__(self, path: Path):
        super().__init__(f"thread file is empty: {path}")
        self.path = path


class InvalidEncoding(ThreadUrlError):
    """The backing file is not valid UTF-8."""

    def __init__(self, path: Path, offset: int):
        super().__init__(f"thread file is not valid UTF-8 (byte {offset}): {path}")
        self.path = path
        self.offset = offset


class MalformedRecord(ThreadUrlError):
    """A record failed JSON decoding."""

    def __init__(self, path: Path, line: int | None, reason: str):
        where = f"{path}:{line}" if line is not None else str(path)
        super().__init__(f"malformed record at {where}: {reason}")
        self.path = path
        self.line = line


class LinkageRejected(ThreadUrlError):
    """A drill-down target did not pass parent/child validation."""


class TreeCycleDetected(ThreadUrlError):
    """A branch tree's parent pointers loop back on themselves."""


class InvalidMode(ThreadUrlError):
    """The requested mode does not apply to this URI."""


class WriteUnsupported(ThreadUrlError):
    """The provider cannot be written to through its command-line tool."""


class ProviderCommandNotFound(ThreadUrlError):
    """The provider's command-line tool is not installed."""


class ProviderCommandFailed(ThreadUrlError):
    """The provider's command-line tool exited with an error."""
