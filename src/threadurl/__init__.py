"""threadurl: read local coding-agent threads by URI."""

__version__ = "0.1.0"
