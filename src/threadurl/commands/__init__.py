"""Command implementations for threadurl CLI."""
