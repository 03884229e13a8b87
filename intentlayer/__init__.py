"""Intent layer: keep AGENTS.md / CLAUDE.md files in sync with pull requests."""

__version__ = "0.4.0"
