"""`.intentlayerignore` support.

The file uses gitignore syntax. Matched paths still resolve to a covering
node but never trigger updates or new-node suggestions.
"""

from __future__ import annotations

from typing import Callable, Iterable, List

import pathspec

INTENTLAYERIGNORE_FILENAME = ".intentlayerignore"


class IntentLayerIgnore:
    """Accumulating gitignore-style matcher."""

    def __init__(self) -> None:
        self._lines: List[str] = []
        self._spec = pathspec.GitIgnoreSpec.from_lines([])

    def add(self, content: str) -> "IntentLayerIgnore":
        return self.add_patterns(content.splitlines())

    def add_patterns(self, patterns: Iterable[str]) -> "IntentLayerIgnore":
        self._lines.extend(patterns)
        self._spec = pathspec.GitIgnoreSpec.from_lines(self._lines)
        return self

    @property
    def patterns(self) -> List[str]:
        return [line for line in self._lines if line.strip() and not line.lstrip().startswith("#")]

    def ignores(self, path: str) -> bool:
        return self._spec.match_file(path)

    def filter(self, paths: Iterable[str]) -> List[str]:
        """Return the paths that are NOT ignored."""
        return [p for p in paths if not self.ignores(p)]

    def create_filter(self) -> Callable[[str], bool]:
        return lambda path: not self.ignores(path)


def parse_intent_layer_ignore(content: str) -> IntentLayerIgnore:
    return IntentLayerIgnore().add(content)


def create_empty_ignore() -> IntentLayerIgnore:
    return IntentLayerIgnore()
