"""Pattern-matched custom prompts.

Users attach extra instructions to parts of the tree with glob patterns:

    prompts: |
      - pattern: "packages/api/**"
        prompt: "Document every public endpoint."
      - pattern: "**/*.tsx"
        claude_prompt: "Mention component props."

When several patterns match a path the most specific one wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

import pathspec
import yaml


@dataclass
class PromptConfig:
    pattern: str
    prompt: Optional[str] = None
    agents_prompt: Optional[str] = None
    claude_prompt: Optional[str] = None

    def for_kind(self, file_kind: str) -> Optional[str]:
        specific = self.agents_prompt if file_kind == "agents" else self.claude_prompt
        return specific or self.prompt


_EXTENSION_RE = re.compile(r"\*\.(\w+)$")


def calculate_pattern_specificity(pattern: str) -> int:
    """Score a glob; deeper and more literal patterns score higher."""
    score = 0
    segments = [s for s in pattern.split("/") if s]
    score += len(segments) * 100

    for segment in segments:
        if segment == "**":
            score -= 50
        elif segment == "*":
            score -= 30
        elif "**" in segment:
            score -= 40
        elif "*" in segment:
            score += len(segment.replace("*", "")) * 5
        else:
            score += len(segment) * 10

    if pattern.startswith("**/"):
        score -= 100
    if pattern.endswith("/**"):
        score -= 50

    ext = _EXTENSION_RE.search(pattern)
    if ext:
        score += len(ext.group(1)) * 3
    return score


def parse_prompt_configs(items: Any) -> List[PromptConfig]:
    """Validate a list of prompt mappings."""
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValueError("expected a list of prompt configs")

    configs: List[PromptConfig] = []
    for index, item in enumerate(items):
        if isinstance(item, PromptConfig):
            configs.append(item)
            continue
        if not isinstance(item, dict):
            raise ValueError(f"Invalid prompt config at index {index}: not an object")
        pattern = item.get("pattern")
        if not isinstance(pattern, str) or not pattern:
            raise ValueError(f"Invalid prompt config at index {index}: missing or invalid 'pattern' field")
        values = {}
        for key in ("prompt", "agents_prompt", "claude_prompt"):
            if key not in item:
                continue
            if not isinstance(item[key], str):
                raise ValueError(f"Invalid prompt config at index {index}: '{key}' must be a string")
            values[key] = item[key]
        if not any(values.values()):
            raise ValueError(
                f"Invalid prompt config at index {index}: must provide at least one of "
                "'prompt', 'agents_prompt', or 'claude_prompt'"
            )
        configs.append(PromptConfig(pattern=pattern, **values))
    return configs


def parse_prompts_yaml(text: str) -> List[PromptConfig]:
    """Parse the `prompts` action input (a YAML list, or {prompts: [...]})."""
    if not text or not text.strip():
        return []
    try:
        parsed = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"invalid YAML: {exc}") from exc
    if parsed is None:
        return []
    if isinstance(parsed, dict) and isinstance(parsed.get("prompts"), list):
        parsed = parsed["prompts"]
    if not isinstance(parsed, list):
        raise ValueError(
            "Invalid prompts configuration: expected an array of prompt configs "
            "or an object with a 'prompts' array"
        )
    return parse_prompt_configs(parsed)


class PatternMatchedPromptResolver:
    """Resolve the most specific custom prompt for a path."""

    def __init__(self, configs: Optional[Iterable[PromptConfig]] = None):
        self._configs: List[PromptConfig] = []
        self._specs: List[pathspec.GitIgnoreSpec] = []
        self.add_configs(configs or [])

    def add_configs(self, configs: Iterable[PromptConfig]) -> "PatternMatchedPromptResolver":
        for config in configs:
            self._configs.append(config)
            self._specs.append(pathspec.GitIgnoreSpec.from_lines([config.pattern]))
        return self

    def add_from_yaml(self, text: str) -> "PatternMatchedPromptResolver":
        return self.add_configs(parse_prompts_yaml(text))

    def __len__(self) -> int:
        return len(self._configs)

    def resolve(self, file_path: str) -> Optional[PromptConfig]:
        matches = [
            config
            for config, spec in zip(self._configs, self._specs)
            if spec.match_file(file_path)
        ]
        if not matches:
            return None
        # max() keeps the first of equally specific patterns.
        return max(matches, key=lambda c: calculate_pattern_specificity(c.pattern))

    def get_prompt_for_file(self, file_path: str, file_kind: str) -> Optional[str]:
        match = self.resolve(file_path)
        return match.for_kind(file_kind) if match else None
