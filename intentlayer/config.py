"""
Configuration loader for the intent layer action

Settings come from three layers, later layers winning:
  1. dataclass defaults below
  2. the first JSON config file found (see _config_paths)
  3. GitHub Actions inputs exposed as INPUT_<NAME> environment variables

JSON keys may be camelCase; they are converted to snake_case on load.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from intentlayer.core.llm.prompt_resolver import PromptConfig, parse_prompt_configs, parse_prompts_yaml
from intentlayer.lib.errors import ConfigValidationError
logger = logging.getLogger(__name__)

MODES = ("analyze", "checkbox-handler")
FILES_OPTIONS = ("agents", "claude", "both")
SYMLINK_SOURCES = ("agents", "claude")
OUTPUT_OPTIONS = ("pr_comments", "pr_commit", "new_pr")

DEFAULT_MODEL = "anthropic/claude-sonnet-4-20250514"

# Action input names, in the order they are documented in action.yml.
ACTION_INPUTS = (
    "mode",
    "model",
    "files",
    "symlink",
    "symlink_source",
    "output",
    "new_nodes",
    "split_large_nodes",
    "token_budget_percent",
    "skip_binary_files",
    "file_max_lines",
    "prompts",
)


def _coerce_positive_int(raw: Any, default: int) -> int:
    """Return a positive int; fallback to default for invalid values."""
    try:
        return max(1, int(raw))
    except (TypeError, ValueError):
        return default


def _coerce_nonnegative_float(raw: Any, default: float) -> float:
    """Return a non-negative float; fallback to default for invalid values."""
    try:
        return max(0.0, float(raw))
    except (TypeError, ValueError):
        return default


def _config_paths() -> List[Path]:
    """Config file search paths (in priority order)."""
    paths = []
    explicit = os.environ.get("INTENT_LAYER_CONFIG", "").strip()
    if explicit:
        paths.append(Path(explicit))
    workspace = Path(os.environ.get("GITHUB_WORKSPACE", "."))
    paths.append(workspace / ".github" / "intent-layer.json")
    paths.append(Path.home() / ".intentlayer" / "config.json")
    return paths


@dataclass
class AnalysisConfig:
    # Parent review: any one threshold crossed recommends the ancestor.
    parent_min_children: int = 3
    parent_min_structural_changes: int = 5
    parent_min_changed_files: int = 10
    # New-node candidates for uncovered directories.
    new_node_min_files: int = 3
    new_node_min_changes: int = 50
    # Update reasons.
    significant_line_changes: int = 100
    reason_line_count_threshold: int = 50
    max_pr_lines_changed: int = 100_000


@dataclass
class CheckboxConfig:
    debounce_delay_seconds: float = 1.5
    # Re-fetch rounds before giving up on an unsettled comment.
    max_debounce_attempts: int = 1


@dataclass
class GitHubConfig:
    api_url: str = "https://api.github.com"
    token_env: str = "GITHUB_TOKEN"
    timeout_seconds: float = 30.0
    max_read_workers: int = 4


@dataclass
class LLMConfig:
    api_key_env: str = "ANTHROPIC_API_KEY"
    base_url: str = ""
    max_output_tokens: int = 16384
    timeout_seconds: float = 600.0
    context_window: int = 200_000


@dataclass
class IntentLayerConfig:
    mode: str = "analyze"
    model: str = DEFAULT_MODEL
    files: str = "agents"
    symlink: bool = False
    symlink_source: str = "agents"
    output: str = "pr_comments"
    new_nodes: bool = True
    split_large_nodes: bool = True
    token_budget_percent: float = 5.0
    skip_binary_files: bool = True
    file_max_lines: int = 8000
    prompts: List[PromptConfig] = field(default_factory=list)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    checkbox: CheckboxConfig = field(default_factory=CheckboxConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)

    @property
    def file_kind(self) -> str:
        """Kind used to build the hierarchy ('both' analyzes AGENTS.md)."""
        return "claude" if self.files == "claude" else "agents"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_config: Optional[IntentLayerConfig] = None
_config_lock = threading.RLock()
_warned_unknown_config_keys: set[str] = set()

_SECTION_TYPES = {
    "analysis": AnalysisConfig,
    "checkbox": CheckboxConfig,
    "github": GitHubConfig,
    "llm": LLMConfig,
}


def _camel_to_snake(camel_str: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(camel_str):
        if char.isupper() and i > 0:
            result.append('_')
        result.append(char.lower())
    return ''.join(result)


def _load_nested(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert camelCase keys to snake_case recursively."""
    result = {}
    for key, value in data.items():
        snake_key = _camel_to_snake(key)
        if isinstance(value, dict):
            result[snake_key] = _load_nested(value)
        else:
            result[snake_key] = value
    return result


def _warn_unknown_keys(section: str, data: Dict[str, Any], known_keys: set[str]) -> None:
    for key in data.keys():
        token = f"{section}.{key}" if section else str(key)
        if key in known_keys or token in _warned_unknown_config_keys:
            continue
        _warned_unknown_config_keys.add(token)
        logger.warning("Unknown config key ignored: %s", token)


def _parse_bool(name: str, raw: Any, issues: List[str]) -> Optional[bool]:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no", ""):
            return False
    issues.append(f"{name}: expected a boolean, got {raw!r}")
    return None


def _parse_number(name: str, raw: Any, issues: List[str]) -> Optional[float]:
    if isinstance(raw, bool):
        issues.append(f"{name}: expected a number, got {raw!r}")
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        issues.append(f"{name}: Invalid number: {raw}")
        return None


def _parse_choice(name: str, raw: Any, choices: tuple, issues: List[str]) -> Optional[str]:
    value = str(raw).strip()
    if value not in choices:
        options = " | ".join(f"'{c}'" for c in choices)
        issues.append(f"{name}: Invalid enum value. Expected {options}, received '{value}'")
        return None
    return value


def _apply_inputs(config: IntentLayerConfig, inputs: Mapping[str, Any]) -> None:
    """Apply flat action inputs onto config, collecting every problem first."""
    issues: List[str] = []
    for name in ACTION_INPUTS:
        if name not in inputs:
            continue
        raw = inputs[name]
        if raw is None or raw == "":
            continue
        if name == "mode":
            value = _parse_choice(name, raw, MODES, issues)
        elif name == "files":
            value = _parse_choice(name, raw, FILES_OPTIONS, issues)
        elif name == "symlink_source":
            value = _parse_choice(name, raw, SYMLINK_SOURCES, issues)
        elif name == "output":
            value = _parse_choice(name, raw, OUTPUT_OPTIONS, issues)
        elif name in ("symlink", "new_nodes", "split_large_nodes", "skip_binary_files"):
            value = _parse_bool(name, raw, issues)
        elif name == "token_budget_percent":
            value = _parse_number(name, raw, issues)
            if value is not None and not (0 < value <= 100):
                issues.append(f"{name}: must be between 0 and 100, got {raw}")
                value = None
        elif name == "file_max_lines":
            number = _parse_number(name, raw, issues)
            value = _coerce_positive_int(number, config.file_max_lines) if number is not None else None
        elif name == "prompts":
            try:
                value = parse_prompts_yaml(raw) if isinstance(raw, str) else parse_prompt_configs(raw)
            except ValueError as exc:
                issues.append(f"prompts: {exc}")
                value = None
        else:
            value = str(raw)
        if value is not None:
            setattr(config, name, value)
    if issues:
        raise ConfigValidationError(issues)


def _apply_sections(config: IntentLayerConfig, data: Dict[str, Any]) -> None:
    for section_name, section_type in _SECTION_TYPES.items():
        section_data = data.get(section_name)
        if not isinstance(section_data, dict):
            continue
        known = set(section_type.__dataclass_fields__.keys())
        _warn_unknown_keys(section_name, section_data, known)
        defaults = section_type()
        values = {}
        for key, default in asdict(defaults).items():
            if key not in section_data:
                continue
            raw = section_data[key]
            if isinstance(default, bool):
                values[key] = bool(raw)
            elif isinstance(default, int):
                values[key] = _coerce_positive_int(raw, default)
            elif isinstance(default, float):
                values[key] = _coerce_nonnegative_float(raw, default)
            else:
                values[key] = str(raw)
        setattr(config, section_name, section_type(**values))


def _read_config_file() -> Dict[str, Any]:
    for config_path in _config_paths():
        if not config_path.exists():
            continue
        try:
            with open(config_path, 'r', encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse %s: %s", config_path, e)
            continue
        except OSError as e:
            logger.warning("Failed to read %s: %s", config_path, e)
            continue
        if not isinstance(raw, dict):
            logger.warning("Ignoring %s: top-level JSON value must be an object", config_path)
            continue
        logger.debug("Loaded config from %s", config_path)
        return raw
    return {}


def read_action_inputs(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Collect INPUT_<NAME> variables set by the Actions runner."""
    env = os.environ if environ is None else environ
    inputs: Dict[str, str] = {}
    for name in ACTION_INPUTS:
        value = env.get(f"INPUT_{name.upper()}")
        if value is not None and value != "":
            inputs[name] = value
    return inputs


def build_config(
    file_data: Optional[Dict[str, Any]] = None,
    inputs: Optional[Mapping[str, Any]] = None,
) -> IntentLayerConfig:
    """Build a config from already-loaded JSON data and action inputs."""
    config = IntentLayerConfig()
    data = _load_nested(file_data or {})
    known = set(IntentLayerConfig.__dataclass_fields__.keys())
    _warn_unknown_keys("", data, known)
    _apply_sections(config, data)
    _apply_inputs(config, {k: v for k, v in data.items() if k in ACTION_INPUTS})
    if inputs:
        _apply_inputs(config, inputs)
    return config


def load_config() -> IntentLayerConfig:
    """Load configuration from file and environment, or use defaults."""
    global _config

    with _config_lock:
        if _config is not None:
            return _config
        _config = build_config(_read_config_file(), read_action_inputs())
        return _config


def get_config() -> IntentLayerConfig:
    """Get the loaded config (loads on first call)."""
    return load_config()


def set_config(config: IntentLayerConfig) -> None:
    """Install an explicit config (tests, embedding callers)."""
    global _config
    with _config_lock:
        _config = config


def reload_config() -> IntentLayerConfig:
    """Force reload configuration from file and environment."""
    global _config
    with _config_lock:
        _config = None
        _warned_unknown_config_keys.clear()
        return load_config()
