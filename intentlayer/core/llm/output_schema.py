"""Structured LLM output: ``{"updates": [IntentUpdate, ...]}``.

Each update must carry the content fields its action implies:

    create  suggested_content, no current_content
    update  current_content and suggested_content
    delete  current_content, no suggested_content

Violations raise MalformedInputError for that single update; the batch
parser keeps the valid ones and reports the rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from intentlayer.lib.errors import MalformedInputError
from intentlayer.lib.llm_clients import parse_json_response
logger = logging.getLogger(__name__)

ACTIONS = ("create", "update", "delete")
INTENT_FILENAMES = ("AGENTS.md", "CLAUDE.md")

# camelCase keys the model is asked to produce, mapped to field names.
_KEY_MAP = {
    "nodePath": "node_path",
    "otherNodePath": "other_node_path",
    "currentContent": "current_content",
    "suggestedContent": "suggested_content",
}


@dataclass
class IntentUpdate:
    node_path: str
    action: str
    reason: str
    other_node_path: Optional[str] = None
    current_content: Optional[str] = None
    suggested_content: Optional[str] = None

    def __post_init__(self):
        issues = validate_intent_update(self)
        if issues:
            raise MalformedInputError(
                f"Invalid {self.action or 'unknown'} proposal for {self.node_path or '(no path)'}: "
                + "; ".join(issues)
            )

    def to_dict(self) -> Dict[str, Any]:
        out = {"nodePath": self.node_path, "action": self.action, "reason": self.reason}
        if self.other_node_path:
            out["otherNodePath"] = self.other_node_path
        if self.current_content is not None:
            out["currentContent"] = self.current_content
        if self.suggested_content is not None:
            out["suggestedContent"] = self.suggested_content
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntentUpdate":
        if not isinstance(data, dict):
            raise MalformedInputError(f"update must be an object, got {type(data).__name__}")
        values = {}
        for key, value in data.items():
            name = _KEY_MAP.get(key, key)
            if name in cls.__dataclass_fields__:
                values[name] = value
        for required in ("node_path", "action", "reason"):
            values.setdefault(required, "")
        for name, value in values.items():
            if value is not None and not isinstance(value, str):
                raise MalformedInputError(f"{name} must be a string, got {type(value).__name__}")
        return cls(**values)


@dataclass
class LLMOutput:
    updates: List[IntentUpdate] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)

    @property
    def has_updates(self) -> bool:
        return bool(self.updates)

    def by_action(self, action: str) -> List[IntentUpdate]:
        return [u for u in self.updates if u.action == action]


def validate_intent_update(update: IntentUpdate) -> List[str]:
    issues = []
    if not update.node_path:
        issues.append("nodePath is required")
    elif not update.node_path.endswith(INTENT_FILENAMES):
        issues.append("nodePath must end in AGENTS.md or CLAUDE.md")
    if update.action not in ACTIONS:
        issues.append(f"action must be one of {', '.join(ACTIONS)}, got {update.action!r}")
    if not update.reason:
        issues.append("reason is required")

    if update.action == "create":
        if not update.suggested_content:
            issues.append("suggestedContent is required for create action")
        if update.current_content:
            issues.append("currentContent should not be provided for create action")
    elif update.action == "update":
        if not update.current_content:
            issues.append("currentContent is required for update action")
        if not update.suggested_content:
            issues.append("suggestedContent is required for update action")
    elif update.action == "delete":
        if not update.current_content:
            issues.append("currentContent is required for delete action")
        if update.suggested_content:
            issues.append("suggestedContent should not be provided for delete action")
    return issues


def parse_llm_output(parsed: Any) -> LLMOutput:
    """Validate an already-decoded ``{"updates": [...]}`` object."""
    if not isinstance(parsed, dict) or not isinstance(parsed.get("updates"), list):
        raise MalformedInputError("LLM output must be an object with an 'updates' array")
    output = LLMOutput()
    for index, item in enumerate(parsed["updates"]):
        try:
            output.updates.append(IntentUpdate.from_dict(item))
        except MalformedInputError as exc:
            logger.warning("Rejected update %d from LLM output: %s", index, exc)
            output.rejected.append(f"updates[{index}]: {exc}")
    return output


def parse_raw_llm_output(raw: str) -> LLMOutput:
    """Extract JSON from raw model text, then validate it."""
    parsed = parse_json_response(raw)
    if parsed is None:
        raise MalformedInputError("LLM output did not contain valid JSON")
    return parse_llm_output(parsed)


def create_empty_output() -> LLMOutput:
    return LLMOutput()
