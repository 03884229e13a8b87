"""Error taxonomy shared by the intent layer core.

Four classes cover everything the core raises:

  NotFoundError       : file/comment/ref absent. Expected; drives branching
                        (create vs update, Resolved proposals).
  ConflictError       : symlink dual-file conflict, stale-write rejection,
                        create over an existing file. Never auto-resolved.
  MalformedInputError : unparseable marker or a proposal whose action does
                        not match its content fields. Rejects one proposal.
  UpstreamError       : any other platform or LLM failure. Callers own the
                        retry/backoff policy.

The message builders at the bottom produce the multi-line texts shown in
workflow logs.
"""

from __future__ import annotations

from typing import List, Optional


class IntentLayerError(Exception):
    """Base class for all intent layer errors."""


class NotFoundError(IntentLayerError):
    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class ConflictError(IntentLayerError):
    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class MalformedInputError(IntentLayerError, ValueError):
    pass


class UpstreamError(IntentLayerError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status is None or self.status >= 500 or self.status == 429


class SymlinkConflictError(ConflictError):
    """Both intent files exist in a directory without a symlink between them."""

    def __init__(self, message: str, conflict_directories: List[str]):
        super().__init__(message)
        self.conflict_directories = list(conflict_directories)


class ConfigValidationError(IntentLayerError, ValueError):
    """One or more configuration values are invalid."""

    def __init__(self, issues: List[str]):
        self.issues = list(issues)
        super().__init__(format_config_issues(self.issues))


def format_config_issues(issues: List[str]) -> str:
    lines = [
        "Configuration Validation Error",
        "",
        "One or more action inputs are invalid:",
        "",
    ]
    for issue in issues:
        lines.append(f"  - {issue}")
    lines.append("")
    lines.append("Please check your workflow configuration and ensure all inputs are valid.")
    return "\n".join(lines)


def missing_env_error(variable_name: str, description: str) -> IntentLayerError:
    return IntentLayerError("\n".join([
        f"Missing required environment variable: {variable_name}",
        "",
        f"{variable_name} {description}",
        "",
        "Please ensure this variable is set in your workflow configuration.",
    ]))


def invalid_mode_error(mode: str, valid_modes: List[str]) -> IntentLayerError:
    return IntentLayerError("\n".join([
        f'Invalid mode: "{mode}"',
        "",
        f"Valid modes are: {', '.join(valid_modes)}",
        "",
        "Please check your workflow configuration.",
    ]))


def missing_pr_context_error() -> IntentLayerError:
    return IntentLayerError("\n".join([
        "Missing pull request context",
        "",
        "This action must be run in the context of a pull request.",
        "Ensure your workflow is triggered by pull_request or issue_comment events.",
    ]))


def api_key_error(provider: str, env_var_name: str) -> IntentLayerError:
    return IntentLayerError("\n".join([
        f"Missing or invalid {provider} API key",
        "",
        f"Please configure {env_var_name} as a repository secret and expose it",
        "to the workflow step:",
        "  env:",
        f"    {env_var_name}: ${{{{ secrets.{env_var_name} }}}}",
    ]))


def large_pr_message(lines_changed: int, max_lines: int) -> str:
    return "\n".join([
        "Skipping intent layer analysis for large PR",
        "",
        f"This PR has {lines_changed:,} lines changed, which exceeds the maximum of {max_lines:,} lines.",
        "",
        "Consider breaking large PRs into smaller, more focused changes for better intent layer coverage.",
    ])
