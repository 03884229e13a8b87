#!/usr/bin/env python3
"""Command-line entry point used by the GitHub Action.

    intentlayer                  # run the configured mode
    intentlayer analyze          # analyze the PR from the event payload
    intentlayer checkbox-handler # react to an edited intent layer comment
    intentlayer config           # print the effective configuration
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Callable, List, Optional

from intentlayer.config import MODES, IntentLayerConfig, get_config
from intentlayer.core.github.checkbox import load_event_payload
from intentlayer.core.runner import get_pull_request_number, run_analysis, run_checkbox_handler
from intentlayer.lib.errors import ConfigValidationError, IntentLayerError, SymlinkConflictError, invalid_mode_error
from intentlayer.lib.github_client import GitHubClient
from intentlayer.lib.providers import create_provider
logger = logging.getLogger(__name__)

# Errors logged by the code that raised them.
_ALREADY_REPORTED = (SymlinkConflictError,)


def configure_logging(verbose: bool = False) -> None:
    level_name = os.environ.get("INTENT_LAYER_LOG_LEVEL", "").strip().upper()
    if verbose or os.environ.get("RUNNER_DEBUG") == "1":
        level = logging.DEBUG
    elif level_name:
        level = getattr(logging, level_name, logging.INFO)
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def escape_workflow_data(message: str) -> str:
    """Escape a message for an Actions workflow command."""
    return message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def report_failure(message: str) -> None:
    print(f"::error::{escape_workflow_data(message)}", flush=True)


def run(action: Callable[[], None]) -> int:
    """Run ``action`` and turn failures into an exit code plus an Actions error."""
    try:
        action()
    except ConfigValidationError as exc:
        logger.error("%s", exc)
        report_failure(str(exc))
        return 1
    except _ALREADY_REPORTED as exc:
        report_failure(str(exc))
        return 1
    except IntentLayerError as exc:
        logger.error("Intent layer action failed: %s", exc)
        report_failure(str(exc))
        return 1
    except Exception as exc:
        logger.exception("Unexpected error")
        report_failure(f"Unexpected error: {exc}")
        return 1
    return 0


def analyze(config: IntentLayerConfig, payload: Optional[dict] = None) -> None:
    payload = payload if payload is not None else load_event_payload()
    pull_number = get_pull_request_number(payload)
    client = GitHubClient.from_environment(config.github)
    provider = create_provider(config.model, config.llm)
    result = run_analysis(config, client, provider, pull_number)
    logger.info("Analysis of PR #%d finished: %s", pull_number, result.status)


def checkbox_handler(config: IntentLayerConfig, payload: Optional[dict] = None) -> None:
    client = GitHubClient.from_environment(config.github)
    run_checkbox_handler(config, client, payload=payload)


def show_config(config: IntentLayerConfig) -> None:
    print(json.dumps(config.to_dict(), indent=2, default=str))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="intentlayer", description="Keep AGENTS.md / CLAUDE.md in sync with PRs")
    parser.add_argument("command", nargs="?", default=None,
                        help="analyze | checkbox-handler | config (default: configured mode)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    config_holder = {}

    def _load() -> None:
        config_holder["config"] = get_config()

    if run(_load) != 0:
        return 1
    config = config_holder["config"]

    command = args.command or config.mode
    if command == "config":
        show_config(config)
        return 0
    if command == "analyze":
        return run(lambda: analyze(config))
    if command == "checkbox-handler":
        return run(lambda: checkbox_handler(config))

    exc = invalid_mode_error(command, list(MODES))
    logger.error("%s", exc)
    report_failure(str(exc))
    return 1


if __name__ == "__main__":
    sys.exit(main())
