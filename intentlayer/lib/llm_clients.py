"""LLM call helpers: retries, usage accounting and JSON extraction."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from typing import Optional

from intentlayer.lib.errors import UpstreamError
from intentlayer.lib.providers import LLMProvider, LLMResult
logger = logging.getLogger(__name__)

# Retry config
_MAX_RETRIES = 2
_RETRY_BASE_DELAY = 2.0  # seconds, doubled each retry

_usage_lock = threading.Lock()
_usage = {"calls": 0, "input_tokens": 0, "output_tokens": 0}


def reset_token_usage() -> None:
    """Reset the per-run token usage counters."""
    with _usage_lock:
        for key in _usage:
            _usage[key] = 0


def get_token_usage() -> dict:
    with _usage_lock:
        return dict(_usage)


def _track_usage(result: LLMResult) -> None:
    with _usage_lock:
        _usage["calls"] += 1
        _usage["input_tokens"] += result.input_tokens
        _usage["output_tokens"] += result.output_tokens


def call_llm(provider: LLMProvider, system_prompt: str, user_message: str,
             max_tokens: int = 16384, timeout: float = 600,
             max_retries: Optional[int] = None) -> LLMResult:
    """Call ``provider`` and return its result.

    Retryable upstream failures (5xx, 429, network) are retried with
    exponential backoff; anything else propagates immediately.
    """
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_message})

    retries = _MAX_RETRIES if max_retries is None else max(0, int(max_retries))
    attempt = 0
    while True:
        try:
            result = provider.llm_call(messages, max_tokens=max_tokens, timeout=timeout)
        except UpstreamError as exc:
            if not exc.retryable or attempt >= retries:
                raise
            delay = _RETRY_BASE_DELAY * (2 ** attempt)
            attempt += 1
            logger.warning("LLM call failed (%s); retry %d/%d in %.1fs", exc, attempt, retries, delay)
            time.sleep(delay)
            continue
        _track_usage(result)
        if result.truncated:
            logger.warning("LLM response for model=%s hit max_tokens=%d and may be truncated", result.model, max_tokens)
        logger.info(
            "LLM call finished in %.1fs (model=%s, in=%d, out=%d)",
            result.duration, result.model, result.input_tokens, result.output_tokens,
        )
        return result


def parse_json_response(text: str) -> Optional[object]:
    """Strip markdown fences and parse JSON from an LLM response.

    Handles responses wrapped in ```json ... ``` blocks as well as bare JSON
    surrounded by prose. Returns parsed JSON (dict or list) or None on failure.
    """
    if not text:
        return None

    cleaned = text.strip()
    parse_errors = []

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        parse_errors.append(f"direct parse failed at line {e.lineno}, col {e.colno}: {e.msg}")

    if "```" in cleaned:
        for part in cleaned.split("```"):
            candidate = part.strip()
            if candidate.startswith("json"):
                candidate = candidate[4:].strip()
            if candidate and candidate[0] in "{[":
                try:
                    return json.loads(candidate)
                except json.JSONDecodeError as e:
                    parse_errors.append(f"fenced parse failed at line {e.lineno}, col {e.colno}: {e.msg}")

    # Last resort: outermost braces, then brackets.
    for start_char, end_char in (("{", "}"), ("[", "]")):
        start_idx = cleaned.find(start_char)
        end_idx = cleaned.rfind(end_char)
        if start_idx != -1 and end_idx > start_idx:
            try:
                return json.loads(cleaned[start_idx:end_idx + 1])
            except json.JSONDecodeError as e:
                parse_errors.append(
                    f"substring parse ({start_char}...{end_char}) failed at line {e.lineno}, col {e.colno}: {e.msg}"
                )

    content_hash = hashlib.sha256(cleaned.encode("utf-8")).hexdigest()[:16]
    logger.warning(
        "parse_json_response failed: %s; content_len=%d; content_sha256_prefix=%s",
        "; ".join(parse_errors[:3]), len(cleaned), content_hash,
    )
    return None
