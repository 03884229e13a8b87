"""LLM provider ABC and concrete implementations.

Providers are the lowest-level abstraction for calling models. The action's
``model`` input is ``provider/model-id``; :func:`create_provider` turns it
into a provider instance.

Concrete providers shipped:

    AnthropicLLMProvider - calls the Anthropic Messages API directly
    TestLLMProvider      - canned responses for tests
"""

import abc
import json
import logging
import os
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import List, Optional, Tuple

from intentlayer.lib.errors import IntentLayerError, UpstreamError, api_key_error
logger = logging.getLogger(__name__)


@dataclass
class LLMResult:
    """Result from an LLM call."""
    text: Optional[str]
    duration: float
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    model: str = ""
    truncated: bool = False


def split_model_string(model: str) -> Tuple[str, str]:
    """Split ``provider/model-id``; a bare id is treated as Anthropic."""
    if "/" not in model:
        return "anthropic", model
    provider, model_id = model.split("/", 1)
    return provider.strip().lower(), model_id.strip()


class LLMProvider(abc.ABC):
    """Abstract LLM provider."""

    @abc.abstractmethod
    def llm_call(self, messages: list, max_tokens: int = 16384,
                 timeout: float = 600) -> LLMResult:
        """Make an LLM call.

        Args:
            messages: List of dicts with 'role' and 'content' keys.
                      Roles: 'system', 'user'.
            max_tokens: Maximum output tokens.
            timeout: Request timeout in seconds.

        Returns:
            LLMResult with response text and usage metadata.
        """
        ...

    @property
    @abc.abstractmethod
    def model(self) -> str:
        ...


class AnthropicLLMProvider(LLMProvider):
    """Calls the Anthropic Messages API with an API key."""

    ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
    ANTHROPIC_VERSION = "2023-06-01"

    def __init__(self, api_key: str, model: str, base_url: str = ""):
        self._api_key = api_key
        self._model = model
        self._base_url = base_url or self.ANTHROPIC_API_URL

    @property
    def model(self) -> str:
        return self._model

    def llm_call(self, messages, max_tokens=16384, timeout=600):
        system_prompt = ""
        user_parts: List[str] = []
        for m in messages:
            if m["role"] == "system":
                system_prompt = m["content"]
            elif m["role"] == "user":
                user_parts.append(m["content"])

        headers = {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": self.ANTHROPIC_VERSION,
        }
        body = {
            "model": self._model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": "\n\n".join(user_parts)}],
        }
        if system_prompt:
            body["system"] = system_prompt

        start_time = time.time()
        req = urllib.request.Request(self._base_url, data=json.dumps(body).encode(),
                                     headers=headers, method="POST")
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                data = json.loads(resp.read().decode())
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")[:500]
            logger.error("Anthropic API error %s for model=%s: %s", e.code, self._model, detail)
            raise UpstreamError(f"Anthropic API returned HTTP {e.code}: {detail}", status=e.code) from e
        except urllib.error.URLError as e:
            logger.error("Anthropic API unreachable: %s", e.reason)
            raise UpstreamError(f"Anthropic API unreachable: {e.reason}") from e

        if not isinstance(data, dict):
            raise UpstreamError(
                f"Anthropic API returned non-object JSON for model={self._model}: {type(data).__name__}"
            )
        usage = data.get("usage", {})
        if not isinstance(usage, dict):
            usage = {}
        content_blocks = data.get("content", [])
        if not isinstance(content_blocks, list):
            raise UpstreamError(f"Anthropic API returned invalid content payload for model={self._model}")
        text = "\n".join(
            b["text"]
            for b in content_blocks
            if isinstance(b, dict) and b.get("type") == "text" and isinstance(b.get("text"), str)
        ).strip()

        return LLMResult(
            text=text,
            duration=time.time() - start_time,
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            cache_read_tokens=usage.get("cache_read_input_tokens", 0),
            cache_creation_tokens=usage.get("cache_creation_input_tokens", 0),
            model=data.get("model", self._model),
            truncated=data.get("stop_reason", "") == "max_tokens",
        )


class TestLLMProvider(LLMProvider):
    """Canned responses and call recording for tests."""
    __test__ = False  # Not a pytest test class

    def __init__(self, responses: Optional[List[str]] = None, model: str = "test-model"):
        self.calls: List[dict] = []
        self._responses = list(responses or [])
        self._model = model
        self._default_response = '{"updates": []}'

    @property
    def model(self) -> str:
        return self._model

    def llm_call(self, messages, max_tokens=16384, timeout=600):
        self.calls.append({
            "messages": messages,
            "max_tokens": max_tokens,
            "timeout": timeout,
        })
        text = self._responses.pop(0) if self._responses else self._default_response
        return LLMResult(
            text=text,
            duration=0.01,
            input_tokens=100,
            output_tokens=50,
            model=self._model,
        )


def create_provider(model: str, llm_config=None) -> LLMProvider:
    """Build a provider for a ``provider/model-id`` string."""
    from intentlayer.config import LLMConfig

    llm_config = llm_config or LLMConfig()
    provider, model_id = split_model_string(model)
    if provider != "anthropic":
        raise IntentLayerError(f"Unsupported model provider: {provider!r} (model={model})")
    api_key = os.environ.get(llm_config.api_key_env, "").strip()
    if not api_key:
        raise api_key_error("Anthropic", llm_config.api_key_env)
    return AnthropicLLMProvider(api_key=api_key, model=model_id, base_url=llm_config.base_url)
