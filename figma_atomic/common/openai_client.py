from __future__ import annotations

import time
from typing import Any, Optional, Tuple

from openai import OpenAI

from figma_atomic.common.utils import log_llm_usage


def _extract_usage(response: Any) -> Tuple[int, int]:
    usage = getattr(response, "usage", None)
    if usage is None:
        return 0, 0
    if isinstance(usage, dict):
        prompt = usage.get("prompt_tokens") or usage.get("input_tokens") or 0
        completion = usage.get("completion_tokens") or usage.get("output_tokens") or 0
        return int(prompt), int(completion)
    prompt = getattr(usage, "prompt_tokens", None)
    completion = getattr(usage, "completion_tokens", None)
    if prompt is None:
        prompt = getattr(usage, "input_tokens", 0)
    if completion is None:
        completion = getattr(usage, "output_tokens", 0)
    return int(prompt or 0), int(completion or 0)


class CompletionClient:
    """
    Text-completion service: one prompt in, one reply string out.

    The OpenAI client is created on first use so that building a pipeline never
    touches credentials or the network. Errors from the API propagate; callers
    treat them as stage-level failures.
    """

    def __init__(self, model: str = "gpt-4.1-mini", api_key: Optional[str] = None,
                 base_url: Optional[str] = None, temperature: float = 0.0, client: Any = None):
        self.model = model
        self.temperature = temperature
        self._api_key = api_key
        self._base_url = base_url
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = OpenAI(api_key=self._api_key, base_url=self._base_url)
        return self._client

    def complete(self, prompt: str, max_tokens: Optional[int] = None, stage_id: Optional[str] = None) -> str:
        kwargs = dict(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.temperature,
        )
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        started = time.perf_counter()
        response = self.client.chat.completions.create(**kwargs)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)

        prompt_tokens, completion_tokens = _extract_usage(response)
        log_llm_usage(
            model=getattr(response, "model", None) or self.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            provider="openai",
            request_ms=elapsed_ms,
            request_id=getattr(response, "id", None),
            stage_id=stage_id,
        )
        content = response.choices[0].message.content if response.choices else None
        return content or ""
