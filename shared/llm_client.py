"""
DevPilot - model client

Thin wrapper around the OpenAI SDK used by the orchestration loop. Any
OpenAI-compatible endpoint works (the base URL is configurable), which is
how non-OpenAI providers are reached through a gateway.
"""

import time
import logging
from typing import List, Dict, Optional
from openai import OpenAI, APIError, APITimeoutError, RateLimitError

logger = logging.getLogger(__name__)

Message = Dict[str, str]


class LLMClient:
    """
    Blocking chat client with bounded retries.

    The loop calls complete() from a worker thread, so the SDK's sync
    client is used here.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        max_retries: int = 3,
        timeout: int = 60,
        temperature: float = 0.2
    ):
        if not api_key:
            raise ValueError("API key is required. Set LLM_API_KEY environment variable.")

        self.model = model
        self.max_retries = max_retries
        self.temperature = temperature
        self.client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

        logger.info(f"[LLM] Client ready: model={model}, base_url={base_url}")

    def complete(self, messages: List[Message], max_tokens: Optional[int] = None) -> str:
        """
        Send the conversation and return the assistant's reply text.

        Rate limits back off exponentially, timeouts retry after a second and
        other API errors retry with backoff until the last attempt, where they
        propagate unchanged.

        Args:
            messages: Full conversation as role/content dicts
            max_tokens: Optional completion cap

        Returns:
            Reply text (empty string when the model sends no content)

        Raises:
            RuntimeError: Every attempt hit a rate limit or timeout
        """
        request = {"model": self.model, "messages": messages, "temperature": self.temperature}
        if max_tokens:
            request["max_tokens"] = max_tokens

        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.client.chat.completions.create(**request)
            except RateLimitError as e:
                last_error = e
                delay = 2 ** (attempt - 1)
                logger.warning(f"[LLM] Rate limited (attempt {attempt}/{self.max_retries}), sleeping {delay}s")
            except APITimeoutError as e:
                last_error = e
                delay = 1
                logger.warning(f"[LLM] Timeout (attempt {attempt}/{self.max_retries}): {e}")
            except APIError as e:
                logger.error(f"[LLM] API error (attempt {attempt}/{self.max_retries}): {e}")
                if attempt == self.max_retries:
                    raise
                last_error = e
                delay = 2 ** (attempt - 1)
            else:
                if not response.choices:
                    return ""
                return response.choices[0].message.content or ""

            if attempt < self.max_retries:
                time.sleep(delay)

        message = f"LLM API call failed after {self.max_retries} attempts: {last_error}"
        logger.error(f"[LLM] {message}")
        raise RuntimeError(message)
