# SPDX-License-Identifier: Apache-2.0
"""OpenAI-compatible text generation used for screening and rule synthesis."""

from __future__ import annotations

import logging
import os

from openai import APIError, AsyncOpenAI
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from data_designer_prose_polisher.synthesis import GenerationError

logging.getLogger("openai").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class OpenAIChatGenerator:
    """Chat-completions client satisfying the ``TextGenerator`` protocol.

    Connection settings fall back to ``PROSE_POLISHER_API_BASE``,
    ``PROSE_POLISHER_API_KEY`` and ``PROSE_POLISHER_MODEL``.
    """

    MAX_ATTEMPTS: int = 5

    def __init__(
        self,
        *,
        model: str | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model or os.environ.get("PROSE_POLISHER_MODEL", DEFAULT_MODEL)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client or AsyncOpenAI(
            base_url=base_url or os.environ.get("PROSE_POLISHER_API_BASE"),
            api_key=api_key or os.environ.get("PROSE_POLISHER_API_KEY", "not-needed"),
        )

    @staticmethod
    def _log_retry_state(retry_state: RetryCallState) -> None:
        n = retry_state.attempt_number
        logger.warning(f"Generation request failed ({n}/{OpenAIChatGenerator.MAX_ATTEMPTS} attempts made), retrying")

    @retry(
        reraise=True,
        retry=retry_if_exception_type(APIError),
        stop=stop_after_attempt(MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        before_sleep=_log_retry_state,
    )
    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        try:
            return await self._complete(system_prompt, user_prompt)
        except APIError as e:
            raise GenerationError(f"{self.model}: {e}") from e
