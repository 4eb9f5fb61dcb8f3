"""
Non-streaming chat completions used by query processing.
"""

import logging

import openai

from schemas.config import LLMConfig, get_settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful assistant that provides accurate, well-cited answers "
    "based on the provided context."
)


class CompletionError(Exception):
    """The language-model provider call failed."""


class CompletionClient:
    """Thin wrapper around the OpenAI chat completions API."""

    def __init__(
        self,
        config: LLMConfig | None = None,
        api_key: str | None = None,
        client: openai.AsyncOpenAI | None = None,
    ):
        self.config = config or LLMConfig()
        self.api_key = api_key or get_settings().openai_api_key
        self._client = client

    @property
    def client(self) -> openai.AsyncOpenAI:
        """Lazy initialization of the OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise CompletionError("OPENAI_API_KEY environment variable is not set")
            self._client = openai.AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """
        Get a complete (non-streamed) response for a prompt.

        Args:
            prompt: User prompt
            temperature: Sampling temperature (config default if omitted)
            max_tokens: Response token cap (config default if omitted)

        Returns:
            Response text, empty if the model returned no content

        Raises:
            CompletionError: On any provider failure
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.config.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.config.max_tokens,
            )
        except openai.OpenAIError as e:
            raise CompletionError(f"LLM API error: {e}") from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
