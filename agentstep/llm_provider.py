"""
LLM provider abstraction - bring your own model.

Executors are pluggable: anything implementing `generate()` can act as the
structured executor, and anything that also implements `supports_vision()` and
`generate_with_image()` can act as the vision executor or vision verifier.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class LLMResponse:
    """Response from an LLM provider"""

    content: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    model_name: str | None = None


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Implement this to integrate any LLM (OpenAI, local models, fixed-action stubs, ...).
    """

    def __init__(self, model: str):
        self._model_name = model

    @abstractmethod
    def generate(self, system_prompt: str, user_prompt: str, **kwargs) -> LLMResponse:
        """
        Generate a response from prompts.

        Args:
            system_prompt: System/instruction prompt
            user_prompt: User query prompt
            **kwargs: Provider-specific options (temperature, max_tokens, ...)
        """

    @abstractmethod
    def supports_json_mode(self) -> bool:
        """Whether this provider supports JSON mode (structured output)"""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model name/identifier"""

    def supports_vision(self) -> bool:
        """Whether generate_with_image() is available. Text-only by default."""
        return False

    def generate_with_image(
        self,
        system_prompt: str,
        user_prompt: str,
        image_base64: str,
        **kwargs,
    ) -> LLMResponse:
        """
        Generate a response from prompts plus one PNG screenshot (base64).

        Only vision-capable providers override this.
        """
        raise NotImplementedError(f"{self.__class__.__name__} does not support vision input")


class OpenAIProvider(LLMProvider):
    """
    OpenAI chat completions provider (GPT-4o, GPT-4.1, ...).

    Requires: pip install "agentstep[openai]"
    """

    _VISION_MODEL_HINTS = ("gpt-4o", "gpt-4.1", "gpt-4-turbo", "gpt-4-vision", "o1", "o3", "o4")

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o",
        base_url: str | None = None,
    ):
        super().__init__(model)
        try:
            from openai import OpenAI
        except ImportError as e:
            raise ImportError(
                'OpenAI package not installed. Run: pip install "agentstep[openai]"'
            ) from e

        self.client = OpenAI(api_key=api_key or os.getenv("OPENAI_API_KEY"), base_url=base_url)

    def _complete(self, messages: list[dict[str, Any]], **kwargs) -> LLMResponse:
        temperature = kwargs.pop("temperature", 0.0)
        response = self.client.chat.completions.create(
            model=self._model_name,
            messages=messages,
            temperature=temperature,
            **kwargs,
        )
        choice = response.choices[0]
        usage = response.usage
        return LLMResponse(
            content=choice.message.content or "",
            prompt_tokens=getattr(usage, "prompt_tokens", None),
            completion_tokens=getattr(usage, "completion_tokens", None),
            total_tokens=getattr(usage, "total_tokens", None),
            model_name=self._model_name,
        )

    def generate(self, system_prompt: str, user_prompt: str, **kwargs) -> LLMResponse:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        return self._complete(messages, **kwargs)

    def generate_with_image(
        self,
        system_prompt: str,
        user_prompt: str,
        image_base64: str,
        **kwargs,
    ) -> LLMResponse:
        messages = [
            {"role": "system", "content": system_prompt},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": user_prompt},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:image/png;base64,{image_base64}"},
                    },
                ],
            },
        ]
        return self._complete(messages, **kwargs)

    def supports_json_mode(self) -> bool:
        return True

    def supports_vision(self) -> bool:
        name = self._model_name.lower()
        return any(hint in name for hint in self._VISION_MODEL_HINTS)

    @property
    def model_name(self) -> str:
        return self._model_name
