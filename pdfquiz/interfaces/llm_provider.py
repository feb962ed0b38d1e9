"""Abstract base class for LLM service providers.

Used for question generation (strict JSON output) and for chat answers
over a processed document.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAILLMProvider -- gpt-4o-mini by default, any OpenAI-compatible API
# Located in: pdfquiz/providers/llm/
class ILLMProvider(ABC):
    """Contract for text-completion services."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> str:
        """Generate a completion for the given prompts.

        Parameters
        ----------
        system_prompt:
            Role and output-format instructions.
        user_prompt:
            The content to process.
        temperature:
            Sampling temperature.
        max_tokens:
            Upper bound on generated tokens.
        json_mode:
            Ask the provider to constrain output to a single JSON object.
            Callers must still validate the result.

        Returns
        -------
        str
            The raw completion text.

        Raises
        ------
        pdfquiz.utils.errors.ProviderError
            If the call fails, times out or returns no content.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier used in logs and errors."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and usable."""
