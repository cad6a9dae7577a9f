"""Abstract base for all AI completion providers."""

from abc import ABC, abstractmethod

from conclave.models import Completion


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class AIProvider(ABC):
    """Abstract base for all AI completion providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'gemini', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: str,
        max_tokens: int,
        temperature: float = 0.7,
    ) -> Completion:
        """Generate a completion for the given prompt.

        Args:
            prompt: The user-turn text to send.
            system_prompt: Persona and rules for this call.
            max_tokens: Output token ceiling for this call.
            temperature: Sampling temperature.

        Returns:
            Completion with text, model and token usage.

        Raises:
            ProviderError: On API failure, timeout, or invalid response.
        """
        ...
