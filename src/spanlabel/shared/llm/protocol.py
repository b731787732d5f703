"""ModelInvoker Protocol for span labeling model calls.

The labeling engine treats the return value as opaque assistant text;
provider-specific fields are never inspected here.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class ModelInvoker(Protocol):
    """Async callable that sends one prompt to a language model."""

    async def __call__(
        self,
        system_prompt: str,
        user_payload: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        """Return the assistant text, or raise on transport failure.

        Args:
            system_prompt: Instructions for the model.
            user_payload: JSON-encoded task payload.
            max_tokens: Output token budget.
            temperature: Sampling temperature.
        """
        ...
