"""Model invoker abstraction."""
from .protocol import ModelInvoker
from .anthropic_provider import AnthropicInvoker

__all__ = ["ModelInvoker", "AnthropicInvoker"]
