"""
SDK for Adventure Forge.

Provides the concrete LLM collaborator used by the generation orchestrator.
"""

from .openai_client import OpenAICompletionClient

__all__ = ["OpenAICompletionClient"]
