"""LLM clients for user simulation."""

from .ollama import OllamaClient, OllamaConfig

__all__ = ["OllamaClient", "OllamaConfig"]
