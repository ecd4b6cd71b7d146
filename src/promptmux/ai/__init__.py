"""LLM integration for prompt refinement."""

from .client import RefinementClient, RefinementError

__all__ = ["RefinementClient", "RefinementError"]
