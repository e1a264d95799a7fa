"""
SDK for Knowledge Gate.

Provides the upstream adapters the orchestration engine calls out to.
"""

from .openai_client import OpenRouterClient
from .summarizer import UpstreamSummarizer

__all__ = ["OpenRouterClient", "UpstreamSummarizer"]
