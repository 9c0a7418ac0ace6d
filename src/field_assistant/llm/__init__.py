"""
LLM Client -- Provider-agnostic streaming wrapper with fixed sampling parameters.

Supports OpenAI-compatible gateways and Anthropic (Claude).

Usage:
    from .llm import create_client

    client = create_client()  # Provider from LLM_PROVIDER / API keys
    async for delta in client.stream_chat(messages, DETERMINISTIC_PARAMETERS):
        print(delta, end="")
"""

from .client import LLMClient, ModelClient, create_client, estimate_tokens
