#File: services/llm_factory.py
import os
import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class LLMProvider:
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    LOCAL = "local"


class LLMFactory:
    """
    Creates and caches async OpenAI-compatible clients.
    Clients are keyed by their effective configuration so a key rotation
    yields a fresh client.
    """

    _instances: Dict[Any, AsyncOpenAI] = {}

    @staticmethod
    def get_client(provider: str = LLMProvider.OPENAI, api_key: Optional[str] = None, **kwargs) -> AsyncOpenAI:
        base_url = kwargs.get("base_url")
        # Stage budgets are enforced by the caller, so the SDK does not retry
        timeout = kwargs.get("timeout", 30.0)
        max_retries = kwargs.get("max_retries", 0)

        if provider == LLMProvider.OPENROUTER:
            api_key = api_key or os.getenv("OPENROUTER_API_KEY")
            base_url = base_url or "https://openrouter.ai/api/v1"
            if not api_key:
                raise ValueError("OPENROUTER_API_KEY not set")

        elif provider == LLMProvider.OPENAI:
            if not api_key:
                raise ValueError("OpenAI API key not set")

        elif provider == LLMProvider.LOCAL:
            base_url = base_url or os.getenv("LOCAL_LLM_URL", "http://localhost:11434/v1")
            api_key = "ollama"

        else:
            raise ValueError(f"Unsupported LLM provider: {provider}")

        cache_key = (
            provider,
            api_key,
            base_url or "",
            float(timeout),
            int(max_retries),
        )

        if cache_key in LLMFactory._instances:
            return LLMFactory._instances[cache_key]

        logger.info(f"Initializing LLM Client for provider: {provider} (Config Key: {hash(cache_key)})")

        try:
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=timeout,
                max_retries=max_retries,
            )
        except Exception as e:
            logger.error(f"Failed to initialize {provider} client: {e}")
            raise

        LLMFactory._instances[cache_key] = client
        return client

    @staticmethod
    def clear() -> None:
        LLMFactory._instances.clear()
