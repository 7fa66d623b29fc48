#File: services/llm_factory.py
import os
import logging
from typing import Dict, Any
from openai import OpenAI

logger = logging.getLogger(__name__)

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


class LLMProvider:
    GEMINI = "gemini"


class LLMFactory:
    """
    Builds and caches OpenAI-compatible clients.
    Gemini is reached through its OpenAI-compatible endpoint.
    """

    _instances: Dict[Any, OpenAI] = {}

    @staticmethod
    def get_client(provider: str = LLMProvider.GEMINI, **kwargs) -> OpenAI:
        api_key = kwargs.get("api_key")
        base_url = kwargs.get("base_url")
        timeout = kwargs.get("timeout", 60.0)
        # Model fallback is handled by the caller, so SDK retries default to off
        max_retries = kwargs.get("max_retries", 0)

        if provider == LLMProvider.GEMINI:
            api_key = api_key or os.getenv("GEMINI_API_KEY")
            base_url = base_url or os.getenv("GEMINI_BASE_URL", GEMINI_OPENAI_BASE_URL)
            if not api_key:
                raise ValueError("GEMINI_API_KEY is not set")
        else:
            raise ValueError(f"Unknown LLM provider: {provider}")

        cache_key = (
            provider,
            api_key,
            base_url or "",
            float(timeout),
            int(max_retries),
        )

        if cache_key in LLMFactory._instances:
            return LLMFactory._instances[cache_key]

        logger.info(f"Initializing LLM client for provider: {provider}")
        client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
        )
        LLMFactory._instances[cache_key] = client
        return client

    @staticmethod
    def get_default_model(provider: str = LLMProvider.GEMINI) -> str:
        if provider != LLMProvider.GEMINI:
            raise ValueError(f"Unknown LLM provider: {provider}")
        return os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
