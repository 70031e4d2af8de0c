from typing import Dict, Optional

import httpx
from openai import AsyncOpenAI


_PROVIDER_BASE_URLS: Dict[str, Optional[str]] = {
    "openai": None,
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "openrouter": "https://openrouter.ai/api/v1",
    "grok": "https://api.x.ai/v1",
}


# Create an async OpenAI-compatible client for the configured provider
def get_async_openai_compatible_client(
    provider: Optional[str],
    *,
    api_key: Optional[str],
    timeout: float = 30.0,
    http_client: Optional[httpx.AsyncClient] = None,
) -> AsyncOpenAI:
    provider_l = (provider or "gemini").strip().lower()
    if provider_l not in _PROVIDER_BASE_URLS:
        raise ValueError(f"Unsupported provider: {provider_l}")
    if not api_key:
        raise ValueError(f"Missing API key for provider '{provider_l}'.")

    kwargs = {"api_key": api_key, "timeout": timeout, "max_retries": 0}
    base_url = _PROVIDER_BASE_URLS[provider_l]
    if base_url:
        kwargs["base_url"] = base_url
    if http_client is not None:
        kwargs["http_client"] = http_client
    return AsyncOpenAI(**kwargs)
