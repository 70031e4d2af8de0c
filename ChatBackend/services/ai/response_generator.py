from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from ChatBackend.config import Settings
from ChatBackend.errors import UpstreamError
from ChatBackend.services.openai_compatible_client import get_async_openai_compatible_client


logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10

TEMPERATURE = 0.7
TOP_P = 0.95
TOP_K = 40
MAX_OUTPUT_TOKENS = 1000

# Providers that accept `top_k` on the OpenAI-compatible endpoint
_TOP_K_PROVIDERS = {"openrouter"}


class ErrorReason(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    RATE_LIMITED = "rateLimited"
    UPSTREAM_UNAVAILABLE = "upstreamUnavailable"
    MALFORMED_RESPONSE = "malformedResponse"
    TRANSPORT_ERROR = "transportError"


NOT_CONFIGURED_FALLBACK = "AI service is not configured. Please set up your Gemini API key in the .env file."

FALLBACK_CONTENT: Dict[ErrorReason, str] = {
    ErrorReason.UNAUTHENTICATED: "AI service authentication failed. Please check API key configuration.",
    ErrorReason.RATE_LIMITED: "AI service is currently busy. Please try again in a moment.",
    ErrorReason.UPSTREAM_UNAVAILABLE: "AI service is temporarily unavailable. Please try again later.",
    ErrorReason.MALFORMED_RESPONSE: "AI service returned an unexpected response format.",
    ErrorReason.TRANSPORT_ERROR: "AI service is temporarily unavailable. Please try again later.",
}


@dataclass(frozen=True)
class GenerationResult:
    success: bool
    content: str
    error_reason: Optional[ErrorReason] = None
    detail: Optional[str] = None

    @classmethod
    def failed(cls, reason: ErrorReason, detail: str, content: Optional[str] = None) -> "GenerationResult":
        return cls(success=False, content=content or FALLBACK_CONTENT[reason], error_reason=reason, detail=detail)


def _role(sender: str) -> str:
    return "assistant" if sender == "assistant" else "user"


# Builds the chat-completions message list: last HISTORY_WINDOW entries, then the new prompt
def build_messages(prompt: str, history: Sequence[Any] = ()) -> List[Dict[str, str]]:
    messages: List[Dict[str, str]] = []
    for entry in list(history)[-HISTORY_WINDOW:]:
        content = getattr(entry, "content", None)
        if isinstance(content, str) and content.strip():
            messages.append({"role": _role(getattr(entry, "sender", "user")), "content": content})
    messages.append({"role": "user", "content": prompt.strip()})
    return messages


def _extract_content(completion: Any) -> Optional[str]:
    choices = getattr(completion, "choices", None)
    if not choices:
        return None
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if isinstance(content, str) and content.strip():
        return content
    return None


# Gateway to the upstream text-generation provider. `generate` never raises; failures
# come back as a result carrying a caller-safe fallback text and a reason category.
class ResponseGenerator:
    def __init__(self, settings: Settings, *, client: Optional[AsyncOpenAI] = None):
        self.provider = settings.ai_provider
        self.model = settings.ai_model
        self.configured = client is not None or settings.ai_configured
        if client is None and settings.ai_configured:
            client = get_async_openai_compatible_client(
                settings.ai_provider,
                api_key=settings.ai_api_key,
                timeout=settings.ai_timeout_seconds,
            )
        self._client = client

    def _sampling_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "temperature": TEMPERATURE,
            "top_p": TOP_P,
            "max_tokens": MAX_OUTPUT_TOKENS,
        }
        if self.provider in _TOP_K_PROVIDERS:
            kwargs["extra_body"] = {"top_k": TOP_K}
        return kwargs

    async def generate(self, prompt: str, history: Sequence[Any] = ()) -> GenerationResult:
        if not self.configured or self._client is None:
            logger.error("AI service is not configured; returning fallback reply")
            return GenerationResult.failed(
                ErrorReason.UNAUTHENTICATED,
                "AI service is not configured",
                content=NOT_CONFIGURED_FALLBACK,
            )

        try:
            content = await self._complete(build_messages(prompt, history))
        except UpstreamError as e:
            logger.error("AI generation failed: %s (%s)", e.reason.value, e.message)
            return GenerationResult.failed(e.reason, e.message)

        logger.info("AI response generated (%d chars, model=%s)", len(content), self.model)
        return GenerationResult(success=True, content=content)

    # One provider round trip; every failure is raised as UpstreamError carrying its reason
    async def _complete(self, messages: List[Dict[str, str]]) -> str:
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                **self._sampling_kwargs(),
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise UpstreamError(f"Invalid API key ({e.status_code})", reason=ErrorReason.UNAUTHENTICATED) from e
        except openai.RateLimitError as e:
            raise UpstreamError("Rate limit exceeded", reason=ErrorReason.RATE_LIMITED) from e
        except openai.APIConnectionError as e:
            raise UpstreamError(f"Transport error: {type(e).__name__}", reason=ErrorReason.TRANSPORT_ERROR) from e
        except openai.APIStatusError as e:
            raise UpstreamError(f"Upstream error: {e.status_code}", reason=ErrorReason.UPSTREAM_UNAVAILABLE) from e
        except openai.APIResponseValidationError as e:
            raise UpstreamError("Invalid response format", reason=ErrorReason.MALFORMED_RESPONSE) from e
        except openai.APIError as e:
            raise UpstreamError(
                f"Unreadable response: {type(e).__name__}", reason=ErrorReason.MALFORMED_RESPONSE
            ) from e
        except Exception as e:
            logger.exception("Unexpected AI client failure")
            raise UpstreamError(f"Transport error: {type(e).__name__}", reason=ErrorReason.TRANSPORT_ERROR) from e

        content = _extract_content(completion)
        if content is None:
            raise UpstreamError("Invalid response format", reason=ErrorReason.MALFORMED_RESPONSE)
        return content

    # Sends a tiny completion to confirm the provider answers; used by the health surface
    async def ping(self) -> Dict[str, Any]:
        if not self.configured or self._client is None:
            return {"success": False, "message": "AI service is not configured"}
        try:
            await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": "Hello, this is a test message."}],
                max_tokens=50,
            )
        except openai.APIStatusError as e:
            return {"success": False, "message": f"AI provider error: {e.status_code}"}
        except Exception as e:
            return {"success": False, "message": f"Connection test failed: {type(e).__name__}"}
        return {"success": True, "message": "AI provider connection successful"}

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
