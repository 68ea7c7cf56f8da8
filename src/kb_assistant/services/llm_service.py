"""LLM service for streaming chat completions through LiteLLM."""

import inspect
import os
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from litellm import acompletion

from kb_assistant.config import LLMSettings, get_settings
from kb_assistant.utils.errors import LLMError
from kb_assistant.utils.logging import get_logger

logger = get_logger("llm_service")

CompletionFn = Callable[..., Awaitable[Any]]


def extract_token(chunk: Any) -> str:
    """Pull the incremental text out of a streamed completion chunk (object or dict form)."""
    if isinstance(chunk, dict):
        choices = chunk.get("choices") or []
        if not choices:
            return ""
        delta = choices[0].get("delta") or {}
        return delta.get("content") or ""

    choices = getattr(chunk, "choices", None) or []
    if not choices:
        return ""
    delta = getattr(choices[0], "delta", None)
    if delta is None:
        return ""
    return getattr(delta, "content", None) or ""


class LLMService:
    """
    Streaming chat-completion client.

    Calls are never retried: a failure surfaces to the caller as ``LLMError``.
    Closing the returned iterator (or cancelling the task consuming it)
    closes the upstream stream.
    """

    def __init__(
        self,
        settings: Optional[LLMSettings] = None,
        completion_fn: Optional[CompletionFn] = None,
    ):
        self.settings = settings or get_settings().llm
        self._completion = completion_fn or acompletion
        self._configure_litellm_environment()

    def _configure_litellm_environment(self) -> None:
        """LiteLLM reads provider keys from the environment."""
        if self.settings.openai_api_key:
            os.environ.setdefault("OPENAI_API_KEY", self.settings.openai_api_key)

    async def stream_chat(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """
        Stream the answer token by token.

        Args:
            messages: Chat messages with 'role' and 'content'
            model: Model name in LiteLLM format
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate

        Yields:
            Non-empty text increments

        Raises:
            LLMError: If the call fails before or during streaming
        """
        params: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": True,
            "temperature": temperature,
            "timeout": self.settings.timeout,
        }
        if max_tokens:
            params["max_tokens"] = max_tokens
        if self.settings.api_base:
            params["api_base"] = self.settings.api_base

        logger.debug(f"Calling LLM model: {model}, messages={len(messages)}")
        try:
            response = await self._completion(**params)
        except Exception as e:
            logger.error(f"LLM call failed for model {model}: {e}")
            raise LLMError(
                message=f"LLM call failed: {e}",
                model=model,
                details={"error_type": type(e).__name__},
            ) from e

        try:
            async for chunk in response:
                token = extract_token(chunk)
                if token:
                    yield token
        except LLMError:
            raise
        except Exception as e:
            logger.error(f"LLM stream failed for model {model}: {e}")
            raise LLMError(
                message=f"LLM stream failed: {e}",
                model=model,
                details={"error_type": type(e).__name__},
            ) from e
        finally:
            await _close_stream(response)


async def _close_stream(response: Any) -> None:
    for name in ("aclose", "close"):
        closer = getattr(response, name, None)
        if closer is None:
            continue
        try:
            result = closer()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.debug(f"Ignoring error while closing LLM stream: {e}")
        return
