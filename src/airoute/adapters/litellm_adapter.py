"""
LiteLLM provider for airoute.

Gives access to any LiteLLM-supported model (OpenAI, Anthropic, Google,
Ollama, etc.) through the airoute operation interface.
"""

import logging
import re
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

import litellm
from litellm import acompletion, aembedding
from litellm.exceptions import (
    APIConnectionError,
    APIError,
    AuthenticationError as LiteLLMAuthError,
    BadRequestError,
    ContextWindowExceededError,
    InternalServerError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError as LiteLLMRateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from airoute.providers.base import Provider
from airoute.providers.exceptions import ErrorKind, NormalizedError, kind_for_status
from airoute.providers.models import (
    BatchEmbedding,
    CodeExplanation,
    CodeResult,
    Embedding,
    GenerateResponse,
    ResponseStream,
    StreamChunk,
    TokenUsage,
)
from airoute.providers.normalize import normalize_error

logger = logging.getLogger(__name__)

# Configure LiteLLM defaults
litellm.drop_params = True  # Drop unsupported params per-provider

# Options forwarded to LiteLLM as request parameters
REQUEST_OPTIONS = ("temperature", "max_tokens", "top_p", "stop", "timeout")

_CODE_BLOCK = re.compile(r"```([\w+-]*)\n(.*?)```", re.DOTALL)

# Checked in order: subclasses before their bases.
_LITELLM_KINDS: tuple[tuple[type[Exception], ErrorKind], ...] = (
    (LiteLLMRateLimitError, ErrorKind.RATE_LIMIT),
    (LiteLLMAuthError, ErrorKind.AUTH),
    (PermissionDeniedError, ErrorKind.AUTH),
    (ContextWindowExceededError, ErrorKind.INVALID_REQUEST),
    (NotFoundError, ErrorKind.INVALID_REQUEST),
    (BadRequestError, ErrorKind.INVALID_REQUEST),
    (Timeout, ErrorKind.TIMEOUT),
    (ServiceUnavailableError, ErrorKind.UNAVAILABLE),
    (InternalServerError, ErrorKind.SERVER_ERROR),
    (APIConnectionError, ErrorKind.NETWORK_ERROR),
)


def normalize_litellm_error(raw: Any, provider_id: str = "litellm") -> NormalizedError:
    """
    Map LiteLLM exceptions to normalized errors.

    Args:
        raw: Exception raised by a LiteLLM call.
        provider_id: Provider that raised it.

    Returns:
        The normalized error.
    """
    status = getattr(raw, "status_code", None)
    details: dict[str, Any] = {"exception": type(raw).__name__}
    if isinstance(status, int):
        details["status"] = status

    for exc_type, kind in _LITELLM_KINDS:
        if isinstance(raw, exc_type):
            return NormalizedError(kind, _message(raw), provider_id, details=details)

    if isinstance(raw, APIError):
        return NormalizedError(
            kind_for_status(status if isinstance(status, int) else None),
            _message(raw),
            provider_id,
            details=details,
        )

    return normalize_error(raw, provider_id)


def _message(error: Exception) -> str:
    return getattr(error, "message", None) or str(error) or type(error).__name__


def _extract_provider(model: str) -> str:
    """Extract provider name from model string."""
    if "/" in model:
        return model.split("/")[0]
    return "litellm"


class LiteLLMProvider(Provider):
    """
    Provider backed by LiteLLM completions and embeddings.

    Implements generation, streaming, embeddings and the code operations.
    Classification is left to providers that do it natively.
    """

    default_id = "litellm"

    def __init__(
        self,
        model: str,
        provider_id: str | None = None,
        embedding_model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        system_prompt: str | None = None,
    ):
        """
        Initialize the LiteLLM provider.

        Args:
            model: LiteLLM model string, e.g. ``anthropic/claude-sonnet-4``.
            provider_id: Provider identity (default: the model's vendor prefix).
            embedding_model: Model used for embeddings (defaults to ``model``).
            temperature: Default sampling temperature.
            max_tokens: Default completion limit.
            system_prompt: Default system prompt.
        """
        super().__init__(provider_id or _extract_provider(model))
        self.model = model
        self.embedding_model = embedding_model or model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt

    def is_available(self) -> bool:
        """Check that the model's API keys are present in the environment."""
        try:
            result = litellm.validate_environment(model=self.model)
        except Exception as e:
            logger.debug(f"Could not validate environment for {self.model}: {e}")
            return False
        return bool(result.get("keys_in_environment"))

    def normalize_error(self, error: Any) -> NormalizedError:
        return normalize_litellm_error(error, self.provider_id)

    def _request_kwargs(self, prompt: str, options: Mapping[str, Any]) -> dict[str, Any]:
        model = options.get("model") or self.model
        system_prompt = options.get("system_prompt") or self.system_prompt

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict[str, Any] = {"model": model, "messages": messages}
        defaults = {"temperature": self.temperature, "max_tokens": self.max_tokens}
        for key in REQUEST_OPTIONS:
            value = options.get(key, defaults.get(key))
            if value is not None:
                kwargs[key] = value
        return kwargs

    def _parse_response(self, response: Any, model: str) -> GenerateResponse:
        """Parse LiteLLM response into unified format."""
        usage = TokenUsage(
            input_tokens=response.usage.prompt_tokens,
            output_tokens=response.usage.completion_tokens,
            total_tokens=response.usage.total_tokens,
        )
        choice = response.choices[0]
        return GenerateResponse(
            content=choice.message.content or "",
            model=getattr(response, "model", None) or model,
            provider=self.provider_id,
            usage=usage,
            finish_reason=choice.finish_reason or "unknown",
        )

    async def generate(self, prompt: str, options: Mapping[str, Any]) -> GenerateResponse:
        kwargs = self._request_kwargs(prompt, options)
        logger.debug(f"Completing with model: {kwargs['model']}")
        response = await acompletion(**kwargs)
        return self._parse_response(response, kwargs["model"])

    async def stream(self, prompt: str, options: Mapping[str, Any]) -> ResponseStream:
        kwargs = self._request_kwargs(prompt, options)
        response = await acompletion(stream=True, **kwargs)
        return ResponseStream(self._stream_chunks(response, kwargs["model"]))

    async def _stream_chunks(self, response: Any, model: str) -> AsyncIterator[StreamChunk]:
        async for chunk in response:
            if chunk.choices and chunk.choices[0].delta.content:
                yield StreamChunk(
                    content=chunk.choices[0].delta.content,
                    finish_reason=chunk.choices[0].finish_reason,
                    model=model,
                )

    async def embed(self, text: str, options: Mapping[str, Any]) -> Embedding:
        result = await self.batch_embed([text], options)
        return Embedding(vector=result.vectors[0], model=result.model)

    async def batch_embed(self, texts: Sequence[str], options: Mapping[str, Any]) -> BatchEmbedding:
        model = options.get("embedding_model") or self.embedding_model
        response = await aembedding(model=model, input=list(texts))
        vectors = [_embedding_vector(item) for item in response.data]
        return BatchEmbedding(vectors=vectors, model=model)

    async def generate_code(self, prompt: str, options: Mapping[str, Any]) -> CodeResult:
        language = options.get("language") or "python"
        request = (
            f"Write {language} code for the following task. "
            f"Reply with a single fenced code block followed by a short explanation.\n\n{prompt}"
        )
        response = await self.generate(request, options)
        code, explanation = _split_code(response.content)
        return CodeResult(
            code=code,
            language=language,
            explanation=explanation or None,
            model=response.model,
            usage=response.usage,
        )

    async def explain_code(self, code: str, options: Mapping[str, Any]) -> CodeExplanation:
        request = f"Explain what the following code does, concisely.\n\n```\n{code}\n```"
        response = await self.generate(request, options)
        return CodeExplanation(
            explanation=response.content,
            language=options.get("language"),
            model=response.model,
            usage=response.usage,
        )


def _embedding_vector(item: Any) -> list[float]:
    if isinstance(item, Mapping):
        return list(item["embedding"])
    return list(item.embedding)


def _split_code(content: str) -> tuple[str, str]:
    """Split a reply into its first fenced code block and the remaining text."""
    match = _CODE_BLOCK.search(content)
    if match is None:
        return content.strip(), ""
    explanation = (content[: match.start()] + content[match.end() :]).strip()
    return match.group(2).strip(), explanation
