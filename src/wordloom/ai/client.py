"""Async generation client built around OpenAI-compatible endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Mapping

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..services.settings import redact_secret
from ..utils.logging import register_secret
from .errors import ConfigurationError, ErrorCode, GenerationError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..services.settings import Settings
    from .completion.cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)

_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
    httpx.TransportError,
)


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the generation client."""

    base_url: str
    api_key: str
    model: str
    provider: str = "lmstudio"
    organization: str | None = None
    request_timeout: float | None = 60.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ClientSettings":
        profile = settings.resolved_profile()
        return cls(
            base_url=profile.base_url,
            api_key=profile.api_key,
            model=profile.model,
            provider=profile.name,
            organization=settings.organization,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            default_headers=dict(settings.default_headers) or None,
            debug_logging=settings.debug_logging,
        )


@dataclass(slots=True)
class _StreamProgress:
    fragments: int = 0


class AIClient:
    """Streams chat completions as plain text fragments.

    Connection failures before the first fragment are retried with
    exponential backoff; once text has been yielded a failure ends the stream.
    Every transport failure surfaces as :class:`GenerationError`.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        missing = [name for name in ("base_url", "model") if not getattr(settings, name)]
        if missing:
            raise ConfigurationError(
                message=f"Generation client needs {', '.join(missing)}",
                details={"provider": settings.provider, "missing": missing},
            )
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._models_cache: List[str] | None = None
        LOGGER.debug(
            "AI client ready (provider=%s, base_url=%s, model=%s, api_key=%s)",
            settings.provider,
            settings.base_url,
            settings.model,
            redact_secret(settings.api_key),
        )

    @classmethod
    def from_settings(cls, settings: "Settings", *, client: AsyncOpenAI | None = None) -> "AIClient":
        register_secret(settings.api_key)
        return cls(ClientSettings.from_settings(settings), client=client)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def provider(self) -> str:
        return self._settings.provider

    @property
    def model(self) -> str:
        return self._settings.model

    async def generate(
        self,
        *,
        system_message: str,
        user_prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
        token: "CancellationToken | None" = None,
    ) -> AsyncIterator[str]:
        """Yield text fragments for one system/user prompt pair."""

        payload = self._build_chat_payload(system_message, user_prompt, temperature, max_tokens)
        LOGGER.debug(
            "Starting streamed completion via %s (%s) with %d prompt chars",
            self._settings.model,
            self._settings.provider,
            len(user_prompt),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        progress = _StreamProgress()
        try:
            async for attempt in self._retrying(progress):
                with attempt:
                    async with self._client.chat.completions.stream(**payload) as stream:
                        async for event in stream:
                            if token is not None and token.cancelled:
                                LOGGER.debug("Stream stopped: token %s cancelled", token.token_id)
                                return
                            text = self._delta_text(event)
                            if text:
                                progress.fragments += 1
                                yield text
                    break
        except GenerationError:
            raise
        except APIStatusError as exc:
            raise GenerationError(
                error_code=ErrorCode.SERVICE_STATUS,
                message=f"Generation service returned HTTP {exc.status_code}",
                details={"status_code": exc.status_code, "provider": self._settings.provider},
                retryable=exc.status_code >= 500 or exc.status_code == 429,
            ) from exc
        except _RETRYABLE_ERRORS as exc:
            raise GenerationError(
                error_code=ErrorCode.SERVICE_UNREACHABLE,
                message=f"Could not reach {self._settings.provider} at {self._settings.base_url}",
                details={"provider": self._settings.provider, "reason": str(exc)},
                retryable=True,
            ) from exc
        except (APIError, ValueError) as exc:
            raise GenerationError(
                error_code=ErrorCode.MALFORMED_STREAM,
                message=f"Malformed response from generation service: {exc}",
                details={"provider": self._settings.provider},
            ) from exc

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Return model identifiers advertised by the provider."""

        if self._models_cache is not None and not force_refresh:
            return list(self._models_cache)
        try:
            response = await self._client.models.list()
        except (APIError, *_RETRYABLE_ERRORS) as exc:
            raise GenerationError(
                message=f"Could not list models from {self._settings.provider}: {exc}",
                details={"provider": self._settings.provider},
                retryable=True,
            ) from exc
        models = [item.id for item in response.data if getattr(item, "id", None)]
        self._models_cache = models
        return list(models)

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    def _retrying(self, progress: _StreamProgress) -> AsyncRetrying:
        def _should_retry(exc: BaseException) -> bool:
            return progress.fragments == 0 and isinstance(exc, _RETRYABLE_ERRORS)

        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception(_should_retry),
        )

    def _build_chat_payload(
        self,
        system_message: str,
        user_prompt: str,
        temperature: float | None,
        max_tokens: int | None,
    ) -> Dict[str, Any]:
        messages: list[dict[str, str]] = []
        if system_message:
            messages.append({"role": "system", "content": system_message})
        messages.append({"role": "user", "content": user_prompt})
        payload: Dict[str, Any] = {"model": self._settings.model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        return payload

    @staticmethod
    def _delta_text(event: Any) -> str | None:
        if getattr(event, "type", None) != "content.delta":
            return None
        delta = getattr(event, "delta", None)
        return str(delta) if delta else None

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


__all__ = ["AIClient", "ClientSettings"]
