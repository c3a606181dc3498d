"""Shared pytest fixtures."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Iterable

import pytest

from wordloom.services import telemetry as telemetry_service
from wordloom.services.settings import Settings


class FakeGenerator:
    """Stand-in for the generation service.

    Yields ``fragments`` one by one, optionally sleeping ``delay`` seconds
    before each, then raises ``error`` (if any) once they are exhausted.
    Stops early when the passed token is cancelled, like the real client.
    """

    def __init__(
        self,
        fragments: Iterable[str] = ("Hello", " world"),
        *,
        delay: float = 0.0,
        error: BaseException | None = None,
    ) -> None:
        self.fragments = list(fragments)
        self.delay = delay
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.closed = 0

    async def generate(
        self,
        *,
        system_message: str,
        user_prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
        token: Any | None = None,
    ) -> AsyncIterator[str]:
        self.calls.append(
            {
                "system_message": system_message,
                "user_prompt": user_prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "token": token,
            }
        )
        try:
            for fragment in self.fragments:
                if self.delay:
                    await asyncio.sleep(self.delay)
                if token is not None and token.cancelled:
                    return
                yield fragment
            if self.error is not None:
                raise self.error
        finally:
            self.closed += 1


@pytest.fixture
def telemetry_sink():
    sink = telemetry_service.InMemoryTelemetrySink()
    telemetry_service.register_event_listener("*", sink)
    try:
        yield sink
    finally:
        telemetry_service.unregister_event_listener("*", sink)


@pytest.fixture
def fake_generator_cls() -> type[FakeGenerator]:
    return FakeGenerator


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with a short debounce so scheduler tests stay quick."""

    settings = Settings()
    settings.autocomplete.trigger_delay_ms = 20
    settings.autocomplete.min_context_chars = 3
    return settings


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    for name in (
        "WORDLOOM_PROVIDER",
        "WORDLOOM_API_KEY",
        "WORDLOOM_BASE_URL",
        "WORDLOOM_MODEL",
        "WORDLOOM_DEBUG_LOGGING",
        "WORDLOOM_REQUEST_TIMEOUT",
        "WORDLOOM_AUTOCOMPLETE",
        "WORDLOOM_TRIGGER_DELAY_MS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("WORDLOOM_LOG_DIR", str(tmp_path / "logs"))
