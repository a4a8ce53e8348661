"""Client for the OpenAI-compatible endpoint that writes meeting evaluations."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional

from openai import OpenAI, OpenAIError

DEFAULT_MODEL = "gpt-4o-mini"


class AIClientError(Exception):
    """Raised when no evaluation text could be obtained from the generator."""


@dataclass(frozen=True)
class GeneratorSettings:
    """Connection settings read from the environment.

    ``AI_PROVIDER_URL`` points the client at any OpenAI-compatible endpoint,
    which is how non-OpenAI providers are reached.
    """

    api_key: str
    model: str = DEFAULT_MODEL
    base_url: Optional[str] = None
    timeout_seconds: int = 120

    @classmethod
    def from_env(cls) -> "GeneratorSettings":
        api_key = _first_env("AI_API_KEY", "GEMINI_API_KEY", "OPENAI_API_KEY")
        if not api_key:
            raise AIClientError(
                "Set AI_API_KEY (or GEMINI_API_KEY / OPENAI_API_KEY) in the environment"
            )
        try:
            timeout = int(os.getenv("AI_TIMEOUT_SECONDS", "120"))
        except ValueError as exc:
            raise AIClientError("AI_TIMEOUT_SECONDS must be an integer") from exc
        return cls(
            api_key=api_key,
            model=_first_env("AI_MODEL", "OPENAI_MODEL") or DEFAULT_MODEL,
            base_url=_first_env("AI_PROVIDER_URL", "OPENAI_API_BASE"),
            timeout_seconds=timeout,
        )


@dataclass
class GenerationResult:
    text: str
    attempts: int
    usage: Optional[Dict[str, Any]]


def generate_evaluation_text(
    prompt: str,
    *,
    retry: int = 1,
    settings: Optional[GeneratorSettings] = None,
) -> GenerationResult:
    """Ask the generator to evaluate ``prompt`` and return its free-form answer.

    A blank answer is requested again up to ``retry`` more times. Transport
    and configuration errors are not retried; they surface as
    :class:`AIClientError` together with the case where every answer was
    blank.
    """

    settings = settings or GeneratorSettings.from_env()
    usage: Optional[Dict[str, Any]] = None
    total = max(retry, 0) + 1
    for attempt in range(1, total + 1):
        try:
            text, usage = _complete(settings, prompt)
        except OpenAIError as exc:
            raise AIClientError(str(exc)) from exc
        if text.strip():
            return GenerationResult(text=text.strip(), attempts=attempt, usage=usage)

    raise AIClientError(f"Generator returned an empty response after {total} attempt(s)")


def _complete(settings: GeneratorSettings, prompt: str) -> tuple[str, Optional[Dict[str, Any]]]:
    completion = _client_for(settings).chat.completions.create(
        model=settings.model,
        messages=[{"role": "user", "content": prompt}],
        timeout=settings.timeout_seconds,
    )
    text = ""
    if completion.choices:
        text = completion.choices[0].message.content or ""
    usage = completion.usage.model_dump() if completion.usage else None
    return text, usage


@lru_cache(maxsize=4)
def _client_for(settings: GeneratorSettings) -> OpenAI:
    if settings.base_url:
        return OpenAI(api_key=settings.api_key, base_url=settings.base_url)
    return OpenAI(api_key=settings.api_key)


def _first_env(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None
