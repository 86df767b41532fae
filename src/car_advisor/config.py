"""Configuration helpers for the car advisor."""

from __future__ import annotations

import os
from dataclasses import dataclass
from importlib import import_module
from pathlib import Path
from typing import Optional

from .prompts import DEFAULT_MAX_QUESTIONS, resolve_language_code


@dataclass(slots=True)
class ModelSettings:
    """Holds model-related configuration for the runtime."""

    provider: str
    model: str
    endpoint: Optional[str]
    api_key: str
    api_version: Optional[str]


@dataclass(slots=True)
class AppSettings:
    """Top-level application settings loaded from environment variables."""

    model: ModelSettings
    language: str
    max_questions: int
    transcript_log: Optional[Path]
    redis_url: Optional[str]

    @classmethod
    def load(cls) -> "AppSettings":
        """Load settings from the environment or .env file."""
        _ensure_dotenv()
        provider = os.getenv("CAR_ADVISOR_MODEL_PROVIDER", "azure-openai")
        model = os.getenv("CAR_ADVISOR_MODEL")
        if not model:
            raise RuntimeError(
                "CAR_ADVISOR_MODEL environment variable is required."
            )
        endpoint = os.getenv("CAR_ADVISOR_MODEL_ENDPOINT")
        api_key = os.getenv("CAR_ADVISOR_MODEL_API_KEY")
        if not api_key:
            raise RuntimeError(
                "CAR_ADVISOR_MODEL_API_KEY environment variable is required."
            )
        api_version = os.getenv("CAR_ADVISOR_MODEL_API_VERSION")
        language = resolve_language_code(os.getenv("CAR_ADVISOR_LANGUAGE"))
        max_questions_raw = os.getenv(
            "CAR_ADVISOR_MAX_QUESTIONS", str(DEFAULT_MAX_QUESTIONS)
        )
        try:
            max_questions = int(max_questions_raw)
        except ValueError as exc:
            raise RuntimeError(
                "CAR_ADVISOR_MAX_QUESTIONS must be an integer"
            ) from exc
        if max_questions < 1:
            raise RuntimeError("CAR_ADVISOR_MAX_QUESTIONS must be at least 1")
        transcript_raw = os.getenv("CAR_ADVISOR_TRANSCRIPT_JSONL", "").strip()
        transcript_log = Path(transcript_raw) if transcript_raw else None
        if transcript_log is not None:
            transcript_log.parent.mkdir(parents=True, exist_ok=True)
        redis_url = os.getenv("CAR_ADVISOR_REDIS_URL")
        if redis_url is not None and not redis_url.strip():
            redis_url = None
        return cls(
            model=ModelSettings(
                provider=provider,
                model=model,
                endpoint=endpoint,
                api_key=api_key,
                api_version=api_version,
            ),
            language=language,
            max_questions=max_questions,
            transcript_log=transcript_log,
            redis_url=redis_url,
        )


def _ensure_dotenv() -> None:
    """Load dotenv variables and provide a helpful error if missing."""

    try:
        dotenv_module = import_module("dotenv")
    except ModuleNotFoundError as exc:  # pragma: no cover - optional dep
        raise RuntimeError(
            "python-dotenv is required. Install with `pip install "
            "python-dotenv`."
        ) from exc

    load_dotenv = getattr(dotenv_module, "load_dotenv")
    load_dotenv()
