from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path

import pytest

from car_advisor.config import AppSettings, ModelSettings
from car_advisor.conversation import Turn
from car_advisor.generation import ServiceError


class ScriptedService:
    """Returns queued replies in order; queued exceptions are raised."""

    def __init__(self, *replies: str | Exception) -> None:
        self._replies = list(replies)
        self.calls: list[tuple[str, tuple[Turn, ...]]] = []

    def queue(self, *replies: str | Exception) -> None:
        self._replies.extend(replies)

    async def generate(self, prompt: str, context: Sequence[Turn] = ()) -> str:
        self.calls.append((prompt, tuple(context)))
        if not self._replies:
            raise AssertionError("unexpected generate call")
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class GatedService(ScriptedService):
    """Blocks every call until ``release`` is set."""

    def __init__(self, *replies: str | Exception) -> None:
        super().__init__(*replies)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, prompt: str, context: Sequence[Turn] = ()) -> str:
        self.started.set()
        await self.release.wait()
        return await super().generate(prompt, context)


def service_failure(message: str = "boom") -> ServiceError:
    return ServiceError(message)


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        model=ModelSettings(
            provider="openai",
            model="test-model",
            endpoint=None,
            api_key="test-key",
            api_version=None,
        ),
        language="en",
        max_questions=5,
        transcript_log=None,
        redis_url=None,
    )


@pytest.fixture
def archive_settings(settings: AppSettings, tmp_path: Path) -> AppSettings:
    settings.transcript_log = tmp_path / "archive" / "conversations.jsonl"
    return settings
