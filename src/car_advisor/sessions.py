"""Shared session orchestration for advisor conversations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from .config import AppSettings
from .conversation import (
    ConversationController,
    ConversationSnapshot,
    Phase,
    Turn,
)
from .generation import TextGenerationService
from .prompts import MessagePack, get_language_pack
from .transcript_store import TranscriptRepository


@dataclass(slots=True)
class AdvisorSession:
    """Binds a controller to its language and transcript archive."""

    controller: ConversationController
    language: str
    messages: MessagePack
    repository: Optional[TranscriptRepository] = None
    record_id: Optional[str] = None
    archived: bool = False

    @classmethod
    def create(
        cls,
        settings: AppSettings,
        service: TextGenerationService,
        *,
        language: Optional[str] = None,
        repository: Optional[TranscriptRepository] = None,
    ) -> "AdvisorSession":
        code, messages = get_language_pack(language or settings.language)
        if repository is None and settings.transcript_log is not None:
            repository = TranscriptRepository(
                archive_path=settings.transcript_log,
                redis_url=settings.redis_url,
            )
        controller = ConversationController(
            service,
            max_questions=settings.max_questions,
            messages=messages,
        )
        return cls(
            controller=controller,
            language=code,
            messages=messages,
            repository=repository,
        )

    @property
    def completed(self) -> bool:
        return self.controller.phase is Phase.REPORTING

    def snapshot(self) -> ConversationSnapshot:
        return self.controller.snapshot()

    async def start(self, make: str, model: str) -> List[Turn]:
        """Begin the conversation and return the new assistant turns."""

        turn = await self.controller.begin(make, model)
        return [turn]

    async def answer(self, text: str) -> List[Turn]:
        """Submit an answer and return the new assistant turns."""

        turn = await self.controller.submit_answer(text)
        if self.completed:
            self._archive()
        return [turn]

    def reset(self) -> None:
        self.controller.reset()
        self.record_id = None
        self.archived = False

    def _archive(self) -> None:
        if self.archived:
            return
        self.archived = True
        if self.repository is None:
            return
        self.record_id = self.repository.save_conversation(
            self.controller.snapshot(),
            language=self.language,
        )
