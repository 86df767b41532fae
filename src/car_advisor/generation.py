"""Contract between the conversation controller and text generation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, Sequence

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .conversation import Turn


class ServiceError(RuntimeError):
    """Raised when the text generation call fails or returns nothing usable."""


class TextGenerationService(Protocol):
    """Anything able to turn a prompt plus prior turns into a reply."""

    async def generate(
        self,
        prompt: str,
        context: Sequence["Turn"] = (),
    ) -> str:
        ...
