"""Thin wrappers around Microsoft Agent Framework chat completion clients.

This module centralizes the integration with the Microsoft Agent Framework
(MAF) so the conversation controller can stay framework-agnostic. The chat
client implementation is loaded at runtime based on the configured provider,
and :class:`MAFTextGenerationService` adapts it to the
:class:`~car_advisor.generation.TextGenerationService` contract.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from importlib import import_module
from typing import Any, Iterable, List, Optional, Sequence

from agent_framework import ChatMessage as MAFChatMessage, Role

from .config import ModelSettings
from .conversation import Turn
from .generation import ServiceError

logger = logging.getLogger(__name__)


def _coerce_role(role: str) -> Role:
    try:
        return Role(role)
    except ValueError as exc:
        raise ValueError(
            "Unsupported role for MAF chat message: {role}".format(role=role)
        ) from exc


@dataclass(slots=True)
class ChatMessage:
    """Simple representation of a chat message compatible with this app."""

    role: str
    content: str


class MAFIntegrationError(RuntimeError):
    """Raised when the MAF client cannot be initialized."""


class MAFChatClient:
    """Wrapper that dispatches chat completion calls through MAF clients."""

    def __init__(self, settings: ModelSettings, client: Any = None) -> None:
        self._settings = settings
        self._client = client if client is not None else self._create_client(settings)

    @staticmethod
    def _create_client(settings: ModelSettings):
        provider = settings.provider.lower()
        try:
            if provider in {"azure-openai", "azure_openai", "azure"}:
                module = import_module("agent_framework.azure")
                client_cls = getattr(module, "AzureOpenAIChatClient")
                return client_cls(
                    api_key=settings.api_key,
                    deployment_name=settings.model,
                    endpoint=settings.endpoint,
                    api_version=settings.api_version,
                )
            if provider in {"openai", "oai"}:
                module = import_module("agent_framework.openai")
                client_cls = getattr(module, "OpenAIChatClient")
                return client_cls(
                    api_key=settings.api_key,
                    model_id=settings.model,
                    base_url=settings.endpoint,
                )
        except ModuleNotFoundError as exc:  # pragma: no cover - MAF runtime
            missing = exc.name or "a required dependency"
            raise MAFIntegrationError(
                "Microsoft Agent Framework dependency '{missing}' is missing. "
                "Reinstall the project dependencies (e.g. `pip install -e .`)."
                .format(missing=missing)
            ) from exc
        raise MAFIntegrationError(
            f"Unsupported MAF provider '{settings.provider}'."
        )

    @staticmethod
    def _merge_consecutive_roles(
        messages: Iterable[ChatMessage],
    ) -> List[ChatMessage]:
        """Combine adjacent messages that share the same role.

        Chat templates expect user/assistant roles to alternate. A failed
        opening question followed by the user's answer and the next
        instruction can produce two user messages in a row; their content is
        merged to keep the alternation.
        """

        merged: List[ChatMessage] = []
        for message in messages:
            if merged and merged[-1].role == message.role:
                previous = merged[-1]
                previous.content = (
                    f"{previous.content}\n\n{message.content}".strip()
                )
                continue
            merged.append(
                ChatMessage(role=message.role, content=message.content)
            )
        return merged

    async def complete(self, messages: Iterable[ChatMessage]) -> ChatMessage:
        """Execute a chat completion call through the underlying MAF client."""

        merged_messages = self._merge_consecutive_roles(messages)
        payload: List[MAFChatMessage] = [
            MAFChatMessage(role=_coerce_role(msg.role), text=msg.content)
            for msg in merged_messages
        ]
        response = await self._client.get_response(messages=payload)
        return ChatMessage(role="assistant", content=response.text or "")


class MAFTextGenerationService:
    """Text generation backed by a :class:`MAFChatClient`."""

    def __init__(
        self,
        client: MAFChatClient,
        *,
        system_prompt: Optional[str] = None,
    ) -> None:
        self._client = client
        self._system_prompt = system_prompt

    @classmethod
    def from_settings(cls, settings: ModelSettings) -> "MAFTextGenerationService":
        return cls(MAFChatClient(settings))

    @staticmethod
    def build_messages(
        prompt: str,
        context: Sequence[Turn],
        system_prompt: Optional[str] = None,
    ) -> List[ChatMessage]:
        messages: List[ChatMessage] = []
        if system_prompt:
            messages.append(ChatMessage(role="system", content=system_prompt))
        messages.extend(
            ChatMessage(role=turn.speaker.value, content=turn.text)
            for turn in context
        )
        messages.append(ChatMessage(role="user", content=prompt))
        return messages

    async def generate(self, prompt: str, context: Sequence[Turn] = ()) -> str:
        messages = self.build_messages(prompt, context, self._system_prompt)
        try:
            response = await self._client.complete(messages)
        except Exception as exc:
            logger.exception("Chat completion failed")
            raise ServiceError(f"Chat completion failed: {exc}") from exc
        content = response.content.strip()
        if not content:
            raise ServiceError("Chat completion returned an empty response.")
        return response.content
