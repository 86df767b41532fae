"""Guided car evaluation interview with a final cost and reliability report."""

from __future__ import annotations

from typing import Optional

from .conversation import (
    ConversationController,
    ConversationLog,
    ConversationSnapshot,
    ConversationState,
    Phase,
    Speaker,
    Turn,
    ValidationError,
    VehicleSubject,
)
from .generation import ServiceError, TextGenerationService

__all__ = [
    "ConversationController",
    "ConversationLog",
    "ConversationSnapshot",
    "ConversationState",
    "Phase",
    "ServiceError",
    "Speaker",
    "TextGenerationService",
    "Turn",
    "ValidationError",
    "VehicleSubject",
    "run_cli",
]


def run_cli(argv: Optional[list[str]] = None) -> None:
    """Run the terminal advisor; see :func:`car_advisor.cli.run_cli`."""

    from .cli import run_cli as _run_cli_impl

    _run_cli_impl(argv)
