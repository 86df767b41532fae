"""Conversation state machine for the car advisor interview."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from .generation import ServiceError, TextGenerationService
from .prompts import (
    DEFAULT_LANGUAGE,
    DEFAULT_MAX_QUESTIONS,
    LANGUAGE_PACKS,
    SENTINEL,
    MessagePack,
    build_follow_up_prompt,
    build_opening_prompt,
    build_report_prompt,
)

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """Raised when an operation is rejected before any generation call."""


class Speaker(str, Enum):
    """Who produced a turn."""

    USER = "user"
    ASSISTANT = "assistant"


class Phase(str, Enum):
    """Macro-state of a conversation."""

    IDLE = "idle"
    QUESTIONING = "questioning"
    REPORTING = "reporting"


@dataclass(frozen=True, slots=True)
class Turn:
    """One message exchanged in the conversation."""

    speaker: Speaker
    text: str

    def to_dict(self) -> Dict[str, str]:
        return {"speaker": self.speaker.value, "text": self.text}


@dataclass(frozen=True, slots=True)
class VehicleSubject:
    """The make/model pair under evaluation."""

    make: str
    model: str

    @property
    def label(self) -> str:
        return f"{self.make} {self.model}"

    def to_dict(self) -> Dict[str, str]:
        return {"make": self.make, "model": self.model}


class ConversationLog:
    """Append-only sequence of turns that alternates starting with the assistant."""

    def __init__(self) -> None:
        self._turns: List[Turn] = []

    def append(self, turn: Turn) -> None:
        expected = (
            Speaker.ASSISTANT
            if not self._turns or self._turns[-1].speaker is Speaker.USER
            else Speaker.USER
        )
        if turn.speaker is not expected:
            raise ValueError(
                f"Expected a {expected.value} turn, got {turn.speaker.value}."
            )
        self._turns.append(turn)

    @property
    def last(self) -> Optional[Turn]:
        return self._turns[-1] if self._turns else None

    def as_tuple(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(tuple(self._turns))

    def __len__(self) -> int:
        return len(self._turns)

    def __getitem__(self, index: int) -> Turn:
        return self._turns[index]


def _empty_log() -> ConversationLog:
    return ConversationLog()


@dataclass(slots=True)
class ConversationState:
    """Mutable state for a single advisor conversation."""

    phase: Phase = Phase.IDLE
    subject: Optional[VehicleSubject] = None
    questions_asked: int = 0
    pending: bool = False
    last_error: Optional[str] = None
    log: ConversationLog = field(default_factory=_empty_log)

    @classmethod
    def create(cls) -> "ConversationState":
        return cls()

    def reset(self) -> None:
        """Return to the freshly created Idle state."""
        self.phase = Phase.IDLE
        self.subject = None
        self.questions_asked = 0
        self.pending = False
        self.last_error = None
        self.log = ConversationLog()


@dataclass(frozen=True, slots=True)
class ConversationSnapshot:
    """Read-only view of the state handed to presentation adapters."""

    phase: Phase
    subject: Optional[VehicleSubject]
    questions_asked: int
    max_questions: int
    pending: bool
    last_error: Optional[str]
    turns: Tuple[Turn, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "subject": self.subject.to_dict() if self.subject else None,
            "questions_asked": self.questions_asked,
            "max_questions": self.max_questions,
            "pending": self.pending,
            "last_error": self.last_error,
            "turns": [turn.to_dict() for turn in self.turns],
        }


Listener = Callable[[ConversationSnapshot], None]


class ConversationController:
    """Drives the question-bounded interview and the final report.

    The controller owns a :class:`ConversationState` and is the only code that
    mutates it. Calls to the text generation service are the only suspension
    points; ``pending`` guards against overlapping calls and is reset on every
    exit path of :meth:`begin` and :meth:`submit_answer`.

    There is no timeout on generation calls. A call that never resolves keeps
    ``pending`` set until it does.
    """

    def __init__(
        self,
        service: TextGenerationService,
        *,
        state: Optional[ConversationState] = None,
        max_questions: int = DEFAULT_MAX_QUESTIONS,
        messages: Optional[MessagePack] = None,
    ) -> None:
        if max_questions < 1:
            raise ValueError("max_questions must be at least 1")
        self._service = service
        self._state = state if state is not None else ConversationState.create()
        self._max_questions = max_questions
        self._messages = messages or LANGUAGE_PACKS[DEFAULT_LANGUAGE]
        self._listeners: List[Listener] = []

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def subject(self) -> Optional[VehicleSubject]:
        return self._state.subject

    @property
    def questions_asked(self) -> int:
        return self._state.questions_asked

    @property
    def max_questions(self) -> int:
        return self._max_questions

    @property
    def pending(self) -> bool:
        return self._state.pending

    @property
    def last_error(self) -> Optional[str]:
        return self._state.last_error

    @property
    def log(self) -> Tuple[Turn, ...]:
        return self._state.log.as_tuple()

    def snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(
            phase=self._state.phase,
            subject=self._state.subject,
            questions_asked=self._state.questions_asked,
            max_questions=self._max_questions,
            pending=self._state.pending,
            last_error=self._state.last_error,
            turns=self._state.log.as_tuple(),
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback invoked with a snapshot after each change."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def begin(self, make: str, model: str) -> Turn:
        """Start questioning about ``make``/``model`` and return the first turn."""

        make_value = make.strip() if isinstance(make, str) else ""
        model_value = model.strip() if isinstance(model, str) else ""
        if not make_value or not model_value:
            raise ValidationError("Both make and model are required.")
        if self._state.phase is not Phase.IDLE:
            raise ValidationError(
                f"Conversation already started (phase: {self._state.phase.value})."
            )
        if self._state.pending:
            raise ValidationError("A reply is still being generated.")

        subject = VehicleSubject(make=make_value, model=model_value)
        self._state.subject = subject
        self._state.phase = Phase.QUESTIONING
        self._state.questions_asked = 0
        self._state.last_error = None
        self._state.pending = True
        logger.info("Conversation started for %s", subject.label)
        self._notify()
        try:
            try:
                question = await self._request(
                    build_opening_prompt(subject, self._max_questions),
                    (),
                )
            except ServiceError as exc:
                return self._record_failure(self._messages.start_failed, exc)
            turn = self._append_assistant(question)
            self._state.questions_asked = 1
            return turn
        finally:
            self._state.pending = False
            self._notify()

    async def submit_answer(self, text: str) -> Turn:
        """Record the user's answer and return the assistant's next turn.

        The returned turn is the next question, the final report when the
        questioning is over, or a fixed error message when generation failed.
        """

        answer = text.strip() if isinstance(text, str) else ""
        if not answer:
            raise ValidationError("An answer is required.")
        if self._state.pending:
            raise ValidationError("A reply is still being generated.")
        if self._state.phase is not Phase.QUESTIONING:
            raise ValidationError(
                f"Answers are not accepted in phase {self._state.phase.value}."
            )
        subject = self._state.subject
        assert subject is not None  # set by begin()

        context = self._state.log.as_tuple()
        self._state.log.append(Turn(Speaker.USER, answer))
        self._state.pending = True
        self._notify()
        prompt = build_follow_up_prompt(
            subject,
            answer,
            self._state.questions_asked,
            self._max_questions,
        )
        try:
            try:
                reply = await self._request(prompt, context)
            except ServiceError as exc:
                return self._record_failure(self._messages.answer_failed, exc)
            self._state.last_error = None
            if reply.strip() == SENTINEL:
                return await self._enter_reporting()
            if self._state.questions_asked >= self._max_questions:
                logger.warning(
                    "Question limit of %s reached but the service asked "
                    "another question; moving to the report.",
                    self._max_questions,
                )
                return await self._enter_reporting()
            turn = self._append_assistant(reply)
            self._state.questions_asked += 1
            return turn
        finally:
            self._state.pending = False
            self._notify()

    def reset(self) -> None:
        """Discard the conversation and return to Idle."""

        if self._state.pending:
            raise ValidationError(
                "Cannot reset while a reply is being generated."
            )
        self._state.reset()
        logger.info("Conversation reset")
        self._notify()

    async def _enter_reporting(self) -> Turn:
        self._state.phase = Phase.REPORTING
        logger.info(
            "Questioning finished after %s question(s); generating report",
            self._state.questions_asked,
        )
        self._notify()
        report = await self._generate_report()
        return self._append_assistant(report)

    async def _generate_report(self) -> str:
        subject = self._state.subject
        assert subject is not None
        prompt = build_report_prompt(subject, self._state.log.as_tuple())
        try:
            return await self._request(prompt, ())
        except ServiceError as exc:
            logger.warning("Report generation failed: %s", exc)
            self._state.last_error = str(exc) or self._messages.report_failed
            return self._messages.report_failed

    async def _request(self, prompt: str, context: Sequence[Turn]) -> str:
        try:
            reply = await self._service.generate(prompt, context)
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Text generation service raised unexpectedly")
            raise ServiceError(str(exc) or type(exc).__name__) from exc
        if not isinstance(reply, str) or not reply.strip():
            raise ServiceError("Text generation returned an empty reply.")
        return reply

    def _append_assistant(self, text: str) -> Turn:
        turn = Turn(Speaker.ASSISTANT, text)
        self._state.log.append(turn)
        return turn

    def _record_failure(self, message: str, exc: ServiceError) -> Turn:
        logger.warning("Text generation failed: %s", exc)
        self._state.last_error = str(exc) or message
        return self._append_assistant(message)

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # pragma: no cover - listener bug
                logger.exception("Conversation listener failed")
