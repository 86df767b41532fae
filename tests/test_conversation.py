"""Tests for the advisor conversation state machine."""

from __future__ import annotations

import asyncio

import pytest

from car_advisor.conversation import (
    ConversationController,
    ConversationLog,
    ConversationSnapshot,
    ConversationState,
    Phase,
    Speaker,
    Turn,
    ValidationError,
)
from car_advisor.prompts import LANGUAGE_PACKS, SENTINEL

from conftest import GatedService, ScriptedService, service_failure

EN = LANGUAGE_PACKS["en"]


def _started(service: ScriptedService, **kwargs: object) -> ConversationController:
    controller = ConversationController(service, **kwargs)  # type: ignore[arg-type]
    asyncio.run(controller.begin("Toyota", "Corolla"))
    return controller


def test_begin_appends_first_question() -> None:
    service = ScriptedService("What is your budget?")
    controller = ConversationController(service)

    turn = asyncio.run(controller.begin("Toyota", "Corolla"))

    assert turn == Turn(Speaker.ASSISTANT, "What is your budget?")
    assert controller.log == (turn,)
    assert controller.phase is Phase.QUESTIONING
    assert controller.questions_asked == 1
    assert controller.pending is False
    assert controller.last_error is None
    assert controller.subject is not None
    assert controller.subject.label == "Toyota Corolla"
    prompt, context = service.calls[0]
    assert "Toyota Corolla" in prompt
    assert context == ()


def test_begin_strips_subject_values() -> None:
    controller = _started(ScriptedService("Q1"))
    assert controller.subject is not None
    assert (controller.subject.make, controller.subject.model) == ("Toyota", "Corolla")


@pytest.mark.parametrize(
    ("make", "model"),
    [("", "Corolla"), ("Toyota", ""), ("   ", "Corolla"), ("Toyota", "\t")],
)
def test_begin_rejects_blank_subject_without_calling_service(make: str, model: str) -> None:
    service = ScriptedService()
    controller = ConversationController(service)

    with pytest.raises(ValidationError):
        asyncio.run(controller.begin(make, model))

    assert service.calls == []
    assert controller.phase is Phase.IDLE
    assert controller.log == ()
    assert controller.subject is None


def test_begin_twice_is_rejected() -> None:
    service = ScriptedService("Q1")
    controller = _started(service)

    with pytest.raises(ValidationError):
        asyncio.run(controller.begin("Honda", "Civic"))

    assert len(service.calls) == 1
    assert controller.subject is not None
    assert controller.subject.make == "Toyota"


def test_begin_failure_appends_error_turn_and_stays_questioning() -> None:
    controller = ConversationController(ScriptedService(service_failure("offline")))

    turn = asyncio.run(controller.begin("Toyota", "Corolla"))

    assert turn == Turn(Speaker.ASSISTANT, EN.start_failed)
    assert controller.log == (turn,)
    assert controller.phase is Phase.QUESTIONING
    assert controller.questions_asked == 0
    assert controller.pending is False
    assert controller.last_error == "offline"


def test_blank_reply_is_treated_as_failure() -> None:
    controller = ConversationController(ScriptedService("   "))

    asyncio.run(controller.begin("Toyota", "Corolla"))

    assert controller.log[-1].text == EN.start_failed
    assert controller.last_error is not None


def test_submit_answer_appends_user_and_next_question() -> None:
    service = ScriptedService("What is your budget?", "New or used?")
    controller = _started(service)

    turn = asyncio.run(controller.submit_answer("  20000 EUR  "))

    assert turn == Turn(Speaker.ASSISTANT, "New or used?")
    assert [t.speaker for t in controller.log] == [
        Speaker.ASSISTANT,
        Speaker.USER,
        Speaker.ASSISTANT,
    ]
    assert controller.log[1].text == "20000 EUR"
    assert controller.questions_asked == 2
    assert controller.pending is False


def test_submit_answer_sends_prior_log_as_context() -> None:
    service = ScriptedService("What is your budget?", "New or used?")
    controller = _started(service)

    asyncio.run(controller.submit_answer("20000 EUR"))

    prompt, context = service.calls[1]
    assert context == (Turn(Speaker.ASSISTANT, "What is your budget?"),)
    assert '"20000 EUR"' in prompt
    assert "asked 1 questions" in prompt
    assert SENTINEL in prompt


def test_reply_is_appended_verbatim() -> None:
    service = ScriptedService("Q1", "  Do you drive mostly in the city?\n")
    controller = _started(service)

    turn = asyncio.run(controller.submit_answer("yes"))

    assert turn.text == "  Do you drive mostly in the city?\n"


def test_sentinel_moves_to_reporting_and_appends_report() -> None:
    service = ScriptedService("What is your budget?", SENTINEL, "### Report")
    controller = _started(service)

    turn = asyncio.run(controller.submit_answer("20000 EUR"))

    assert controller.phase is Phase.REPORTING
    assert turn == Turn(Speaker.ASSISTANT, "### Report")
    assert len(controller.log) == 3
    assert controller.questions_asked == 1
    assert controller.pending is False
    report_prompt, report_context = service.calls[2]
    assert "Toyota Corolla" in report_prompt
    assert "assistant: What is your budget?" in report_prompt
    assert "user: 20000 EUR" in report_prompt
    assert report_context == ()


def test_sentinel_with_surrounding_whitespace_is_accepted() -> None:
    service = ScriptedService("Q1", f"  {SENTINEL} \n", "report")
    controller = _started(service)

    asyncio.run(controller.submit_answer("answer"))

    assert controller.phase is Phase.REPORTING


@pytest.mark.parametrize("reply", ["analysis_ready", "Analysis_Ready", "ANALYSIS_READY now"])
def test_sentinel_match_is_exact_and_case_sensitive(reply: str) -> None:
    service = ScriptedService("Q1", reply)
    controller = _started(service)

    turn = asyncio.run(controller.submit_answer("answer"))

    assert controller.phase is Phase.QUESTIONING
    assert turn.text == reply
    assert controller.questions_asked == 2


def test_report_failure_still_reaches_reporting() -> None:
    service = ScriptedService("Q1", SENTINEL, service_failure("quota"))
    controller = _started(service)

    turn = asyncio.run(controller.submit_answer("answer"))

    assert controller.phase is Phase.REPORTING
    assert turn.text == EN.report_failed
    assert len(controller.log) == 3
    assert controller.last_error == "quota"
    assert controller.pending is False


def test_answer_failure_keeps_questioning() -> None:
    service = ScriptedService("Q1", service_failure("timeout"), "Q2")
    controller = _started(service)

    turn = asyncio.run(controller.submit_answer("first"))

    assert turn.text == EN.answer_failed
    assert controller.phase is Phase.QUESTIONING
    assert controller.questions_asked == 1
    assert controller.last_error == "timeout"
    assert controller.pending is False

    asyncio.run(controller.submit_answer("again"))
    assert controller.log[-1].text == "Q2"
    assert controller.last_error is None
    assert controller.questions_asked == 2


@pytest.mark.parametrize("text", ["", "   ", "\n"])
def test_blank_answer_is_rejected(text: str) -> None:
    service = ScriptedService("Q1")
    controller = _started(service)

    with pytest.raises(ValidationError):
        asyncio.run(controller.submit_answer(text))

    assert len(controller.log) == 1
    assert len(service.calls) == 1


def test_answer_before_begin_is_rejected() -> None:
    controller = ConversationController(ScriptedService())

    with pytest.raises(ValidationError):
        asyncio.run(controller.submit_answer("hello"))

    assert controller.log == ()


def test_answer_after_report_is_rejected() -> None:
    service = ScriptedService("Q1", SENTINEL, "report")
    controller = _started(service)
    asyncio.run(controller.submit_answer("answer"))

    with pytest.raises(ValidationError):
        asyncio.run(controller.submit_answer("more"))

    assert len(controller.log) == 3


def test_concurrent_answer_is_rejected_while_pending() -> None:
    async def scenario() -> tuple[ConversationController, GatedService]:
        service = GatedService("Q1", "Q2")
        controller = ConversationController(service)
        service.release.set()
        await controller.begin("Toyota", "Corolla")
        service.release.clear()
        service.started.clear()

        first = asyncio.create_task(controller.submit_answer("first"))
        await service.started.wait()
        assert controller.pending is True
        log_before = controller.log
        with pytest.raises(ValidationError):
            await controller.submit_answer("second")
        with pytest.raises(ValidationError):
            controller.reset()
        assert controller.log == log_before
        service.release.set()
        await first
        return controller, service

    controller, service = asyncio.run(scenario())

    assert controller.pending is False
    assert [turn.text for turn in controller.log] == ["Q1", "first", "Q2"]
    assert len(service.calls) == 2


def test_unexpected_error_in_begin_becomes_error_turn() -> None:
    service = ScriptedService(RuntimeError("connection reset"), "Q2")
    controller = ConversationController(service)

    turn = asyncio.run(controller.begin("Toyota", "Corolla"))

    assert turn == Turn(Speaker.ASSISTANT, EN.start_failed)
    assert controller.phase is Phase.QUESTIONING
    assert controller.last_error == "connection reset"
    assert controller.pending is False

    asyncio.run(controller.submit_answer("still here"))
    assert controller.log[-1].text == "Q2"
    assert controller.last_error is None


def test_unexpected_error_in_follow_up_keeps_session_usable() -> None:
    service = ScriptedService("Q1", RuntimeError("connection reset"), "Q2")
    controller = _started(service)

    turn = asyncio.run(controller.submit_answer("first"))

    assert turn == Turn(Speaker.ASSISTANT, EN.answer_failed)
    assert [t.speaker for t in controller.log] == [
        Speaker.ASSISTANT,
        Speaker.USER,
        Speaker.ASSISTANT,
    ]
    assert controller.last_error == "connection reset"
    assert controller.pending is False

    retry = asyncio.run(controller.submit_answer("retry"))
    assert retry.text == "Q2"
    assert controller.questions_asked == 2
    assert controller.last_error is None


def test_unexpected_error_in_report_still_appends_one_turn() -> None:
    service = ScriptedService("Q1", SENTINEL, KeyError("quota"))
    controller = _started(service)

    turn = asyncio.run(controller.submit_answer("answer"))

    assert controller.phase is Phase.REPORTING
    assert turn.text == EN.report_failed
    assert len(controller.log) == 3
    assert controller.last_error is not None
    assert controller.pending is False


def test_question_cap_forces_report_when_service_keeps_asking() -> None:
    service = ScriptedService("Q1", "Q2", "Q3", "Q4", "Q5", "Q6?", "report")
    controller = _started(service)

    for answer in ["a1", "a2", "a3", "a4"]:
        asyncio.run(controller.submit_answer(answer))
    assert controller.questions_asked == 5
    assert controller.phase is Phase.QUESTIONING

    turn = asyncio.run(controller.submit_answer("a5"))

    assert controller.phase is Phase.REPORTING
    assert controller.questions_asked == 5
    assert turn.text == "report"
    assert all(t.text != "Q6?" for t in controller.log)


def test_custom_question_cap() -> None:
    service = ScriptedService("Q1", "Q2", "Q3?", "report")
    controller = _started(service, max_questions=2)

    asyncio.run(controller.submit_answer("a1"))
    asyncio.run(controller.submit_answer("a2"))

    assert controller.phase is Phase.REPORTING
    assert controller.questions_asked == 2
    assert "maximum of 2" in service.calls[2][0]


def test_invalid_question_cap() -> None:
    with pytest.raises(ValueError):
        ConversationController(ScriptedService(), max_questions=0)


def test_reset_returns_to_idle() -> None:
    service = ScriptedService("Q1", "Q1 again")
    controller = _started(service)

    controller.reset()

    assert controller.phase is Phase.IDLE
    assert controller.log == ()
    assert controller.subject is None
    assert controller.questions_asked == 0

    asyncio.run(controller.begin("Honda", "Civic"))
    assert controller.log[-1].text == "Q1 again"


def test_subscribers_observe_state_changes() -> None:
    service = ScriptedService("Q1", "Q2")
    controller = ConversationController(service)
    seen: list[ConversationSnapshot] = []
    unsubscribe = controller.subscribe(seen.append)

    asyncio.run(controller.begin("Toyota", "Corolla"))

    assert seen[0].pending is True
    assert seen[0].phase is Phase.QUESTIONING
    assert seen[-1].pending is False
    assert seen[-1].turns == controller.log

    unsubscribe()
    count = len(seen)
    asyncio.run(controller.submit_answer("answer"))
    assert len(seen) == count


def test_snapshot_to_dict() -> None:
    controller = _started(ScriptedService("Q1"))

    data = controller.snapshot().to_dict()

    assert data == {
        "phase": "questioning",
        "subject": {"make": "Toyota", "model": "Corolla"},
        "questions_asked": 1,
        "max_questions": 5,
        "pending": False,
        "last_error": None,
        "turns": [{"speaker": "assistant", "text": "Q1"}],
    }


def test_shared_state_object_is_used() -> None:
    state = ConversationState.create()
    controller = ConversationController(ScriptedService("Q1"), state=state)

    asyncio.run(controller.begin("Toyota", "Corolla"))

    assert state.phase is Phase.QUESTIONING
    assert len(state.log) == 1


def test_log_enforces_alternation() -> None:
    log = ConversationLog()

    with pytest.raises(ValueError):
        log.append(Turn(Speaker.USER, "hi"))

    log.append(Turn(Speaker.ASSISTANT, "Q1"))
    with pytest.raises(ValueError):
        log.append(Turn(Speaker.ASSISTANT, "Q2"))

    log.append(Turn(Speaker.USER, "A1"))
    assert len(log) == 2
    assert log.last == Turn(Speaker.USER, "A1")


def test_turns_are_immutable() -> None:
    turn = Turn(Speaker.ASSISTANT, "Q1")
    with pytest.raises(AttributeError):
        turn.text = "changed"  # type: ignore[misc]
