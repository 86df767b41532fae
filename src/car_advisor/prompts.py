"""Prompt scaffolding and user-facing messages for the car advisor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, Tuple

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .conversation import Turn, VehicleSubject

SENTINEL = "ANALYSIS_READY"
DEFAULT_MAX_QUESTIONS = 5
DEFAULT_LANGUAGE = "en"
SUPPORTED_LANGUAGES: Tuple[str, ...] = ("en", "hr")

ADVISOR_PERSONA = (
    "You are BestBuyCar Advisor, a hyper-efficient Automotive Market Analyst "
    "& Master Mechanic."
)

REPORT_STRUCTURE = (
    "### **1. TCO/Depreciation Forecast (5 Years)**\n"
    "(A detailed markdown table with columns: Year, Estimated Value, "
    "Estimated Annual Cost (Insurance, Fuel, Maintenance), Cumulative TCO)\n"
    "### **2. Critical Reliability Report**\n"
    "(A detailed markdown table with columns: Common Failure, Description, "
    "Estimated Repair Cost)\n"
    "### **3. Optimal Trim/Engine Match**\n"
    "(A detailed markdown table with columns: Recommended Trim/Engine, "
    "Justification based on my answers)"
)


@dataclass(frozen=True, slots=True)
class MessagePack:
    """Fixed user-facing strings for a supported language."""

    start_failed: str
    answer_failed: str
    report_failed: str
    assistant_label: str
    user_label: str
    make_prompt: str
    model_prompt: str
    report_ready: str


LANGUAGE_PACKS: Dict[str, MessagePack] = {
    "en": MessagePack(
        start_failed=(
            "Something went wrong. Please refresh the page and try again."
        ),
        answer_failed=(
            "Something went wrong while processing your answer."
        ),
        report_failed=(
            "Sorry, I was unable to generate the final analysis."
        ),
        assistant_label="Advisor",
        user_label="You",
        make_prompt="Make: ",
        model_prompt="Model: ",
        report_ready="Analysis complete.",
    ),
    "hr": MessagePack(
        start_failed=(
            "Došlo je do pogreške. Molimo osvježite stranicu i pokušajte "
            "ponovno."
        ),
        answer_failed=(
            "Došlo je do pogreške prilikom obrade vašeg zahtjeva."
        ),
        report_failed=(
            "Nažalost, nije bilo moguće izraditi završnu analizu."
        ),
        assistant_label="Savjetnik",
        user_label="Vi",
        make_prompt="Marka: ",
        model_prompt="Model: ",
        report_ready="Analiza je završena.",
    ),
}


def _normalize_language_code(language: object | None) -> str | None:
    if isinstance(language, str):
        normalized = language.strip().lower()
        if not normalized:
            return None
        normalized = normalized.replace("_", "-")
        normalized = normalized.split("-")[0]
        if normalized in LANGUAGE_PACKS:
            return normalized
    return None


def resolve_language_code(language: object | None) -> str:
    """Return a supported language code, falling back to the default."""

    return _normalize_language_code(language) or DEFAULT_LANGUAGE


def get_language_pack(language: object | None) -> Tuple[str, MessagePack]:
    """Resolve and return the message pack for the given code."""

    code = resolve_language_code(language)
    return code, LANGUAGE_PACKS[code]


def build_opening_prompt(
    subject: "VehicleSubject",
    max_questions: int = DEFAULT_MAX_QUESTIONS,
) -> str:
    """Ask for the first clarifying question about the vehicle."""

    return (
        f"{ADVISOR_PERSONA} Your goal is to help me choose a specific version "
        f"of the {subject.label}. Ask me up to {max_questions} "
        "iterative, dependency-based questions to narrow down my needs. Start "
        "with your first question now. Do not greet me or ask for the make and "
        "model again. Just ask the first question."
    )


def build_follow_up_prompt(
    subject: "VehicleSubject",
    latest_answer: str,
    questions_asked: int,
    max_questions: int = DEFAULT_MAX_QUESTIONS,
) -> str:
    """Ask for the next question or the sentinel once enough is known."""

    return (
        f'Based on my last answer ("{latest_answer}"), ask the next logical '
        f"question to refine my choice for a {subject.label}. You have asked "
        f"{questions_asked} questions so far out of a maximum of "
        f"{max_questions}. If you have enough information or have reached the "
        f"{max_questions}-question limit, respond ONLY with the exact phrase "
        f"'{SENTINEL}'. Otherwise, ask your next single question without any "
        "preamble."
    )


def format_transcript(turns: Iterable["Turn"]) -> str:
    return "\n".join(f"{turn.speaker.value}: {turn.text}" for turn in turns)


def build_report_prompt(
    subject: "VehicleSubject",
    turns: Iterable["Turn"],
) -> str:
    """Request the three-part Markdown report from the whole conversation."""

    return (
        f"Based on our entire conversation about the {subject.label} (full "
        "transcript provided below), generate a final 3-part analysis. Use "
        "up-to-date and accurate information on costs, depreciation, and "
        "common failures. The output MUST be in Markdown and follow this "
        "structure exactly:\n"
        f"{REPORT_STRUCTURE}\n\n"
        "Conversation Transcript:\n"
        f"{format_transcript(turns)}\n"
    )
