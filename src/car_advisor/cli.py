"""Command line entry-point for the car advisor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import Callable, Optional

from .config import AppSettings
from .conversation import ConversationSnapshot, Turn, ValidationError
from .generation import TextGenerationService
from .observability import initialize_tracing, tracing_requested
from .prompts import SUPPORTED_LANGUAGES
from .sessions import AdvisorSession
from .transcript_store import TranscriptRepository

EXIT_TOKENS = {"exit", "quit", ":q"}

InputFn = Callable[[str], str]
OutputFn = Callable[[str], None]


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="car-advisor",
        description=(
            "Answer a few questions about a car and get a cost, reliability "
            "and trim report. Run `car-advisor serve` for the HTTP API."
        ),
    )
    parser.add_argument("--make", help="Vehicle make, e.g. Toyota")
    parser.add_argument("--model", help="Vehicle model, e.g. Corolla")
    parser.add_argument(
        "--language",
        choices=list(SUPPORTED_LANGUAGES),
        help="Language for fixed messages (overrides CAR_ADVISOR_LANGUAGE).",
    )
    parser.add_argument(
        "--max-questions",
        type=int,
        help=(
            "Maximum number of clarifying questions before the report. "
            "Overrides CAR_ADVISOR_MAX_QUESTIONS."
        ),
    )
    parser.add_argument(
        "--tracing",
        action="store_true",
        help="Export OpenTelemetry traces for chat completions.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO).",
    )
    return parser.parse_args(argv)


def _print_turn(turn: Turn, label: str, output_fn: OutputFn) -> None:
    output_fn(f"{label}: {turn.text}")


async def run_advisor(
    settings: AppSettings,
    *,
    make: Optional[str] = None,
    model: Optional[str] = None,
    language: Optional[str] = None,
    service: Optional[TextGenerationService] = None,
    input_fn: InputFn = input,
    output_fn: OutputFn = print,
) -> ConversationSnapshot:
    """Run one advisor conversation in the terminal."""

    if service is None:
        from .maf_client import MAFTextGenerationService

        service = MAFTextGenerationService.from_settings(settings.model)
    session = AdvisorSession.create(settings, service, language=language)
    messages = session.messages

    while True:
        make_value = make if make else input_fn(messages.make_prompt)
        model_value = model if model else input_fn(messages.model_prompt)
        try:
            turns = await session.start(make_value, model_value)
        except ValidationError as exc:
            if make and model:
                raise
            output_fn(str(exc))
            make = model = None
            continue
        break

    output_fn("")
    for turn in turns:
        _print_turn(turn, messages.assistant_label, output_fn)

    while not session.completed:
        answer = input_fn(f"{messages.user_label}: ")
        if answer.strip().lower() in EXIT_TOKENS:
            break
        try:
            turns = await session.answer(answer)
        except ValidationError as exc:
            output_fn(str(exc))
            continue
        for turn in turns:
            output_fn("")
            _print_turn(turn, messages.assistant_label, output_fn)

    if session.completed:
        output_fn("")
        output_fn(messages.report_ready)
        if session.record_id:
            output_fn(f"Transcript id: {session.record_id}")
    return session.snapshot()


def run_transcripts_cli(
    settings: AppSettings,
    argv: Optional[list[str]] = None,
    output_fn: OutputFn = print,
) -> None:
    """List or show archived conversations."""

    parser = argparse.ArgumentParser(
        prog="car-advisor transcripts",
        description="Browse archived advisor conversations.",
    )
    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True
    list_parser = subparsers.add_parser("list", help="Show recent conversations")
    list_parser.add_argument(
        "-n",
        "--limit",
        type=int,
        default=10,
        help="Maximum number of conversations to display (default: 10)",
    )
    show_parser = subparsers.add_parser(
        "show",
        help="Display the full conversation for a record id",
    )
    show_parser.add_argument("id", help="Conversation record identifier")
    args = parser.parse_args(argv)

    if settings.transcript_log is None:
        output_fn("Archiving is disabled. Set CAR_ADVISOR_TRANSCRIPT_JSONL.")
        return
    records = TranscriptRepository(archive_path=settings.transcript_log).load_records()

    if args.command == "list":
        recent = records[-args.limit:] if args.limit > 0 else []
        if not recent:
            output_fn("No transcripts found.")
            return
        output_fn(f"Showing {len(recent)} transcripts:")
        for record in reversed(recent):
            subject = record.get("subject") or {}
            output_fn(
                f" - {record['id']} | {record.get('ts')} | "
                f"{subject.get('make', '?')} {subject.get('model', '?')} | "
                f"{record.get('phase')} | {len(record['turns'])} turns"
            )
        return

    record = next((item for item in records if item["id"] == args.id), None)
    if record is None:
        output_fn(f"Transcript '{args.id}' not found.")
        return
    output_fn(f"Transcript ID: {record['id']}")
    output_fn(f"Started: {record.get('ts')}")
    output_fn(f"Phase: {record.get('phase')}")
    for turn in record["turns"]:
        output_fn("")
        output_fn(f"{turn['speaker']}: {turn['text']}")


def run_cli(argv: Optional[list[str]] = None) -> None:
    """Entry-point invoked from ``python -m car_advisor``."""

    arg_list = list(argv) if argv is not None else sys.argv[1:]
    if arg_list and arg_list[0] == "serve":
        from .api import main as serve_main

        serve_main(arg_list[1:])
        return
    if arg_list and arg_list[0] == "transcripts":
        try:
            settings = AppSettings.load()
        except RuntimeError as exc:
            logging.error("Failed to load AppSettings: %s", exc)
            raise SystemExit(1) from exc
        run_transcripts_cli(settings, arg_list[1:])
        return

    args = _parse_args(arg_list)
    logging.basicConfig(level=args.log_level.upper())
    try:
        settings = AppSettings.load()
    except RuntimeError as exc:
        logging.error("Failed to load AppSettings: %s", exc)
        raise SystemExit(1) from exc
    if args.max_questions is not None:
        if args.max_questions < 1:
            raise SystemExit("--max-questions must be >= 1")
        settings = replace(settings, max_questions=args.max_questions)
    if args.tracing or tracing_requested():
        initialize_tracing()

    asyncio.run(
        run_advisor(
            settings,
            make=args.make,
            model=args.model,
            language=args.language,
        )
    )


if __name__ == "__main__":  # pragma: no cover - manual execution hook
    run_cli()
