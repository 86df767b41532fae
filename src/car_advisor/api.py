"""FastAPI entrypoint that exposes advisor sessions over HTTP."""

from __future__ import annotations

import argparse
import logging
from typing import Any, Callable, Dict, Optional, Sequence
from uuid import uuid4

import uvicorn
from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .config import AppSettings
from .conversation import ValidationError
from .generation import TextGenerationService
from .maf_client import MAFTextGenerationService
from .sessions import AdvisorSession

ServiceFactory = Callable[[], TextGenerationService]


class StartRequest(BaseModel):
    make: str
    model: str
    language: Optional[str] = None


class AnswerRequest(BaseModel):
    text: str


def _session_payload(session_id: str, session: AdvisorSession) -> Dict[str, Any]:
    return {
        "session_id": session_id,
        "language": session.language,
        "record_id": session.record_id,
        "state": session.snapshot().to_dict(),
    }


def create_app(
    settings: AppSettings,
    *,
    service_factory: ServiceFactory | None = None,
    allow_origins: Sequence[str] | None = None,
) -> FastAPI:
    """Create a FastAPI app that drives advisor sessions."""

    app = FastAPI(title="Car Advisor")
    origins = list(allow_origins) if allow_origins else ["*"]
    allow_credentials = origins != ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    sessions: Dict[str, AdvisorSession] = {}
    shared_service: Dict[str, TextGenerationService] = {}

    def _service() -> TextGenerationService:
        if service_factory is not None:
            return service_factory()
        if "default" not in shared_service:
            shared_service["default"] = MAFTextGenerationService.from_settings(
                settings.model
            )
        return shared_service["default"]

    def _get_session(session_id: str) -> AdvisorSession:
        session = sessions.get(session_id)
        if session is None:
            raise HTTPException(
                status_code=404,
                detail=f"Unknown session '{session_id}'.",
            )
        return session

    @app.post("/sessions", status_code=201)
    async def start_session(payload: StartRequest) -> Dict[str, Any]:
        session = AdvisorSession.create(
            settings,
            _service(),
            language=payload.language,
        )
        session_id = uuid4().hex
        try:
            await session.start(payload.make, payload.model)
        except ValidationError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        sessions[session_id] = session
        logging.info("Started advisor session %s", session_id)
        return _session_payload(session_id, session)

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str) -> Dict[str, Any]:
        return _session_payload(session_id, _get_session(session_id))

    @app.post("/sessions/{session_id}/answers")
    async def submit_answer(
        session_id: str,
        payload: AnswerRequest,
    ) -> Dict[str, Any]:
        session = _get_session(session_id)
        try:
            await session.answer(payload.text)
        except ValidationError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _session_payload(session_id, session)

    @app.post("/sessions/{session_id}/reset")
    async def reset_session(session_id: str) -> Dict[str, Any]:
        session = _get_session(session_id)
        try:
            session.reset()
        except ValidationError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _session_payload(session_id, session)

    @app.delete("/sessions/{session_id}", status_code=204)
    async def delete_session(session_id: str) -> Response:
        _get_session(session_id)
        sessions.pop(session_id, None)
        return Response(status_code=204)

    @app.get("/health")
    async def health() -> dict[str, str]:  # pragma: no cover - simple health probe
        return {"status": "ok"}

    return app


def run_api_server(
    settings: AppSettings,
    *,
    host: str = "127.0.0.1",
    port: int = 8081,
    allow_origins: Sequence[str] | None = None,
    log_level: str = "info",
) -> None:
    """Start the FastAPI server."""

    app = create_app(settings=settings, allow_origins=allow_origins)
    uvicorn.run(app, host=host, port=port, log_level=log_level)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="car-advisor serve",
        description="Serve the car advisor conversation API.",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the API server (default: 127.0.0.1).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8081,
        help="Port for the API server (default: 8081).",
    )
    parser.add_argument(
        "--allow-origin",
        action="append",
        help="Allowed CORS origin. Repeat to allow several (default: any).",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        help="Logging level for uvicorn (default: info).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO)
    args = _parse_args(argv)
    try:
        settings = AppSettings.load()
    except RuntimeError as exc:
        logging.error("Failed to load AppSettings: %s", exc)
        raise SystemExit(1) from exc

    run_api_server(
        settings=settings,
        host=args.host,
        port=args.port,
        allow_origins=args.allow_origin,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
