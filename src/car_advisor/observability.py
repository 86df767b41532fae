"""OpenTelemetry tracing for advisor chat completions."""

from __future__ import annotations

import logging
import os
from typing import Optional

from agent_framework.observability import setup_observability

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}

_initialized = False


def tracing_requested() -> bool:
    """Whether tracing was switched on through the environment."""

    raw = os.getenv("CAR_ADVISOR_TRACING", "").strip().lower()
    return raw in TRUTHY


def initialize_tracing(endpoint: Optional[str] = None) -> bool:
    """Export chat completion spans to an OTLP collector.

    Returns ``True`` only on the call that actually configured tracing.
    Prompts and replies are attached to spans when
    ``CAR_ADVISOR_TRACING_CAPTURE_SENSITIVE`` is truthy.
    """

    global _initialized
    if _initialized:
        return False

    otlp_endpoint = (
        endpoint
        or os.getenv("CAR_ADVISOR_OTLP_ENDPOINT", "http://localhost:4317")
    ).strip()
    if not otlp_endpoint:
        logger.info("Tracing skipped because no OTLP endpoint is configured.")
        return False

    capture = os.getenv(
        "CAR_ADVISOR_TRACING_CAPTURE_SENSITIVE", ""
    ).strip().lower() in TRUTHY
    try:
        setup_observability(
            otlp_endpoint=otlp_endpoint,
            enable_sensitive_data=capture,
        )
    except Exception as exc:  # pragma: no cover - tracing is optional
        logger.warning("Tracing initialization failed: %s", exc)
        return False

    _initialized = True
    logger.info("Tracing initialized with OTLP endpoint %s", otlp_endpoint)
    return True
