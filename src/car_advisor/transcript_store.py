"""Persistence utilities for finished advisor conversations."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

import redis
from redis import Redis
from redis.exceptions import RedisError

from .conversation import ConversationSnapshot

logger = logging.getLogger(__name__)

INDEX_KEY = "conversations:index"


def _timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class TranscriptRepository:
    """Persists conversations to JSONL and mirrors them into Redis."""

    def __init__(self, archive_path: Path, redis_url: Optional[str] = None) -> None:
        self._archive_path = archive_path
        self._archive_path.parent.mkdir(parents=True, exist_ok=True)
        self._redis_url = redis_url
        self._redis: Optional[Redis] = None

    @property
    def archive_path(self) -> Path:
        """Return the filesystem path for the JSONL archive."""

        return self._archive_path

    def _get_redis(self) -> Optional[Redis]:
        if not self._redis_url:
            return None
        if self._redis is None:
            try:
                self._redis = redis.from_url(  # type: ignore[call-overload]
                    self._redis_url,
                    decode_responses=True,
                )
            except RedisError as exc:  # pragma: no cover - network guarded
                logger.warning("Redis connection failed: %s", exc)
                self._redis = None
        return self._redis

    def save_conversation(
        self,
        snapshot: ConversationSnapshot,
        *,
        language: str,
    ) -> str:
        """Archive a conversation and return its record id."""

        created_at = datetime.now(timezone.utc)
        record_id = "conv-{}-{}".format(
            created_at.strftime("%Y%m%d%H%M%S"),
            uuid4().hex[:6],
        )
        record: Dict[str, Any] = {
            "id": record_id,
            "created_at": created_at.isoformat(),
            "created_at_ts": created_at.timestamp(),
            "language": language,
            "turn_count": len(snapshot.turns),
            **snapshot.to_dict(),
        }

        with self._archive_path.open("a", encoding="utf-8") as handle:
            for entry in self._format_jsonl(record_id, snapshot, created_at, language):
                handle.write(entry + "\n")

        client = self._get_redis()
        if client:
            key = f"conversation:{record_id}"
            try:
                client.set(key, json.dumps(record, ensure_ascii=False))
                client.zadd(INDEX_KEY, {record_id: record["created_at_ts"]})
            except RedisError as exc:  # pragma: no cover - best effort
                logger.warning("Redis persistence failed for %s: %s", key, exc)

        logger.info("Archived conversation %s", record_id)
        return record_id

    def load_records(self) -> List[Dict[str, Any]]:
        """Read archived conversations back, grouped by record id."""

        if not self._archive_path.exists():
            return []
        records: Dict[str, Dict[str, Any]] = {}
        current: Optional[Dict[str, Any]] = None
        with self._archive_path.open("r", encoding="utf-8") as handle:
            for line_number, raw_line in enumerate(handle, start=1):
                line = raw_line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(
                        "Skipping malformed archive line %s in %s",
                        line_number,
                        self._archive_path,
                    )
                    continue
                if not isinstance(entry, dict):
                    continue
                meta = entry.get("_meta")
                if isinstance(meta, dict):
                    record_id = str(meta.get("session_id", ""))
                    current = records.setdefault(
                        record_id,
                        {
                            "id": record_id,
                            "ts": meta.get("ts"),
                            "language": meta.get("language"),
                            "phase": meta.get("phase"),
                            "subject": meta.get("subject"),
                            "questions_asked": meta.get("questions_asked"),
                            "turns": [],
                        },
                    )
                    continue
                if current is None:
                    continue
                current["turns"].append(
                    {
                        "speaker": entry.get("speaker", ""),
                        "text": entry.get("message", ""),
                    }
                )
        return list(records.values())

    @staticmethod
    def _format_jsonl(
        record_id: str,
        snapshot: ConversationSnapshot,
        created_at: datetime,
        language: str,
    ) -> List[str]:
        meta: Dict[str, Dict[str, Any]] = {
            "_meta": {
                "session_id": record_id,
                "ts": _timestamp(created_at),
                "n_records": len(snapshot.turns),
                "language": language,
                "phase": snapshot.phase.value,
                "subject": (
                    snapshot.subject.to_dict() if snapshot.subject else None
                ),
                "questions_asked": snapshot.questions_asked,
            }
        }
        lines: List[str] = [json.dumps(meta, ensure_ascii=False)]
        for index, turn in enumerate(snapshot.turns, start=1):
            entry: Dict[str, Any] = {
                "speaker": turn.speaker.value,
                "message": turn.text,
                "index": index,
                "timestamp": _timestamp(created_at),
            }
            lines.append(json.dumps(entry, ensure_ascii=False))
        return lines
