"""Progress document models shared by the store, the sync client and the recorder."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _WireModel(BaseModel):
    """Base for models serialised with camelCase keys; unknown keys survive a round trip."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class QuizAttempt(_WireModel):
    attempts: int = Field(default=1, ge=1)
    correct: bool = False
    first_try_correct: bool = False


class TopicProgress(_WireModel):
    quiz_attempts: Dict[str, QuizAttempt] = Field(default_factory=dict)
    essay_submitted: bool = False
    essay_char_count: int = Field(default=0, ge=0)
    essay_text: str = ""
    reward_unlocked: bool = False


class ProgressDocument(_WireModel):
    xp: int = Field(default=0, ge=0)
    topics: Dict[str, TopicProgress] = Field(default_factory=dict)
    streak_days: int = Field(default=0, ge=0)
    last_visit: str = Field(default_factory=utc_timestamp)

    @classmethod
    def empty(cls) -> "ProgressDocument":
        return cls()

    @classmethod
    def from_wire(cls, payload: Any) -> "ProgressDocument":
        return cls.model_validate(payload)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def ensure_topic(self, topic_id: str) -> TopicProgress:
        topic = self.topics.get(topic_id)
        if topic is None:
            topic = TopicProgress()
            self.topics[topic_id] = topic
        return topic


def empty_progress_payload() -> Dict[str, Any]:
    """Wire payload written when a username is first claimed."""
    return {"topics": {}, "xp": 0, "streakDays": 0, "lastVisit": utc_timestamp()}


def _is_finite_json(value: Any) -> bool:
    if isinstance(value, float):
        return math.isfinite(value)
    if isinstance(value, dict):
        return all(_is_finite_json(item) for item in value.values())
    if isinstance(value, list):
        return all(_is_finite_json(item) for item in value)
    return True


def is_progress_payload(payload: Any) -> bool:
    """Shape check applied to incoming writes: numeric xp, object topics, finite numbers throughout."""
    if not isinstance(payload, dict):
        return False
    xp = payload.get("xp")
    if isinstance(xp, bool) or not isinstance(xp, (int, float)):
        return False
    if not isinstance(payload.get("topics"), dict):
        return False
    # NaN and Infinity parse from request bodies but cannot be rendered back as JSON.
    return _is_finite_json(payload)


__all__ = [
    "ProgressDocument",
    "QuizAttempt",
    "TopicProgress",
    "empty_progress_payload",
    "is_progress_payload",
    "utc_timestamp",
]
