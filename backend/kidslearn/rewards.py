"""Reward gates: requirement variants, the unlock predicate and the one-way latch."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, Any, Callable, Dict, List, Literal, Mapping, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter

from .progress_models import ProgressDocument, TopicProgress
from .telemetry import emit_event

logger = logging.getLogger(__name__)


class AllQuizzesCorrect(BaseModel):
    kind: Literal["all-quizzes-correct"] = "all-quizzes-correct"
    quiz_ids: List[str] = Field(default_factory=list)
    label: str = "Answer every quiz correctly"


class EssaySavedWithMinChars(BaseModel):
    kind: Literal["essay-saved-with-min-chars"] = "essay-saved-with-min-chars"
    min_chars: int = Field(default=0, ge=0)
    label: str = "Save your essay"


RewardRequirement = Annotated[
    Union[AllQuizzesCorrect, EssaySavedWithMinChars],
    Field(discriminator="kind"),
]


class RewardGate(BaseModel):
    """Static unlock rules for one topic's reward, taken from lesson content."""

    topic_id: str
    reward_id: str = ""
    requirements: List[RewardRequirement] = Field(default_factory=list)


def _all_quizzes_correct(topic: TopicProgress, requirement: AllQuizzesCorrect) -> bool:
    for quiz_id in requirement.quiz_ids:
        attempt = topic.quiz_attempts.get(quiz_id)
        if attempt is None or not attempt.correct:
            return False
    return True


def _essay_saved(topic: TopicProgress, requirement: EssaySavedWithMinChars) -> bool:
    return topic.essay_submitted and topic.essay_char_count >= requirement.min_chars


_CHECKS: Dict[type, Callable[[TopicProgress, Any], bool]] = {
    AllQuizzesCorrect: _all_quizzes_correct,
    EssaySavedWithMinChars: _essay_saved,
}


def requirement_met(topic: TopicProgress, requirement: BaseModel) -> bool:
    check = _CHECKS.get(type(requirement))
    if check is None:
        raise TypeError(f"Unsupported reward requirement: {type(requirement).__name__}")
    return check(topic, requirement)


def requirement_status(document: ProgressDocument, gate: RewardGate) -> List[Tuple[BaseModel, bool]]:
    topic = document.topics.get(gate.topic_id) or TopicProgress()
    return [(requirement, requirement_met(topic, requirement)) for requirement in gate.requirements]


def is_reward_unlockable(document: ProgressDocument, gate: RewardGate) -> bool:
    """True when every requirement currently holds. Never mutates ``document``."""
    topic = document.topics.get(gate.topic_id)
    if topic is None or not gate.requirements:
        return False
    return all(requirement_met(topic, requirement) for requirement in gate.requirements)


def mark_reward_unlocked(document: ProgressDocument, topic_id: str) -> bool:
    """Set the latch and report whether this call flipped it. Nothing here clears it."""
    topic = document.ensure_topic(topic_id)
    if topic.reward_unlocked:
        return False
    topic.reward_unlocked = True
    return True


def unlock_if_ready(document: ProgressDocument, gate: RewardGate) -> bool:
    """Latch the reward when its gate is satisfied; True means play the celebration."""
    topic = document.topics.get(gate.topic_id)
    if topic is not None and topic.reward_unlocked:
        return False
    if not is_reward_unlockable(document, gate):
        return False
    mark_reward_unlocked(document, gate.topic_id)
    emit_event("reward_unlocked", topic_id=gate.topic_id, reward_id=gate.reward_id)
    return True


_GATES_ADAPTER = TypeAdapter(List[RewardGate])


def load_reward_gates(source: Union[Path, str, List[Mapping[str, Any]]]) -> Dict[str, RewardGate]:
    """Load gates from a JSON file path or already-parsed content, keyed by topic id."""
    if isinstance(source, (str, Path)):
        with Path(source).open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
    else:
        raw = source
    gates = _GATES_ADAPTER.validate_python(raw)
    indexed: Dict[str, RewardGate] = {}
    for gate in gates:
        if gate.topic_id in indexed:
            logger.warning("Duplicate reward gate for topic %s; keeping the last one", gate.topic_id)
        indexed[gate.topic_id] = gate
    return indexed


__all__ = [
    "AllQuizzesCorrect",
    "EssaySavedWithMinChars",
    "RewardGate",
    "RewardRequirement",
    "is_reward_unlockable",
    "load_reward_gates",
    "mark_reward_unlocked",
    "requirement_met",
    "requirement_status",
    "unlock_if_ready",
]
