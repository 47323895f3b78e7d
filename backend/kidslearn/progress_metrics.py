"""Completion and accuracy percentages shown on the journey map."""

from __future__ import annotations

from typing import Mapping, Optional

from .progress_models import ProgressDocument

QUIZ_WEIGHT = 80
ESSAY_WEIGHT = 20


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def topic_completion(document: ProgressDocument, topic_id: str, quiz_count: int) -> int:
    topic = document.topics.get(topic_id)
    if topic is None or quiz_count <= 0:
        return 0
    correct = sum(1 for attempt in topic.quiz_attempts.values() if attempt.correct)
    correct = min(correct, quiz_count)
    quiz_portion = correct / quiz_count * QUIZ_WEIGHT
    essay_portion = ESSAY_WEIGHT if topic.essay_submitted else 0
    return _round_half_up(quiz_portion + essay_portion)


def lesson_completion(document: ProgressDocument, quiz_counts: Mapping[str, int]) -> int:
    """Mean completion over a lesson's active topics (topic id -> quiz count)."""
    if not quiz_counts:
        return 0
    total = sum(topic_completion(document, topic_id, count) for topic_id, count in quiz_counts.items())
    return _round_half_up(total / len(quiz_counts))


def curriculum_completion(document: ProgressDocument, lessons: Mapping[str, Mapping[str, int]]) -> int:
    if not lessons:
        return 0
    total = sum(lesson_completion(document, quiz_counts) for quiz_counts in lessons.values())
    return _round_half_up(total / len(lessons))


def accuracy(document: ProgressDocument, topic_id: Optional[str] = None) -> int:
    """Share of attempted quizzes that were eventually answered correctly."""
    topic_ids = [topic_id] if topic_id is not None else list(document.topics)
    attempted = 0
    correct = 0
    for key in topic_ids:
        topic = document.topics.get(key)
        if topic is None:
            continue
        for attempt in topic.quiz_attempts.values():
            attempted += 1
            if attempt.correct:
                correct += 1
    if attempted == 0:
        return 0
    return _round_half_up(correct / attempted * 100)


__all__ = [
    "accuracy",
    "curriculum_completion",
    "lesson_completion",
    "topic_completion",
]
