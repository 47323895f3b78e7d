"""Quiz and essay mutations applied to an in-memory progress document.

XP is append-only: every call adds its grant to ``document.xp`` and the
total is never recomputed from attempt history, so a duplicated call from a
client can inflate it.
"""

from __future__ import annotations

import logging

from .progress_models import ProgressDocument, QuizAttempt, TopicProgress

logger = logging.getLogger(__name__)

DEFAULT_FIRST_TRY_XP = 100
DEFAULT_RETRY_XP = 50
DEFAULT_ESSAY_XP = 75


def record_quiz_attempt(
    document: ProgressDocument,
    topic_id: str,
    quiz_id: str,
    is_correct: bool,
    *,
    first_try_xp: int = DEFAULT_FIRST_TRY_XP,
    retry_xp: int = DEFAULT_RETRY_XP,
) -> int:
    """Record one answer and return the XP it earned.

    The first attempt earns ``first_try_xp`` when correct. A later attempt
    earns ``retry_xp`` only when it is the one that first solves the quiz;
    answering an already-solved quiz again earns nothing.
    """
    topic = document.ensure_topic(topic_id)
    attempt = topic.quiz_attempts.get(quiz_id)

    granted = 0
    if attempt is None:
        attempt = QuizAttempt(attempts=1, correct=is_correct, first_try_correct=is_correct)
        topic.quiz_attempts[quiz_id] = attempt
        if is_correct:
            granted = first_try_xp
    else:
        solved_now = is_correct and not attempt.correct
        attempt.attempts += 1
        attempt.correct = attempt.correct or is_correct
        if solved_now:
            granted = retry_xp

    granted = max(granted, 0)
    document.xp += granted
    logger.debug(
        "Quiz %s/%s attempt %d correct=%s granted=%d",
        topic_id,
        quiz_id,
        attempt.attempts,
        is_correct,
        granted,
    )
    return granted


def mark_essay_submitted(document: ProgressDocument, topic_id: str) -> bool:
    topic = document.ensure_topic(topic_id)
    if topic.essay_submitted:
        return False
    topic.essay_submitted = True
    return True


def record_essay_save(
    document: ProgressDocument,
    topic_id: str,
    text: str,
    *,
    xp: int = DEFAULT_ESSAY_XP,
) -> int:
    """Store the essay body and award ``xp`` on the first save only."""
    topic = document.ensure_topic(topic_id)
    topic.essay_text = text
    topic.essay_char_count = len(text)
    granted = max(xp, 0) if mark_essay_submitted(document, topic_id) else 0
    document.xp += granted
    return granted


def get_topic_progress(document: ProgressDocument, topic_id: str) -> TopicProgress:
    topic = document.topics.get(topic_id)
    if topic is None:
        return TopicProgress()
    return topic.model_copy(deep=True)


__all__ = [
    "DEFAULT_ESSAY_XP",
    "DEFAULT_FIRST_TRY_XP",
    "DEFAULT_RETRY_XP",
    "get_topic_progress",
    "mark_essay_submitted",
    "record_essay_save",
    "record_quiz_attempt",
]
