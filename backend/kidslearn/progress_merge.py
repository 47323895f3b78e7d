"""Login-time merge of a device-local document with the stored one.

Used once, when a learner signs in on a device that already holds progress.
It is not a resolver for concurrent writers: later flushes still overwrite
the stored document wholesale.
"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel

from .progress_models import ProgressDocument, QuizAttempt, TopicProgress


def _extras(local: BaseModel, cloud: BaseModel) -> Dict[str, Any]:
    # Keys this version does not model survive the merge; local wins on clashes.
    return {**(cloud.model_extra or {}), **(local.model_extra or {})}


def _merge_attempts(a: Dict[str, QuizAttempt], b: Dict[str, QuizAttempt]) -> Dict[str, QuizAttempt]:
    merged = {quiz_id: attempt.model_copy(deep=True) for quiz_id, attempt in a.items()}
    for quiz_id, other in b.items():
        mine = merged.get(quiz_id)
        if mine is None:
            merged[quiz_id] = other.model_copy(deep=True)
            continue
        merged[quiz_id] = QuizAttempt(
            attempts=max(mine.attempts, other.attempts),
            correct=mine.correct or other.correct,
            first_try_correct=mine.first_try_correct or other.first_try_correct,
            **_extras(mine, other),
        )
    return merged


def _merge_topic(a: TopicProgress, b: TopicProgress) -> TopicProgress:
    return TopicProgress(
        quiz_attempts=_merge_attempts(a.quiz_attempts, b.quiz_attempts),
        essay_submitted=a.essay_submitted or b.essay_submitted,
        essay_char_count=max(a.essay_char_count, b.essay_char_count),
        essay_text=a.essay_text if len(a.essay_text) >= len(b.essay_text) else b.essay_text,
        reward_unlocked=a.reward_unlocked or b.reward_unlocked,
        **_extras(a, b),
    )


def merge_progress(local: ProgressDocument, cloud: ProgressDocument) -> ProgressDocument:
    """Keep the richer data per field so nothing either side earned is lost."""
    topics: Dict[str, TopicProgress] = {}
    for topic_id in {*local.topics, *cloud.topics}:
        mine = local.topics.get(topic_id)
        theirs = cloud.topics.get(topic_id)
        if mine is None:
            if theirs is not None:
                topics[topic_id] = theirs.model_copy(deep=True)
        elif theirs is None:
            topics[topic_id] = mine.model_copy(deep=True)
        else:
            topics[topic_id] = _merge_topic(mine, theirs)

    return ProgressDocument(
        xp=max(local.xp, cloud.xp),
        topics=topics,
        streak_days=max(local.streak_days, cloud.streak_days),
        # ISO-8601 UTC timestamps compare correctly as strings.
        last_visit=max(local.last_visit, cloud.last_visit),
        **_extras(local, cloud),
    )


__all__ = ["merge_progress"]
