"""
Combiner
========
Joins question drafts with their decoded answers by question number,
producing the immutable intermediate model every export backend reads.
"""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from .models import (
    ANSWER_KIND_BY_TYPE,
    AnswerRecord,
    ConversionWarning,
    QuestionAnswer,
    QuestionDraft,
    Stage,
    WarningCode,
)

logger = logging.getLogger(__name__)


def combine(
    drafts: Sequence[QuestionDraft],
    answers: Mapping[int, AnswerRecord],
) -> tuple[list[QuestionAnswer], list[ConversionWarning]]:
    """
    Attach each draft's answer record, keeping document order.

    Returns:
        (questions, warnings)
    """
    questions: list[QuestionAnswer] = []
    warnings: list[ConversionWarning] = []

    for draft in drafts:
        if draft.number is None:
            logger.warning("Dropping a question draft without a number")
            continue

        answer = answers.get(draft.number)
        if answer is None:
            logger.warning(f"Question {draft.number} has no answer")
            warnings.append(ConversionWarning(
                stage=Stage.COMBINE,
                code=WarningCode.MISSING_ANSWER,
                message=f"Question {draft.number} has no answer in the answer key",
                question_number=draft.number,
            ))
        elif not isinstance(answer, ANSWER_KIND_BY_TYPE[draft.type]):
            logger.warning(
                f"Question {draft.number}: {answer.kind} answer does not fit "
                f"type {draft.type.value}, discarded"
            )
            warnings.append(ConversionWarning(
                stage=Stage.COMBINE,
                code=WarningCode.ANSWER_SHAPE_MISMATCH,
                message=(
                    f"The answer for question {draft.number} does not fit a "
                    f"{draft.type.value} question and was ignored"
                ),
                question_number=draft.number,
            ))
            answer = None

        questions.append(QuestionAnswer(
            number=draft.number,
            stem=draft.stem,
            options=list(draft.options),
            type=draft.type,
            has_images=draft.has_images,
            image_ids=list(draft.image_ids),
            answer=answer,
        ))

    logger.info(
        f"Combined {len(questions)} questions, "
        f"{sum(1 for q in questions if q.answer is not None)} with answers"
    )
    return questions, warnings
