"""
Answer-Key Parser
=================
Decodes the lines after the answer-key header into one answer record per
question number. How a line's payload is read depends on the question
type recorded for that number, which the caller passes in explicitly.

    "1. B"            → ChoiceAnswer("B")
    "2. A, C"         → MultiChoiceAnswer(["A", "C"])
    "3. blue; Blue"   → TextAnswer(["blue", "Blue"])
    "4. 3.5"          → NumericAnswer(3.5)
    "5. A=2, B=1"     → MatchingAnswer([A→2, B→1])
    "6. B, A, C"      → OrderingAnswer(["B", "A", "C"])

Bad lines are rejected one at a time; nothing here is fatal.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Callable, Mapping, Sequence

from .errors import AnswerDecodeError
from .models import (
    AnswerKeyOutcome,
    AnswerRecord,
    Block,
    ChoiceAnswer,
    ConversionWarning,
    MatchingAnswer,
    MatchPair,
    MultiChoiceAnswer,
    NumericAnswer,
    OrderingAnswer,
    QuestionType,
    Stage,
    TextAnswer,
    WarningCode,
)
from .state_machine import ANSWER_KEY_HEADER_PATTERN

logger = logging.getLogger(__name__)

# ─── Line Patterns ────────────────────────────────────────────────────────────

# "Answer:", "Answers:", "Key:", "Ans:", "Correct Answer:"
ANSWER_PREFIX_PATTERN = re.compile(
    r"^\s*(?:correct\s+)?(?:answers?|key|ans)\s*:\s*", re.IGNORECASE
)

# "<number><separator> payload"; a separator is required
ANSWER_LINE_PATTERN = re.compile(r"^(\d+)\s*[.):\-]\s*(.*)$")

LETTER_TOKEN_PATTERN = re.compile(r"\b([A-Za-z])\b")
TRUE_FALSE_WORD_PATTERN = re.compile(r"\b(true|false)\b", re.IGNORECASE)
LIST_SEPARATOR_PATTERN = re.compile(r"[,;]")
PAIR_PATTERN = re.compile(r"^\s*([^=\-]+?)\s*[=\-]\s*([^=\-]+?)\s*$")


def normalize_line(line: str) -> str:
    """Strip known prefixes and collapse whitespace."""
    line = ANSWER_PREFIX_PATTERN.sub("", line, count=1)
    return " ".join(line.split())


def split_list(payload: str) -> list[str]:
    return [part.strip() for part in LIST_SEPARATOR_PATTERN.split(payload) if part.strip()]


# ─── Decoders ─────────────────────────────────────────────────────────────────


def decode_single_choice(payload: str) -> ChoiceAnswer:
    match = LETTER_TOKEN_PATTERN.search(payload)
    if not match:
        raise AnswerDecodeError(f"No option letter in {payload!r}")
    return ChoiceAnswer(letter=match.group(1).upper())


def decode_true_false(payload: str) -> ChoiceAnswer:
    match = LETTER_TOKEN_PATTERN.search(payload)
    if match:
        return ChoiceAnswer(letter=match.group(1).upper())
    word = TRUE_FALSE_WORD_PATTERN.search(payload)
    if word:
        return ChoiceAnswer(letter=word.group(1)[0].upper())
    raise AnswerDecodeError(f"No option letter or true/false in {payload!r}")


def decode_multi_choice(payload: str) -> MultiChoiceAnswer:
    letters = sorted({m.upper() for m in LETTER_TOKEN_PATTERN.findall(payload)})
    if not letters:
        raise AnswerDecodeError(f"No option letters in {payload!r}")
    return MultiChoiceAnswer(letters=letters)


def decode_text(payload: str) -> TextAnswer:
    literals = split_list(payload)
    if not literals:
        raise AnswerDecodeError("Empty answer")
    return TextAnswer(literals=literals)


def decode_numeric(payload: str) -> NumericAnswer:
    try:
        value = float(payload.strip())
    except ValueError:
        raise AnswerDecodeError(f"Not a number: {payload!r}")
    if not math.isfinite(value):
        raise AnswerDecodeError(f"Not a finite number: {payload!r}")
    return NumericAnswer(value=value)


def decode_matching(payload: str) -> MatchingAnswer:
    pairs = []
    for token in split_list(payload):
        match = PAIR_PATTERN.match(token)
        if not match:
            logger.debug(f"Skipping malformed matching pair {token!r}")
            continue
        pairs.append(MatchPair(premise=match.group(1), response=match.group(2)))
    if not pairs:
        raise AnswerDecodeError(f"No premise=response pairs in {payload!r}")
    return MatchingAnswer(pairs=pairs)


def decode_ordering(payload: str) -> OrderingAnswer:
    if LIST_SEPARATOR_PATTERN.search(payload):
        sequence = split_list(payload)
    else:
        sequence = payload.split()
    if not sequence:
        raise AnswerDecodeError("Empty sequence")
    return OrderingAnswer(sequence=sequence)


DECODERS: dict[QuestionType, Callable[[str], AnswerRecord]] = {
    QuestionType.MULTIPLE_CHOICE_SINGLE: decode_single_choice,
    QuestionType.TRUE_FALSE: decode_true_false,
    QuestionType.MULTIPLE_CHOICE_MULTI: decode_multi_choice,
    QuestionType.FILL_IN_BLANK_TEXT: decode_text,
    QuestionType.SHORT_ANSWER: decode_text,
    QuestionType.ESSAY: decode_text,
    QuestionType.FILL_IN_BLANK_NUMERIC: decode_numeric,
    QuestionType.MATCHING: decode_matching,
    QuestionType.ORDERING: decode_ordering,
}


# ─── Parser ───────────────────────────────────────────────────────────────────


class AnswerKeyParser:
    """Turns answer-key blocks into answer records keyed by question number."""

    def __init__(self, decoders: Mapping[QuestionType, Callable[[str], AnswerRecord]] = DECODERS):
        self.decoders = dict(decoders)
        self.warnings: list[ConversionWarning] = []

    def parse(
        self,
        blocks: Sequence[Block],
        type_by_number: Mapping[int, QuestionType],
    ) -> AnswerKeyOutcome:
        self.warnings = []
        answers: dict[int, AnswerRecord] = {}

        for block in blocks:
            for raw_line in block.text.splitlines():
                if not raw_line.strip():
                    continue
                if ANSWER_KEY_HEADER_PATTERN.match(raw_line):
                    logger.debug(f"Ignoring repeated answer-key header {raw_line!r}")
                    continue
                try:
                    number, record = self._decode_line(raw_line, type_by_number)
                except AnswerDecodeError as e:
                    logger.warning(f"Rejected answer line {raw_line.strip()!r}: {e.internal_message}")
                    self._warn(
                        WarningCode.ANSWER_DECODE_ERROR,
                        e.internal_message,
                        question_number=e.question_number,
                        line=raw_line.strip(),
                    )
                    continue
                if record is None:
                    continue

                if number in answers:
                    logger.warning(f"Duplicate answer for question {number}; keeping the last one")
                    self._warn(
                        WarningCode.DUPLICATE_ANSWER,
                        f"Question {number} has more than one answer line; the last one was used",
                        question_number=number,
                        line=raw_line.strip(),
                    )
                answers[number] = record

        logger.info(f"Decoded answers for {len(answers)} questions")
        return AnswerKeyOutcome(answers=answers, warnings=self.warnings)

    def _decode_line(self, raw_line: str, type_by_number: Mapping[int, QuestionType]):
        line = normalize_line(raw_line)
        match = ANSWER_LINE_PATTERN.match(line)
        if not match:
            raise AnswerDecodeError(f"No leading '<number>.' in {line!r}", line=line)

        number = int(match.group(1))
        payload = ANSWER_PREFIX_PATTERN.sub("", match.group(2), count=1)

        qtype = type_by_number.get(number)
        if qtype is None:
            logger.warning(f"Answer for unknown question {number} skipped")
            self._warn(
                WarningCode.UNKNOWN_QUESTION_NUMBER,
                f"Answer key lists question {number}, which does not exist",
                question_number=number,
                line=line,
            )
            return number, None

        decoder = self.decoders.get(qtype)
        if decoder is None:
            logger.warning(f"No answer decoder for {qtype.value}; question {number} skipped")
            self._warn(
                WarningCode.NO_DECODER,
                f"Answers for {qtype.value} questions cannot be read",
                question_number=number,
                line=line,
            )
            return number, None

        try:
            return number, decoder(payload)
        except AnswerDecodeError as e:
            e.question_number = number
            e.line = line
            e.internal_message = f"Question {number} ({qtype.value}): {e.internal_message}"
            raise

    def _warn(self, code: WarningCode, message: str, question_number=None, line=None):
        self.warnings.append(ConversionWarning(
            stage=Stage.ANSWER_KEY,
            code=code,
            message=message,
            question_number=question_number,
            line=line,
        ))
