"""
Type Inference Engine
=====================
Classifies a question from textual and structural signals.

Rules are evaluated in table order and the first match wins:

    1. stem mentions both "true" and "false"        → TRUE_FALSE
    2. stem says "matching" or starts with "match"  → MATCHING
    3. stem says "ordering" / "order" / "sequence"  → ORDERING
    4. stem contains a run of 3+ underscores        → FILL_IN_BLANK_TEXT
    5. option letters are exactly {T, F}            → TRUE_FALSE
    6. two or more options                          → MULTIPLE_CHOICE_SINGLE
    7. anything else                                → SHORT_ANSWER

Rules 5 and 6 only apply once the options are known (options is not None).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .errors import TypeInferenceAmbiguity
from .models import Option, QuestionType

logger = logging.getLogger(__name__)

DEFAULT_TYPE = QuestionType.SHORT_ANSWER

_TRUE_WORD = re.compile(r"\btrue\b", re.IGNORECASE)
_FALSE_WORD = re.compile(r"\bfalse\b", re.IGNORECASE)
_MATCHING_WORD = re.compile(r"\bmatching\b", re.IGNORECASE)
_MATCH_START = re.compile(r"^\s*match\b", re.IGNORECASE)
_ORDERING_WORD = re.compile(r"\b(?:ordering|order|sequence)\b", re.IGNORECASE)
_BLANK_RUN = re.compile(r"_{3,}")


@dataclass(frozen=True)
class InferenceRule:
    """One row of the precedence table."""
    name: str
    result: QuestionType
    test: Callable[[str, Optional[Sequence[Option]]], bool]
    needs_options: bool = False
    keyword: bool = False


def _is_true_false_stem(stem: str, options) -> bool:
    return bool(_TRUE_WORD.search(stem) and _FALSE_WORD.search(stem))


def _is_matching_stem(stem: str, options) -> bool:
    return bool(_MATCHING_WORD.search(stem) or _MATCH_START.match(stem))


def _is_ordering_stem(stem: str, options) -> bool:
    return bool(_ORDERING_WORD.search(stem))


def _has_blank(stem: str, options) -> bool:
    return bool(_BLANK_RUN.search(stem))


def _has_true_false_letters(stem: str, options) -> bool:
    return {o.letter.upper() for o in options} == {"T", "F"}


def _has_choices(stem: str, options) -> bool:
    return len(options) >= 2


INFERENCE_RULES: tuple[InferenceRule, ...] = (
    InferenceRule("true_false_keywords", QuestionType.TRUE_FALSE, _is_true_false_stem, keyword=True),
    InferenceRule("matching_keyword", QuestionType.MATCHING, _is_matching_stem, keyword=True),
    InferenceRule("ordering_keyword", QuestionType.ORDERING, _is_ordering_stem, keyword=True),
    InferenceRule("blank_run", QuestionType.FILL_IN_BLANK_TEXT, _has_blank, keyword=True),
    InferenceRule("true_false_options", QuestionType.TRUE_FALSE, _has_true_false_letters, needs_options=True),
    InferenceRule("choice_options", QuestionType.MULTIPLE_CHOICE_SINGLE, _has_choices, needs_options=True),
)


class TypeInferenceEngine:
    """
    Stateless apart from the ambiguity log of the current run.
    """

    def __init__(self, rules: Sequence[InferenceRule] = INFERENCE_RULES):
        self.rules = tuple(rules)
        self.ambiguities: list[TypeInferenceAmbiguity] = []

    def reset(self):
        self.ambiguities = []

    def explain(self, stem: str, options: Optional[Sequence[Option]] = None) -> list[InferenceRule]:
        """Every rule that matches, in precedence order."""
        stem = stem or ""
        matched = []
        for rule in self.rules:
            if rule.needs_options and options is None:
                continue
            if rule.test(stem, options or []):
                matched.append(rule)
        return matched

    def infer(self, stem: str, options: Optional[Sequence[Option]] = None) -> QuestionType:
        """Return the question type for a stem and (optionally) its options."""
        try:
            return self._resolve(stem, options)
        except TypeInferenceAmbiguity as e:
            logger.debug(e.internal_message)
            self.ambiguities.append(e)
            return e.fallback

    def _resolve(self, stem: str, options: Optional[Sequence[Option]]) -> QuestionType:
        matched = self.explain(stem, options)
        if not matched:
            return DEFAULT_TYPE

        keyword_types = []
        for rule in matched:
            if rule.keyword and rule.result not in keyword_types:
                keyword_types.append(rule.result)
        if len(keyword_types) > 1:
            raise TypeInferenceAmbiguity(
                f"Stem keywords suggest {', '.join(t.value for t in keyword_types)}; "
                f"using {matched[0].result.value}",
                candidates=keyword_types,
                fallback=matched[0].result,
            )

        return matched[0].result
