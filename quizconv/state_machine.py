"""
Structural Parser
=================
State machine that recovers numbered questions, lettered options and
embedded images from an ordered block stream, stopping at the answer-key
header.

Block classification is an ordered table of pattern → handler rules
(BLOCK_RULES). The first rule whose pattern matches, and whose draft
requirement is met, handles the block.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence

from .errors import ImageProcessingError, StructuralError
from .images import ImageRegistry, placeholder_ids
from .models import (
    IMAGE_PLACEHOLDER_TEMPLATE,
    Block,
    ConversionWarning,
    InlineImage,
    Option,
    ParseOutcome,
    QuestionDraft,
    QuestionType,
    Stage,
    WarningCode,
)
from .type_inference import TypeInferenceEngine

logger = logging.getLogger(__name__)

# ─── Anchor Patterns ──────────────────────────────────────────────────────────

# "Answer Key", "ANSWERS:", "key"
ANSWER_KEY_HEADER_PATTERN = re.compile(
    r"^\s*(?:answer\s+key|answers|key)\s*:?\s*$", re.IGNORECASE
)

# "1. Text", "12) Text", "3 - Text"
QUESTION_PATTERN = re.compile(r"^\s*(\d+)\s*[.)\-]\s+(.*)$", re.DOTALL)

# "A. Text", "b) Text", "(C) Text"
OPTION_PATTERN = re.compile(
    r"^\s*(?:\(\s*([A-Za-z])\s*\)|([A-Za-z])\s*[.)])\s+(\S.*)$", re.DOTALL
)

ANY_TEXT_PATTERN = re.compile(r"", re.DOTALL)

# Stands in for images when classifying a block whose only content is a picture.
IMAGE_MARKER = IMAGE_PLACEHOLDER_TEMPLATE.format(id="pending")

# Text opening with one of these joins the stem without a space.
CLOSING_PUNCTUATION = ".,;:!?)]}"


@dataclass(frozen=True)
class BlockRule:
    """One row of the classification table."""
    name: str
    pattern: re.Pattern
    handler: str
    requires_draft: bool = False


BLOCK_RULES: tuple[BlockRule, ...] = (
    BlockRule("answer_key_header", ANSWER_KEY_HEADER_PATTERN, "_on_answer_key"),
    BlockRule("question_marker", QUESTION_PATTERN, "_on_question"),
    BlockRule("option", OPTION_PATTERN, "_on_option", requires_draft=True),
    BlockRule("continuation", ANY_TEXT_PATTERN, "_on_continuation", requires_draft=True),
    BlockRule("preamble", ANY_TEXT_PATTERN, "_on_preamble"),
)


def classify(
    text: str,
    has_draft: bool,
    rules: Sequence[BlockRule] = BLOCK_RULES,
) -> tuple[BlockRule, re.Match]:
    """Return the first rule that handles `text`, with its match."""
    for rule in rules:
        if rule.requires_draft and not has_draft:
            continue
        match = rule.pattern.match(text)
        if match:
            return rule, match
    raise ValueError("Block rule table has no catch-all rule")


def join_text(existing: str, addition: str) -> str:
    """Append continuation text with a single normalizing space."""
    if not existing:
        return addition
    if not addition:
        return existing
    needs_space = not existing[-1].isspace() and addition[0] not in CLOSING_PUNCTUATION
    return existing + (" " if needs_space else "") + addition


class ParserState(Enum):
    """Where the parser is in the document."""
    SEEKING_QUESTION = "SEEKING_QUESTION"
    QUESTION_BODY = "QUESTION_BODY"
    ANSWER_KEY = "ANSWER_KEY"


@dataclass
class _OpenDraft:
    """A question still accepting continuation text and options."""
    number: int
    stem: str
    type: QuestionType
    options: list[Option] = field(default_factory=list)
    duplicate: bool = False


class StructuralParser:
    """
    Transforms an ordered block sequence into finalized QuestionDrafts,
    an image registry and a question-type map.
    """

    def __init__(
        self,
        inference: Optional[TypeInferenceEngine] = None,
        type_overrides: Optional[dict[int, QuestionType]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.inference = inference or TypeInferenceEngine()
        self.type_overrides = dict(type_overrides or {})
        self._id_factory = id_factory
        self.reset()

    def reset(self):
        """Reset the state machine for a fresh parsing run."""
        self.state = ParserState.SEEKING_QUESTION
        self.current: Optional[_OpenDraft] = None
        self.drafts: list[QuestionDraft] = []
        self.type_map: dict[int, QuestionType] = {}
        self.seen_numbers: set[int] = set()
        self.warnings: list[ConversionWarning] = []
        self.boundary_index: Optional[int] = None
        self.registry = ImageRegistry(self._id_factory)
        self.inference.reset()

    def parse(self, blocks: Sequence[Block]) -> ParseOutcome:
        """
        Parse blocks up to the answer-key header.

        Raises:
            StructuralError: If no question was finalized.
        """
        self.reset()

        for index, block in enumerate(blocks):
            if block.is_empty:
                continue
            self._process_block(index, block)
            if self.state == ParserState.ANSWER_KEY:
                break

        # Finalize the last question when the document has no answer key
        self._finalize_current()

        if not self.drafts:
            raise StructuralError(
                f"No numbered question found in {len(blocks)} blocks",
                "No questions could be found. Start each question with a number "
                "followed by a period or parenthesis, e.g. '1. What is 2+2?'.",
            )

        logger.info(
            f"Parsed {len(self.drafts)} questions and {len(self.registry)} images"
            + (f", answer key at block {self.boundary_index}" if self.boundary_index is not None else "")
        )

        return ParseOutcome(
            drafts=self.drafts,
            images=self.registry.assets,
            boundary_index=self.boundary_index,
            type_map=dict(self.type_map),
            warnings=self.warnings,
        )

    # ─── Block Handling ───────────────────────────────────────────────────

    def _process_block(self, index: int, block: Block):
        has_draft = self.current is not None
        rule, match = classify(block.text, has_draft)
        if rule.name == "continuation" and block.inline_images:
            # "A. " followed by a picture is an image-only option
            marked, marked_match = classify(f"{block.text.rstrip()} {IMAGE_MARKER}", has_draft)
            if marked.name == "option":
                rule, match = marked, marked_match
        logger.debug(f"Block {index}: {rule.name}")
        getattr(self, rule.handler)(index, block, match)

    def _on_answer_key(self, index: int, block: Block, match: re.Match):
        self._finalize_current()
        self._drop_images(block, "answer key header")
        self.boundary_index = index
        self.state = ParserState.ANSWER_KEY
        logger.info(f"Found answer key header at block {index}")

    def _on_question(self, index: int, block: Block, match: re.Match):
        self._finalize_current()

        number = int(match.group(1))
        stem, pending = self._splice(block, match.start(2))
        stem = stem.strip()

        duplicate = number in self.seen_numbers
        if duplicate:
            logger.warning(f"Duplicate question number {number} at block {index}")
        self.seen_numbers.add(number)

        provisional = self.inference.infer(stem)
        self.current = _OpenDraft(
            number=number,
            stem=stem,
            type=provisional,
            duplicate=duplicate,
        )
        if not duplicate:
            self.type_map[number] = provisional
        self.state = ParserState.QUESTION_BODY

        self._register(pending)
        logger.info(f"Detected question {number} (provisional type {provisional.value})")

    def _on_option(self, index: int, block: Block, match: re.Match):
        letter = (match.group(1) or match.group(2)).upper()
        text, pending = self._splice(block, match.start(3))
        self.current.options.append(Option(letter=letter, text=text.strip()))
        self._register(pending)
        logger.debug(f"Option {letter} for question {self.current.number}")

    def _on_continuation(self, index: int, block: Block, match: re.Match):
        text, pending = self._splice(block, 0)
        text = text.strip()
        self.current.stem = join_text(self.current.stem, text)
        self._register(pending)

    def _on_preamble(self, index: int, block: Block, match: re.Match):
        snippet = block.text.strip()[:50]
        logger.info(f"Skipping content before first numbered question (block {index}): {snippet!r}")
        self._warn(
            WarningCode.UNANCHORED_PREAMBLE,
            f"Text before the first question was ignored: {snippet!r}",
        )
        self._drop_images(block, "preamble")

    # ─── Images ───────────────────────────────────────────────────────────

    def _splice(self, block: Block, start: int) -> tuple[str, list[tuple[str, InlineImage]]]:
        """Splice placeholders into the block text from `start` onwards."""
        segment = block.text[start:]
        shifted = [
            img if img.offset is None
            else img.model_copy(update={"offset": max(0, img.offset - start)})
            for img in block.inline_images
        ]
        return self.registry.splice(segment, shifted)

    def _register(self, pending: list[tuple[str, InlineImage]]):
        draft = self.current
        for image_id, image in pending:
            if draft is None or draft.duplicate:
                self._warn(
                    WarningCode.ORPHAN_IMAGE,
                    f"Image {image_id} belongs to a discarded question",
                )
                continue
            try:
                self.registry.register(image_id, image, draft.number)
            except ImageProcessingError as e:
                logger.warning(f"Question {draft.number}: {e.internal_message}")
                self._warn(
                    WarningCode.IMAGE_PROCESSING_ERROR,
                    e.internal_message,
                    question_number=draft.number,
                )

    def _drop_images(self, block: Block, where: str):
        for _ in block.inline_images:
            logger.warning(f"Orphan image in {where} dropped")
            self._warn(WarningCode.ORPHAN_IMAGE, f"Image in {where} was ignored")

    # ─── Finalization ─────────────────────────────────────────────────────

    def _finalize_current(self):
        """Freeze the open draft, re-infer its type and record it."""
        draft = self.current
        self.current = None
        if draft is None:
            return

        if draft.duplicate:
            self._warn(
                WarningCode.DUPLICATE_QUESTION_NUMBER,
                f"Question number {draft.number} appears more than once; "
                f"the later question was ignored",
                question_number=draft.number,
            )
            return

        seen = len(self.inference.ambiguities)
        final_type = self.inference.infer(draft.stem, draft.options)
        for ambiguity in self.inference.ambiguities[seen:]:
            self.warnings.append(ConversionWarning(
                stage=Stage.INFERENCE,
                code=WarningCode.TYPE_INFERENCE_AMBIGUITY,
                message=ambiguity.internal_message,
                question_number=draft.number,
            ))

        if final_type != draft.type:
            logger.debug(
                f"Re-inferred question {draft.number}: "
                f"{draft.type.value} -> {final_type.value}"
            )

        override = self.type_overrides.get(draft.number)
        if override is not None:
            logger.info(f"Question {draft.number}: type overridden to {override.value}")
            final_type = override

        self.type_map[draft.number] = final_type

        referenced = placeholder_ids(draft.stem)
        for option in draft.options:
            referenced.extend(placeholder_ids(option.text))
        image_ids = [i for i in referenced if i in self.registry]

        self.drafts.append(QuestionDraft(
            number=draft.number,
            stem=draft.stem,
            options=list(draft.options),
            type=final_type,
            has_images=bool(image_ids),
            image_ids=image_ids,
        ))
        logger.info(
            f"Finalized question {draft.number}: type={final_type.value}, "
            f"options={len(draft.options)}, images={len(image_ids)}"
        )

    def _warn(self, code: WarningCode, message: str, question_number: Optional[int] = None):
        self.warnings.append(ConversionWarning(
            stage=Stage.PARSE,
            code=code,
            message=message,
            question_number=question_number,
        ))
