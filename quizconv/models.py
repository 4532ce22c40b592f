"""
Data Models
===========
Pydantic models for every stage of a conversion run.

    Block / InlineImage      → input supplied by a block adapter
    ImageAsset               → image registry entry
    QuestionDraft / Option   → structural parser output
    AnswerRecord (union)     → answer-key parser output
    QuestionAnswer           → combined intermediate model (IR)
    ExportBundle             → backend output handed to the package assembler
    ConversionReport         → post-run validation summary
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

IMAGE_PLACEHOLDER_TEMPLATE = "[IMG:{id}]"


# ─── Enums ────────────────────────────────────────────────────────────────────


class BlockKind(str, Enum):
    """Paragraph-level unit kinds a block adapter can emit."""
    PARAGRAPH = "paragraph"
    LIST_ITEM = "list_item"


class QuestionType(str, Enum):
    """Closed set of question types the pipeline understands."""
    MULTIPLE_CHOICE_SINGLE = "multiple_choice_single"
    MULTIPLE_CHOICE_MULTI = "multiple_choice_multi"
    TRUE_FALSE = "true_false"
    FILL_IN_BLANK_TEXT = "fill_in_blank_text"
    FILL_IN_BLANK_NUMERIC = "fill_in_blank_numeric"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"
    MATCHING = "matching"
    ORDERING = "ordering"


class Stage(str, Enum):
    """Pipeline stage that recorded a warning."""
    PARSE = "parse"
    INFERENCE = "inference"
    ANSWER_KEY = "answer_key"
    COMBINE = "combine"
    EXPORT = "export"


class WarningCode(str, Enum):
    """Kinds of non-fatal problems accumulated during a run."""
    UNANCHORED_PREAMBLE = "unanchored_preamble"
    ORPHAN_IMAGE = "orphan_image"
    IMAGE_PROCESSING_ERROR = "image_processing_error"
    DUPLICATE_QUESTION_NUMBER = "duplicate_question_number"
    TYPE_INFERENCE_AMBIGUITY = "type_inference_ambiguity"
    ANSWER_DECODE_ERROR = "answer_decode_error"
    UNKNOWN_QUESTION_NUMBER = "unknown_question_number"
    NO_DECODER = "no_decoder"
    DUPLICATE_ANSWER = "duplicate_answer"
    MISSING_ANSWER = "missing_answer"
    ANSWER_SHAPE_MISMATCH = "answer_shape_mismatch"
    BACKEND_GENERATION_ERROR = "backend_generation_error"
    DEFAULTED_ANSWER = "defaulted_answer"
    DUPLICATE_OPTION_LETTER = "duplicate_option_letter"
    PADDED_OPTIONS = "padded_options"
    UNRESOLVED_IMAGE = "unresolved_image"


# ─── Block Models ─────────────────────────────────────────────────────────────


class InlineImage(BaseModel):
    """
    An image embedded in a block.
    `offset` is the character position in the block text where the image
    sat; None places it after the text.
    """
    model_config = ConfigDict(ser_json_bytes="base64")

    data: bytes = Field(repr=False)
    width: Optional[int] = None
    height: Optional[int] = None
    mime_type: str = "image/png"
    offset: Optional[int] = Field(default=None, ge=0)


class Block(BaseModel):
    """One paragraph or list item of the source document."""
    kind: BlockKind = BlockKind.PARAGRAPH
    text: str = ""
    inline_images: list[InlineImage] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.inline_images


class ImageAsset(BaseModel):
    """A registered image, addressable from text through its placeholder."""
    model_config = ConfigDict(ser_json_bytes="base64")

    id: str
    data: bytes = Field(repr=False)
    width: Optional[int] = None
    height: Optional[int] = None
    mime_type: str = "image/png"
    filename: str
    question_number: int = 0

    @computed_field
    @property
    def placeholder(self) -> str:
        return IMAGE_PLACEHOLDER_TEMPLATE.format(id=self.id)


# ─── Question Models ──────────────────────────────────────────────────────────


class Option(BaseModel):
    """A lettered choice. Letters are stored upper-case."""
    model_config = ConfigDict(frozen=True)

    letter: str
    text: str = ""


class QuestionDraft(BaseModel):
    """A finalized question as recovered by the structural parser."""
    model_config = ConfigDict(frozen=True)

    number: int
    stem: str = ""
    options: list[Option] = Field(default_factory=list)
    type: QuestionType = QuestionType.SHORT_ANSWER
    has_images: bool = False
    image_ids: list[str] = Field(default_factory=list)

    @property
    def option_letters(self) -> list[str]:
        return [o.letter for o in self.options]


# ─── Answer Records ───────────────────────────────────────────────────────────


class ChoiceAnswer(BaseModel):
    """Single letter: multiple choice (single) and true/false."""
    model_config = ConfigDict(frozen=True)
    kind: Literal["choice"] = "choice"
    letter: str


class MultiChoiceAnswer(BaseModel):
    """Sorted, de-duplicated set of letters."""
    model_config = ConfigDict(frozen=True)
    kind: Literal["multi_choice"] = "multi_choice"
    letters: list[str]


class TextAnswer(BaseModel):
    """Acceptable literals for free-text questions."""
    model_config = ConfigDict(frozen=True)
    kind: Literal["text"] = "text"
    literals: list[str]


class NumericAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["numeric"] = "numeric"
    value: float


class MatchPair(BaseModel):
    model_config = ConfigDict(frozen=True)
    premise: str
    response: str


class MatchingAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["matching"] = "matching"
    pairs: list[MatchPair]


class OrderingAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["ordering"] = "ordering"
    sequence: list[str]


AnswerRecord = Annotated[
    Union[
        ChoiceAnswer,
        MultiChoiceAnswer,
        TextAnswer,
        NumericAnswer,
        MatchingAnswer,
        OrderingAnswer,
    ],
    Field(discriminator="kind"),
]

# Every question type decodes to exactly one record shape.
ANSWER_KIND_BY_TYPE: dict[QuestionType, type] = {
    QuestionType.MULTIPLE_CHOICE_SINGLE: ChoiceAnswer,
    QuestionType.TRUE_FALSE: ChoiceAnswer,
    QuestionType.MULTIPLE_CHOICE_MULTI: MultiChoiceAnswer,
    QuestionType.FILL_IN_BLANK_TEXT: TextAnswer,
    QuestionType.SHORT_ANSWER: TextAnswer,
    QuestionType.ESSAY: TextAnswer,
    QuestionType.FILL_IN_BLANK_NUMERIC: NumericAnswer,
    QuestionType.MATCHING: MatchingAnswer,
    QuestionType.ORDERING: OrderingAnswer,
}


class QuestionAnswer(BaseModel):
    """
    Intermediate representation: one question with its decoded answer.
    Produced by the combiner and never mutated afterwards; the only input
    every export backend sees.
    """
    model_config = ConfigDict(frozen=True)

    number: int
    stem: str = ""
    options: list[Option] = Field(default_factory=list)
    type: QuestionType
    has_images: bool = False
    image_ids: list[str] = Field(default_factory=list)
    answer: Optional[AnswerRecord] = None

    @property
    def option_letters(self) -> list[str]:
        return [o.letter for o in self.options]


# ─── Warnings / Stage Outcomes ────────────────────────────────────────────────


class ConversionWarning(BaseModel):
    """A non-fatal problem isolated to one line, image, or item."""
    stage: Stage
    code: WarningCode
    message: str
    question_number: Optional[int] = None
    line: Optional[str] = None


class ParseOutcome(BaseModel):
    """Structural parser output."""
    drafts: list[QuestionDraft] = Field(default_factory=list)
    images: dict[str, ImageAsset] = Field(default_factory=dict)
    boundary_index: Optional[int] = None
    type_map: dict[int, QuestionType] = Field(default_factory=dict)
    warnings: list[ConversionWarning] = Field(default_factory=list)


class AnswerKeyOutcome(BaseModel):
    """Answer-key parser output."""
    answers: dict[int, AnswerRecord] = Field(default_factory=dict)
    warnings: list[ConversionWarning] = Field(default_factory=list)


# ─── Export Models ────────────────────────────────────────────────────────────


class GeneratedDocument(BaseModel):
    """An XML document with its path inside the package."""
    path: str
    content: str


class ResourceFile(BaseModel):
    model_config = ConfigDict(ser_json_bytes="base64")

    path: str
    data: bytes = Field(repr=False)


class ExportBundle(BaseModel):
    """Everything a backend generated for one run."""
    format_key: str
    manifest: GeneratedDocument
    documents: list[GeneratedDocument] = Field(default_factory=list)
    resources: list[ResourceFile] = Field(default_factory=list)
    item_count: int = 0
    warnings: list[ConversionWarning] = Field(default_factory=list)


# ─── Report / Result Models ───────────────────────────────────────────────────


class ConversionReport(BaseModel):
    """Post-run validation report."""
    total_questions: int = 0
    answered_questions: int = 0
    exported_items: int = 0
    missing_answer_numbers: list[int] = Field(default_factory=list)
    missing_question_numbers: list[int] = Field(default_factory=list)
    type_breakdown: dict[str, int] = Field(default_factory=dict)
    warning_breakdown: dict[str, int] = Field(default_factory=dict)
    image_count: int = 0
    warnings: list[ConversionWarning] = Field(default_factory=list)

    @computed_field
    @property
    def answer_coverage(self) -> float:
        if self.total_questions == 0:
            return 0.0
        return round(self.answered_questions / self.total_questions * 100, 2)


class ArtifactRef(BaseModel):
    """Handle to a stored archive, retrievable later for download."""
    artifact_id: str
    display_name: str


class ConversionResult(BaseModel):
    """Boundary result of `convert`."""
    success: bool
    message: str
    artifact_ref: Optional[ArtifactRef] = None
    report: Optional[ConversionReport] = None
