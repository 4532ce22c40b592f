"""
Error Taxonomy
==============
Every failure the converter can raise carries two messages:

    - internal_message: the full diagnostic, written to the log only
    - user_message:     a short, actionable sentence shown to the person
                        who asked for the conversion

Fatal errors abort a run at the engine boundary. Non-fatal errors are
raised at the narrowest point (one answer line, one image, one item),
caught by the loop that owns that unit and recorded as a warning.
"""

from __future__ import annotations

from typing import Optional


class ConversionError(Exception):
    """Base class for all converter errors."""

    fatal = True
    code = "conversion_error"

    def __init__(self, internal_message: str, user_message: Optional[str] = None):
        super().__init__(internal_message)
        self.internal_message = internal_message
        self.user_message = user_message or internal_message


# ─── Fatal ────────────────────────────────────────────────────────────────────


class StructuralError(ConversionError):
    """No numbered question could be recovered from the document."""

    code = "structural_error"


class PackageAssemblyError(ConversionError):
    """The generated documents could not be bundled into an archive."""

    code = "package_assembly_error"


class UnknownFormatError(ConversionError):
    """The requested export format key is not registered."""

    code = "unknown_format"


class BlockSourceError(ConversionError):
    """The input document could not be read into blocks."""

    code = "block_source_error"


class ArtifactNotFoundError(ConversionError):
    """A previously generated archive is no longer available."""

    code = "artifact_not_found"


# ─── Non-fatal ────────────────────────────────────────────────────────────────


class AnswerDecodeError(ConversionError):
    """One answer-key line could not be decoded."""

    fatal = False
    code = "answer_decode_error"

    def __init__(
        self,
        internal_message: str,
        line: str = "",
        question_number: Optional[int] = None,
    ):
        super().__init__(internal_message)
        self.line = line
        self.question_number = question_number


class TypeInferenceAmbiguity(ConversionError):
    """More than one keyword rule claimed a question stem."""

    fatal = False
    code = "type_inference_ambiguity"

    def __init__(self, internal_message: str, candidates: list, fallback):
        super().__init__(internal_message)
        self.candidates = candidates
        self.fallback = fallback


class ImageProcessingError(ConversionError):
    """One inline image could not be registered."""

    fatal = False
    code = "image_processing_error"


class BackendGenerationError(ConversionError):
    """One item could not be rendered by an export backend."""

    fatal = False
    code = "backend_generation_error"

    def __init__(self, internal_message: str, question_number: Optional[int] = None):
        super().__init__(internal_message)
        self.question_number = question_number
