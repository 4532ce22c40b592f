"""
Image Registry
==============
Assigns run-unique ids to inline images, splices placeholder tokens into
block text, and hands out resource filenames that the export backends
use when they rewrite placeholders into target-specific references.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Callable, Iterator, Optional

from .errors import ImageProcessingError
from .models import IMAGE_PLACEHOLDER_TEMPLATE, ImageAsset, InlineImage

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\[IMG:([A-Za-z0-9_-]+)\]")

_KNOWN_EXTENSIONS = {
    "png": "png",
    "jpeg": "jpg",
    "jpg": "jpg",
    "gif": "gif",
    "bmp": "bmp",
    "svg": "svg",
    "webp": "webp",
}


def extension_for_mime(mime_type: Optional[str]) -> str:
    """Map a MIME type to a file extension, defaulting to png."""
    if not mime_type:
        return "png"
    lower = mime_type.lower()
    for marker, ext in _KNOWN_EXTENSIONS.items():
        if marker in lower:
            return ext
    parts = lower.split("/")
    if len(parts) == 2 and parts[1]:
        cleaned = re.sub(r"[^a-z0-9]", "", parts[1])[:4]
        return cleaned or "png"
    return "png"


def _sanitize_filename(base: str, ext: str) -> str:
    clean = re.sub(r"[^A-Za-z0-9_]", "_", base)
    clean = re.sub(r"_+", "_", clean)
    ext = re.sub(r"[^a-z0-9]", "", (ext or "png").lower()) or "png"
    return f"{clean}.{ext}"


def split_placeholders(text: str) -> Iterator[tuple[str, str]]:
    """
    Yield ("text", chunk) and ("image", id) tuples in reading order.
    Empty text chunks are skipped.
    """
    pos = 0
    for match in PLACEHOLDER_PATTERN.finditer(text or ""):
        if match.start() > pos:
            yield ("text", text[pos:match.start()])
        yield ("image", match.group(1))
        pos = match.end()
    if pos < len(text or ""):
        yield ("text", text[pos:])


def placeholder_ids(text: str) -> list[str]:
    return PLACEHOLDER_PATTERN.findall(text or "")


class ImageRegistry:
    """
    Per-run image registry.

    Ids come from `id_factory` (uuid4 hex by default) so tests can
    make runs reproducible; ids only ever reach placeholder tokens and
    resource filenames.
    """

    def __init__(self, id_factory: Optional[Callable[[], str]] = None):
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._assets: dict[str, ImageAsset] = {}
        self._filenames: set[str] = set()
        self._per_question: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._assets)

    def __contains__(self, image_id: str) -> bool:
        return image_id in self._assets

    @property
    def assets(self) -> dict[str, ImageAsset]:
        return dict(self._assets)

    def new_id(self) -> str:
        return self._id_factory()

    def splice(self, text: str, images: list[InlineImage]) -> tuple[str, list[tuple[str, InlineImage]]]:
        """
        Insert a placeholder for every inline image at its original offset.
        Returns the new text and (id, image) pairs awaiting registration.
        """
        pending: list[tuple[str, InlineImage]] = []
        inserts: list[tuple[int, int, str]] = []
        for seq, image in enumerate(images):
            image_id = self.new_id()
            pending.append((image_id, image))
            offset = len(text) if image.offset is None else min(image.offset, len(text))
            inserts.append((offset, seq, IMAGE_PLACEHOLDER_TEMPLATE.format(id=image_id)))

        # Insert from the end so earlier offsets stay valid; ties keep order.
        result = text
        for offset, _, token in sorted(inserts, key=lambda t: (t[0], t[1]), reverse=True):
            result = result[:offset] + token + result[offset:]
        return result, pending

    def register(self, image_id: str, image: InlineImage, question_number: int) -> ImageAsset:
        """Record an image under `image_id` and assign its resource filename."""
        if not image.data:
            raise ImageProcessingError(
                f"Image {image_id} has no data",
                "An embedded image could not be read and was left out.",
            )
        if image.mime_type and not image.mime_type.lower().startswith("image/"):
            raise ImageProcessingError(
                f"Image {image_id} has unsupported MIME type {image.mime_type!r}",
                "An embedded image has an unsupported format and was left out.",
            )

        index = self._per_question.get(question_number, 0) + 1
        self._per_question[question_number] = index
        filename = self._unique_filename(
            _sanitize_filename(
                f"q{question_number}_img{index}_{image_id}",
                extension_for_mime(image.mime_type),
            )
        )

        asset = ImageAsset(
            id=image_id,
            data=image.data,
            width=image.width,
            height=image.height,
            mime_type=image.mime_type or "image/png",
            filename=filename,
            question_number=question_number,
        )
        self._assets[image_id] = asset
        logger.debug(f"Registered image {image_id} as {filename}")
        return asset

    def _unique_filename(self, filename: str) -> str:
        final = filename
        counter = 1
        while final in self._filenames:
            stem, _, ext = filename.rpartition(".")
            final = f"{stem}_{counter}.{ext}"
            counter += 1
        if final != filename:
            logger.warning(f"Duplicate image filename {filename}, using {final}")
        self._filenames.add(final)
        return final
