"""
Block Extractor
===============
Adapters that turn an input document into the ordered block stream the
structural parser consumes.

    PdfBlockExtractor   PDF via PyMuPDF (fitz): one block per text line,
                        one image-only block per embedded image
    load_text_blocks    UTF-8 text: one block per non-empty line
    load_block_stream   JSON block stream:
                        [{"kind", "text", "inlineImages": [{"bytes" (base64),
                          "width", "height", "mimeType", "offset"?}]}]
                        kinds are case-insensitive; blocks of any other
                        kind (tables, drawings) are skipped
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
from pathlib import Path
from typing import Callable, Optional, Union

import fitz  # PyMuPDF
from pydantic import ValidationError

from .errors import BlockSourceError
from .models import Block, BlockKind, InlineImage

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_BLOCK_KINDS = {kind.value: kind for kind in BlockKind}


class PdfBlockExtractor:
    """
    Handles PDF ingestion and low-level block extraction.

    Extracts:
        - One paragraph block per text line, in reading order
        - One image-only block per embedded image (bytes kept in memory)
    """

    def __init__(
        self,
        min_image_size: int = 50,
        page_range: Optional[tuple[int, int]] = None,
    ):
        self.min_image_size = min_image_size
        self.page_range = page_range
        self._image_cache: dict[int, Optional[tuple[InlineImage, str]]] = {}
        self._image_hashes: dict[str, int] = {}

    def get_page_count(self, pdf_path: PathLike) -> int:
        """Get total number of pages in the PDF."""
        with fitz.open(pdf_path) as doc:
            return doc.page_count

    def extract(
        self,
        pdf_path: PathLike,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> list[Block]:
        """
        Extract all blocks from the PDF.

        Args:
            pdf_path: Path to the PDF file.
            progress_callback: Optional callable(current, total).

        Returns:
            Flat list of Blocks ordered by appearance.

        Raises:
            BlockSourceError: If the PDF cannot be opened.
        """
        self._image_cache = {}
        self._image_hashes = {}
        all_blocks: list[Block] = []

        try:
            doc = fitz.open(pdf_path)
        except (RuntimeError, ValueError, OSError) as e:
            raise BlockSourceError(
                f"Cannot open PDF {pdf_path}: {e}",
                "The PDF could not be opened. Check that the file is a valid, unencrypted PDF.",
            ) from e

        with doc:
            total_pages = doc.page_count

            # Determine page range (1-indexed)
            start_page = 1
            end_page = total_pages
            if self.page_range:
                start_page = max(1, self.page_range[0])
                end_page = min(total_pages, self.page_range[1])

            logger.info(
                f"Extracting blocks from {pdf_path} "
                f"(pages {start_page} to {end_page})"
            )

            for page_idx in range(start_page - 1, end_page):
                page = doc[page_idx]
                page_num = page_idx + 1

                # (y, x, block) so images and lines interleave in reading order
                positioned: list[tuple[float, float, Block]] = []
                positioned.extend(self._extract_images_from_page(page, page_num))

                page_dict = page.get_text("dict", flags=fitz.TEXT_PRESERVE_WHITESPACE)
                for block in page_dict.get("blocks", []):
                    if block.get("type") != 0:
                        continue
                    for line in block.get("lines", []):
                        text = "".join(span["text"] for span in line.get("spans", []))
                        if not text.strip():
                            continue
                        x0, y0 = line["bbox"][0], line["bbox"][1]
                        positioned.append((y0, x0, Block(text=text.strip())))

                positioned.sort(key=lambda t: (t[0], t[1]))
                all_blocks.extend(block for _, _, block in positioned)

                if progress_callback:
                    progress_callback(page_num - start_page + 1, end_page - start_page + 1)

        logger.info(f"Extracted {len(all_blocks)} blocks")
        return all_blocks

    def _extract_images_from_page(self, page: fitz.Page, page_num: int) -> list[tuple[float, float, Block]]:
        """Extract embedded images with xref caching."""
        found: list[tuple[float, float, Block]] = []
        doc = page.parent

        for img in page.get_images(full=True):
            xref = img[0]

            if xref not in self._image_cache:
                self._image_cache[xref] = self._load_image(doc, xref, page_num)
            cached = self._image_cache[xref]
            if cached is None:
                continue
            image, digest = cached

            rects = page.get_image_rects(xref)
            if not rects:
                continue
            rect = rects[0]
            if rect.width < 1 or rect.height < 1:
                continue

            # Small images repeated many times are logos
            self._image_hashes[digest] = self._image_hashes.get(digest, 0) + 1
            if self._image_hashes[digest] > 5 and rect.width * rect.height < 10000:
                continue

            found.append((rect.y0, rect.x0, Block(inline_images=[image])))

        return found

    def _load_image(self, doc, xref: int, page_num: int) -> Optional[tuple[InlineImage, str]]:
        try:
            base_image = doc.extract_image(xref)
        except (RuntimeError, ValueError) as e:
            logger.warning(f"Failed extracting image {xref} on page {page_num}: {e}")
            return None
        if not base_image:
            return None

        width, height = base_image["width"], base_image["height"]
        # Filter icons/separators by pixel size
        if width < self.min_image_size or height < self.min_image_size:
            logger.debug(f"Skipping small image {xref} ({width}x{height})")
            return None

        data = base_image["image"]
        image = InlineImage(
            data=data,
            width=width,
            height=height,
            mime_type=f"image/{base_image.get('ext', 'png')}",
        )
        return image, hashlib.md5(data).hexdigest()


# ─── Text and JSON Sources ────────────────────────────────────────────────────


def load_text_blocks(path: PathLike) -> list[Block]:
    """One block per non-empty line of a UTF-8 text file."""
    try:
        content = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise BlockSourceError(
            f"Cannot read text file {path}: {e}",
            "The text file could not be read. Save it as UTF-8 and try again.",
        ) from e
    blocks = [Block(text=line.strip()) for line in content.splitlines() if line.strip()]
    logger.info(f"Loaded {len(blocks)} blocks from {path}")
    return blocks


def blocks_from_json(items: list) -> list[Block]:
    """Build blocks from decoded block-stream JSON."""
    if not isinstance(items, list):
        raise BlockSourceError(
            f"Block stream must be a list, got {type(items).__name__}",
            "The block stream must be a JSON list of blocks.",
        )

    blocks = []
    for index, item in enumerate(items):
        try:
            kind = _BLOCK_KINDS.get(str(item.get("kind") or BlockKind.PARAGRAPH.value).strip().lower())
            if kind is None:
                logger.warning(f"Skipping block {index} of unsupported kind {item.get('kind')!r}")
                continue
            images = [
                InlineImage(
                    data=base64.b64decode(img.get("bytes") or img.get("data") or "", validate=True),
                    width=img.get("width"),
                    height=img.get("height"),
                    mime_type=img.get("mimeType") or img.get("mime_type") or "image/png",
                    offset=img.get("offset"),
                )
                for img in item.get("inlineImages") or item.get("inline_images") or []
            ]
            blocks.append(Block(
                kind=kind,
                text=item.get("text") or "",
                inline_images=images,
            ))
        except (AttributeError, binascii.Error, ValidationError) as e:
            raise BlockSourceError(
                f"Invalid block at index {index}: {e}",
                f"Block {index} of the block stream is malformed.",
            ) from e
    return blocks


def load_block_stream(path: PathLike) -> list[Block]:
    """Read a JSON block stream file."""
    try:
        items = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise BlockSourceError(
            f"Cannot read block stream {path}: {e}",
            "The block stream file is not valid JSON.",
        ) from e
    blocks = blocks_from_json(items)
    logger.info(f"Loaded {len(blocks)} blocks from {path}")
    return blocks


def load_blocks(path: PathLike, min_image_size: int = 50) -> list[Block]:
    """Pick an adapter by file extension."""
    path = Path(path)
    if not path.exists():
        raise BlockSourceError(
            f"Input not found: {path}",
            f"File not found: {path.name}",
        )

    suffix = path.suffix.lower()
    if suffix == ".pdf":
        return PdfBlockExtractor(min_image_size=min_image_size).extract(path)
    if suffix == ".json":
        return load_block_stream(path)
    if suffix in (".txt", ".text", ".md"):
        return load_text_blocks(path)
    raise BlockSourceError(
        f"Unsupported input type {suffix!r} for {path}",
        "Unsupported file type. Use a .pdf, .txt or .json block stream.",
    )
