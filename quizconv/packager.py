"""
Package Assembler
=================
Bundles an ExportBundle into a single zip archive: manifest first, then
the generated documents, then resource files.
"""

from __future__ import annotations

import io
import logging
import zipfile

from .errors import PackageAssemblyError
from .models import ExportBundle
from .storage import sanitize_name

logger = logging.getLogger(__name__)


def archive_name(title: str, suffix: str) -> str:
    return f"{sanitize_name(title)}_{suffix}.zip"


class PackageAssembler:
    """Writes export bundles as deflated zip archives."""

    def assemble(self, bundle: ExportBundle) -> bytes:
        """
        Raises:
            PackageAssemblyError: If the archive cannot be written.
        """
        entries = [(bundle.manifest.path, bundle.manifest.content.encode("utf-8"))]
        entries += [(doc.path, doc.content.encode("utf-8")) for doc in bundle.documents]
        entries += [(res.path, res.data) for res in bundle.resources]

        seen: set[str] = set()
        buf = io.BytesIO()
        try:
            with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
                for path, data in entries:
                    if not path or path.startswith("/") or ".." in path.split("/"):
                        raise ValueError(f"unsafe archive path {path!r}")
                    if path in seen:
                        raise ValueError(f"duplicate archive path {path!r}")
                    seen.add(path)
                    zf.writestr(path, data)
        except (ValueError, OSError, zipfile.BadZipFile) as e:
            raise PackageAssemblyError(
                f"Could not assemble {bundle.format_key} archive: {e}",
                "The quiz package could not be created. Please try again.",
            ) from e

        data = buf.getvalue()
        logger.info(f"Assembled {bundle.format_key} archive: {len(entries)} entries, {len(data)} bytes")
        return data
