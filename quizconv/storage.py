"""
Filesystem Artifact Store
=========================
Keeps generated archives so they can be downloaded after the run that
produced them. All paths default to the project root for portability.

Directory Layout:
    output/
    ├── artifacts/
    │   └── {artifact_id}.zip      # One archive per conversion
    ├── uploads/                   # Files posted to the HTTP service
    └── last_artifact.json         # Reference to the newest archive
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from pathlib import Path
from typing import Optional, Union

from .errors import ArtifactNotFoundError
from .models import ArtifactRef

logger = logging.getLogger(__name__)

# Project root: one level up from the package
_PROJECT_ROOT = Path(__file__).parent.parent.absolute()

OUTPUT_DIR = _PROJECT_ROOT / "output"

LAST_ARTIFACT_FILE = "last_artifact.json"

_ARTIFACT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

PathLike = Union[str, Path]


def init_storage(output_dir: Optional[PathLike] = None) -> Path:
    """Ensure the artifact directory exists and return the output root."""
    root = Path(output_dir) if output_dir else OUTPUT_DIR
    (root / "artifacts").mkdir(parents=True, exist_ok=True)
    logger.info(f"Storage initialized: {root}")
    return root


def get_project_root() -> Path:
    return _PROJECT_ROOT


# ─── Artifacts ────────────────────────────────────────────────────────────────


def save_artifact(
    data: bytes,
    display_name: str,
    output_dir: Optional[PathLike] = None,
) -> ArtifactRef:
    """
    Store archive bytes under a fresh id and mark them as the last artifact.
    """
    root = init_storage(output_dir)
    ref = ArtifactRef(artifact_id=uuid.uuid4().hex, display_name=display_name)

    path = _artifact_path(root, ref.artifact_id)
    path.write_bytes(data)
    (root / LAST_ARTIFACT_FILE).write_text(ref.model_dump_json(), encoding="utf-8")

    logger.info(f"Artifact saved: {ref.display_name} ({len(data)} bytes) as {path.name}")
    return ref


def get_artifact_ref(artifact_id: str, output_dir: Optional[PathLike] = None) -> ArtifactRef:
    """Rebuild the reference for a stored archive."""
    root = Path(output_dir) if output_dir else OUTPUT_DIR
    last = _read_last(root)
    if last is not None and last.artifact_id == artifact_id:
        return last
    if not _artifact_path(root, artifact_id).exists():
        raise _not_found(artifact_id)
    return ArtifactRef(artifact_id=artifact_id, display_name=f"{artifact_id}.zip")


def load_artifact(artifact_id: str, output_dir: Optional[PathLike] = None) -> bytes:
    """Read a stored archive."""
    root = Path(output_dir) if output_dir else OUTPUT_DIR
    path = _artifact_path(root, artifact_id)
    if not path.exists():
        raise _not_found(artifact_id)
    return path.read_bytes()


def get_last_artifact(output_dir: Optional[PathLike] = None) -> ArtifactRef:
    """Reference to the most recently saved archive."""
    root = Path(output_dir) if output_dir else OUTPUT_DIR
    ref = _read_last(root)
    if ref is None:
        raise ArtifactNotFoundError(
            f"No {LAST_ARTIFACT_FILE} under {root}",
            "Nothing has been converted yet. Run a conversion first.",
        )
    return ref


def save_uploaded_file(file_obj, filename: str, upload_dir: Optional[PathLike] = None) -> str:
    """
    Save a Flask file upload object (default: output/uploads/).
    Returns the absolute path to the saved file.
    """
    upload_dir = Path(upload_dir) if upload_dir else OUTPUT_DIR / "uploads"
    upload_dir.mkdir(parents=True, exist_ok=True)
    dest = upload_dir / sanitize_name(filename, keep_dots=True)
    file_obj.save(str(dest))
    logger.info(f"Uploaded file saved: {dest}")
    return str(dest)


# ─── Helpers ──────────────────────────────────────────────────────────────────


def sanitize_name(name: str, keep_dots: bool = False) -> str:
    """Sanitize a name for filesystem use."""
    allowed = "-_." if keep_dots else "-_"
    return "".join(
        c if c.isalnum() or c in allowed else "_"
        for c in (name or "")
    ).strip("_")[:100] or "quiz"


def _artifact_path(root: Path, artifact_id: str) -> Path:
    if not _ARTIFACT_ID_PATTERN.match(artifact_id or ""):
        raise _not_found(artifact_id)
    return root / "artifacts" / f"{artifact_id}.zip"


def _read_last(root: Path) -> Optional[ArtifactRef]:
    marker = root / LAST_ARTIFACT_FILE
    if not marker.exists():
        return None
    try:
        return ArtifactRef.model_validate(json.loads(marker.read_text(encoding="utf-8")))
    except (ValueError, OSError) as e:
        logger.warning(f"Unreadable {marker}: {e}")
        return None


def _not_found(artifact_id: str) -> ArtifactNotFoundError:
    return ArtifactNotFoundError(
        f"Artifact {artifact_id!r} not found",
        "The requested package is no longer available. Convert the document again.",
    )
