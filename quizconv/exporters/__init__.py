"""
Export backends, selected by format key.

    qti12       plain QTI 1.2
    imscc       IMS Common Cartridge (Canvas)
    qti21       QTI 2.1
    moodle      Moodle XML (multiple choice only)
    blackboard  Blackboard pool (single choice only)
"""

from __future__ import annotations

from ..errors import UnknownFormatError
from .base import Exporter
from .blackboard import BlackboardExporter
from .imscc import ImsccExporter
from .moodle import MoodleExporter
from .qti12 import Qti12Exporter
from .qti21 import Qti21Exporter

EXPORTERS: dict[str, type[Exporter]] = {
    cls.format_key: cls
    for cls in (
        Qti12Exporter,
        ImsccExporter,
        Qti21Exporter,
        MoodleExporter,
        BlackboardExporter,
    )
}


def available_formats() -> list[dict]:
    return [
        {"key": key, "name": cls.display_name, "suffix": cls.file_suffix}
        for key, cls in EXPORTERS.items()
    ]


def get_exporter(format_key: str) -> Exporter:
    """Return a fresh exporter for `format_key`."""
    cls = EXPORTERS.get((format_key or "").strip().lower())
    if cls is None:
        raise UnknownFormatError(
            f"Unknown export format {format_key!r}; registered: {', '.join(EXPORTERS)}",
            f"Unknown export format '{format_key}'. Choose one of: {', '.join(EXPORTERS)}.",
        )
    return cls()


__all__ = [
    "EXPORTERS",
    "Exporter",
    "available_formats",
    "get_exporter",
]
