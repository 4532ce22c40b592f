"""Shared fixtures for the converter test suite."""

from __future__ import annotations

import itertools
import logging

import pytest

from quizconv.models import Block, InlineImage


def make_blocks(*lines: str) -> list[Block]:
    return [Block(text=line) for line in lines]


def make_image(data: bytes = b"\x89PNG fake", offset=None, mime_type: str = "image/png") -> InlineImage:
    return InlineImage(data=data, width=120, height=80, mime_type=mime_type, offset=offset)


@pytest.fixture
def id_factory():
    """Deterministic image ids: img1, img2, ..."""
    counter = itertools.count(1)
    return lambda: f"img{next(counter)}"


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """The engine attaches handlers to the package logger; drop them per test."""
    yield
    package_logger = logging.getLogger("quizconv")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
