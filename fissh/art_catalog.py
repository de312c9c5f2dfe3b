#!/usr/bin/env python3
# Copyright 2025 icecake0141
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# This file was created or modified with the assistance of an AI (Large Language Model).
# Review required for correctness, security, and licensing.

"""
ASCII-art catalog for fissh.

Art lives as plain ``*.txt`` files in a directory (one fish per file). The
catalog reads each file at most once, measures it, and hands out a random
piece that fits inside a given terminal size.
"""

import logging
import random
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from fissh.ui_render import cell_width

logger = logging.getLogger(__name__)

DEFAULT_ART_DIR = Path(__file__).resolve().parent / "fishes"
ART_SUFFIX = ".txt"


class CatalogReadError(Exception):
    """A single art asset could not be read."""


def count_leading_spaces(line: str) -> int:
    """Count the run of space characters at the start of a line."""
    return len(line) - len(line.lstrip(" "))


def measure_art(text: str) -> Tuple[int, int, int]:
    """
    Measure an art asset.

    Lines are split on ``\\n`` so a trailing newline counts as one more
    (empty) line. Width is measured in terminal cells, so wide glyphs count
    twice. Lines made only of spaces do not constrain the shared
    indentation.

    Args:
        text: Raw art text

    Returns:
        Tuple of (line_count, max_line_width, common_leading_spaces)
    """
    lines = text.split("\n")
    max_width = max(cell_width(line) for line in lines)
    common: Optional[int] = None
    for line in lines:
        leading = count_leading_spaces(line)
        if len(line) > leading:
            common = leading if common is None else min(common, leading)
    return len(lines), max_width, common or 0


def normalize_newlines(text: str) -> str:
    """Convert CRLF and stray CR line endings to plain ``\\n``."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def strip_common_indent(text: str, count: int) -> str:
    """
    Remove ``count`` leading characters from every line.

    Lines no longer than ``count`` become empty. Line breaks, including a
    trailing one, are kept as they were.
    """
    return "\n".join(line[count:] if len(line) > count else "" for line in text.split("\n"))


@dataclass(frozen=True)
class ArtAsset:
    """One immutable piece of art plus its measurements."""

    name: str
    raw_text: str
    line_count: int = field(init=False)
    max_line_width: int = field(init=False)
    common_leading_spaces: int = field(init=False)

    def __post_init__(self) -> None:
        line_count, max_line_width, common = measure_art(self.raw_text)
        object.__setattr__(self, "line_count", line_count)
        object.__setattr__(self, "max_line_width", max_line_width)
        object.__setattr__(self, "common_leading_spaces", common)

    def fits(self, max_width: int, max_height: int) -> bool:
        """Return True if the art leaves at least one spare row and column."""
        return self.line_count < max_height and self.max_line_width < max_width

    def trimmed(self) -> str:
        """Return the art with its shared indentation removed."""
        return strip_common_indent(self.raw_text, self.common_leading_spaces)


class ArtCatalog:
    """
    Read-only collection of art assets.

    Assets are loaded lazily and cached; once cached they are never changed,
    so any number of sessions can select from one catalog. The shuffle uses a
    single random generator guarded by a lock.
    """

    def __init__(
        self,
        directory: Union[str, Path, None] = None,
        rng: Optional[random.Random] = None,
        texts: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Initialize the catalog.

        Args:
            directory: Folder holding ``*.txt`` art files (default: bundled fishes)
            rng: Random generator used for shuffling (default: a fresh Random)
            texts: In-memory ``{name: text}`` assets used instead of a directory
        """
        self.directory = Path(directory) if directory is not None else DEFAULT_ART_DIR
        self._texts = dict(texts) if texts is not None else None
        self._rng = rng if rng is not None else random.Random()
        self._rng_lock = threading.Lock()
        self._assets: Dict[str, ArtAsset] = {}
        self._assets_lock = threading.Lock()

    @classmethod
    def from_texts(cls, texts: Dict[str, str], rng: Optional[random.Random] = None) -> "ArtCatalog":
        """Build a catalog from in-memory texts."""
        return cls(rng=rng, texts=texts)

    def names(self) -> List[str]:
        """
        Enumerate asset names in a stable order.

        A missing or unreadable directory is logged and yields no names.
        """
        if self._texts is not None:
            return sorted(self._texts)
        try:
            return sorted(
                path.name for path in self.directory.iterdir() if path.is_file() and path.suffix == ART_SUFFIX
            )
        except OSError as exc:
            logger.warning("Cannot list art directory '%s': %s", self.directory, exc)
            return []

    def read(self, name: str) -> ArtAsset:
        """
        Return the asset called ``name``, loading it on first use.

        Raises:
            CatalogReadError: If the asset cannot be read
        """
        with self._assets_lock:
            cached = self._assets.get(name)
        if cached is not None:
            return cached

        if self._texts is not None:
            if name not in self._texts:
                raise CatalogReadError(f"no asset named {name!r}")
            text = self._texts[name]
        else:
            try:
                text = (self.directory / name).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise CatalogReadError(f"cannot read {name!r}: {exc}") from exc
        text = normalize_newlines(text)
        if not text.strip():
            raise CatalogReadError(f"asset {name!r} is empty")

        asset = ArtAsset(name, text)
        with self._assets_lock:
            return self._assets.setdefault(name, asset)

    def shuffled_names(self) -> List[str]:
        """Return the asset names in a fresh random order."""
        names = self.names()
        with self._rng_lock:
            self._rng.shuffle(names)
        return names

    def select_fitting(self, max_width: int, max_height: int) -> str:
        """
        Pick a random asset that fits the given size.

        Args:
            max_width: Terminal width in character cells
            max_height: Terminal height in character cells

        Returns:
            The trimmed art, or an empty string when nothing fits
        """
        if max_width <= 0 or max_height <= 0:
            return ""
        for name in self.shuffled_names():
            try:
                asset = self.read(name)
            except CatalogReadError as exc:
                logger.warning("Skipping art asset: %s", exc)
                continue
            if asset.fits(max_width, max_height):
                logger.debug("Selected art '%s' for %dx%d", name, max_width, max_height)
                return asset.trimmed()
        logger.debug("No art fits %dx%d", max_width, max_height)
        return ""
