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
fissh UI Rendering Module

This module turns page content into terminal frames: ANSI text utilities,
styling, centred layout, the menu bar and incremental screen updates. Every
function is pure; writing bytes to a channel is left to the server.
"""

import re
import unicodedata
from typing import List, Optional, Sequence, Tuple

ANSI_RESET = "\x1b[0m"
# SGR colour codes and OSC 8 hyperlink brackets
ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*m|\x1b\]8;[^\x1b\x07]*(?:\x1b\\|\x07)")
STYLE_CODES = {
    "text": "\x1b[38;5;2m",  # Green
    "art": "\x1b[38;5;12m",  # Bright blue
    "debug": "\x1b[38;5;4m",  # Blue
    "menu": "\x1b[1;38;5;7m",  # Bold light grey
    "quit": "\x1b[1;38;5;124m",  # Bold dark red
}
MENU_HEIGHT = 5
MENU_ITEMS = (
    ("(esc/h) home", "menu"),
    ("(a) about", "menu"),
    ("(r) refresh", "menu"),
    ("(q) quit", "quit"),
)
MENU_GAP = 4

ENTER_ALT_SCREEN = "\x1b[?1049h\x1b[?25l"
EXIT_ALT_SCREEN = "\x1b[?25h\x1b[?1049l"
CLEAR_SCREEN = "\x1b[2J\x1b[H"


# ============================================================================
# ANSI/Text Utility Functions
# ============================================================================


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from text."""
    return ANSI_ESCAPE_RE.sub("", text)


def char_width(char: str) -> int:
    """Terminal cells taken by one character: 2 for wide glyphs, 0 for combining marks."""
    if unicodedata.combining(char):
        return 0
    if unicodedata.east_asian_width(char) in ("W", "F"):
        return 2
    return 1


def cell_width(text: str) -> int:
    """Terminal cells taken by plain text (no ANSI codes)."""
    return sum(char_width(char) for char in text)


def visible_len(text: str) -> int:
    """Get the visible width of text in cells (excluding ANSI codes)."""
    return cell_width(strip_ansi(text))


def truncate_visible(text: str, width: int) -> Tuple[str, int]:
    """
    Truncate text to a visible width, preserving ANSI codes.

    Returns:
        Tuple of (truncated_text, visible_count)
    """
    result = []
    visible_count = 0
    index = 0
    while index < len(text) and visible_count < width:
        if text[index] == "\x1b":
            match = ANSI_ESCAPE_RE.match(text, index)
            if match:
                result.append(match.group(0))
                index = match.end()
                continue
        char_cells = char_width(text[index])
        if visible_count + char_cells > width:
            break
        result.append(text[index])
        index += 1
        visible_count += char_cells
    truncated = "".join(result)
    if "\x1b[" in truncated and not truncated.endswith(ANSI_RESET):
        truncated += ANSI_RESET
    return truncated, visible_count


def pad_visible(text: str, width: int) -> str:
    """Pad text to a visible width, preserving ANSI codes."""
    truncated, visible_count = truncate_visible(text, width)
    if visible_count < width:
        truncated += " " * (width - visible_count)
    return truncated


def style_text(text: str, role: str, use_color: bool) -> str:
    """Apply the colour for a style role to a single line."""
    if not use_color or not text:
        return text
    code = STYLE_CODES.get(role)
    if not code:
        return text
    return f"{code}{text}{ANSI_RESET}"


def style_block(text: str, role: str, use_color: bool) -> str:
    """Style every line of a block separately so lines can be laid out alone."""
    if not use_color:
        return text
    return "\n".join(style_text(line, role, use_color) for line in text.split("\n"))


def hyperlink(label: str, url: str, use_color: bool) -> str:
    """Wrap a label in an OSC 8 hyperlink when terminal styling is enabled."""
    if not use_color:
        return label
    return f"\x1b]8;;{url}\x1b\\{label}\x1b]8;;\x1b\\"


# ============================================================================
# Layout Functions
# ============================================================================


def center_line(line: str, width: int) -> str:
    """Centre one line in ``width`` cells, clipping it when too wide."""
    length = visible_len(line)
    if length >= width:
        return truncate_visible(line, width)[0]
    left = (width - length) // 2
    return f"{' ' * left}{line}{' ' * (width - length - left)}"


def place(content: str, width: int, height: int) -> List[str]:
    """
    Centre a block of text inside a ``width`` x ``height`` region.

    Each line is centred on its own. Blocks taller than the region are
    clipped symmetrically so the middle stays visible.
    """
    if width <= 0 or height <= 0:
        return []
    lines = content.split("\n")
    if len(lines) > height:
        start = (len(lines) - height) // 2
        lines = lines[start : start + height]
    top = (height - len(lines)) // 2
    placed = [" " * width] * top
    placed.extend(center_line(line, width) for line in lines)
    placed.extend([" " * width] * (height - len(placed)))
    return placed


def join_horizontal(parts: Sequence[str], gap: int) -> str:
    return (" " * gap).join(parts)


def render_menu(width: int, use_color: bool = False) -> List[str]:
    """Render the key help bar centred in the menu region."""
    items = [style_text(label, role, use_color) for label, role in MENU_ITEMS]
    return place(join_horizontal(items, MENU_GAP), width, MENU_HEIGHT)


def render_screen(content: str, width: int, height: int, use_color: bool = False) -> List[str]:
    """
    Lay out a full frame: page content above, menu bar below.

    Terminals too short for the menu show the content only.
    """
    if width <= 0 or height <= 0:
        return []
    if height <= MENU_HEIGHT:
        return place(content, width, height)
    return place(content, width, height - MENU_HEIGHT) + render_menu(width, use_color)


# ============================================================================
# Terminal Output
# ============================================================================


def frame_updates(previous_lines: Optional[List[str]], lines: List[str]) -> str:
    """
    Build the escape sequence that turns ``previous_lines`` into ``lines``.

    The first frame clears the screen; later frames only rewrite changed
    rows.
    """
    if previous_lines is None:
        chunks = [CLEAR_SCREEN]
        chunks.extend(f"\x1b[{index + 1};1H\x1b[2K{line}" for index, line in enumerate(lines))
        return "".join(chunks)

    chunks = []
    for index in range(max(len(previous_lines), len(lines))):
        previous_line = previous_lines[index] if index < len(previous_lines) else None
        current_line = lines[index] if index < len(lines) else ""
        if previous_line == current_line and index < len(lines):
            continue
        chunks.append(f"\x1b[{index + 1};1H\x1b[2K{current_line}")
    return "".join(chunks)


class ScreenWriter:
    """Track what one client terminal shows and emit minimal updates."""

    def __init__(self) -> None:
        self.last_lines: Optional[List[str]] = None

    def update(self, lines: List[str]) -> str:
        output = frame_updates(self.last_lines, lines)
        self.last_lines = lines
        return output

    def invalidate(self) -> None:
        """Force the next update to redraw everything (after a resize)."""
        self.last_lines = None
