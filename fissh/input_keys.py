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
Keyboard input decoding for fissh.

SSH clients send raw terminal bytes. This module splits them into key names
('q', 'esc', 'ctrl+c', 'up', ...) using the key constants from the readchar
library. Escape sequences that arrive split across reads are held until the
rest arrives or the caller flushes after an idle gap.
"""

import codecs
import logging
from typing import List, Optional, Union

import readchar.key

logger = logging.getLogger(__name__)

ESC = readchar.key.ESC
# Longest escape sequence we wait for before giving up and passing it through
MAX_PENDING_SEQUENCE = 16

NAMED_KEYS = {
    readchar.key.CTRL_C: "ctrl+c",
    readchar.key.CTRL_D: "ctrl+d",
    readchar.key.ESC: "esc",
    readchar.key.CR: "enter",
    readchar.key.LF: "enter",
    readchar.key.TAB: "tab",
    readchar.key.BACKSPACE: "backspace",
    readchar.key.UP: "up",
    readchar.key.DOWN: "down",
    readchar.key.LEFT: "left",
    readchar.key.RIGHT: "right",
}


def parse_escape_sequence(seq: str) -> Optional[str]:
    """
    Parse ANSI escape sequence to identify arrow keys.

    Args:
        seq: The escape sequence string (without the leading ESC)

    Returns:
        'up', 'down', 'right' or 'left', or None if the sequence is not an
        arrow key
    """
    arrow_map = {
        "A": "up",
        "B": "down",
        "C": "right",
        "D": "left",
    }
    if len(seq) < 2:
        return None
    if seq[0] in ("[", "O") and seq[-1] in arrow_map:
        return arrow_map[seq[-1]]
    return None


def key_name(raw: str) -> str:
    """Map a single decoded key to its name; unknown keys are returned as-is."""
    if raw in NAMED_KEYS:
        return NAMED_KEYS[raw]
    if raw.startswith(ESC) and len(raw) > 1:
        parsed = parse_escape_sequence(raw[1:])
        if parsed:
            return parsed
    return raw


def sequence_length(buf: str, start: int) -> Optional[int]:
    """
    Length of the escape sequence starting at ``buf[start]`` (an ESC).

    Returns None when the buffer ends before the sequence is complete:
    - CSI: ESC [ ... final byte in range 64-126
    - SS3: ESC O plus one character
    - anything else: a lone ESC (length 1)
    """
    if start + 1 >= len(buf):
        return None
    introducer = buf[start + 1]
    if introducer == "[":
        for index in range(start + 2, len(buf)):
            if 64 <= ord(buf[index]) <= 126:
                return index - start + 1
        return None
    if introducer == "O":
        if start + 2 >= len(buf):
            return None
        return 3
    return 1


class KeyDecoder:
    """
    Incremental decoder from terminal bytes to key names.

    One decoder belongs to one session; it is not thread-safe.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, data: Union[bytes, str]) -> List[str]:
        """
        Decode a chunk of input.

        Args:
            data: Bytes read from the channel (or already-decoded text)

        Returns:
            Key names completed by this chunk, in order
        """
        text = self._utf8.decode(data) if isinstance(data, bytes) else data
        buf = self._pending + text
        self._pending = ""
        keys: List[str] = []
        index = 0
        while index < len(buf):
            if buf[index] != ESC:
                keys.append(key_name(buf[index]))
                index += 1
                continue
            length = sequence_length(buf, index)
            if length is None:
                if len(buf) - index > MAX_PENDING_SEQUENCE:
                    logger.debug("Dropping over-long escape sequence %r", buf[index:])
                    index = len(buf)
                    break
                self._pending = buf[index:]
                break
            keys.append(key_name(buf[index : index + length]))
            index += length
        if keys:
            logger.debug("Decoded keys: %s", keys)
        return keys

    def flush(self) -> List[str]:
        """
        Emit whatever is pending after an idle gap.

        A lone pending ESC is the escape key itself; a partial sequence is
        passed through unrecognised.
        """
        if not self._pending:
            return []
        pending, self._pending = self._pending, ""
        if pending == ESC:
            return ["esc"]
        return [key_name(pending[0])] + self.feed(pending[1:])
