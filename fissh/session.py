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
Per-connection session state machine for fissh.

A session reacts to three kinds of events: key presses, terminal resizes and
clock ticks. ``transition`` is a pure function from (state, event) to
(new state, content); ``SessionController`` owns the current state for one
connection and knows nothing about SSH or terminals.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Callable, Optional, Tuple, Union

from fissh.timezone_resolver import TimezoneResult, TimezoneSource
from fissh.ui_render import hyperlink, style_block

QUIT_KEYS = frozenset(("q", "ctrl+c"))
ABOUT_KEYS = frozenset(("a",))
HOME_KEYS = frozenset(("esc", "h"))
REFRESH_KEYS = frozenset(("r",))

ART_CAPTION = "make a fish"

Selector = Callable[[int, int], str]
Clock = Callable[[], datetime]


class Page(Enum):
    """Pages a visitor can navigate between."""

    HOME = "home"
    ABOUT = "about"


@dataclass(frozen=True)
class KeyPress:
    key: str


@dataclass(frozen=True)
class ViewportResize:
    width: int
    height: int


@dataclass(frozen=True)
class Tick:
    pass


Event = Union[KeyPress, ViewportResize, Tick]


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int


@dataclass(frozen=True)
class DisplayWindow:
    """
    When art is shown.

    Attributes:
        time_of_day: ``hh:mm`` on a 12-hour clock, so "11:11" matches twice a day
        always_open: Treat every moment as inside the window (testing/demo)
    """

    time_of_day: str = "11:11"
    always_open: bool = False

    def contains(self, moment: datetime, zone: tzinfo) -> bool:
        if self.always_open:
            return True
        return moment.astimezone(zone).strftime("%I:%M") == self.time_of_day


@dataclass(frozen=True)
class SessionState:
    """Everything one session displays. Replaced, never mutated."""

    timezone: TimezoneResult
    remote_address: str
    clock_time: datetime
    viewport: Viewport
    page: Page = Page.HOME
    selected_art: str = ""
    running: bool = True


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def initial_state(
    tz_result: TimezoneResult,
    remote_address: str,
    viewport: Viewport,
    now: Optional[datetime] = None,
) -> SessionState:
    """Build the state a new session starts in."""
    return SessionState(
        timezone=tz_result,
        remote_address=remote_address,
        clock_time=now if now is not None else utc_now(),
        viewport=viewport,
    )


def apply_event(
    state: SessionState,
    event: Event,
    window: DisplayWindow,
    select: Selector,
    now: Clock = utc_now,
) -> SessionState:
    """
    Apply one event and return the next state.

    ``select`` is only called when art has to be chosen: on a tick that finds
    the window open with no art yet, or on a refresh key while the window is
    open. A tick outside the window clears the art so the next opening picks
    a new one.
    """
    if not state.running:
        return state

    if isinstance(event, KeyPress):
        if event.key in QUIT_KEYS:
            return replace(state, running=False)
        if event.key in ABOUT_KEYS:
            return replace(state, page=Page.ABOUT)
        if event.key in HOME_KEYS:
            return replace(state, page=Page.HOME)
        if event.key in REFRESH_KEYS and window.contains(state.clock_time, state.timezone.zone):
            art = select(state.viewport.width, state.viewport.height)
            return replace(state, selected_art=art)
        return state

    if isinstance(event, ViewportResize):
        return replace(state, viewport=Viewport(event.width, event.height))

    if isinstance(event, Tick):
        clock_time = now()
        if not window.contains(clock_time, state.timezone.zone):
            return replace(state, clock_time=clock_time, selected_art="")
        if state.selected_art:
            return replace(state, clock_time=clock_time)
        art = select(state.viewport.width, state.viewport.height)
        return replace(state, clock_time=clock_time, selected_art=art)

    raise TypeError(f"unsupported event: {event!r}")


def format_clock(moment: datetime, zone: tzinfo) -> str:
    """Format a moment as ``hh:mm:ss am`` in the given zone."""
    local = moment.astimezone(zone)
    return f"{local.strftime('%I:%M:%S')} {local.strftime('%p').lower()}"


def home_content(state: SessionState, window: DisplayWindow, use_color: bool = False) -> str:
    clock_line = style_block(f"the time is {format_clock(state.clock_time, state.timezone.zone)}", "text", use_color)
    if not state.selected_art:
        caption = style_block(f"come back at {window.time_of_day}", "art", use_color)
        return f"{clock_line}\n\n{caption}"
    art = style_block(state.selected_art, "art", use_color)
    return f"{clock_line}\n\n{art}\n\n{style_block(ART_CAPTION, 'art', use_color)}"


def credits_text(use_color: bool = False) -> str:
    return "\n".join(
        [
            "made with <3 by "
            + hyperlink("@breqdev", "https://breq.dev", use_color)
            + " and "
            + hyperlink("@avasilver", "https://avasilver.dev", use_color),
            "inspired by " + hyperlink("@weepingwitch", "https://weepingwitch.github.io", use_color),
            "concept by " + hyperlink("@miakizz", "https://miakizz.quest", use_color),
            "fishes from " + hyperlink("ascii.co.uk", "https://ascii.co.uk/art/fish", use_color),
        ]
    )


def debug_text(state: SessionState) -> str:
    """Describe where the timezone came from and who is calling."""
    identifier = state.timezone.identifier
    if state.timezone.defaulted:
        source_line = f"could not look up your timezone, showing {identifier}"
    elif state.timezone.source is TimezoneSource.FROM_CLIENT_DECLARATION:
        source_line = f"timezone read from env variable ({identifier})"
    else:
        source_line = f"timezone fetched from your ip ({identifier})"
    return f"{source_line}\nyou are calling from: {state.remote_address}"


def about_content(state: SessionState, use_color: bool = False) -> str:
    credits = style_block(credits_text(use_color), "text", use_color)
    return f"{credits}\n\n{style_block(debug_text(state), 'debug', use_color)}"


def render_content(state: SessionState, window: DisplayWindow, use_color: bool = False) -> str:
    """Derive the page body for a state."""
    if state.page is Page.ABOUT:
        return about_content(state, use_color)
    return home_content(state, window, use_color)


def transition(
    state: SessionState,
    event: Event,
    window: DisplayWindow,
    select: Selector,
    now: Clock = utc_now,
    use_color: bool = False,
) -> Tuple[SessionState, str]:
    """Apply an event and derive the content for the resulting state."""
    new_state = apply_event(state, event, window, select, now)
    return new_state, render_content(new_state, window, use_color)


class SessionController:
    """
    Owns one session's state.

    Events must be fed from a single thread; the controller does no locking.
    """

    def __init__(
        self,
        tz_result: TimezoneResult,
        remote_address: str,
        viewport: Viewport,
        select: Selector,
        window: Optional[DisplayWindow] = None,
        clock: Clock = utc_now,
        use_color: bool = False,
    ) -> None:
        self.window = window if window is not None else DisplayWindow()
        self.select = select
        self.clock = clock
        self.use_color = use_color
        self.state = initial_state(tz_result, remote_address, viewport, clock())

    @property
    def running(self) -> bool:
        return self.state.running

    def handle(self, event: Event) -> str:
        """Process one event and return the new page content."""
        self.state, content = transition(self.state, event, self.window, self.select, self.clock, self.use_color)
        return content

    def content(self) -> str:
        return render_content(self.state, self.window, self.use_color)

    def stop(self) -> None:
        """End the session without a key press (transport teardown)."""
        self.state = replace(self.state, running=False)
