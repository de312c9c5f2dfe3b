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
Unit tests for fissh.session.

The state machine is driven with fixed clocks and a mocked art selector, so
display-window behaviour is tested without waiting for 11:11.
"""

import os
import sys
import unittest
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../..")))

from fissh.session import (  # noqa: E402
    DisplayWindow,
    KeyPress,
    Page,
    SessionController,
    Tick,
    Viewport,
    ViewportResize,
    about_content,
    apply_event,
    format_clock,
    home_content,
    initial_state,
    transition,
)
from fissh.timezone_resolver import TimezoneResult, TimezoneSource  # noqa: E402
from fissh.ui_render import strip_ansi  # noqa: E402

UTC_LOOKUP = TimezoneResult("UTC", TimezoneSource.FROM_NETWORK_LOOKUP)
AT_1111 = datetime(2024, 3, 1, 11, 11, 30, tzinfo=timezone.utc)
AT_1112 = datetime(2024, 3, 1, 11, 12, 0, tzinfo=timezone.utc)
AT_2311 = datetime(2024, 3, 1, 23, 11, 5, tzinfo=timezone.utc)
AT_1500 = datetime(2024, 3, 1, 15, 4, 5, tzinfo=timezone.utc)


class FakeClock:
    """Clock returning a settable moment."""

    def __init__(self, moment):
        self.moment = moment

    def __call__(self):
        return self.moment


def make_state(**overrides):
    return replace(initial_state(UTC_LOOKUP, "203.0.113.7", Viewport(80, 24), AT_1500), **overrides)


class TestDisplayWindow(unittest.TestCase):
    """Tests for DisplayWindow.contains."""

    def test_matches_twelve_hour_clock(self):
        window = DisplayWindow()
        utc = ZoneInfo("UTC")
        self.assertTrue(window.contains(AT_1111, utc))
        self.assertTrue(window.contains(AT_2311, utc))
        self.assertFalse(window.contains(AT_1112, utc))
        self.assertFalse(window.contains(AT_1500, utc))

    def test_uses_session_timezone(self):
        window = DisplayWindow()
        moment = datetime(2024, 3, 1, 2, 11, tzinfo=timezone.utc)
        self.assertTrue(window.contains(moment, ZoneInfo("Asia/Tokyo")))
        self.assertFalse(window.contains(moment, ZoneInfo("UTC")))

    def test_override_always_open(self):
        self.assertTrue(DisplayWindow(always_open=True).contains(AT_1500, ZoneInfo("UTC")))

    def test_custom_time_of_day(self):
        self.assertTrue(DisplayWindow("03:04").contains(AT_1500, ZoneInfo("UTC")))


class TestKeyEvents(unittest.TestCase):
    """Tests for navigation and quit keys."""

    def setUp(self):
        self.select = MagicMock(return_value="><>")
        self.window = DisplayWindow()

    def apply(self, state, event):
        return apply_event(state, event, self.window, self.select, FakeClock(AT_1500))

    def test_initial_state(self):
        state = make_state()
        self.assertIs(state.page, Page.HOME)
        self.assertEqual(state.selected_art, "")
        self.assertTrue(state.running)

    def test_about_and_home(self):
        state = self.apply(make_state(), KeyPress("a"))
        self.assertIs(state.page, Page.ABOUT)
        self.assertIs(self.apply(state, KeyPress("esc")).page, Page.HOME)
        self.assertIs(self.apply(state, KeyPress("h")).page, Page.HOME)

    def test_quit_from_any_page(self):
        for page in (Page.HOME, Page.ABOUT):
            for key in ("q", "ctrl+c"):
                state = self.apply(make_state(page=page), KeyPress(key))
                self.assertFalse(state.running)

    def test_other_keys_are_ignored(self):
        state = make_state()
        for key in ("x", "enter", "up", "Q", "\x1b[Z"):
            self.assertEqual(self.apply(state, KeyPress(key)), state)
        self.select.assert_not_called()

    def test_refresh_outside_window_does_nothing(self):
        state = self.apply(make_state(), KeyPress("r"))
        self.assertEqual(state.selected_art, "")
        self.select.assert_not_called()

    def test_events_after_quit_are_ignored(self):
        state = self.apply(make_state(), KeyPress("q"))
        self.assertEqual(self.apply(state, KeyPress("a")), state)
        self.assertEqual(self.apply(state, Tick()), state)

    def test_resize_updates_viewport_only(self):
        state = self.apply(make_state(selected_art="><>"), ViewportResize(120, 40))
        self.assertEqual(state.viewport, Viewport(120, 40))
        self.assertEqual(state.selected_art, "><>")
        self.assertEqual(state.clock_time, AT_1500)
        self.select.assert_not_called()

    def test_unknown_event_type(self):
        with self.assertRaises(TypeError):
            self.apply(make_state(), "tick")


class TestTickEvents(unittest.TestCase):
    """Tests for clock ticks and the display window."""

    def setUp(self):
        self.select = MagicMock(return_value="><>")
        self.clock = FakeClock(AT_1500)

    def tick(self, state, window=None):
        return apply_event(state, Tick(), window or DisplayWindow(), self.select, self.clock)

    def test_tick_updates_clock(self):
        self.clock.moment = AT_1112
        state = self.tick(make_state())
        self.assertEqual(state.clock_time, AT_1112)
        self.select.assert_not_called()

    def test_override_selects_exactly_once(self):
        window = DisplayWindow(always_open=True)
        state = self.tick(make_state(), window)
        self.assertEqual(state.selected_art, "><>")
        self.select.assert_called_once_with(80, 24)

        state = self.tick(state, window)
        self.assertEqual(self.select.call_count, 1)

        self.select.return_value = "<><"
        state = apply_event(state, KeyPress("r"), window, self.select, self.clock)
        self.assertEqual(self.select.call_count, 2)
        self.assertEqual(state.selected_art, "<><")

    def test_leaving_window_clears_art_and_reentry_reselects(self):
        self.clock.moment = AT_1111
        state = self.tick(make_state())
        self.assertEqual(state.selected_art, "><>")

        self.clock.moment = AT_1112
        state = self.tick(state)
        self.assertEqual(state.selected_art, "")

        self.clock.moment = AT_2311
        self.select.return_value = "<><"
        state = self.tick(state)
        self.assertEqual(state.selected_art, "<><")
        self.assertEqual(self.select.call_count, 2)

    def test_selection_uses_current_viewport(self):
        state = apply_event(make_state(), ViewportResize(30, 12), DisplayWindow(), self.select, self.clock)
        self.clock.moment = AT_1111
        self.tick(state)
        self.select.assert_called_once_with(30, 12)

    def test_nothing_fits_retries_next_tick(self):
        self.select.return_value = ""
        self.clock.moment = AT_1111
        state = self.tick(make_state())
        self.assertEqual(state.selected_art, "")
        self.tick(state)
        self.assertEqual(self.select.call_count, 2)

    def test_refresh_uses_last_tick_time(self):
        window = DisplayWindow()
        state = make_state(clock_time=AT_1111)
        state = apply_event(state, KeyPress("r"), window, self.select, self.clock)
        self.assertEqual(state.selected_art, "><>")


class TestContent(unittest.TestCase):
    """Tests for page content derivation."""

    def test_format_clock(self):
        self.assertEqual(format_clock(AT_1500, ZoneInfo("UTC")), "03:04:05 pm")
        self.assertEqual(format_clock(AT_1111, ZoneInfo("UTC")), "11:11:30 am")
        self.assertEqual(format_clock(AT_1500, ZoneInfo("Asia/Tokyo")), "12:04:05 am")

    def test_home_without_art(self):
        content = home_content(make_state(), DisplayWindow())
        self.assertEqual(content, "the time is 03:04:05 pm\n\ncome back at 11:11")

    def test_home_caption_follows_window(self):
        self.assertTrue(home_content(make_state(), DisplayWindow("04:20")).endswith("come back at 04:20"))

    def test_home_with_art(self):
        content = home_content(make_state(selected_art="><>\n<><"), DisplayWindow())
        self.assertEqual(content, "the time is 03:04:05 pm\n\n><>\n<><\n\nmake a fish")

    def test_about_from_declaration(self):
        state = make_state(timezone=TimezoneResult("Europe/Paris", TimezoneSource.FROM_CLIENT_DECLARATION))
        content = about_content(state)
        self.assertIn("made with <3 by @breqdev and @avasilver", content)
        self.assertIn("timezone read from env variable (Europe/Paris)", content)
        self.assertIn("you are calling from: 203.0.113.7", content)

    def test_about_from_lookup(self):
        self.assertIn("timezone fetched from your ip (UTC)", about_content(make_state()))

    def test_about_after_failed_lookup(self):
        state = make_state(timezone=TimezoneResult("UTC", TimezoneSource.FROM_NETWORK_LOOKUP, defaulted=True))
        content = about_content(state)
        self.assertIn("could not look up your timezone, showing UTC", content)
        self.assertNotIn("fetched from your ip", content)

    def test_color_only_adds_escapes(self):
        for state in (make_state(), make_state(selected_art="><>"), make_state(page=Page.ABOUT)):
            _state, plain = transition(state, ViewportResize(80, 24), DisplayWindow(), MagicMock())
            _state, colored = transition(state, ViewportResize(80, 24), DisplayWindow(), MagicMock(), use_color=True)
            self.assertNotEqual(plain, colored)
            self.assertEqual(strip_ansi(colored), plain)

    def test_transition_renders_new_state(self):
        state, content = transition(make_state(), KeyPress("a"), DisplayWindow(), MagicMock())
        self.assertIs(state.page, Page.ABOUT)
        self.assertIn("you are calling from", content)


class TestSessionController(unittest.TestCase):
    """Tests for the controller that owns a session's state."""

    def setUp(self):
        self.clock = FakeClock(AT_1111)
        self.select = MagicMock(return_value="><>")
        self.controller = SessionController(
            UTC_LOOKUP, "203.0.113.7", Viewport(80, 24), self.select, clock=self.clock
        )

    def test_starts_on_home_without_art(self):
        self.assertTrue(self.controller.running)
        self.assertIs(self.controller.state.page, Page.HOME)
        self.assertEqual(self.controller.state.clock_time, AT_1111)
        self.assertIn("come back at 11:11", self.controller.content())
        self.select.assert_not_called()

    def test_handle_returns_content(self):
        content = self.controller.handle(Tick())
        self.assertIn("make a fish", content)
        self.assertEqual(self.controller.content(), content)

    def test_quit_key(self):
        self.controller.handle(KeyPress("q"))
        self.assertFalse(self.controller.running)

    def test_stop(self):
        self.controller.stop()
        self.assertFalse(self.controller.running)
        self.controller.handle(Tick())
        self.select.assert_not_called()


if __name__ == "__main__":
    unittest.main()
