"""Tests for escape stripping (termdeck/ansi.py)."""

import pytest

from termdeck.ansi import strip_ansi


class TestStripAnsi:
    def test_plain_text_unchanged(self):
        assert strip_ansi("hello world") == "hello world"

    def test_sgr_colors(self):
        assert strip_ansi("\x1b[1;32mok\x1b[0m") == "ok"

    def test_cursor_and_erase(self):
        assert strip_ansi("\x1b[2K\x1b[1G\x1b[?25lline\x1b[?25h") == "line"

    def test_osc_title_bel(self):
        assert strip_ansi("\x1b]0;my title\x07prompt$ ") == "prompt$ "

    def test_osc_title_st(self):
        assert strip_ansi("\x1b]2;title\x1b\\after") == "after"

    @pytest.mark.parametrize("seq", ["\x1b(B", "\x1b)0", "\x1b#8"])
    def test_charset(self, seq):
        assert strip_ansi(f"a{seq}b") == "ab"

    @pytest.mark.parametrize("seq", ["\x1b=", "\x1b>", "\x1bM", "\x1b7", "\x1b8"])
    def test_single_escapes(self, seq):
        assert strip_ansi(f"a{seq}b") == "ab"

    def test_keeps_newline_cr_tab(self):
        assert strip_ansi("a\tb\r\nc\n") == "a\tb\r\nc\n"

    def test_drops_control_bytes(self):
        assert strip_ansi("a\x00b\x07c\x08d\x7f") == "abcd"

    def test_stray_escape(self):
        assert "\x1b" not in strip_ansi("broken \x1b")

    def test_box_drawing_survives(self):
        raw = "\x1b[38;5;246m├─\x1b[39m Design review · 8 tool uses · 30.9k tokens"
        assert strip_ansi(raw) == "├─ Design review · 8 tool uses · 30.9k tokens"
