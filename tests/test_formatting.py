"""Tests for hvmbench.formatting — shared text formatting helpers."""

from __future__ import annotations

import unittest

from hvmbench.formatting import format_seconds, format_signal_name, tail


class TestFormatSeconds(unittest.TestCase):
    def test_sub_second(self) -> None:
        self.assertEqual(format_seconds(0.0523), "0.052s")

    def test_seconds(self) -> None:
        self.assertEqual(format_seconds(12.1), "12.100s")

    def test_zero(self) -> None:
        self.assertEqual(format_seconds(0.0), "0.000s")

    def test_minutes(self) -> None:
        self.assertEqual(format_seconds(125.3), "2m05.3s")

    def test_exact_minute(self) -> None:
        self.assertEqual(format_seconds(60.0), "1m00.0s")

    def test_rounds_up_into_next_minute(self) -> None:
        self.assertEqual(format_seconds(119.97), "2m00.0s")

    def test_rounds_up_to_one_minute(self) -> None:
        self.assertEqual(format_seconds(59.9996), "1m00.0s")

    def test_just_below_a_minute(self) -> None:
        self.assertEqual(format_seconds(59.9994), "59.999s")

    def test_nan(self) -> None:
        self.assertEqual(format_seconds(float("nan")), "N/A")


class TestFormatSignalName(unittest.TestCase):
    def test_sigsegv(self) -> None:
        self.assertEqual(format_signal_name(11), "SIGSEGV")

    def test_none(self) -> None:
        self.assertEqual(format_signal_name(None), "")

    def test_unknown(self) -> None:
        self.assertEqual(format_signal_name(999), "SIG999")


class TestTail(unittest.TestCase):
    def test_keeps_last_lines(self) -> None:
        text = "\n".join(f"line {i}" for i in range(20))
        self.assertEqual(tail(text, max_lines=2), "line 18\nline 19")

    def test_caps_characters(self) -> None:
        self.assertEqual(tail("x" * 50, max_chars=10), "x" * 10)

    def test_strips_blank_edges(self) -> None:
        self.assertEqual(tail("\n\nboom\n\n"), "boom")


if __name__ == "__main__":
    unittest.main()
