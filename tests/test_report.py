"""Tests for hvmbench.report — comparison table rendering."""

from __future__ import annotations

import unittest

from bench_test_helpers import make_benchmark, make_revision

from hvmbench.models import (
    BuildFailed,
    CellKey,
    Crashed,
    Mode,
    ResultMatrix,
    RuntimeKind,
    Skipped,
    Success,
    Timeout,
)
from hvmbench.report import format_cell, render, render_mode

MAIN = make_revision("main")
OLD = make_revision("a43dcfa57c9d", "a43dcfa57c9d" + "1" * 28)
SUM_REC = make_benchmark("sum_rec")
RUST = RuntimeKind(Mode.INTERPRETED, "rust")
C = RuntimeKind(Mode.INTERPRETED, "c")
COMPILED_C = RuntimeKind(Mode.COMPILED, "c")


def _matrix(entries) -> ResultMatrix:
    matrix = ResultMatrix()
    for bench, runtime, rev, result in entries:
        matrix.record(CellKey.of(bench, runtime, rev), result)
    return matrix


SCENARIO = [
    (SUM_REC, RUST, MAIN, Success(0.523)),
    (SUM_REC, RUST, OLD, Success(0.611)),
    (SUM_REC, C, MAIN, Success(0.101)),
    (SUM_REC, C, OLD, Timeout(60.0)),
]


class TestFormatCell(unittest.TestCase):
    def test_markers(self) -> None:
        self.assertEqual(format_cell(None), "-")
        self.assertEqual(format_cell(Timeout(60.0)), "TIMEOUT")
        self.assertEqual(format_cell(Crashed(exit_code=139, signal=11)), "CRASH")
        self.assertEqual(format_cell(BuildFailed("build timeout")), "BUILD-FAIL")
        self.assertEqual(format_cell(Skipped("cancelled")), "SKIP")

    def test_wall_time(self) -> None:
        self.assertEqual(format_cell(Success(0.5, reported_s=0.25)), "0.500s")

    def test_reported_time(self) -> None:
        self.assertEqual(format_cell(Success(0.5, reported_s=0.25), "reported"), "0.250s")

    def test_reported_falls_back_to_wall(self) -> None:
        self.assertEqual(format_cell(Success(0.5), "reported"), "0.500s")


class TestRender(unittest.TestCase):
    def test_two_revision_scenario(self) -> None:
        out = render(_matrix(SCENARIO), [MAIN, OLD], [SUM_REC], [RUST, C])
        expected = "\n".join(
            [
                "interpreted",
                "===========",
                "",
                "file" + " " * 12 + "runtime" + " " * 9 + "main" + " " * 12 + "a43dcfa57c9d",
                "=" * 62,
                "sum_rec" + " " * 9 + "rust" + " " * 20 + "0.523s" + " " * 10 + "0.611s",
                " " * 16 + "c" + " " * 23 + "0.101s" + " " * 9 + "TIMEOUT",
                "-" * 62,
            ]
        )
        self.assertEqual(out, expected + "\n")

    def test_rerender_is_identical(self) -> None:
        matrix = _matrix(SCENARIO)
        first = render(matrix, [MAIN, OLD], [SUM_REC], [RUST, C])
        second = render(matrix, [MAIN, OLD], [SUM_REC], [RUST, C])
        self.assertEqual(first, second)

    def test_insertion_order_irrelevant(self) -> None:
        forward = render(_matrix(SCENARIO), [MAIN, OLD], [SUM_REC], [RUST, C])
        backward = render(_matrix(reversed(SCENARIO)), [MAIN, OLD], [SUM_REC], [RUST, C])
        self.assertEqual(forward, backward)

    def test_missing_cell_is_dash(self) -> None:
        out = render(_matrix(SCENARIO[:3]), [MAIN, OLD], [SUM_REC], [RUST, C])
        c_row = out.splitlines()[6]
        self.assertTrue(c_row.endswith(" -"))

    def test_interpreted_block_first(self) -> None:
        matrix = _matrix(
            [
                (SUM_REC, COMPILED_C, MAIN, BuildFailed("nvcc missing")),
                (SUM_REC, RUST, MAIN, Success(1.0)),
            ]
        )
        out = render(matrix, [MAIN], [SUM_REC], [COMPILED_C, RUST])
        self.assertTrue(out.startswith("interpreted\n===========\n"))
        self.assertIn("\n\ncompiled\n========\n", out)
        self.assertIn("BUILD-FAIL", out.split("compiled")[1])

    def test_mode_without_runtimes_omitted(self) -> None:
        out = render(_matrix(SCENARIO), [MAIN, OLD], [SUM_REC], [RUST, C])
        self.assertNotIn("compiled", out)

    def test_name_only_on_first_row_of_group(self) -> None:
        sort = make_benchmark("sort_bitonic")
        out = render_mode(ResultMatrix(), Mode.INTERPRETED, [MAIN], [sort, SUM_REC], [RUST, C])
        rows = out.splitlines()[5:]
        self.assertTrue(rows[0].startswith("sort_bitonic"))
        self.assertTrue(rows[1].startswith(" " * 16 + "c"))
        self.assertEqual(rows[2], "-" * 46)
        self.assertTrue(rows[3].startswith("sum_rec"))

    def test_wide_names_stretch_columns(self) -> None:
        long_bench = make_benchmark("a_very_long_benchmark_name")
        matrix = _matrix([(long_bench, RUST, MAIN, Crashed(exit_code=1))])
        out = render_mode(matrix, Mode.INTERPRETED, [MAIN, OLD], [long_bench], [RUST])
        lines = out.splitlines()
        width = 26 + 14 * 3 + 2 * 3
        self.assertEqual(lines[4], "=" * width)
        # Right-aligned revision columns end at the full line width.
        self.assertEqual(len(lines[5]), width)
        self.assertTrue(lines[5].startswith("a_very_long_benchmark_name  rust"))
        self.assertTrue(lines[5].endswith("CRASH" + " " * 15 + "-"))

    def test_reported_timing(self) -> None:
        matrix = _matrix([(SUM_REC, RUST, MAIN, Success(0.9, reported_s=0.4))])
        out = render(matrix, [MAIN], [SUM_REC], [RUST], timing="reported")
        self.assertIn("0.400s", out)
        self.assertNotIn("0.900s", out)

    def test_skip_marker(self) -> None:
        matrix = _matrix([(SUM_REC, RUST, MAIN, Skipped("cancelled"))])
        out = render(matrix, [MAIN], [SUM_REC], [RUST])
        self.assertIn("SKIP", out)


if __name__ == "__main__":
    unittest.main()
