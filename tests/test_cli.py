"""Tests for hvmbench.cli — the ``hvm-bench bench`` command end to end."""

from __future__ import annotations

import json
import logging
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from bench_test_helpers import BUILD_COMMAND, FAKE_COMPILE, make_git_repo
from click.testing import CliRunner, Result

from hvmbench import __version__
from hvmbench.cli import main

FAKE_RUNTIMES = {
    "interpreted": {
        "rust": {"run": ["{hvm}", "run", "{program}"]},
        "c": {"run": ["{hvm}", "run-c", "{program}"]},
    },
    "compiled": {
        "cuda": {
            "generate": ["{hvm}", "gen-cu", "{program}"],
            "source_suffix": ".cu",
            "compile": list(FAKE_COMPILE),
            "run": ["{binary}"],
        },
    },
}


class _CliTestCase(unittest.TestCase):
    def tearDown(self) -> None:
        logging.getLogger("hvmbench").handlers.clear()

    def invoke(self, *args: str) -> Result:
        return CliRunner().invoke(main, ["bench", *args])


class TestCliBasics(_CliTestCase):
    """Tests that do not need a repository."""

    def test_help(self) -> None:
        result = self.invoke("--help")
        self.assertEqual(result.exit_code, 0)
        for option in ("--repo-dir", "--revs", "--timeout", "--workers", "--runtime"):
            self.assertIn(option, result.stdout)

    def test_version(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn(__version__, result.stdout)

    def test_no_revisions(self) -> None:
        result = self.invoke("--repo-dir", "/nonexistent/hvm")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("No revisions given", result.stderr)
        self.assertEqual(result.stdout, "")

    def test_unknown_runtime_filter(self) -> None:
        result = self.invoke("--revs", "main", "--runtime", "compiled:rust")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("compiled:rust", result.stderr)

    def test_invalid_timeout(self) -> None:
        result = self.invoke("--revs", "main", "--timeout", "0")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("timeout", result.stderr)

    def test_missing_programs_dir(self) -> None:
        result = self.invoke("--revs", "main", "--programs-dir", "/nonexistent/programs")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Programs directory not found", result.stderr)

    def test_missing_repo(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            programs = Path(tmp) / "programs"
            programs.mkdir()
            (programs / "sum_rec.hvm").write_text("echo 42\n")
            result = self.invoke(
                "--repo-dir",
                str(Path(tmp) / "nope"),
                "--revs",
                "main",
                "--programs-dir",
                str(programs),
            )
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Repository not found", result.stderr)
        self.assertEqual(result.stdout, "")

    def test_invalid_profile(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            profile = Path(tmp) / "bench.yaml"
            profile.write_text("- not\n- a mapping\n")
            result = self.invoke("--revs", "main", "--profile", str(profile))
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Invalid profile", result.stderr)


@unittest.skipIf(sys.platform == "win32", "uses a shell-script runtime")
@unittest.skipUnless(shutil.which("git"), "git not installed")
class TestCliEndToEnd(_CliTestCase):
    """Runs the whole pipeline against a scratch repository and fake hvm."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.repo, self.first, self.second = make_git_repo(self.tmp)
        self.old = self.first[:12]

        self.programs = self.tmp / "programs"
        self.programs.mkdir()
        (self.programs / "sum_rec.hvm").write_text("echo 42\n")
        (self.programs / "sort_bitonic.hvm").write_text("echo sorted\n")

        self.profile = self.tmp / "bench.yaml"
        # JSON is valid YAML.
        self.profile.write_text(
            json.dumps({"build": {"command": BUILD_COMMAND}, "runtimes": FAKE_RUNTIMES})
        )

    def tearDown(self) -> None:
        super().tearDown()
        self._tmp.cleanup()

    def bench(self, *args: str) -> Result:
        return self.invoke(
            "--repo-dir",
            str(self.repo),
            "--programs-dir",
            str(self.programs),
            "--profile",
            str(self.profile),
            "--no-fetch",
            *args,
        )

    @staticmethod
    def _rows(block: str) -> list[list[str]]:
        """Data rows of a block, split into columns."""
        rows = []
        for line in block.splitlines()[5:]:
            if not line or set(line) == {"-"}:
                continue
            rows.append(line.split())
        return rows

    def test_full_matrix(self) -> None:
        result = self.bench("--revs", "main", "--revs", self.old)
        self.assertEqual(result.exit_code, 0, result.stderr)

        interpreted, compiled = result.stdout.split("\n\ncompiled\n")
        self.assertTrue(interpreted.startswith("interpreted\n===========\n"))
        header = interpreted.splitlines()[3].split()
        self.assertEqual(header, ["file", "runtime", "main", self.old])

        rows = self._rows(interpreted)
        # The file name only appears on the first row of its group.
        self.assertEqual([r[0] for r in rows], ["sort_bitonic", "c", "sum_rec", "c"])
        self.assertEqual(rows[0][1], "rust")
        for row in rows:
            self.assertTrue(all(cell.endswith("s") for cell in row[-2:]), row)

        compiled_rows = self._rows("compiled\n" + compiled)
        self.assertEqual(len(compiled_rows), 2)
        for row in compiled_rows:
            self.assertEqual(row[1], "cuda")
            self.assertEqual(row[2], "BUILD-FAIL")
            self.assertTrue(row[3].endswith("s"), row)

    def test_runtime_filter(self) -> None:
        result = self.bench("--revs", "main", "--runtime", "interpreted:rust")
        self.assertEqual(result.exit_code, 0, result.stderr)
        self.assertNotIn("compiled", result.stdout)
        rows = self._rows(result.stdout)
        self.assertEqual([r[:2] for r in rows], [["sort_bitonic", "rust"], ["sum_rec", "rust"]])
        self.assertTrue(all(len(r) == 3 for r in rows))

    def test_reported_timing(self) -> None:
        result = self.bench(
            "--revs", "main", "--runtime", "interpreted:c", "--timing", "reported"
        )
        self.assertEqual(result.exit_code, 0, result.stderr)
        self.assertEqual([r[-1] for r in self._rows(result.stdout)], ["0.250s", "0.250s"])

    def test_timeout_and_crash_cells(self) -> None:
        (self.programs / "sum_rec.hvm").write_text("sleep 30\n")
        (self.programs / "sort_bitonic.hvm").write_text("exit 3\n")
        result = self.bench(
            "--revs", "main", "--runtime", "interpreted:c", "--timeout", "1"
        )
        self.assertEqual(result.exit_code, 0, result.stderr)
        rows = self._rows(result.stdout)
        self.assertEqual(rows, [["sort_bitonic", "c", "CRASH"], ["sum_rec", "c", "TIMEOUT"]])

    def test_broken_build(self) -> None:
        self.profile.write_text(
            json.dumps({"build": {"command": "false"}, "runtimes": FAKE_RUNTIMES})
        )
        result = self.bench("--revs", "main", "--runtime", "interpreted:rust")
        self.assertEqual(result.exit_code, 0, result.stderr)
        self.assertEqual(
            [r[-1] for r in self._rows(result.stdout)], ["BUILD-FAIL", "BUILD-FAIL"]
        )

    def test_same_commit_one_column(self) -> None:
        result = self.bench("--revs", "main", "--revs", self.second, "--runtime", "interpreted:c")
        self.assertEqual(result.exit_code, 0, result.stderr)
        self.assertEqual(result.stdout.splitlines()[3].split(), ["file", "runtime", "main"])

    def test_include_local(self) -> None:
        result = self.bench(
            "--revs", self.old, "--include-local", "--runtime", "interpreted:rust"
        )
        self.assertEqual(result.exit_code, 0, result.stderr)
        self.assertEqual(
            result.stdout.splitlines()[3].split(), ["file", "runtime", self.old, "(local)"]
        )

    def test_parallel_workers(self) -> None:
        result = self.bench("--revs", "main", "--revs", self.old, "--workers", "3")
        self.assertEqual(result.exit_code, 0, result.stderr)
        self.assertEqual(result.stdout.count("BUILD-FAIL"), 2)

    def test_unknown_revision(self) -> None:
        result = self.bench("--revs", "main", "--revs", "no-such-branch")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("no-such-branch", result.stderr)
        self.assertEqual(result.stdout, "")

    def test_keep_work_dir(self) -> None:
        work = self.tmp / "work"
        result = self.bench(
            "--revs",
            "main",
            "--runtime",
            "interpreted:rust",
            "--work-dir",
            str(work),
            "--keep-work-dir",
        )
        self.assertEqual(result.exit_code, 0, result.stderr)
        self.assertTrue((work / "bin" / self.second[:12] / "hvm").is_file())

    def test_interrupt_exits_130(self) -> None:
        with patch(
            "hvmbench.scheduler.MatrixScheduler.execute", side_effect=KeyboardInterrupt
        ):
            result = self.bench("--revs", "main")
        self.assertEqual(result.exit_code, 130)
        self.assertIn("interrupted", result.stderr)
        self.assertEqual(result.stdout, "")


if __name__ == "__main__":
    unittest.main()
