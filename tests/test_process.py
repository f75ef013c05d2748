from __future__ import annotations

import pathlib
import sys
import tempfile
import time
import unittest

from agent_bundler.errors import CommandError
from agent_bundler.process import BackgroundProcess, CommandResult, check_output, run_command


class RunCommandTest(unittest.TestCase):
    def test_captures_both_streams_and_exit_code(self) -> None:
        result = run_command(
            [sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(4)"]
        )
        self.assertEqual(result.returncode, 4)
        self.assertEqual(result.stdout.strip(), "out")
        self.assertEqual(result.stderr.strip(), "err")
        self.assertFalse(result.ok)

    def test_check_raises_structured_error(self) -> None:
        result = CommandResult(command=["npm", "pack"], returncode=1, stdout="so\n", stderr="se\n")
        with self.assertRaises(CommandError) as ctx:
            result.check()
        err = ctx.exception
        self.assertEqual(err.command, ["npm", "pack"])
        self.assertEqual(err.returncode, 1)
        self.assertIn("npm pack failed (exit=1)", str(err))
        self.assertIn("so", str(err))
        self.assertIn("se", str(err))

    def test_missing_executable_becomes_command_error(self) -> None:
        with self.assertRaises(CommandError) as ctx:
            run_command(["/definitely/not/here/tool", "--version"])
        self.assertIsNone(ctx.exception.returncode)
        self.assertIn("could not start", str(ctx.exception))

    def test_check_output_strips(self) -> None:
        self.assertEqual(check_output([sys.executable, "-c", "print('  v1.2.3  ')"]), "v1.2.3")

    def test_stdin_is_closed(self) -> None:
        out = check_output([sys.executable, "-c", "import sys; print(repr(sys.stdin.read()))"])
        self.assertEqual(out, "''")


class BackgroundProcessTest(unittest.TestCase):
    def test_terminate_stops_child_and_keeps_output(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = pathlib.Path(td)
            proc = BackgroundProcess(
                [sys.executable, "-u", "-c", "import time; print('hello', flush=True); time.sleep(60)"],
                stdout_path=root / "out.log",
                stderr_path=root / "err.log",
            )
            try:
                for _ in range(100):
                    if "hello" in proc.read_stdout():
                        break
                    time.sleep(0.05)
                self.assertIsNone(proc.returncode)
            finally:
                proc.terminate(grace_s=5.0)
            self.assertIsNotNone(proc.returncode)
            self.assertIn("hello", proc.read_stdout())

    def test_start_failure_is_command_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = pathlib.Path(td)
            with self.assertRaises(CommandError):
                BackgroundProcess(
                    ["/definitely/not/here/gateway"],
                    stdout_path=root / "out.log",
                    stderr_path=root / "err.log",
                )


if __name__ == "__main__":
    unittest.main()
