"""Child-process helpers: synchronous run-and-capture plus one background runner."""

from dataclasses import dataclass
import logging
import os
import pathlib
import subprocess

from agent_bundler.errors import CommandError


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of a finished child process.

    :ivar command: argv that was executed.
    :ivar returncode: Process exit code.
    :ivar stdout: Captured standard output (decoded as UTF-8).
    :ivar stderr: Captured standard error (decoded as UTF-8).
    """

    command: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self) -> "CommandResult":
        """Raise :class:`CommandError` if the command exited non-zero.

        :returns: ``self`` for chaining.
        :raises CommandError: On a non-zero exit code.
        """

        if self.returncode != 0:
            raise CommandError(
                command=self.command,
                returncode=self.returncode,
                stdout=self.stdout,
                stderr=self.stderr,
            )
        return self


def run_command(
    cmd: list[str],
    *,
    cwd: pathlib.Path | None = None,
    env: dict[str, str] | None = None,
    logger: logging.Logger | None = None,
) -> CommandResult:
    """Run a command to completion and capture both output streams.

    Standard input is closed so that a tool waiting on a prompt fails instead
    of hanging the build.

    :param cmd: argv list.
    :param cwd: Optional working directory.
    :param env: Optional full environment (defaults to the current one).
    :param logger: Optional logger for debug output.
    :returns: The captured result, whatever the exit code.
    :raises CommandError: If the process could not be started at all.
    """

    if logger is not None and logger.isEnabledFor(logging.DEBUG) is True:
        where: str = f" (cwd={cwd})" if cwd is not None else ""
        logger.debug(f"agent-bundler: running: {' '.join(cmd)}{where}")

    try:
        proc = subprocess.run(
            cmd,
            cwd=None if cwd is None else str(cwd),
            env=env if env is not None else dict(os.environ),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except OSError as e:
        raise CommandError(
            command=cmd,
            returncode=None,
            stdout="",
            stderr="",
            reason=f"could not start: {e}",
        ) from e

    return CommandResult(
        command=cmd,
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )


def check_output(
    cmd: list[str],
    *,
    cwd: pathlib.Path | None = None,
    env: dict[str, str] | None = None,
    logger: logging.Logger | None = None,
) -> str:
    """Run a command, require exit code 0 and return its stripped stdout.

    :raises CommandError: On spawn failure or a non-zero exit code.
    """

    result: CommandResult = run_command(cmd, cwd=cwd, env=env, logger=logger).check()
    return result.stdout.strip()


class BackgroundProcess:
    """A long-running child whose output streams go to files.

    :ivar command: argv of the child.
    :ivar stdout_path: File receiving standard output.
    :ivar stderr_path: File receiving standard error.
    """

    def __init__(
        self,
        cmd: list[str],
        *,
        stdout_path: pathlib.Path,
        stderr_path: pathlib.Path,
        env: dict[str, str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.command: list[str] = cmd
        self.stdout_path: pathlib.Path = stdout_path
        self.stderr_path: pathlib.Path = stderr_path

        if logger is not None and logger.isEnabledFor(logging.DEBUG) is True:
            logger.debug(f"agent-bundler: starting: {' '.join(cmd)}")

        with open(stdout_path, "wb") as out, open(stderr_path, "wb") as err:
            try:
                self._proc: subprocess.Popen[bytes] = subprocess.Popen(
                    cmd,
                    env=env if env is not None else dict(os.environ),
                    stdin=subprocess.DEVNULL,
                    stdout=out,
                    stderr=err,
                )
            except OSError as e:
                raise CommandError(
                    command=cmd,
                    returncode=None,
                    stdout="",
                    stderr="",
                    reason=f"could not start: {e}",
                ) from e

    @property
    def returncode(self) -> int | None:
        """Exit code, or ``None`` while the child is still running."""

        return self._proc.poll()

    def read_stdout(self) -> str:
        return self.stdout_path.read_text(encoding="utf-8", errors="replace")

    def read_stderr(self) -> str:
        return self.stderr_path.read_text(encoding="utf-8", errors="replace")

    def terminate(self, *, grace_s: float = 5.0) -> None:
        """Send SIGTERM, then SIGKILL if the child outlives ``grace_s``."""

        if self._proc.poll() is not None:
            return
        self._proc.terminate()
        try:
            self._proc.wait(timeout=grace_s)
        except subprocess.TimeoutExpired:
            self._proc.kill()
            self._proc.wait()
