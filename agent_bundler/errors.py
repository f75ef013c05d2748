"""Error types shared by every pipeline stage."""


class BundlerError(RuntimeError):
    """Base class for fatal pipeline errors.

    The CLI turns any subclass into a one-line diagnostic and exit code 1.
    """


class PreconditionError(BundlerError):
    """Raised when an input file, directory or metadata record is missing or malformed."""


class CommandError(BundlerError):
    """Raised when a spawned command exits non-zero or cannot be started.

    :ivar command: Full argv of the failed command.
    :ivar returncode: Exit code, or ``None`` if the process never started.
    :ivar stdout: Captured standard output.
    :ivar stderr: Captured standard error.
    """

    def __init__(
        self,
        *,
        command: list[str],
        returncode: int | None,
        stdout: str,
        stderr: str,
        reason: str | None = None,
    ) -> None:
        self.command: list[str] = command
        self.returncode: int | None = returncode
        self.stdout: str = stdout
        self.stderr: str = stderr

        head: str = f"{' '.join(command)} failed"
        if reason is not None:
            head = f"{head} ({reason})"
        elif returncode is not None:
            head = f"{head} (exit={returncode})"

        detail: list[str] = [s for s in (stdout.strip(), stderr.strip()) if len(s) > 0]
        if len(detail) > 0:
            head = head + "\n" + "\n".join(detail)
        super().__init__(head)


class CommandOutputError(BundlerError):
    """Raised when a command succeeded but printed output we cannot interpret."""


class RuntimeVersionError(BundlerError):
    """Raised when a provisioned runtime does not satisfy the minimum version."""


class VerificationError(BundlerError):
    """Raised when a built bundle fails snapshot or offline verification.

    The bundle directory is left in place for inspection.
    """


class EmptyReleaseError(BundlerError):
    """Raised when no signed updater artifact could be classified."""


class ManifestError(BundlerError):
    """Raised when a manifest document does not match its JSON Schema."""
