"""Snapshot verification: prove the bundled prefix runs from a fresh copy."""

import logging
import os
import pathlib
import shutil

from agent_bundler.config import BundleLayout, is_windows
from agent_bundler.errors import CommandError, PreconditionError, VerificationError
from agent_bundler.process import check_output
from agent_bundler.tree import remove_tree


def installed_executable_candidates(
    prefix: pathlib.Path,
    *,
    tool_name: str,
    windows: bool | None = None,
) -> list[pathlib.Path]:
    """List where a package-manager install may have put the tool, in probe order.

    Wrapper scripts under ``bin/`` come before raw ``.mjs`` entry points.

    :param prefix: Install prefix.
    :param tool_name: Executable / package name.
    :param windows: Force Windows conventions; defaults to the host.
    :returns: Candidate paths.
    """

    win: bool = is_windows() if windows is None else windows
    entry: str = f"{tool_name}.mjs"
    if win is True:
        return [
            prefix / "bin" / f"{tool_name}.cmd",
            prefix / "bin" / f"{tool_name}.exe",
            prefix / "node_modules" / tool_name / entry,
            prefix / "lib" / "node_modules" / tool_name / entry,
            prefix / "node_modules" / ".bin" / f"{tool_name}.cmd",
        ]
    return [
        prefix / "bin" / tool_name,
        prefix / "node_modules" / tool_name / entry,
        prefix / "lib" / "node_modules" / tool_name / entry,
        prefix / "node_modules" / ".bin" / tool_name,
    ]


def resolve_installed_executable(prefix: pathlib.Path, *, tool_name: str) -> pathlib.Path:
    """Return the first existing candidate from :func:`installed_executable_candidates`.

    :raises PreconditionError: If none exists.
    """

    for candidate in installed_executable_candidates(prefix, tool_name=tool_name):
        if candidate.is_file() is True:
            return candidate
    raise PreconditionError(f"bundled {tool_name} executable not found under: {prefix}")


def tool_argv(executable: pathlib.Path, *, runtime: pathlib.Path) -> list[str]:
    """Build the argv prefix that launches an installed tool.

    ``.mjs`` entry points run through the bundled runtime; ``.cmd`` wrappers go
    through ``cmd /C``.
    """

    lower: str = executable.name.lower()
    if lower.endswith(".mjs") is True:
        return [str(runtime), str(executable)]
    if lower.endswith(".cmd") is True:
        return ["cmd", "/C", str(executable)]
    return [str(executable)]


def path_with(*dirs: pathlib.Path, base: str | None = None) -> str:
    """Prepend directories to a ``PATH`` value."""

    inherited: str = os.environ.get("PATH", "") if base is None else base
    parts: list[str] = [str(d) for d in dirs]
    if len(inherited) > 0:
        parts.append(inherited)
    return os.pathsep.join(parts)


def verify_snapshot(
    *,
    layout: BundleLayout,
    temp_dir: pathlib.Path,
    tool_name: str,
    logger: logging.Logger | None = None,
) -> str:
    """Copy the prefix snapshot aside and run ``<tool> --version`` from the copy.

    The copy is always deleted; the bundle itself is never modified.

    :param layout: Bundle layout (prefix snapshot and runtime).
    :param temp_dir: Per-build scratch directory.
    :param tool_name: Tool executable name.
    :param logger: Optional logger.
    :returns: The version string the tool reported.
    :raises VerificationError: If the executable is missing or exits non-zero.
    """

    if logger is None:
        logger = logging.getLogger("agent_bundler")

    verify_prefix: pathlib.Path = temp_dir / "verify-prefix"
    remove_tree(verify_prefix)

    logger.info("agent-bundler: verifying bundled prefix snapshot")
    try:
        shutil.copytree(layout.prefix_dir, verify_prefix, symlinks=True)
        try:
            executable: pathlib.Path = resolve_installed_executable(verify_prefix, tool_name=tool_name)
        except PreconditionError as e:
            raise VerificationError(str(e)) from e

        env: dict[str, str] = dict(os.environ)
        env["PATH"] = path_with(layout.runtime_dir)
        try:
            reported: str = check_output(
                [*tool_argv(executable, runtime=layout.runtime), "--version"],
                env=env,
                logger=logger,
            )
        except CommandError as e:
            raise VerificationError(f"bundled {tool_name} failed to run from a fresh prefix copy:\n{e}") from e
    finally:
        remove_tree(verify_prefix)

    logger.info(f"agent-bundler: snapshot verified ({tool_name} {reported})")
    return reported
