"""Runtime provisioning: find or install a runtime that meets the minimum version."""

from dataclasses import dataclass
import logging
import pathlib

from agent_bundler.config import ENV_RUNTIME_OVERRIDE, is_windows
from agent_bundler.errors import PreconditionError, RuntimeVersionError
from agent_bundler.process import check_output
from agent_bundler.tree import remove_tree
from agent_bundler.versions import version_gte


ORIGIN_OVERRIDE: str = "override"
ORIGIN_PROVISIONED: str = "provisioned"


@dataclass(frozen=True, slots=True)
class RuntimeInfo:
    """A runtime executable that satisfies the minimum version.

    :ivar executable_path: Runtime executable.
    :ivar reported_version: Output of ``<runtime> -v`` (e.g. ``v22.12.0``).
    :ivar origin: ``override`` or ``provisioned``.
    :ivar source_label: Provenance string recorded in the bundle manifest.
    """

    executable_path: pathlib.Path
    reported_version: str
    origin: str
    source_label: str


def report_runtime_version(executable: pathlib.Path, *, logger: logging.Logger | None = None) -> str:
    """Return the stripped output of ``<executable> -v``.

    :raises CommandError: If the runtime cannot run or exits non-zero.
    """

    return check_output([str(executable), "-v"], logger=logger)


def provisioned_runtime_path(prefix: pathlib.Path, *, windows: bool | None = None) -> pathlib.Path:
    """Locate the runtime executable inside an ``npm install node@X`` prefix."""

    win: bool = is_windows() if windows is None else windows
    return prefix / "node_modules" / "node" / "bin" / ("node.exe" if win is True else "node")


def _try_override(
    override: pathlib.Path,
    *,
    min_version: str,
    logger: logging.Logger,
) -> RuntimeInfo | None:
    """Use the operator's runtime as-is if it exists and is new enough.

    A missing or too-old override is ignored; one that cannot report its version
    is broken and fails the build.

    :raises CommandError: If the override does not run or exits non-zero.
    """

    if override.is_file() is False:
        logger.warning(f"agent-bundler: {ENV_RUNTIME_OVERRIDE}={override} does not exist; ignoring")
        return None

    version: str = report_runtime_version(override, logger=logger)

    if version_gte(version, min_version) is False:
        logger.warning(
            f"agent-bundler: {ENV_RUNTIME_OVERRIDE} runtime {version} does not satisfy >={min_version}; ignoring"
        )
        return None

    return RuntimeInfo(
        executable_path=override,
        reported_version=version,
        origin=ORIGIN_OVERRIDE,
        source_label=f"env:{ENV_RUNTIME_OVERRIDE}",
    )


def resolve_runtime(
    *,
    min_version: str,
    temp_dir: pathlib.Path,
    npm_command: str,
    override: pathlib.Path | None = None,
    logger: logging.Logger | None = None,
) -> RuntimeInfo:
    """Return a runtime satisfying ``>= min_version``.

    :param min_version: Minimum version as ``MAJOR.MINOR.PATCH``.
    :param temp_dir: Per-build scratch directory (the provisioning prefix lives here).
    :param npm_command: Package-manager executable.
    :param override: Optional operator-supplied runtime.
    :param logger: Optional logger.
    :returns: Runtime descriptor.
    :raises CommandError: If the override or the provisioning install fails.
    :raises PreconditionError: If provisioning did not produce an executable.
    :raises RuntimeVersionError: If the provisioned runtime is still too old.
    """

    if logger is None:
        logger = logging.getLogger("agent_bundler")

    if override is not None:
        found: RuntimeInfo | None = _try_override(override, min_version=min_version, logger=logger)
        if found is not None:
            logger.info(f"agent-bundler: using runtime {found.reported_version} from {override}")
            return found

    logger.info(f"agent-bundler: provisioning portable node@{min_version} runtime")
    prefix: pathlib.Path = temp_dir / "node-runtime"
    remove_tree(prefix)
    prefix.mkdir(parents=True, exist_ok=True)
    check_output(
        [
            npm_command,
            "install",
            "--prefix",
            str(prefix),
            "--no-audit",
            "--no-fund",
            "--loglevel=error",
            f"node@{min_version}",
        ],
        logger=logger,
    )

    executable: pathlib.Path = provisioned_runtime_path(prefix)
    if executable.is_file() is False:
        raise PreconditionError(f"bundled node runtime not found: {executable}")

    version: str = report_runtime_version(executable, logger=logger)
    if version_gte(version, min_version) is False:
        raise RuntimeVersionError(f"bundled node {version} does not satisfy >={min_version}")

    return RuntimeInfo(
        executable_path=executable,
        reported_version=version,
        origin=ORIGIN_PROVISIONED,
        source_label=f"npm:node@{min_version}",
    )
