"""Source resolution: pack the upstream tool into a distributable archive.

Two modes:

- ``local-source``: the local tree already holds build output, so it is packed
  in place with its own declared version. No network.
- ``registry``: the pinned (or latest) version is fetched with ``npm pack``
  into the caller's temp directory.
"""

from collections.abc import Callable
from dataclasses import dataclass
import json
import logging
import pathlib

from agent_bundler.errors import CommandOutputError, PreconditionError
from agent_bundler.process import check_output


ORIGIN_LOCAL: str = "local-source"
ORIGIN_REGISTRY: str = "registry"

# Either compiled entry file marks the local tree as built.
_DIST_ENTRIES: tuple[str, ...] = ("dist/entry.js", "dist/entry.mjs")


def _noop() -> None:
    return None


@dataclass(frozen=True, slots=True)
class PackedArchive:
    """One ``npm pack --json`` record.

    :ivar filename: File name reported by the package manager.
    :ivar path: Absolute archive path.
    :ivar version: Version reported in the record, if any.
    """

    filename: str
    path: pathlib.Path
    version: str | None


@dataclass(frozen=True, slots=True)
class PackageSource:
    """Where the bundled tool archive came from.

    :ivar origin: ``local-source`` or ``registry``.
    :ivar version: Resolved tool version (``unknown`` if nothing reported one).
    :ivar archive_path: Packed archive on disk.
    :ivar source_label: Provenance string recorded in the bundle manifest.
    :ivar cleanup: Releases any temporary packed file. Safe to call twice.
    """

    origin: str
    version: str
    archive_path: pathlib.Path
    source_label: str
    cleanup: Callable[[], None] = _noop


def read_local_version(source_dir: pathlib.Path) -> str | None:
    """Read the ``version`` declared in ``package.json`` of the local tree.

    :param source_dir: Local source tree.
    :returns: Version string, or ``None`` if absent or unreadable.
    """

    package_json: pathlib.Path = source_dir / "package.json"
    if package_json.is_file() is False:
        return None
    try:
        meta = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if isinstance(meta, dict) is False:
        return None
    version = meta.get("version")
    if isinstance(version, str) is False or len(version.strip()) == 0:
        return None
    return version.strip()


def local_build_ready(source_dir: pathlib.Path) -> bool:
    """Check whether the local tree holds usable build output.

    Requires a declared version and at least one non-empty compiled entry file;
    a zero-byte entry left over from an aborted build does not count.

    :param source_dir: Local source tree.
    :returns: ``True`` if the tree can be packed as-is.
    """

    if read_local_version(source_dir) is None:
        return False
    for rel in _DIST_ENTRIES:
        entry: pathlib.Path = source_dir / rel
        if entry.is_file() is True and entry.stat().st_size > 0:
            return True
    return False


def npm_pack(
    args: list[str],
    *,
    cwd: pathlib.Path,
    npm_command: str,
    logger: logging.Logger | None = None,
) -> PackedArchive:
    """Run ``npm pack --json`` and locate the produced archive.

    :param args: Extra arguments (a package spec, ``--ignore-scripts``...).
    :param cwd: Directory the archive is written to.
    :param npm_command: Package-manager executable.
    :param logger: Optional logger.
    :returns: The packed archive record.
    :raises CommandError: If ``npm pack`` fails.
    :raises CommandOutputError: If the output has no usable ``filename``.
    :raises PreconditionError: If the reported archive is not on disk.
    """

    raw: str = check_output([npm_command, "pack", "--json", *args], cwd=cwd, logger=logger)
    try:
        parsed = json.loads(raw)
    except ValueError as e:
        raise CommandOutputError(f"Failed to parse npm pack --json output: {e}\n{raw}") from e

    record = parsed[0] if isinstance(parsed, list) and len(parsed) > 0 else parsed
    filename = record.get("filename") if isinstance(record, dict) else None
    if isinstance(filename, str) is False or len(filename) == 0:
        raise CommandOutputError(f"npm pack --json missing filename: {raw}")

    packed: pathlib.Path = (cwd / filename).resolve()
    if packed.is_file() is False:
        raise PreconditionError(f"packed tool archive not found: {packed}")

    version = record.get("version")
    return PackedArchive(
        filename=filename,
        path=packed,
        version=version if isinstance(version, str) else None,
    )


def resolve_package_source(
    *,
    source_dir: pathlib.Path,
    package_name: str,
    temp_dir: pathlib.Path,
    npm_command: str,
    logger: logging.Logger | None = None,
) -> PackageSource:
    """Produce a packed archive of the upstream tool.

    :param source_dir: Local source tree (may not exist).
    :param package_name: Registry package name.
    :param temp_dir: Existing scratch directory for registry downloads.
    :param npm_command: Package-manager executable.
    :param logger: Optional logger.
    :returns: The package source; the caller must call ``cleanup()``.
    :raises BundlerError: If packing fails. Packing is not retried.
    """

    if logger is None:
        logger = logging.getLogger("agent_bundler")

    local_version: str | None = read_local_version(source_dir)

    if local_build_ready(source_dir) is True:
        logger.info(f"agent-bundler: packing {package_name} from local source ({source_dir})")
        local: PackedArchive = npm_pack(
            ["--ignore-scripts"],
            cwd=source_dir,
            npm_command=npm_command,
            logger=logger,
        )

        def cleanup_local() -> None:
            local.path.unlink(missing_ok=True)

        return PackageSource(
            origin=ORIGIN_LOCAL,
            version=local.version or local_version or "unknown",
            archive_path=local.path,
            source_label=ORIGIN_LOCAL,
            cleanup=cleanup_local,
        )

    spec: str = f"{package_name}@{local_version}" if local_version is not None else f"{package_name}@latest"
    logger.info(f"agent-bundler: no local build output; fetching {spec} from the registry")
    remote: PackedArchive = npm_pack([spec], cwd=temp_dir, npm_command=npm_command, logger=logger)
    return PackageSource(
        origin=ORIGIN_REGISTRY,
        version=remote.version or local_version or "unknown",
        archive_path=remote.path,
        source_label=f"npm-registry:{spec}",
    )
