"""Offline bundle builder.

This module implements a pragmatic "offline install" bundler:

- At build time, it packs the upstream tool (from a local build or the
  registry) and finds a runtime that satisfies the minimum version.
- It copies the archive, the runtime and the package-manager client into the
  bundle directory.
- It installs the archive once into a scratch prefix while warming an on-disk
  cache, then snapshots that prefix (symlinks dereferenced) into the bundle so
  the desktop app can install without any network access.
"""

from dataclasses import dataclass
import logging
import os
import pathlib
import shutil
import time

from agent_bundler.config import BundleConfig, BundleLayout, ENV_SKIP_PREP, ENV_SKIP_VERIFY, is_windows
from agent_bundler.errors import PreconditionError
from agent_bundler.manifest import BundleManifest, build_bundle_manifest, write_bundle_manifest
from agent_bundler.process import check_output
from agent_bundler.runtime import RuntimeInfo, resolve_runtime
from agent_bundler.source import PackageSource, resolve_package_source
from agent_bundler.tree import make_tree_user_writable, remove_tree
from agent_bundler.verify import verify_snapshot


# The client package ships a root .npmrc; resource scanners on some hosts choke
# on it and it must not override the user's configuration.
CLIENT_IGNORE_NAMES: frozenset[str] = frozenset({".npmrc"})


@dataclass(frozen=True, slots=True)
class CopyStats:
    """Stats collected while copying a directory tree.

    :ivar files_copied: Number of files copied.
    :ivar bytes_copied: Total bytes copied.
    :ivar links_copied: Number of symlinks recreated as links.
    """

    files_copied: int
    bytes_copied: int
    links_copied: int = 0


@dataclass(frozen=True, slots=True)
class BuildResult:
    """A finished bundle.

    :ivar layout: Bundle layout.
    :ivar manifest: Provenance record written to ``manifest.json``.
    :ivar verified_version: Tool version reported by snapshot verification
        (``None`` when verification was skipped).
    """

    layout: BundleLayout
    manifest: BundleManifest
    verified_version: str | None


def ensure_clean_dir(path: pathlib.Path) -> None:
    """Delete ``path`` (if present) and recreate it empty."""

    remove_tree(path)
    path.mkdir(parents=True, exist_ok=True)


def _copy_tree_filtered(*, src: pathlib.Path, dst: pathlib.Path, ignore_names: frozenset[str]) -> CopyStats:
    """Copy a directory tree, skipping entries whose name is in ``ignore_names``.

    Symlinks (to files or directories, dangling or not) are recreated as links
    with the same target rather than followed.

    :param src: Source directory.
    :param dst: Destination directory (created).
    :param ignore_names: File/directory names to skip at any depth.
    :returns: Copy statistics.
    """

    files_copied: int = 0
    bytes_copied: int = 0
    links_copied: int = 0

    dst.mkdir(parents=True, exist_ok=True)
    for root_str, dirs, files in os.walk(src, topdown=True):
        root_path: pathlib.Path = pathlib.Path(root_str)
        rel_root: pathlib.Path = root_path.relative_to(src)
        out_dir: pathlib.Path = dst / rel_root
        out_dir.mkdir(parents=True, exist_ok=True)

        # os.walk lists directory links under dirs but never descends into them.
        real_dirs: list[str] = []
        for name in sorted(dirs):
            if name in ignore_names:
                continue
            if (root_path / name).is_symlink() is True:
                _copy_link(src=root_path / name, dst=out_dir / name)
                links_copied += 1
                continue
            real_dirs.append(name)
        dirs[:] = real_dirs

        for name in sorted(files):
            if name in ignore_names:
                continue
            src_path: pathlib.Path = root_path / name
            dest_path: pathlib.Path = out_dir / name
            if src_path.is_symlink() is True:
                _copy_link(src=src_path, dst=dest_path)
                links_copied += 1
                continue
            shutil.copy2(src_path, dest_path)
            files_copied += 1
            bytes_copied += dest_path.stat().st_size

    return CopyStats(files_copied=files_copied, bytes_copied=bytes_copied, links_copied=links_copied)


def _copy_link(*, src: pathlib.Path, dst: pathlib.Path) -> None:
    """Recreate the symlink ``src`` at ``dst`` with the same (unresolved) target."""

    target: str = os.readlink(src)
    try:
        os.symlink(target, dst, target_is_directory=src.is_dir())
    except OSError as e:
        raise PreconditionError(f"failed to copy symlink {src} -> {target}: {e}") from e


def copy_tree_dereferenced(*, src: pathlib.Path, dst: pathlib.Path) -> CopyStats:
    """Copy a tree, replacing every symlink with a copy of its target.

    Local installs create absolute links into the build host's cache; those
    would be dangling once the bundle ships.

    :param src: Source directory.
    :param dst: Destination directory (must not exist).
    :returns: Copy statistics.
    :raises PreconditionError: If a symlink in ``src`` is dangling.
    """

    counts: list[int] = [0, 0]

    def copy_file(s: str, d: str) -> str:
        out: str = shutil.copy2(s, d)
        counts[0] += 1
        counts[1] += os.stat(out).st_size
        return out

    try:
        shutil.copytree(src, dst, symlinks=False, copy_function=copy_file)
    except shutil.Error as e:
        raise PreconditionError(f"failed to snapshot {src} (dangling symlink?): {e}") from e

    return CopyStats(files_copied=counts[0], bytes_copied=counts[1])


def resolve_client_dir(*, npm_command: str, logger: logging.Logger | None = None) -> pathlib.Path:
    """Locate the package-manager client's own install tree.

    :param npm_command: Package-manager executable.
    :param logger: Optional logger.
    :returns: Directory containing the client (``.../node_modules/npm``).
    :raises PreconditionError: If no candidate exists.
    """

    global_root: pathlib.Path = pathlib.Path(check_output([npm_command, "root", "-g"], logger=logger))
    candidate: pathlib.Path = global_root / "npm"
    if candidate.is_dir() is True:
        return candidate

    prefix: pathlib.Path = pathlib.Path(check_output([npm_command, "config", "get", "prefix"], logger=logger))
    extra: pathlib.Path
    if is_windows() is True:
        extra = prefix / "node_modules" / "npm"
    else:
        extra = prefix / "lib" / "node_modules" / "npm"
    if extra.is_dir() is True:
        return extra

    raise PreconditionError("Unable to locate npm directory for offline bundle")


def warm_offline_cache(
    *,
    archive: pathlib.Path,
    install_prefix: pathlib.Path,
    cache_dir: pathlib.Path,
    npm_command: str,
    logger: logging.Logger | None = None,
) -> None:
    """Install ``archive`` into ``install_prefix`` while filling ``cache_dir``.

    This is the only bundle step that may need the network.
    """

    cache_dir.mkdir(parents=True, exist_ok=True)
    install_prefix.mkdir(parents=True, exist_ok=True)
    check_output(
        [
            npm_command,
            "install",
            "--prefix",
            str(install_prefix),
            str(archive),
            "--cache",
            str(cache_dir),
            "--no-audit",
            "--no-fund",
            "--loglevel=error",
        ],
        logger=logger,
    )


def _install_runtime(*, runtime: RuntimeInfo, layout: BundleLayout) -> None:
    layout.runtime_dir.mkdir(parents=True, exist_ok=True)
    shutil.copy2(runtime.executable_path, layout.runtime)
    if is_windows() is False:
        # Archive transport may drop the executable bit.
        layout.runtime.chmod(0o755)
    if layout.runtime.is_file() is False:
        raise PreconditionError(f"bundled node runtime not found: {layout.runtime}")


def build_bundle(config: BundleConfig, *, logger: logging.Logger | None = None) -> BuildResult | None:
    """Build the offline bundle described by ``config``.

    :param config: Bundle configuration.
    :param logger: Optional logger for progress output.
    :returns: The finished bundle, or ``None`` when preparation is skipped.
    :raises BundlerError: On any fatal error. A bundle that fails verification
        is left in place for inspection.
    """

    if logger is None:
        logger = logging.getLogger("agent_bundler")

    if config.skip_prep is True:
        logger.info(f"agent-bundler: skip bundle preparation because {ENV_SKIP_PREP}=1")
        return None

    t_total0: float = time.perf_counter()
    layout: BundleLayout = config.layout
    logger.info(f"agent-bundler: bundle_dir={layout.root}")
    logger.info(f"agent-bundler: source_dir={config.source_dir}")
    logger.info(f"agent-bundler: min_runtime={config.min_runtime_version}")

    ensure_clean_dir(layout.root)
    ensure_clean_dir(config.temp_dir)
    try:
        source: PackageSource = resolve_package_source(
            source_dir=config.source_dir,
            package_name=config.package_name,
            temp_dir=config.temp_dir,
            npm_command=config.npm_command,
            logger=logger,
        )
        try:
            runtime: RuntimeInfo = resolve_runtime(
                min_version=config.min_runtime_version,
                temp_dir=config.temp_dir,
                npm_command=config.npm_command,
                override=config.runtime_override,
                logger=logger,
            )
            shutil.copy2(source.archive_path, layout.archive)
        finally:
            source.cleanup()
        logger.info(f"agent-bundler: packed {config.package_name} {source.version} ({source.source_label})")

        logger.info("agent-bundler: copying node runtime and npm")
        _install_runtime(runtime=runtime, layout=layout)
        client_src: pathlib.Path = resolve_client_dir(npm_command=config.npm_command, logger=logger)
        stats: CopyStats = _copy_tree_filtered(src=client_src, dst=layout.client_dir, ignore_names=CLIENT_IGNORE_NAMES)
        logger.info(
            f"agent-bundler: copied npm client ({stats.files_copied} files, {stats.links_copied} links, "
            f"{stats.bytes_copied / (1024 * 1024):.1f} MiB)"
        )

        logger.info("agent-bundler: warming offline npm cache")
        install_prefix: pathlib.Path = config.temp_dir / "install-prefix"
        t_install0: float = time.perf_counter()
        warm_offline_cache(
            archive=layout.archive,
            install_prefix=install_prefix,
            cache_dir=layout.cache_dir,
            npm_command=config.npm_command,
            logger=logger,
        )
        t_install1: float = time.perf_counter()
        logger.info(f"agent-bundler: scratch install done in {t_install1 - t_install0:.2f}s")

        logger.info("agent-bundler: snapshot installed prefix for fully-offline install")
        snap: CopyStats = copy_tree_dereferenced(src=install_prefix, dst=layout.prefix_dir)
        logger.info(
            f"agent-bundler: prefix snapshot ({snap.files_copied} files, {snap.bytes_copied / (1024 * 1024):.1f} MiB)"
        )

        verified: str | None = None
        if config.skip_verify is True:
            logger.info(f"agent-bundler: skip prefix verification because {ENV_SKIP_VERIFY}=1")
        else:
            verified = verify_snapshot(
                layout=layout,
                temp_dir=config.temp_dir,
                tool_name=config.package_name,
                logger=logger,
            )

        manifest: BundleManifest = build_bundle_manifest(
            layout=layout,
            package_name=config.package_name,
            source=source,
            runtime=runtime,
        )
        write_bundle_manifest(manifest, layout.manifest)

        make_tree_user_writable(layout.root)
    finally:
        remove_tree(config.temp_dir)

    t_total1: float = time.perf_counter()
    logger.info(f"agent-bundler: ready: {layout.root} ({t_total1 - t_total0:.2f}s)")
    return BuildResult(layout=layout, manifest=manifest, verified_version=verified)
