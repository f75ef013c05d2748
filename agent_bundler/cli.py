"""Command line interface for agent-bundler."""

import argparse
import logging
import pathlib
import sys

from agent_bundler.builder import build_bundle
from agent_bundler.config import (
    DEFAULT_GATEWAY_PORT,
    DEFAULT_MIN_RUNTIME_VERSION,
    DEFAULT_PACKAGE_NAME,
    DEFAULT_READY_TIMEOUT_S,
    DEFAULT_URL_TEMPLATE,
    BundleConfig,
    OfflineCheckConfig,
    ReleaseConfig,
    resolve_bundle_config,
    resolve_offline_check_config,
)
from agent_bundler.errors import BundlerError
from agent_bundler.offline_check import run_offline_check
from agent_bundler.release import generate_release_manifest


def _configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    """Configure the agent-bundler logger.

    :param verbose: Verbosity count (0+).
    :param quiet: Quietness count (0+).
    :returns: Configured logger.
    """

    level: int = logging.INFO
    if quiet >= 2:
        level = logging.ERROR
    elif quiet >= 1:
        level = logging.WARNING
    elif verbose >= 1:
        level = logging.DEBUG

    logger: logging.Logger = logging.getLogger("agent_bundler")
    logger.setLevel(level)
    logger.propagate = False

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def _add_verbosity(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging (prints every command run).",
    )
    p.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Reduce logging. Pass twice to show errors only.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="agent-bundler",
        description="Offline bundle and updater-feed release tooling.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_bundle = subparsers.add_parser(
        "bundle",
        help="Build the offline-installable tool bundle.",
        description=(
            "Environment switches: SKIP_BUNDLE_PREP=1 skips everything, "
            "BUNDLE_NODE_OVERRIDE=<path> supplies a runtime, "
            "BUNDLE_SKIP_VERIFY=1 skips snapshot verification."
        ),
    )
    p_bundle.add_argument(
        "--project-root",
        type=pathlib.Path,
        default=None,
        help="Desktop project root (defaults to the current directory).",
    )
    p_bundle.add_argument(
        "--source-dir",
        type=pathlib.Path,
        default=None,
        help="Local upstream source tree (defaults to <project-root>/../<package>).",
    )
    p_bundle.add_argument(
        "--bundle-dir",
        type=pathlib.Path,
        default=None,
        help="Output bundle directory (recreated empty on every build).",
    )
    p_bundle.add_argument(
        "--temp-dir",
        type=pathlib.Path,
        default=None,
        help="Scratch directory (removed when the build ends).",
    )
    p_bundle.add_argument(
        "--package",
        type=str,
        default=DEFAULT_PACKAGE_NAME,
        help="Registry package name of the upstream tool.",
    )
    p_bundle.add_argument(
        "--min-runtime",
        type=str,
        default=DEFAULT_MIN_RUNTIME_VERSION,
        help="Minimum runtime version as MAJOR.MINOR.PATCH.",
    )
    p_bundle.add_argument(
        "--npm",
        type=str,
        default=None,
        help="Package-manager executable (defaults to npm on PATH).",
    )
    _add_verbosity(p_bundle)

    p_release = subparsers.add_parser(
        "release-manifest",
        help="Write latest.json for the in-app updater.",
    )
    p_release.add_argument("assets_dir", type=pathlib.Path, help="Directory of built installers and .sig files.")
    p_release.add_argument("tag_name", type=str, help="Release tag, e.g. v1.2.3.")
    p_release.add_argument("repo", type=str, help="Repository identifier, e.g. owner/name.")
    p_release.add_argument(
        "--url-template",
        type=str,
        default=DEFAULT_URL_TEMPLATE,
        help="Download URL template with {repo}, {tag} and {file} placeholders.",
    )
    _add_verbosity(p_release)

    p_check = subparsers.add_parser(
        "offline-check",
        help="Install the built bundle with network blocked and start its gateway.",
    )
    p_check.add_argument("--project-root", type=pathlib.Path, default=None)
    p_check.add_argument("--bundle-dir", type=pathlib.Path, default=None)
    p_check.add_argument("--package", type=str, default=DEFAULT_PACKAGE_NAME)
    p_check.add_argument(
        "--auth-file",
        type=pathlib.Path,
        default=None,
        help="Existing credential file (defaults to ~/.codex/auth.json).",
    )
    p_check.add_argument("--port", type=int, default=DEFAULT_GATEWAY_PORT)
    p_check.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_READY_TIMEOUT_S,
        help="Seconds to wait for the gateway page.",
    )
    _add_verbosity(p_check)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the agent-bundler CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code.
    """

    parser: argparse.ArgumentParser = _build_parser()
    ns = parser.parse_args(argv)
    logger: logging.Logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)

    try:
        if ns.command == "bundle":
            bundle_cfg: BundleConfig = resolve_bundle_config(
                project_root=ns.project_root,
                source_dir=ns.source_dir,
                bundle_dir=ns.bundle_dir,
                temp_dir=ns.temp_dir,
                package_name=ns.package,
                min_runtime_version=ns.min_runtime,
                npm_command=ns.npm,
            )
            build_bundle(bundle_cfg, logger=logger)
            return 0

        if ns.command == "release-manifest":
            release_cfg: ReleaseConfig = ReleaseConfig(
                assets_dir=ns.assets_dir,
                tag=ns.tag_name,
                repo=ns.repo,
                url_template=ns.url_template,
            )
            _, _, winners = generate_release_manifest(release_cfg, logger=logger)
            for target in sorted(winners):
                print(f"- {target} -> {winners[target].file_name}")
            return 0

        if ns.command == "offline-check":
            check_cfg: OfflineCheckConfig = resolve_offline_check_config(
                project_root=ns.project_root,
                bundle_dir=ns.bundle_dir,
                package_name=ns.package,
                auth_file=ns.auth_file,
                port=ns.port,
                ready_timeout_s=ns.timeout,
            )
            run_offline_check(check_cfg, logger=logger)
            return 0
    except BundlerError as e:
        logger.error(f"agent-bundler: failed: {e}")
        return 1

    raise AssertionError(f"Unhandled command: {ns.command}")
