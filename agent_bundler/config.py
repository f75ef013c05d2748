"""Configuration values for the pipeline stages.

Every stage receives one of these frozen objects instead of reading module
globals, so tests can point the pipeline at throwaway roots and different
minimum versions.
"""

from collections.abc import Mapping
from dataclasses import dataclass
import os
import pathlib
import shutil
import sys

from agent_bundler.errors import PreconditionError
from agent_bundler.versions import parse_version


DEFAULT_PACKAGE_NAME: str = "openclaw"
DEFAULT_MIN_RUNTIME_VERSION: str = "22.12.0"
DEFAULT_URL_TEMPLATE: str = "https://github.com/{repo}/releases/download/{tag}/{file}"
DEFAULT_GATEWAY_PORT: int = 18789
DEFAULT_READY_TIMEOUT_S: float = 90.0
DEFAULT_POLL_INTERVAL_S: float = 1.0
DEFAULT_AUTH_CHOICE: str = "openai-codex"
FALLBACK_AUTH_CHOICE: str = "skip"

ENV_SKIP_PREP: str = "SKIP_BUNDLE_PREP"
ENV_RUNTIME_OVERRIDE: str = "BUNDLE_NODE_OVERRIDE"
ENV_SKIP_VERIFY: str = "BUNDLE_SKIP_VERIFY"


def is_windows() -> bool:
    return sys.platform == "win32"


@dataclass(frozen=True, slots=True)
class BundleLayout:
    """Fixed paths inside one bundle directory.

    :ivar root: Bundle directory (exclusively owned by one build).
    :ivar archive: Packed tool archive (``<package>.tgz``).
    :ivar runtime_dir: Directory holding the runtime executable.
    :ivar runtime: Runtime executable path.
    :ivar client_dir: Package-manager client tree.
    :ivar client_cli: Client entry script inside ``client_dir``.
    :ivar cache_dir: Offline install cache.
    :ivar prefix_dir: Installed-prefix snapshot.
    :ivar manifest: ``manifest.json`` provenance record.
    """

    root: pathlib.Path
    archive: pathlib.Path
    runtime_dir: pathlib.Path
    runtime: pathlib.Path
    client_dir: pathlib.Path
    client_cli: pathlib.Path
    cache_dir: pathlib.Path
    prefix_dir: pathlib.Path
    manifest: pathlib.Path

    @classmethod
    def for_bundle(cls, root: pathlib.Path, *, package_name: str, windows: bool | None = None) -> "BundleLayout":
        """Compute the layout of a bundle directory.

        :param root: Bundle directory.
        :param package_name: Upstream package name (names the archive).
        :param windows: Force Windows executable naming; defaults to the host.
        :returns: Layout.
        """

        win: bool = is_windows() if windows is None else windows
        runtime_dir: pathlib.Path = root / "runtime"
        client_dir: pathlib.Path = root / "client"
        return cls(
            root=root,
            archive=root / f"{package_name}.tgz",
            runtime_dir=runtime_dir,
            runtime=runtime_dir / ("node.exe" if win is True else "node"),
            client_dir=client_dir,
            client_cli=client_dir / "bin" / "npm-cli.js",
            cache_dir=root / "client-cache",
            prefix_dir=root / "prefix",
            manifest=root / "manifest.json",
        )


@dataclass(frozen=True, slots=True)
class BundleConfig:
    """Bundle builder configuration.

    :ivar project_root: Desktop project root (anchor for the default paths).
    :ivar source_dir: Local upstream source tree (may not exist).
    :ivar bundle_dir: Output bundle resource directory.
    :ivar temp_dir: Per-build scratch directory.
    :ivar package_name: Registry name of the upstream tool.
    :ivar min_runtime_version: Minimum runtime version as ``MAJOR.MINOR.PATCH``.
    :ivar npm_command: Package-manager client executable.
    :ivar skip_prep: Return immediately without building.
    :ivar skip_verify: Skip snapshot verification.
    :ivar runtime_override: Operator-supplied runtime executable.
    """

    project_root: pathlib.Path
    source_dir: pathlib.Path
    bundle_dir: pathlib.Path
    temp_dir: pathlib.Path
    package_name: str
    min_runtime_version: str
    npm_command: str
    skip_prep: bool
    skip_verify: bool
    runtime_override: pathlib.Path | None

    @property
    def layout(self) -> BundleLayout:
        return BundleLayout.for_bundle(self.bundle_dir, package_name=self.package_name)


@dataclass(frozen=True, slots=True)
class ReleaseConfig:
    """Release manifest generator configuration.

    :ivar assets_dir: Directory tree of built installers and ``.sig`` files.
    :ivar tag: Release tag, e.g. ``v1.2.3``.
    :ivar repo: Repository identifier (``owner/name``).
    :ivar url_template: Download URL template with ``{repo}``, ``{tag}`` and ``{file}``.
    """

    assets_dir: pathlib.Path
    tag: str
    repo: str
    url_template: str = DEFAULT_URL_TEMPLATE


@dataclass(frozen=True, slots=True)
class OfflineCheckConfig:
    """Offline end-to-end validator configuration.

    :ivar bundle_dir: Previously built bundle directory.
    :ivar package_name: Upstream tool name (executable and state dir name).
    :ivar auth_file: Existing local credential file to seed the temp home with.
    :ivar port: Local gateway port.
    :ivar ready_timeout_s: Seconds to wait for the gateway to answer.
    :ivar poll_interval_s: Seconds between polls.
    :ivar auth_choice: Preferred non-interactive onboarding auth choice.
    """

    bundle_dir: pathlib.Path
    package_name: str
    auth_file: pathlib.Path
    port: int = DEFAULT_GATEWAY_PORT
    ready_timeout_s: float = DEFAULT_READY_TIMEOUT_S
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    auth_choice: str = DEFAULT_AUTH_CHOICE

    @property
    def layout(self) -> BundleLayout:
        return BundleLayout.for_bundle(self.bundle_dir, package_name=self.package_name)

    @property
    def ready_url(self) -> str:
        return f"http://127.0.0.1:{self.port}/"


def default_bundle_dir(project_root: pathlib.Path, package_name: str) -> pathlib.Path:
    return project_root / "src-tauri" / "bundle" / "resources" / f"{package_name}-bundle"


def _env_flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "") == "1"


def _resolve_npm_command(npm_command: str | None) -> str:
    """Resolve the package-manager executable.

    On Windows ``npm`` is a ``.cmd`` shim that :mod:`subprocess` cannot start by
    bare name, so look it up on ``PATH`` first.
    """

    if npm_command is not None:
        return npm_command
    found: str | None = shutil.which("npm")
    if found is not None:
        return found
    return "npm"


def resolve_bundle_config(
    *,
    project_root: pathlib.Path | None = None,
    source_dir: pathlib.Path | None = None,
    bundle_dir: pathlib.Path | None = None,
    temp_dir: pathlib.Path | None = None,
    package_name: str = DEFAULT_PACKAGE_NAME,
    min_runtime_version: str = DEFAULT_MIN_RUNTIME_VERSION,
    npm_command: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> BundleConfig:
    """Resolve CLI arguments and environment switches into a :class:`BundleConfig`.

    :param project_root: Desktop project root; defaults to the current directory.
    :param source_dir: Local upstream tree; defaults to ``<project_root>/../<package>``.
    :param bundle_dir: Output directory; defaults to the Tauri resources dir.
    :param temp_dir: Scratch directory; defaults to ``<project_root>/.tmp/<package>-bundle``.
    :param package_name: Registry package name.
    :param min_runtime_version: Minimum runtime version.
    :param npm_command: Package-manager executable override.
    :param environ: Environment to read switches from (defaults to ``os.environ``).
    :returns: Resolved config.
    :raises PreconditionError: If ``min_runtime_version`` is not ``MAJOR.MINOR.PATCH``.
    """

    env: Mapping[str, str] = os.environ if environ is None else environ
    root: pathlib.Path = (project_root if project_root is not None else pathlib.Path.cwd()).resolve()

    if parse_version(min_runtime_version) is None:
        raise PreconditionError(
            f"Invalid minimum runtime version {min_runtime_version!r}; expected 'MAJOR.MINOR.PATCH'."
        )

    override_raw: str = env.get(ENV_RUNTIME_OVERRIDE, "").strip()
    override: pathlib.Path | None = pathlib.Path(override_raw) if len(override_raw) > 0 else None

    return BundleConfig(
        project_root=root,
        source_dir=source_dir if source_dir is not None else root.parent / package_name,
        bundle_dir=bundle_dir if bundle_dir is not None else default_bundle_dir(root, package_name),
        temp_dir=temp_dir if temp_dir is not None else root / ".tmp" / f"{package_name}-bundle",
        package_name=package_name,
        min_runtime_version=min_runtime_version,
        npm_command=_resolve_npm_command(npm_command),
        skip_prep=_env_flag(env, ENV_SKIP_PREP),
        skip_verify=_env_flag(env, ENV_SKIP_VERIFY),
        runtime_override=override,
    )


def resolve_home(environ: Mapping[str, str] | None = None) -> pathlib.Path:
    """Resolve the user's home directory from ``HOME`` or ``USERPROFILE``.

    :raises PreconditionError: If neither is set.
    """

    env: Mapping[str, str] = os.environ if environ is None else environ
    raw: str = env.get("HOME", "") or env.get("USERPROFILE", "")
    if len(raw) == 0:
        raise PreconditionError("Cannot resolve HOME/USERPROFILE")
    return pathlib.Path(raw)


def resolve_offline_check_config(
    *,
    project_root: pathlib.Path | None = None,
    bundle_dir: pathlib.Path | None = None,
    package_name: str = DEFAULT_PACKAGE_NAME,
    auth_file: pathlib.Path | None = None,
    port: int = DEFAULT_GATEWAY_PORT,
    ready_timeout_s: float = DEFAULT_READY_TIMEOUT_S,
    environ: Mapping[str, str] | None = None,
) -> OfflineCheckConfig:
    """Resolve arguments into an :class:`OfflineCheckConfig`.

    The credential file defaults to ``~/.codex/auth.json``.
    """

    root: pathlib.Path = (project_root if project_root is not None else pathlib.Path.cwd()).resolve()
    auth: pathlib.Path
    if auth_file is not None:
        auth = auth_file
    else:
        auth = resolve_home(environ) / ".codex" / "auth.json"

    return OfflineCheckConfig(
        bundle_dir=bundle_dir if bundle_dir is not None else default_bundle_dir(root, package_name),
        package_name=package_name,
        auth_file=auth,
        port=port,
        ready_timeout_s=ready_timeout_s,
    )
