"""Offline end-to-end check of a built bundle.

Installs the bundle into a throwaway home with every proxy pointed at a dead
port, onboards the tool non-interactively with an existing local credential,
starts its gateway and waits for the local page to answer.
"""

from collections.abc import Callable
from dataclasses import dataclass
import json
import logging
import os
import pathlib
import shutil
import tempfile
import time

import requests

from agent_bundler.config import FALLBACK_AUTH_CHOICE, BundleLayout, OfflineCheckConfig, is_windows
from agent_bundler.errors import CommandError, PreconditionError, VerificationError
from agent_bundler.manifest import BundleManifest, read_bundle_manifest
from agent_bundler.process import BackgroundProcess, check_output
from agent_bundler.tree import remove_tree
from agent_bundler.verify import path_with, resolve_installed_executable, tool_argv


BLOCKED_PROXY: str = "http://127.0.0.1:9"
OAUTH_INTERACTIVE_MARKER: str = "OAuth requires interactive mode"
TAIL_CHARS: int = 2000


@dataclass(frozen=True, slots=True)
class BundledTools:
    """Executables and payloads the check needs from the bundle.

    :ivar runtime: Bundled runtime executable.
    :ivar client_cli: Package-manager client entry script.
    :ivar archive: Packed tool archive.
    :ivar cache_dir: Offline install cache.
    :ivar prefix_dir: Installed-prefix snapshot (may be absent).
    """

    runtime: pathlib.Path
    client_cli: pathlib.Path
    archive: pathlib.Path
    cache_dir: pathlib.Path
    prefix_dir: pathlib.Path


def tail(text: str, size: int = TAIL_CHARS) -> str:
    """Return the last ``size`` characters of ``text``."""

    if len(text) <= size:
        return text
    return text[-size:]


def read_credential(auth_file: pathlib.Path) -> str:
    """Read the local credential file that seeds the temp home.

    :param auth_file: ``auth.json`` path.
    :returns: The raw file text (copied verbatim).
    :raises PreconditionError: If the file is missing, not JSON, or holds no tokens.
    """

    if auth_file.is_file() is False:
        raise PreconditionError(f"local credential file missing: {auth_file}")
    raw: str = auth_file.read_text(encoding="utf-8")
    try:
        parsed = json.loads(raw)
    except ValueError as e:
        raise PreconditionError(f"local credential file is not valid JSON: {auth_file}: {e}") from e

    tokens = parsed.get("tokens") if isinstance(parsed, dict) else None
    if isinstance(tokens, dict) is False or len(tokens) == 0:
        raise PreconditionError(f"local credential file has no tokens: {auth_file}")
    return raw


def resolve_bundled_tools(layout: BundleLayout, *, windows: bool | None = None) -> BundledTools:
    """Locate the runtime, client and payloads inside a built bundle.

    :raises PreconditionError: If any required piece is missing.
    """

    win: bool = is_windows() if windows is None else windows
    exe: str = "node.exe" if win is True else "node"
    runtime_candidates: list[pathlib.Path] = [
        layout.runtime_dir / "bin" / exe,
        layout.runtime_dir / exe,
    ]
    runtime: pathlib.Path | None = None
    for candidate in runtime_candidates:
        if candidate.is_file() is True:
            runtime = candidate
            break
    if runtime is None:
        raise PreconditionError(f"bundled node missing: {', '.join(str(c) for c in runtime_candidates)}")

    if layout.client_cli.is_file() is False:
        raise PreconditionError(f"bundled npm cli missing: {layout.client_cli}")
    if layout.archive.is_file() is False:
        raise PreconditionError(f"bundled tool archive missing: {layout.archive}")
    if layout.cache_dir.is_dir() is False:
        raise PreconditionError(f"bundled npm cache missing: {layout.cache_dir}")

    return BundledTools(
        runtime=runtime,
        client_cli=layout.client_cli,
        archive=layout.archive,
        cache_dir=layout.cache_dir,
        prefix_dir=layout.prefix_dir,
    )


def blocked_environment(home: pathlib.Path, *, base: dict[str, str] | None = None) -> dict[str, str]:
    """Build a child environment rooted at ``home`` with outbound proxies dead.

    Loopback stays reachable through ``NO_PROXY``.
    """

    env: dict[str, str] = dict(os.environ) if base is None else dict(base)
    env.update(
        {
            "HOME": str(home),
            "USERPROFILE": str(home),
            "HTTP_PROXY": BLOCKED_PROXY,
            "HTTPS_PROXY": BLOCKED_PROXY,
            "ALL_PROXY": BLOCKED_PROXY,
            "NO_PROXY": "127.0.0.1,localhost",
        }
    )
    return env


def onboard_args(auth_choice: str) -> list[str]:
    return [
        "onboard",
        "--non-interactive",
        "--accept-risk",
        "--mode",
        "local",
        "--auth-choice",
        auth_choice,
        "--no-install-daemon",
        "--skip-channels",
        "--skip-skills",
        "--skip-ui",
        "--skip-health",
    ]


def gateway_args(port: int) -> list[str]:
    return ["gateway", "run", "--allow-unconfigured", "--port", str(port), "--verbose"]


def wait_for_http(
    url: str,
    *,
    timeout_s: float,
    interval_s: float,
    session: requests.Session | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll ``url`` until it answers with a 2xx/3xx status or ``timeout_s`` passes.

    Proxy variables of this process are ignored so loopback is hit directly.

    :returns: ``True`` once the URL answered, ``False`` on timeout.
    """

    own_session: bool = session is None
    http: requests.Session = requests.Session() if session is None else session
    http.trust_env = False
    deadline: float = clock() + timeout_s
    try:
        while clock() < deadline:
            try:
                res: requests.Response = http.get(url, timeout=max(interval_s, 1.0))
                if res.ok is True:
                    return True
            except requests.RequestException:
                # Not listening yet.
                pass
            sleep(interval_s)
        return False
    finally:
        if own_session is True:
            http.close()


def _install_tool(
    *,
    tools: BundledTools,
    prefix: pathlib.Path,
    env: dict[str, str],
    logger: logging.Logger,
) -> None:
    if tools.prefix_dir.is_dir() is True:
        logger.info("agent-bundler: install via bundled prefix snapshot")
        shutil.copytree(tools.prefix_dir, prefix, symlinks=True)
        return

    logger.info("agent-bundler: install via offline npm payload")
    check_output(
        [
            str(tools.runtime),
            str(tools.client_cli),
            "install",
            "--prefix",
            str(prefix),
            str(tools.archive),
            "--cache",
            str(tools.cache_dir),
            "--offline",
            "--no-audit",
            "--no-fund",
            "--loglevel=error",
        ],
        env=env,
        logger=logger,
    )


def _onboard(
    *,
    argv: list[str],
    env: dict[str, str],
    auth_choice: str,
    logger: logging.Logger,
) -> str:
    """Run non-interactive onboarding, falling back to skipping auth.

    :returns: The auth choice that succeeded.
    """

    try:
        check_output([*argv, *onboard_args(auth_choice)], env=env, logger=logger)
        return auth_choice
    except CommandError as e:
        if OAUTH_INTERACTIVE_MARKER not in str(e):
            raise
    logger.info(
        f"agent-bundler: onboard {auth_choice} rejected non-interactively; "
        f"falling back to auth-choice={FALLBACK_AUTH_CHOICE}"
    )
    check_output([*argv, *onboard_args(FALLBACK_AUTH_CHOICE)], env=env, logger=logger)
    return FALLBACK_AUTH_CHOICE


def run_offline_check(config: OfflineCheckConfig, *, logger: logging.Logger | None = None) -> str:
    """Run the full offline install + onboard + gateway check.

    :param config: Check configuration.
    :param logger: Optional logger.
    :returns: The auth choice onboarding settled on.
    :raises PreconditionError: If the credential or bundle pieces are missing.
    :raises CommandError: If install, setup or onboarding fails.
    :raises VerificationError: If the gateway never answered.
    """

    if logger is None:
        logger = logging.getLogger("agent_bundler")

    auth_raw: str = read_credential(config.auth_file)
    layout: BundleLayout = config.layout
    tools: BundledTools = resolve_bundled_tools(layout)
    manifest: BundleManifest = read_bundle_manifest(layout.manifest)
    logger.info(
        f"agent-bundler: bundle {manifest.tool_version} ({manifest.tool_source}), "
        f"runtime {manifest.runtime_version}, built {manifest.generated_at} on {manifest.platform_triple}"
    )

    temp_root: pathlib.Path = pathlib.Path(tempfile.mkdtemp(prefix=f"{config.package_name}-offline-e2e-"))
    try:
        home: pathlib.Path = temp_root / "home"
        prefix: pathlib.Path = home / f".{config.package_name}"
        codex_dir: pathlib.Path = home / ".codex"
        codex_dir.mkdir(parents=True, exist_ok=True)
        (codex_dir / "auth.json").write_text(auth_raw, encoding="utf-8")

        env: dict[str, str] = blocked_environment(home)
        logger.info(f"agent-bundler: local credential source: {config.auth_file}")
        logger.info(f"agent-bundler: temp HOME: {home}")
        _install_tool(tools=tools, prefix=prefix, env=env, logger=logger)

        try:
            executable: pathlib.Path = resolve_installed_executable(prefix, tool_name=config.package_name)
        except PreconditionError as e:
            raise VerificationError(f"{config.package_name} binary not found after offline install") from e

        app_env: dict[str, str] = dict(env)
        app_env["PATH"] = path_with(prefix / "bin", tools.runtime.parent, base=env.get("PATH", ""))
        argv: list[str] = tool_argv(executable, runtime=tools.runtime)

        logger.info(f"agent-bundler: run setup + non-interactive onboard ({config.auth_choice})")
        check_output([*argv, "setup"], env=app_env, logger=logger)
        choice: str = _onboard(argv=argv, env=app_env, auth_choice=config.auth_choice, logger=logger)

        logger.info(f"agent-bundler: start gateway and wait for {config.ready_url}")
        gateway: BackgroundProcess = BackgroundProcess(
            [*argv, *gateway_args(config.port)],
            stdout_path=temp_root / "gateway.stdout.log",
            stderr_path=temp_root / "gateway.stderr.log",
            env=app_env,
            logger=logger,
        )
        try:
            ready: bool = wait_for_http(
                config.ready_url,
                timeout_s=config.ready_timeout_s,
                interval_s=config.poll_interval_s,
            )
            if ready is False:
                code: int | None = gateway.returncode
                raise VerificationError(
                    "\n".join(
                        [
                            "official local web is not reachable",
                            f"gateway exit code: {'running' if code is None else code}",
                            f"gateway stdout tail:\n{tail(gateway.read_stdout())}",
                            f"gateway stderr tail:\n{tail(gateway.read_stderr())}",
                        ]
                    )
                )
        finally:
            gateway.terminate()
    finally:
        remove_tree(temp_root)

    logger.info("agent-bundler: PASS: offline install + local credential setup + local page reachable")
    return choice
