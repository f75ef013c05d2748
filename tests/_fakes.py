"""Fake package-manager, runtime and tool executables for the pipeline tests.

Each fake is a small Python script with a shebang pointing at the running
interpreter, so the tests are POSIX-only.
"""

from __future__ import annotations

import json
import os
import pathlib
import socket
import sys
import textwrap


POSIX_ONLY: str = "fake executables rely on shebang scripts"


def write_script(path: pathlib.Path, body: str) -> pathlib.Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body), encoding="utf-8")
    path.chmod(0o755)
    return path


def fake_node(path: pathlib.Path, version: str) -> pathlib.Path:
    """A runtime that answers ``-v`` with ``version``."""

    return write_script(
        path,
        f"""
        import sys
        if sys.argv[1:] == ["-v"]:
            print({version!r})
            sys.exit(0)
        sys.exit(64)
        """,
    )


def fake_tool(path: pathlib.Path, *, version: str) -> pathlib.Path:
    """The upstream CLI: ``--version``, ``setup``, ``onboard`` and ``gateway run``.

    Behaviour switches (read from the environment):

    - ``FAKE_TOOL_BROKEN``: ``--version`` exits 1.
    - ``FAKE_OAUTH_INTERACTIVE``: onboarding with ``openai-codex`` is rejected.
    - ``FAKE_GATEWAY_CRASH``: the gateway exits 3 right away.
    """

    return write_script(
        path,
        f"""
        import http.server
        import os
        import pathlib
        import sys

        args = sys.argv[1:]
        if args == ["--version"]:
            if os.environ.get("FAKE_TOOL_BROKEN"):
                print("tool is broken", file=sys.stderr)
                sys.exit(1)
            print({version!r})
            sys.exit(0)

        home = pathlib.Path(os.environ["HOME"])
        if args[:1] == ["setup"]:
            (home / "setup.done").write_text("ok", encoding="utf-8")
            sys.exit(0)

        if args[:1] == ["onboard"]:
            choice = args[args.index("--auth-choice") + 1]
            if choice == "openai-codex" and os.environ.get("FAKE_OAUTH_INTERACTIVE"):
                print("Error: OAuth requires interactive mode", file=sys.stderr)
                sys.exit(1)
            (home / "onboard.choice").write_text(choice, encoding="utf-8")
            sys.exit(0)

        if args[:2] == ["gateway", "run"]:
            if os.environ.get("FAKE_GATEWAY_CRASH"):
                print("gateway starting")
                print("boom: port unavailable", file=sys.stderr)
                sys.exit(3)
            port = int(args[args.index("--port") + 1])

            class Handler(http.server.BaseHTTPRequestHandler):
                def do_GET(self):
                    self.send_response(200)
                    self.end_headers()
                    self.wfile.write(b"ok")

                def log_message(self, *a):
                    pass

            http.server.HTTPServer(("127.0.0.1", port), Handler).serve_forever()

        print("unknown command", args, file=sys.stderr)
        sys.exit(2)
        """,
    )


def fake_npm(path: pathlib.Path, *, log_path: pathlib.Path) -> pathlib.Path:
    """A package manager covering the subcommands the builder uses.

    ``pack`` writes a small JSON "archive" holding the package name and
    version; ``install`` of such an archive lays out ``bin/<name>`` as an
    absolute symlink into a read-only (0555) ``node_modules/<name>`` directory
    holding a read-only file, and fills the ``--cache`` directory.

    Behaviour switches (read from the environment):

    - ``FAKE_NPM_ROOT``: printed by ``root -g``.
    - ``FAKE_NPM_PREFIX``: printed by ``config get prefix``.
    - ``FAKE_NODE_VERSION``: version reported by a provisioned runtime.
    - ``FAKE_NPM_PACK_NO_FILENAME``: ``pack`` prints a record without ``filename``.
    - ``FAKE_LATEST_VERSION``: version used for ``<name>@latest``.
    """

    node_script: str = textwrap.dedent(
        """
        import sys
        if sys.argv[1:] == ["-v"]:
            print({version!r})
            sys.exit(0)
        sys.exit(64)
        """
    )
    tool_template: str = textwrap.dedent(
        """
        import sys
        if sys.argv[1:] == ["--version"]:
            import os
            if os.environ.get("FAKE_TOOL_BROKEN"):
                print("tool is broken", file=sys.stderr)
                sys.exit(1)
            print({version!r})
            sys.exit(0)
        sys.exit(2)
        """
    )
    return write_script(
        path,
        f"""
        import json
        import os
        import pathlib
        import sys

        LOG = pathlib.Path({str(log_path)!r})
        NODE_SCRIPT = {node_script!r}
        TOOL_TEMPLATE = {tool_template!r}
        SHEBANG = "#!" + {sys.executable!r} + "\\n"

        args = sys.argv[1:]
        with LOG.open("a", encoding="utf-8") as f:
            f.write(json.dumps({{"args": args, "cwd": os.getcwd()}}) + "\\n")

        def write_exe(p, body):
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(SHEBANG + body, encoding="utf-8")
            p.chmod(0o755)

        if args[:1] == ["root"]:
            print(os.environ.get("FAKE_NPM_ROOT", "/nonexistent/root"))
            sys.exit(0)

        if args[:3] == ["config", "get", "prefix"]:
            print(os.environ.get("FAKE_NPM_PREFIX", "/nonexistent/prefix"))
            sys.exit(0)

        if args[:2] == ["pack", "--json"]:
            rest = [a for a in args[2:] if not a.startswith("--")]
            if rest:
                name, _, version = rest[0].rpartition("@")
                if version == "latest":
                    version = os.environ.get("FAKE_LATEST_VERSION", "9.9.9")
            else:
                meta = json.loads(pathlib.Path("package.json").read_text(encoding="utf-8"))
                name, version = meta["name"], meta["version"]
            filename = f"{{name}}-{{version}}.tgz"
            pathlib.Path(filename).write_text(
                json.dumps({{"name": name, "version": version}}), encoding="utf-8"
            )
            if os.environ.get("FAKE_NPM_PACK_NO_FILENAME"):
                print(json.dumps([{{"version": version}}]))
            else:
                print(json.dumps([{{"filename": filename, "version": version}}]))
            sys.exit(0)

        if args[:1] == ["install"]:
            prefix = pathlib.Path(args[args.index("--prefix") + 1])
            positional = [
                a for i, a in enumerate(args[1:], start=1)
                if not a.startswith("--") and args[i - 1] not in ("--prefix", "--cache")
            ]
            target = positional[-1]
            if target.startswith("node@"):
                version = os.environ.get("FAKE_NODE_VERSION", "v" + target.split("@", 1)[1])
                write_exe(prefix / "node_modules" / "node" / "bin" / "node", NODE_SCRIPT.format(version=version))
                sys.exit(0)

            meta = json.loads(pathlib.Path(target).read_text(encoding="utf-8"))
            name, version = meta["name"], meta["version"]
            pkg = prefix / "node_modules" / name
            write_exe(pkg / "cli.py", TOOL_TEMPLATE.format(version=version))
            (pkg / "package.json").write_text(json.dumps(meta), encoding="utf-8")
            readonly = pkg / "LICENSE"
            readonly.write_text("MIT", encoding="utf-8")
            readonly.chmod(0o444)
            pkg.chmod(0o555)
            (prefix / "bin").mkdir(parents=True, exist_ok=True)
            os.symlink((pkg / "cli.py").resolve(), prefix / "bin" / name)
            if "--cache" in args:
                cache = pathlib.Path(args[args.index("--cache") + 1])
                (cache / "_cacache").mkdir(parents=True, exist_ok=True)
                (cache / "_cacache" / "index").write_text(name, encoding="utf-8")
            sys.exit(0)

        print("fake npm: unsupported", args, file=sys.stderr)
        sys.exit(1)
        """,
    )


def fake_client_tree(root: pathlib.Path) -> pathlib.Path:
    """Lay out ``<root>/npm`` like a globally installed package-manager client.

    Includes a relative directory link (``docs``) and a relative file link
    (``bin/npx-cli.js``).
    """

    npm_dir: pathlib.Path = root / "npm"
    (npm_dir / "bin").mkdir(parents=True, exist_ok=True)
    (npm_dir / "bin" / "npm-cli.js").write_text("// cli\n", encoding="utf-8")
    (npm_dir / "package.json").write_text(json.dumps({"name": "npm", "version": "10.9.0"}), encoding="utf-8")
    (npm_dir / ".npmrc").write_text("globalconfig=/etc/npmrc\n", encoding="utf-8")
    (npm_dir / "lib").mkdir(exist_ok=True)
    (npm_dir / "lib" / ".npmrc").write_text("x=1\n", encoding="utf-8")
    (npm_dir / "lib" / "npm.js").write_text("// lib\n", encoding="utf-8")
    (npm_dir / "docs").symlink_to("lib", target_is_directory=True)
    (npm_dir / "bin" / "npx-cli.js").symlink_to("npm-cli.js")
    return npm_dir


def read_npm_log(log_path: pathlib.Path) -> list[dict]:
    if log_path.is_file() is False:
        return []
    return [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines() if line]


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def is_posix() -> bool:
    return os.name == "posix"
