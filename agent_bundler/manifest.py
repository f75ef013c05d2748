"""Bundle provenance record (``manifest.json``)."""

from dataclasses import dataclass
import datetime
import json
import os
import pathlib
import platform
import sys
from typing import Any

from agent_bundler.config import BundleLayout
from agent_bundler.errors import PreconditionError
from agent_bundler.runtime import RuntimeInfo
from agent_bundler.schemas import BUNDLE_MANIFEST_SCHEMA, validate_document
from agent_bundler.source import PackageSource


@dataclass(frozen=True, slots=True)
class BundleManifest:
    """Provenance of one bundle build. Written once and never updated."""

    name: str
    generated_at: str
    tool_version: str
    tool_source: str
    runtime_version: str
    runtime_source: str
    platform_triple: str
    file_index: dict[str, str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "generatedAt": self.generated_at,
            "toolVersion": self.tool_version,
            "toolSource": self.tool_source,
            "runtimeVersion": self.runtime_version,
            "runtimeSource": self.runtime_source,
            "platformTriple": self.platform_triple,
            "fileIndex": dict(self.file_index),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "BundleManifest":
        return cls(
            name=payload["name"],
            generated_at=payload["generatedAt"],
            tool_version=payload["toolVersion"],
            tool_source=payload["toolSource"],
            runtime_version=payload["runtimeVersion"],
            runtime_source=payload["runtimeSource"],
            platform_triple=payload["platformTriple"],
            file_index=dict(payload["fileIndex"]),
        )


def utc_timestamp(now: datetime.datetime | None = None) -> str:
    """Format a UTC ISO-8601 timestamp with millisecond precision and a ``Z`` suffix."""

    moment: datetime.datetime = now if now is not None else datetime.datetime.now(datetime.timezone.utc)
    moment = moment.astimezone(datetime.timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def host_platform_triple() -> str:
    """Return ``<os>-<arch>`` for the build host, e.g. ``linux-x86_64``."""

    machine: str = platform.machine().lower() or "unknown"
    return f"{sys.platform}-{machine}"


def _relative(layout: BundleLayout, path: pathlib.Path) -> str:
    # POSIX separators keep the manifest identical across build hosts.
    return pathlib.PurePath(os.path.relpath(path, layout.root)).as_posix()


def build_bundle_manifest(
    *,
    layout: BundleLayout,
    package_name: str,
    source: PackageSource,
    runtime: RuntimeInfo,
    now: datetime.datetime | None = None,
    platform_triple: str | None = None,
) -> BundleManifest:
    """Assemble the manifest for a finished bundle.

    :param layout: Bundle layout.
    :param package_name: Upstream package name.
    :param source: Resolved package source.
    :param runtime: Resolved runtime.
    :param now: Timestamp override (tests).
    :param platform_triple: Platform override (tests).
    :returns: Manifest.
    """

    return BundleManifest(
        name=f"{package_name}-offline-bundle",
        generated_at=utc_timestamp(now),
        tool_version=source.version,
        tool_source=source.source_label,
        runtime_version=runtime.reported_version,
        runtime_source=runtime.source_label,
        platform_triple=platform_triple if platform_triple is not None else host_platform_triple(),
        file_index={
            "archive": _relative(layout, layout.archive),
            "runtime": _relative(layout, layout.runtime),
            "client": _relative(layout, layout.client_dir),
            "clientCli": _relative(layout, layout.client_cli),
            "cache": _relative(layout, layout.cache_dir),
            "prefix": _relative(layout, layout.prefix_dir),
        },
    )


def write_bundle_manifest(manifest: BundleManifest, path: pathlib.Path) -> None:
    """Validate and write ``manifest.json``.

    :raises ManifestError: If the document does not match the schema.
    """

    payload: dict[str, Any] = manifest.to_dict()
    validate_document(BUNDLE_MANIFEST_SCHEMA, payload, label="bundle manifest")
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def read_bundle_manifest(path: pathlib.Path) -> BundleManifest:
    """Load and validate an existing ``manifest.json``.

    :raises PreconditionError: If the file is missing or not JSON.
    :raises ManifestError: If the document does not match the schema.
    """

    if path.is_file() is False:
        raise PreconditionError(f"bundle manifest missing: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise PreconditionError(f"bundle manifest is not valid JSON: {path}: {e}") from e
    validate_document(BUNDLE_MANIFEST_SCHEMA, payload, label="bundle manifest")
    return BundleManifest.from_dict(payload)
