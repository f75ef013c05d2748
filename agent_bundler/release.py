"""Updater release manifest (``latest.json``) generation.

Walks a directory of built installers, pairs each with its detached ``.sig``
file, keeps the best artifact per ``{os}-{arch}`` target and writes the feed the
in-app updater polls.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
import datetime
import json
import logging
import os
import pathlib
from typing import Any
import urllib.parse

from agent_bundler.config import ReleaseConfig
from agent_bundler.errors import EmptyReleaseError, PreconditionError
from agent_bundler.manifest import utc_timestamp
from agent_bundler.schemas import RELEASE_MANIFEST_SCHEMA, validate_document
from agent_bundler.target import Classification, classify_artifact
from agent_bundler.versions import strip_tag_prefix


SIGNATURE_SUFFIX: str = ".sig"
LATEST_JSON: str = "latest.json"

# Characters encodeURIComponent leaves unescaped.
_URI_COMPONENT_SAFE: str = "-_.!~*'()"


@dataclass(frozen=True, slots=True)
class ArtifactCandidate:
    """A signed installer that serves one target.

    :ivar target: ``{os}-{arch}`` key.
    :ivar file_name: Installer file name.
    :ivar file_path: Installer path.
    :ivar signature: Detached signature text (stripped).
    :ivar arch: Explicit arch token from the file name, if any.
    :ivar score: Preference score.
    """

    target: str
    file_name: str
    file_path: pathlib.Path
    signature: str
    arch: str | None
    score: int


@dataclass(frozen=True, slots=True)
class PlatformEntry:
    signature: str
    url: str


@dataclass(frozen=True, slots=True)
class ReleaseManifest:
    """The update feed document.

    ``platforms`` is kept sorted by target so the serialized file is stable.
    """

    version: str
    notes: str
    pub_date: str
    platforms: dict[str, PlatformEntry] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "notes": self.notes,
            "pub_date": self.pub_date,
            "platforms": {
                target: {"signature": entry.signature, "url": entry.url}
                for target, entry in sorted(self.platforms.items())
            },
        }


def walk_files(root: pathlib.Path) -> Iterator[pathlib.Path]:
    """Yield regular files under ``root`` depth-first, names sorted.

    This order is the "first seen" order used for score ties.
    """

    for root_str, dirs, files in os.walk(root, topdown=True):
        dirs.sort()
        root_path: pathlib.Path = pathlib.Path(root_str)
        for name in sorted(files):
            path: pathlib.Path = root_path / name
            if path.is_file() is True:
                yield path


def scan_artifacts(assets_dir: pathlib.Path, *, logger: logging.Logger | None = None) -> list[ArtifactCandidate]:
    """Find every signed, updater-relevant artifact under ``assets_dir``.

    A ``.sig`` file counts only if the artifact next to it exists, matches an
    OS rule and the signature is not blank. Artifacts with no OS rule are
    skipped silently.

    :param assets_dir: Directory tree of build outputs.
    :param logger: Optional logger.
    :returns: One candidate per (artifact, target) pair, in walk order.
    :raises PreconditionError: If a signature file is not UTF-8 text.
    """

    if logger is None:
        logger = logging.getLogger("agent_bundler")

    candidates: list[ArtifactCandidate] = []
    for sig_path in walk_files(assets_dir):
        if sig_path.name.endswith(SIGNATURE_SUFFIX) is False:
            continue

        artifact_path: pathlib.Path = sig_path.with_name(sig_path.name[: -len(SIGNATURE_SUFFIX)])
        if artifact_path.is_file() is False:
            logger.debug(f"agent-bundler: {sig_path.name}: no matching artifact; skipped")
            continue

        classification: Classification = classify_artifact(artifact_path.name)
        if classification.relevant is False:
            logger.debug(f"agent-bundler: {artifact_path.name}: not an updater artifact; skipped")
            continue

        try:
            signature: str = sig_path.read_text(encoding="utf-8").strip()
        except UnicodeDecodeError as e:
            raise PreconditionError(f"signature file is not UTF-8 text: {sig_path}: {e}") from e
        if len(signature) == 0:
            logger.warning(f"agent-bundler: {sig_path.name} is empty; {artifact_path.name} skipped")
            continue

        for target in classification.targets:
            candidates.append(
                ArtifactCandidate(
                    target=target,
                    file_name=artifact_path.name,
                    file_path=artifact_path,
                    signature=signature,
                    arch=classification.arch,
                    score=classification.score,
                )
            )
    return candidates


def select_best(candidates: list[ArtifactCandidate]) -> dict[str, ArtifactCandidate]:
    """Keep one candidate per target.

    A later candidate replaces the held one only with a strictly higher score,
    so ties go to the first seen.

    :param candidates: Candidates in walk order.
    :returns: Winning candidate per target, in first-seen target order.
    """

    best: dict[str, ArtifactCandidate] = {}
    for candidate in candidates:
        held: ArtifactCandidate | None = best.get(candidate.target)
        if held is None or candidate.score > held.score:
            best[candidate.target] = candidate
    return best


def release_asset_url(*, template: str, repo: str, tag: str, file_name: str) -> str:
    """Render a download URL with the tag and file name percent-encoded."""

    return template.format(
        repo=repo,
        tag=urllib.parse.quote(tag, safe=_URI_COMPONENT_SAFE),
        file=urllib.parse.quote(file_name, safe=_URI_COMPONENT_SAFE),
    )


def build_release_manifest(
    config: ReleaseConfig,
    winners: dict[str, ArtifactCandidate],
    *,
    now: datetime.datetime | None = None,
) -> ReleaseManifest:
    """Assemble the feed from the winning candidates.

    :raises EmptyReleaseError: If ``winners`` is empty.
    """

    if len(winners) == 0:
        raise EmptyReleaseError(
            f"No signed updater artifacts found in {config.assets_dir}. "
            "Ensure updater artifacts are enabled and the signing key is set in CI."
        )

    tag: str = config.tag.strip()
    platforms: dict[str, PlatformEntry] = {}
    for target in sorted(winners):
        candidate: ArtifactCandidate = winners[target]
        platforms[target] = PlatformEntry(
            signature=candidate.signature,
            url=release_asset_url(
                template=config.url_template,
                repo=config.repo.strip(),
                tag=tag,
                file_name=candidate.file_name,
            ),
        )

    return ReleaseManifest(
        version=strip_tag_prefix(tag),
        notes=f"Release {tag}",
        pub_date=utc_timestamp(now),
        platforms=platforms,
    )


def write_release_manifest(manifest: ReleaseManifest, path: pathlib.Path) -> None:
    """Validate and atomically write ``latest.json``.

    :raises ManifestError: If the document does not match the schema.
    """

    payload: dict[str, Any] = manifest.to_dict()
    validate_document(RELEASE_MANIFEST_SCHEMA, payload, label="release manifest")
    tmp: pathlib.Path = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)


def generate_release_manifest(
    config: ReleaseConfig,
    *,
    now: datetime.datetime | None = None,
    logger: logging.Logger | None = None,
) -> tuple[pathlib.Path, ReleaseManifest, dict[str, ArtifactCandidate]]:
    """Scan ``config.assets_dir`` and write ``latest.json`` into it.

    :param config: Release configuration.
    :param now: Publication time override (tests).
    :param logger: Optional logger.
    :returns: Output path, the manifest, and the winning candidates.
    :raises PreconditionError: If the assets directory does not exist.
    :raises EmptyReleaseError: If nothing was classified; no file is written.
    """

    if logger is None:
        logger = logging.getLogger("agent_bundler")

    assets_dir: pathlib.Path = config.assets_dir.resolve()
    if assets_dir.is_dir() is False:
        raise PreconditionError(f"Assets directory not found: {assets_dir}")

    candidates: list[ArtifactCandidate] = scan_artifacts(assets_dir, logger=logger)
    winners: dict[str, ArtifactCandidate] = select_best(candidates)
    if logger.isEnabledFor(logging.DEBUG) is True:
        for c in candidates:
            logger.debug(f"agent-bundler: candidate {c.target} {c.file_name} score={c.score}")

    manifest: ReleaseManifest = build_release_manifest(config, winners, now=now)
    output_path: pathlib.Path = assets_dir / LATEST_JSON
    write_release_manifest(manifest, output_path)
    logger.info(f"agent-bundler: updater manifest generated: {output_path}")
    return output_path, manifest, winners
