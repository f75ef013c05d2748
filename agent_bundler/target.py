"""Platform target classification for release artifacts.

Two jobs, both driven by the rule table below:

- It maps an installer file name onto the updater's ``{os}-{arch}`` target keys.
- It scores the file name so that, when several installers serve the same
  target, the one the in-app updater can apply is preferred.

Classification only looks at the lowercased file name, never at file contents.
"""

from collections.abc import Callable
from dataclasses import dataclass
import re


@dataclass(frozen=True, slots=True)
class ArtifactRule:
    """One row of the classification table.

    :ivar name: Human-readable rule name (used in debug logs).
    :ivar matches: Predicate over the lowercased file name.
    :ivar os: OS component of the target key.
    :ivar score: Score added when the rule matches.
    """

    name: str
    matches: Callable[[str], bool]
    os: str
    score: int


def _suffix(*suffixes: str) -> Callable[[str], bool]:
    def matches(lower_name: str) -> bool:
        return lower_name.endswith(suffixes) is True

    return matches


def _setup_exe(lower_name: str) -> bool:
    return "setup" in lower_name and lower_name.endswith(".exe") is True


# Evaluated top to bottom. The OS comes from the first matching rule; scores of
# every matching rule are added. Longer suffixes sit above their shorter
# relatives (``.appimage.tar.gz`` before ``.appimage``).
ARTIFACT_RULES: tuple[ArtifactRule, ...] = (
    ArtifactRule(name="app-bundle-archive", matches=_suffix(".app.tar.gz"), os="darwin", score=300),
    ArtifactRule(name="appimage-archive", matches=_suffix(".appimage.tar.gz"), os="linux", score=300),
    ArtifactRule(name="appimage", matches=_suffix(".appimage"), os="linux", score=300),
    ArtifactRule(name="setup-exe", matches=_setup_exe, os="windows", score=300),
    ArtifactRule(name="msi", matches=_suffix(".msi"), os="windows", score=260),
    ArtifactRule(name="deb", matches=_suffix(".deb"), os="linux", score=240),
    ArtifactRule(name="rpm", matches=_suffix(".rpm"), os="linux", score=230),
    ArtifactRule(name="nsis-zip", matches=_suffix(".nsis.zip"), os="windows", score=220),
    ArtifactRule(name="msi-zip", matches=_suffix(".msi.zip"), os="windows", score=210),
)

PORTABLE_PENALTY: int = -100
EXPLICIT_ARCH_BONUS: int = 20

# Arch used when a windows/linux file name carries no arch token.
DEFAULT_ARCH: str = "x86_64"
# A darwin app bundle without an arch token is assumed universal.
UNIVERSAL_DARWIN_ARCHES: tuple[str, ...] = ("x86_64", "aarch64")


def _token_re(*tokens: str) -> re.Pattern[str]:
    alternation: str = "|".join(re.escape(t) for t in tokens)
    return re.compile(rf"(^|[^a-z0-9])({alternation})([^a-z0-9]|$)")


# Checked in order; ``x86_64`` must be tried before the bare ``x86`` token.
_ARCH_TOKENS: tuple[tuple[re.Pattern[str], str], ...] = (
    (_token_re("aarch64", "arm64"), "aarch64"),
    (_token_re("x86_64", "x64", "amd64"), "x86_64"),
    (_token_re("i686", "x86"), "i686"),
)


@dataclass(frozen=True, slots=True)
class Classification:
    """Result of classifying one artifact file name.

    :ivar targets: Target keys the artifact serves (empty if not updater-relevant).
    :ivar arch: Explicit arch token found in the name, if any.
    :ivar score: Preference score for tie-breaking between artifacts.
    """

    targets: tuple[str, ...]
    arch: str | None
    score: int

    @property
    def relevant(self) -> bool:
        return len(self.targets) > 0


def detect_arch(file_name: str) -> str | None:
    """Detect an explicit architecture token in a file name.

    Tokens only count when bounded by non-alphanumerics or the string edges,
    so ``x64`` inside ``fox64bit`` does not match.

    :param file_name: File name (any case).
    :returns: ``aarch64``, ``x86_64``, ``i686`` or ``None``.
    """

    lower: str = file_name.lower()
    for pattern, arch in _ARCH_TOKENS:
        if pattern.search(lower) is not None:
            return arch
    return None


def detect_os(file_name: str) -> str | None:
    """Return the OS of the first matching rule, or ``None``."""

    lower: str = file_name.lower()
    for rule in ARTIFACT_RULES:
        if rule.matches(lower) is True:
            return rule.os
    return None


def score_artifact(file_name: str) -> int:
    """Score a file name for tie-breaking.

    :param file_name: File name (any case).
    :returns: Sum of matching rule scores, minus the portable penalty, plus the
        explicit-arch bonus.
    """

    lower: str = file_name.lower()
    score: int = 0
    for rule in ARTIFACT_RULES:
        if rule.matches(lower) is True:
            score += rule.score
    if "portable" in lower:
        score += PORTABLE_PENALTY
    if detect_arch(lower) is not None:
        score += EXPLICIT_ARCH_BONUS
    return score


def classify_artifact(file_name: str) -> Classification:
    """Map an artifact file name onto updater targets.

    :param file_name: File name (not a path).
    :returns: Classification; ``targets`` is empty for files no rule matches.
    """

    lower: str = file_name.lower()
    os_name: str | None = detect_os(lower)
    arch: str | None = detect_arch(lower)
    if os_name is None:
        return Classification(targets=(), arch=arch, score=0)

    targets: tuple[str, ...]
    if arch is not None:
        targets = (f"{os_name}-{arch}",)
    elif os_name == "darwin":
        targets = tuple(f"darwin-{a}" for a in UNIVERSAL_DARWIN_ARCHES)
    else:
        targets = (f"{os_name}-{DEFAULT_ARCH}",)

    return Classification(targets=targets, arch=arch, score=score_artifact(lower))
