"""Three-part version parsing and comparison.

Only ``MAJOR.MINOR.PATCH`` matters here; anything after the patch number
(pre-release tags, build metadata) is ignored.
"""

from dataclasses import dataclass
import re


@dataclass(frozen=True, slots=True, order=True)
class Version:
    """A parsed ``MAJOR.MINOR.PATCH`` triple.

    Ordering compares the integers, so ``9 < 10``.
    """

    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


_VERSION_RE: re.Pattern[str] = re.compile(r"^v?(?P<maj>\d+)\.(?P<min>\d+)\.(?P<pat>\d+)")


def strip_tag_prefix(tag: str) -> str:
    """Strip one leading ``v`` from a release tag.

    :param tag: Tag name such as ``v1.2.3``.
    :returns: ``1.2.3``. Tags without the prefix are returned unchanged.
    """

    v: str = tag.strip()
    if v.startswith("v") is True:
        return v[1:]
    return v


def parse_version(value: str) -> Version | None:
    """Parse the leading ``[v]MAJOR.MINOR.PATCH`` of a version string.

    :param value: Raw version text, e.g. ``v22.12.0`` or ``1.2.3-beta.1``.
    :returns: Parsed version, or ``None`` if the text does not start with one.
    """

    m = _VERSION_RE.match(value.strip())
    if m is None:
        return None
    return Version(major=int(m.group("maj")), minor=int(m.group("min")), patch=int(m.group("pat")))


def version_gte(left: str, right: str) -> bool:
    """Return whether ``left >= right``.

    Unparseable input on either side compares as ``False`` so that a garbled
    ``-v`` output never satisfies a minimum.
    """

    a: Version | None = parse_version(left)
    b: Version | None = parse_version(right)
    if a is None or b is None:
        return False
    return a >= b
