"""Version string helpers.

Pure functions for normalizing, splitting and ordering runtime version
strings of the form ``major.minor.patch[-vendorsuffix]``.  The vendor
suffix never takes part in numeric ordering; it only matters when matching
a build against vendor patch manifests.
"""

import re
from functools import cmp_to_key
from typing import Iterable

from .errors import FormatError

_MAJOR_MINOR_RE = re.compile(r"^(\d+\.\d+)")
_LEADING_DIGITS_RE = re.compile(r"^(\d+)")
_RUNTIME_NAME_RE = re.compile(r"^[A-Za-z]+[\s\-_/:]*(?=\d)")
_SEPARATORS = " \t\r\n-_/:"


def normalize_version(raw: str) -> str:
    """Strip a leading runtime name and separators from a version string.

    ``"php-5.4.1"``, ``"PHP 5.4.1"`` and ``"v5.4.1"`` all become ``"5.4.1"``.
    Nothing else is validated.

    Args:
        raw: Version string as reported by the runtime or the user.

    Returns:
        The bare version string.
    """
    version = (raw or "").strip(_SEPARATORS)
    version = _RUNTIME_NAME_RE.sub("", version, count=1)
    return version.strip(_SEPARATORS)


def version_prefix(version: str) -> str:
    """Return the numeric release, i.e. everything before the first ``-``."""
    return version.split("-", 1)[0]


def extract_build_tag(version: str) -> str | None:
    """Return the vendor build tag after the first ``-``, or None if absent.

    Args:
        version: A version such as ``5.4.16-7.el6.1``.

    Returns:
        ``"7.el6.1"`` for the example above; None for ``5.4.16``.
    """
    if "-" not in version:
        return None
    return version.split("-", 1)[1]


def major_minor(version: str) -> str:
    """Extract the leading ``X.Y`` of a version.

    Args:
        version: Version string.

    Returns:
        The major.minor prefix, e.g. ``"5.4"``.

    Raises:
        FormatError: if the version does not start with ``major.minor``.
    """
    m = _MAJOR_MINOR_RE.match(version or "")
    if not m:
        raise FormatError(f"Could not determine major version of {version!r}")
    return m.group(1)


def _components(version: str) -> list[int]:
    parts = []
    for piece in version_prefix(version).split("."):
        m = _LEADING_DIGITS_RE.match(piece.strip())
        parts.append(int(m.group(1)) if m else 0)
    return parts


def compare(a: str, b: str) -> int:
    """Compare two versions numerically, component by component.

    Missing trailing components count as 0, so ``5.4`` equals ``5.4.0``.
    Vendor suffixes are ignored.

    Args:
        a: Left-hand version.
        b: Right-hand version.

    Returns:
        -1 if ``a < b``, 0 if equal, 1 if ``a > b``.
    """
    left = _components(a)
    right = _components(b)
    width = max(len(left), len(right))
    left += [0] * (width - len(left))
    right += [0] * (width - len(right))
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def sort_versions(versions: Iterable[str]) -> list[str]:
    """Sort versions ascending by ``compare`` (stable for equal versions)."""
    return sorted(versions, key=cmp_to_key(compare))
