"""Exception hierarchy for versionscan.

Every failure the scanner reports is a ``VersionScanError`` so callers
(and the CLI) can handle them in one place.
"""

from pathlib import Path


class VersionScanError(Exception):
    """Base class for all versionscan errors."""


class LoadError(VersionScanError):
    """A definition source is missing or unreadable.

    Attributes:
        source: Path (or other identity) of the source that failed.
        vendor: Vendor set the source belongs to, for patch files.
        kind: What the source holds (``check``, ``patch`` or ``config``).
    """

    def __init__(
        self,
        source: Path | str,
        reason: str | None = None,
        *,
        vendor: str | None = None,
        kind: str | None = None,
    ):
        self.source = str(source)
        self.vendor = vendor
        self.kind = kind or ("patch" if vendor else "check")
        message = f"Could not load {self.kind} file {self.source}"
        if vendor:
            message = f"{message} (vendor: {vendor})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class FormatError(VersionScanError):
    """Content could not be parsed, or a version has no major.minor prefix."""


class ConfigError(VersionScanError):
    """A rule or configuration file has no usable data."""
