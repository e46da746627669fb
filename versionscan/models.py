"""Rule, patch and verdict models.

Definition records (``RuleDefinition``, ``PatchDefinition``) are pydantic
models validated on load, mirroring the on-disk JSON documents.  The
scanner works on the immutable ``Rule`` and ``PatchManifest`` values built
from them and reports fresh ``RuleVerdict`` records for every run.
"""

import enum
from dataclasses import dataclass, field
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .errors import ConfigError
from .versions import compare, major_minor, sort_versions, version_prefix

# ── Definition records ───────────────────────────────────────────────────────


class RuleDefinition(BaseModel):
    """A single check as stored in ``checks.json``.

    Example JSON::

        {
          "cveid": "CVE-2015-0273",
          "summary": "Use after free in DateTimeZone unserialize",
          "threat": "7.5",
          "fixVersions": {"base": ["5.4.38", "5.5.22", "5.6.6"]}
        }

    ``fixVersions`` may also be a bare list, which is read as the single
    branch ``base``.  Unknown fields are ignored.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(validation_alias=AliasChoices("id", "cveid", "cveId"))
    summary: str = ""
    threat: float | None = None
    fix_versions: dict[str, list[str]] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("fixVersions", "fix_versions"),
    )

    @field_validator("threat", mode="before")
    @classmethod
    def _blank_threat(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("fix_versions", mode="before")
    @classmethod
    def _normalize_branches(cls, v: Any) -> Any:
        """Accept a bare list and stringify version numbers."""
        if v is None:
            return {}
        if isinstance(v, (list, tuple)):
            v = {"base": v}
        if not isinstance(v, dict):
            return v
        out: dict[str, list[str]] = {}
        for branch, versions in v.items():
            if isinstance(versions, (str, int, float)):
                versions = [versions]
            if isinstance(versions, (list, tuple)):
                for x in versions:
                    if isinstance(x, bool) or not isinstance(x, (str, int, float)):
                        raise ValueError(f"fix version on branch {branch!r} must be a version string, got {x!r}")
                out[str(branch)] = [str(x).strip() for x in versions if str(x).strip()]
            else:
                out[str(branch)] = versions
        return out


class PatchDefinition(BaseModel):
    """One vendor build and the CVEs it resolves, as stored in a patch file."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    release: str
    patched: list[str] = Field(default_factory=list)


class RuleDocument(BaseModel):
    """Top-level ``{"checks": [...]}`` document."""

    model_config = ConfigDict(extra="ignore")

    checks: list[RuleDefinition]


class PatchDocument(BaseModel):
    """Top-level ``{"patches": [...]}`` document for one vendor."""

    model_config = ConfigDict(extra="ignore")

    patches: list[PatchDefinition]


# ── Scan values ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Rule:
    """A known issue and the versions it was fixed in, per branch.

    Attributes:
        id: Issue identifier, usually a CVE ID.
        summary: Human readable description.
        fix_versions: Branch name to fix versions on that branch.
        threat: Optional CVSS-style threat score.
    """

    id: str
    summary: str = ""
    fix_versions: dict[str, tuple[str, ...]] = field(default_factory=dict)
    threat: float | None = None

    @classmethod
    def from_definition(cls, definition: RuleDefinition) -> "Rule":
        return cls(
            id=definition.id,
            summary=definition.summary,
            fix_versions={b: tuple(vs) for b, vs in definition.fix_versions.items()},
            threat=definition.threat,
        )

    def all_fix_versions(self) -> list[str]:
        """Every fix version across all branches, sorted ascending."""
        flat = [v for versions in self.fix_versions.values() for v in versions]
        return sort_versions(flat)

    def reference_fix(self, version: str) -> str:
        """Pick the fix version that ``version`` is measured against.

        The lowest fix version containing the version's major.minor wins.
        The match is plain substring containment, so ``5.1`` also matches
        ``5.10.2``.  Without any match the lowest fix version overall is used.

        Raises:
            ConfigError: if the rule has no fix versions at all.
            FormatError: if ``version`` has no major.minor prefix.
        """
        versions = self.all_fix_versions()
        if not versions:
            raise ConfigError(f"Check {self.id} has no fix versions")

        branch = major_minor(version)
        found = [v for v in versions if branch in v]
        if found:
            return found[0]
        return versions[0]

    def is_vulnerable(self, version: str) -> bool:
        """Return True if ``version`` is strictly older than its reference fix."""
        return compare(version, self.reference_fix(version)) < 0


@dataclass(frozen=True)
class PatchManifest:
    """A vendor build and the issue IDs resolved as of that build."""

    build_tag: str
    patched_issue_ids: frozenset[str] = frozenset()

    @classmethod
    def from_definition(cls, definition: PatchDefinition) -> "PatchManifest":
        return cls(build_tag=definition.release, patched_issue_ids=frozenset(definition.patched))

    @property
    def release_prefix(self) -> str:
        return version_prefix(self.build_tag)


class ScanState(str, enum.Enum):
    """Phases a single scan run moves through."""

    IDLE = "idle"
    LOADED = "loaded"
    EVALUATED = "evaluated"
    RECONCILED = "reconciled"
    DONE = "done"


@dataclass(frozen=True)
class RuleVerdict:
    """Final answer for one rule.

    Attributes:
        id: Issue identifier.
        summary: Issue description.
        vulnerable: Whether the scanned version is affected.
        patched: True when a vendor patch manifest cleared the issue.
        threat: Threat score copied from the rule.
    """

    id: str
    summary: str
    vulnerable: bool
    patched: bool = False
    threat: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "summary": self.summary,
            "threat": self.threat,
            "vulnerable": self.vulnerable,
            "patched": self.patched,
        }


@dataclass
class ScanResult:
    """Everything a scan produced.

    Attributes:
        version: The normalized version that was scanned.
        verdicts: One verdict per input rule, in input order.
        vendor_build: Whether the version looked like a vendor backport.
        resolved_ids: Issue IDs cleared by vendor patch manifests.
        state: Phase the run finished in.
    """

    version: str
    verdicts: list[RuleVerdict] = field(default_factory=list)
    vendor_build: bool = False
    resolved_ids: frozenset[str] = frozenset()
    state: ScanState = ScanState.IDLE

    @property
    def vulnerable(self) -> list[RuleVerdict]:
        return [v for v in self.verdicts if v.vulnerable]
