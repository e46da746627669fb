"""Scan engine: rule evaluation and vendor patch reconciliation.

A scan evaluates every rule against one version, then, when the version
looks like a distribution backport build, walks the vendors' patch
manifests to clear issues the vendor has already fixed.

No I/O happens here; rules and patches arrive as in-memory records from
``versionscan.loader`` or from the caller directly.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, Mapping, Sequence

from pydantic import ValidationError

from .errors import FormatError
from .models import (
    PatchDefinition,
    PatchManifest,
    Rule,
    RuleDefinition,
    RuleVerdict,
    ScanResult,
    ScanState,
)
from .versions import major_minor, normalize_version, version_prefix

logger = logging.getLogger(__name__)

DEFAULT_VENDOR_TOKENS = (
    "ubuntu",
    "debian",
    "deb",
    "el",
    "rhel",
    "redhat",
    "centos",
    "fc",
    "amzn",
    "suse",
    "sles",
    "remi",
    "ius",
)

CUSTOM_PATCH_SET = "custom"

# el6, fc20, deb9u1 ... carry a release number right after the token
_NUMBERED_TOKENS = {"el", "fc", "deb"}
_FOUR_PART_BUILD = r"\d+\.\d+\.\d+\.\d+"


def _vendor_pattern(tokens: Iterable[str]) -> re.Pattern[str]:
    alternatives = [_FOUR_PART_BUILD]
    for token in sorted({t.strip().lower() for t in tokens if t and t.strip()}, key=len, reverse=True):
        escaped = re.escape(token)
        if token in _NUMBERED_TOKENS:
            alternatives.append(rf"(?<![a-z]){escaped}\d+")
        else:
            alternatives.append(rf"(?<![a-z]){escaped}")
    return re.compile("|".join(alternatives), re.IGNORECASE)


def to_rule(item: Rule | RuleDefinition | Mapping[str, Any]) -> Rule:
    """Coerce a rule, definition record or raw mapping into a ``Rule``."""
    if isinstance(item, Rule):
        return item
    if not isinstance(item, RuleDefinition):
        try:
            item = RuleDefinition.model_validate(item)
        except ValidationError as e:
            raise FormatError(f"Invalid check definition: {e}") from e
    return Rule.from_definition(item)


def to_manifest(item: PatchManifest | PatchDefinition | Mapping[str, Any]) -> PatchManifest:
    """Coerce a manifest, definition record or raw mapping into a ``PatchManifest``."""
    if isinstance(item, PatchManifest):
        return item
    if not isinstance(item, PatchDefinition):
        try:
            item = PatchDefinition.model_validate(item)
        except ValidationError as e:
            raise FormatError(f"Invalid patch definition: {e}") from e
    return PatchManifest.from_definition(item)


def to_patch_set(patches: Mapping[str, Sequence[Any]] | Sequence[Any] | None) -> dict[str, list[PatchManifest]]:
    """Build a vendor -> manifests mapping.

    A bare sequence of patches is treated as the caller's ``custom`` set.
    """
    if not patches:
        return {}
    if not isinstance(patches, Mapping):
        patches = {CUSTOM_PATCH_SET: patches}
    return {vendor: [to_manifest(p) for p in chain] for vendor, chain in patches.items()}


class Scan:
    """Evaluates rules against a version and applies vendor patch data.

    Engine settings are fixed at construction; each ``run`` works on its
    own inputs and returns fresh verdicts, so one instance can be reused.
    The only per-run state is the version stored by ``set_version``; when
    several threads scan through one engine, ``get_version`` reports
    whichever run stored last.  Scan results never read it.

    Attributes:
        workers: Threads used for per-rule evaluation (1 = inline).
        vendor_tokens: Tokens that mark a version as a vendor build.
    """

    def __init__(self, workers: int = 1, vendor_tokens: Iterable[str] = ()):
        self.workers = max(1, int(workers))
        self.vendor_tokens = tuple(DEFAULT_VENDOR_TOKENS) + tuple(vendor_tokens)
        self._vendor_re = _vendor_pattern(self.vendor_tokens)
        self._version: str | None = None

    def set_version(self, raw: str) -> str:
        """Store the version with any runtime-name prefix stripped."""
        self._version = normalize_version(raw)
        return self._version

    def get_version(self) -> str | None:
        return self._version

    def is_vendor_build(self, version: str) -> bool:
        """Return True if ``version`` carries a vendor backport signature.

        Known distribution tokens (``ubuntu``, ``deb9u1``, ``el6`` ...) or a
        four-part dotted build number count as a vendor build.
        """
        return bool(self._vendor_re.search(version or ""))

    def evaluate_all(self, rules: Sequence[Rule], version: str) -> list[bool]:
        """Evaluate every rule independently.

        Returns:
            One vulnerable flag per rule, in rule order.

        Raises:
            ConfigError: if a rule has no fix versions.
            FormatError: if the version has no major.minor prefix.
        """
        if self.workers == 1 or len(rules) < 2:
            return [rule.is_vulnerable(version) for rule in rules]

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            return list(pool.map(lambda rule: rule.is_vulnerable(version), rules))

    def resolved_issue_ids(self, patch_set: Mapping[str, Sequence[PatchManifest]], version: str) -> frozenset[str]:
        """Collect issue IDs the installed vendor build already patches.

        Each vendor chain is walked in its given order, newest build first.
        From the manifest whose build tag equals ``version`` onwards, every
        manifest on the same release line (same part before ``-``)
        contributes its patched IDs.  Manifests for other release lines
        never contribute.
        """
        prefix = version_prefix(version)
        resolved: set[str] = set()

        for vendor, chain in patch_set.items():
            matched = False
            collected: set[str] = set()
            for manifest in chain:
                if manifest.build_tag == version:
                    matched = True
                if matched and manifest.release_prefix == prefix:
                    collected.update(manifest.patched_issue_ids)
            if matched:
                logger.debug("%s patches resolve %d issue(s) for %s", vendor, len(collected), version)
            resolved.update(collected)

        return frozenset(resolved)

    def reconcile(
        self,
        rules: Sequence[Rule],
        vulnerable: Sequence[bool],
        patch_set: Mapping[str, Sequence[PatchManifest]],
        version: str,
    ) -> tuple[list[bool], frozenset[str]]:
        """Clear vulnerable flags for issues fixed by the vendor build.

        Returns:
            Tuple of (updated vulnerable flags, resolved issue IDs).
        """
        resolved = self.resolved_issue_ids(patch_set, version)
        flags = list(vulnerable)
        for index, rule in enumerate(rules):
            if flags[index] and rule.id in resolved:
                logger.debug("%s patched in vendor build %s", rule.id, version)
                flags[index] = False
        return flags, resolved

    def execute(
        self,
        version: str,
        rules: Iterable[Rule | RuleDefinition | Mapping[str, Any]],
        patches: Mapping[str, Sequence[Any]] | Sequence[Any] | None = None,
    ) -> ScanResult:
        """Run a full scan and return verdicts plus scan details.

        Args:
            version: Runtime version, e.g. ``5.4.16-7.el6.1``.
            rules: Rules, rule definitions or raw check mappings.
            patches: Vendor name to ordered patches, or a bare list of
                custom patches.  ``None`` skips reconciliation.

        Returns:
            A ``ScanResult`` in the ``DONE`` state.

        Raises:
            FormatError: if the version has no major.minor prefix.
            ConfigError: if a rule has no fix versions.
        """
        state = ScanState.IDLE
        version = self.set_version(version)
        # fails fast before any rule is evaluated
        major_minor(version)

        rule_list = [to_rule(r) for r in rules]
        patch_set = to_patch_set(patches)
        state = self._advance(state, ScanState.LOADED)

        raw_flags = self.evaluate_all(rule_list, version)
        state = self._advance(state, ScanState.EVALUATED)

        vendor_build = self.is_vendor_build(version)
        logger.debug("%s is %s build", version, "a vendor" if vendor_build else "a stock")
        flags = raw_flags
        resolved: frozenset[str] = frozenset()
        if vendor_build and patch_set:
            flags, resolved = self.reconcile(rule_list, raw_flags, patch_set, version)
            state = self._advance(state, ScanState.RECONCILED)
        else:
            logger.debug("Skipping patch reconciliation for %s", version)

        verdicts = [
            RuleVerdict(
                id=rule.id,
                summary=rule.summary,
                vulnerable=final,
                patched=raw and not final,
                threat=rule.threat,
            )
            for rule, raw, final in zip(rule_list, raw_flags, flags)
        ]
        state = self._advance(state, ScanState.DONE)

        return ScanResult(
            version=version,
            verdicts=verdicts,
            vendor_build=vendor_build,
            resolved_ids=resolved,
            state=state,
        )

    def run(
        self,
        version: str,
        rules: Iterable[Rule | RuleDefinition | Mapping[str, Any]],
        patches: Mapping[str, Sequence[Any]] | Sequence[Any] | None = None,
    ) -> list[RuleVerdict]:
        """Scan ``version`` and return one verdict per rule."""
        return self.execute(version, rules, patches).verdicts

    @staticmethod
    def _advance(current: ScanState, target: ScanState) -> ScanState:
        logger.debug("scan state %s -> %s", current.value, target.value)
        return target
