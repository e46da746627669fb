"""Unit tests for versionscan.scan — the scan engine and patch reconciliation."""

from typing import Any

import pytest

from versionscan.errors import ConfigError, FormatError
from versionscan.models import PatchManifest, Rule, RuleDefinition, ScanState
from versionscan.scan import Scan, to_patch_set


def _verdicts_by_id(verdicts) -> dict[str, Any]:
    return {v.id: v for v in verdicts}


# ── set_version / get_version ────────────────────────────────────────────────


class TestVersionSetting:
    def test_getter_setter(self):
        scan = Scan()
        scan.set_version("5.2.12")
        assert scan.get_version() == "5.2.12"

    def test_runtime_prefix_stripped(self):
        scan = Scan()
        assert scan.set_version("php-5.4.1") == "5.4.1"
        assert scan.get_version() == "5.4.1"

    def test_set_on_run(self):
        scan = Scan()
        scan.run("5.4.1", [])
        assert scan.get_version() == "5.4.1"

    def test_empty_rules(self):
        assert Scan().run("5.4.1", []) == []


# ── is_vendor_build ──────────────────────────────────────────────────────────


class TestIsVendorBuild:
    @pytest.mark.parametrize(
        "version",
        [
            "5.4.16-7.el6.1",
            "5.3.3-49.el6",
            "5.5.9-1ubuntu4.14",
            "7.0.33-0+deb9u1",
            "5.4.45-0+deb7u2",
            "5.6.40-1.amzn1",
            "5.4.16.1",
        ],
    )
    def test_vendor_builds(self, version: str):
        assert Scan().is_vendor_build(version) is True

    @pytest.mark.parametrize("version", ["5.4.16", "7.4.3", "8.1.0-dev", "5.4.16-rel1"])
    def test_stock_builds(self, version: str):
        assert Scan().is_vendor_build(version) is False

    def test_extra_tokens(self):
        scan = Scan(vendor_tokens=["mydistro"])
        assert scan.is_vendor_build("7.4.3-2mydistro1") is True
        assert Scan().is_vendor_build("7.4.3-2mydistro1") is False


# ── evaluate_all ─────────────────────────────────────────────────────────────


class TestEvaluateAll:
    def _rules(self) -> list[Rule]:
        return [
            Rule(id="CVE-1", fix_versions={"base": ("5.4.17",)}),
            Rule(id="CVE-2", fix_versions={"base": ("5.4.15",)}),
            Rule(id="CVE-3", fix_versions={"base": ("5.4.34", "5.5.18")}),
        ]

    def test_flags_in_rule_order(self):
        assert Scan().evaluate_all(self._rules(), "5.4.16") == [True, False, True]

    def test_threaded_matches_inline(self):
        rules = self._rules() * 20
        assert Scan(workers=4).evaluate_all(rules, "5.4.16") == Scan().evaluate_all(rules, "5.4.16")

    def test_threaded_propagates_errors(self):
        rules = self._rules() + [Rule(id="CVE-EMPTY")]
        with pytest.raises(ConfigError, match="CVE-EMPTY"):
            Scan(workers=4).evaluate_all(rules, "5.4.16")


# ── resolved_issue_ids ───────────────────────────────────────────────────────


class TestResolvedIssueIds:
    def _chain(self, *entries: tuple[str, list[str]]) -> list[PatchManifest]:
        return [PatchManifest(build_tag=tag, patched_issue_ids=frozenset(ids)) for tag, ids in entries]

    def test_no_match(self):
        patch_set = {"redhat": self._chain(("5.4.16-7.el6.1", ["CVE-1"]))}
        assert Scan().resolved_issue_ids(patch_set, "5.4.16-8.el6.1") == frozenset()

    def test_exact_match(self):
        patch_set = {"redhat": self._chain(("5.4.16-7.el6.1", ["CVE-1"]))}
        assert Scan().resolved_issue_ids(patch_set, "5.4.16-7.el6.1") == {"CVE-1"}

    def test_newer_builds_ignored(self):
        patch_set = {
            "redhat": self._chain(
                ("5.4.16-36.el7", ["CVE-NEW"]),
                ("5.4.16-21.el7", ["CVE-1"]),
            )
        }
        assert Scan().resolved_issue_ids(patch_set, "5.4.16-21.el7") == {"CVE-1"}

    def test_older_builds_on_same_line_accumulate(self):
        patch_set = {
            "redhat": self._chain(
                ("5.4.16-36.el7", ["CVE-2"]),
                ("5.4.16-21.el7", ["CVE-1"]),
            )
        }
        assert Scan().resolved_issue_ids(patch_set, "5.4.16-36.el7") == {"CVE-1", "CVE-2"}

    def test_other_release_line_never_leaks(self):
        patch_set = {
            "redhat": self._chain(
                ("5.4.16-36.el7", ["CVE-2"]),
                ("5.3.3-49.el6", ["CVE-LEAK"]),
                ("5.4.16-21.el7", ["CVE-1"]),
            )
        }
        resolved = Scan().resolved_issue_ids(patch_set, "5.4.16-36.el7")
        assert "CVE-LEAK" not in resolved
        assert resolved == {"CVE-1", "CVE-2"}

    def test_vendors_are_independent(self):
        patch_set = {
            "redhat": self._chain(("5.4.16-21.el7", ["CVE-1"])),
            "ubuntu": self._chain(("5.4.16-0ubuntu1", ["CVE-U"])),
            "custom": self._chain(("5.4.16-21.el7", ["CVE-2"]), ("5.4.16-20.el7", ["CVE-1"])),
        }
        assert Scan().resolved_issue_ids(patch_set, "5.4.16-21.el7") == {"CVE-1", "CVE-2"}


# ── reconcile ────────────────────────────────────────────────────────────────


class TestReconcile:
    def test_only_vulnerable_rules_flip(self):
        rules = [Rule(id="CVE-1"), Rule(id="CVE-2"), Rule(id="CVE-3")]
        patch_set = {"custom": [PatchManifest("5.4.16-1.el6", frozenset({"CVE-1", "CVE-2"}))]}
        flags, resolved = Scan().reconcile(rules, [True, False, True], patch_set, "5.4.16-1.el6")
        assert flags == [False, False, True]
        assert resolved == {"CVE-1", "CVE-2"}

    def test_input_flags_not_mutated(self):
        rules = [Rule(id="CVE-1")]
        original = [True]
        patch_set = {"custom": [PatchManifest("5.4.16-1.el6", frozenset({"CVE-1"}))]}
        Scan().reconcile(rules, original, patch_set, "5.4.16-1.el6")
        assert original == [True]


# ── run / execute ────────────────────────────────────────────────────────────


class TestRun:
    def test_fallback_not_vulnerable(self):
        checks = [{"cveid": "CVE-1234", "summary": "This is a test", "fixVersions": {"base": ["5.1.1"]}}]
        verdicts = Scan().run("5.4.1", checks)
        assert verdicts[0].vulnerable is False

    def test_stock_build(self, custom_checks, custom_patches):
        verdicts = _verdicts_by_id(Scan().run("5.4.16", custom_checks, custom_patches))
        assert verdicts["CVE-1234"].vulnerable is True
        assert verdicts["CVE-1235"].vulnerable is False

    def test_patched_vendor_build(self, custom_checks, custom_patches):
        verdicts = _verdicts_by_id(Scan().run("5.4.16-7.el6.1", custom_checks, custom_patches))
        assert verdicts["CVE-1234"].vulnerable is False
        assert verdicts["CVE-1234"].patched is True
        assert verdicts["CVE-1235"].vulnerable is False
        assert verdicts["CVE-1235"].patched is False

    def test_vendor_build_without_patches(self, custom_checks):
        verdicts = _verdicts_by_id(Scan().run("5.4.16-7.el6.1", custom_checks))
        assert verdicts["CVE-1234"].vulnerable is True

    def test_stock_build_skips_reconciliation(self, custom_checks):
        # the manifest tag equals the version but it is not a vendor build
        patches = {"custom": [{"release": "5.4.16", "patched": ["CVE-1234"]}]}
        verdicts = _verdicts_by_id(Scan().run("5.4.16", custom_checks, patches))
        assert verdicts["CVE-1234"].vulnerable is True

    def test_verdict_order_follows_rules(self, custom_checks):
        verdicts = Scan().run("5.4.16", custom_checks)
        assert [v.id for v in verdicts] == ["CVE-1234", "CVE-1235"]

    def test_idempotent(self, custom_checks, custom_patches):
        scan = Scan()
        first = scan.run("5.4.16-7.el6.1", custom_checks, custom_patches)
        second = scan.run("5.4.16-7.el6.1", custom_checks, custom_patches)
        assert first == second

    def test_stock_run_after_vendor_run(self, custom_checks, custom_patches):
        scan = Scan()
        scan.run("5.4.16-7.el6.1", custom_checks, custom_patches)
        verdicts = _verdicts_by_id(scan.run("5.4.16", custom_checks, custom_patches))
        assert verdicts["CVE-1234"].vulnerable is True

    def test_accepts_rule_objects_and_definitions(self):
        rules = [
            Rule(id="CVE-A", fix_versions={"base": ("5.4.17",)}),
            RuleDefinition.model_validate({"cveid": "CVE-B", "fixVersions": ["5.4.10"]}),
        ]
        verdicts = _verdicts_by_id(Scan().run("5.4.16", rules))
        assert verdicts["CVE-A"].vulnerable is True
        assert verdicts["CVE-B"].vulnerable is False

    def test_bad_version_aborts(self, custom_checks):
        with pytest.raises(FormatError):
            Scan().run("unknown", custom_checks)

    def test_bad_version_aborts_even_without_rules(self):
        with pytest.raises(FormatError):
            Scan().run("latest", [])

    def test_invalid_raw_check(self):
        with pytest.raises(FormatError, match="Invalid check definition"):
            Scan().run("5.4.16", [{"summary": "missing id"}])

    def test_invalid_raw_patch(self, custom_checks):
        with pytest.raises(FormatError, match="Invalid patch definition"):
            Scan().run("5.4.16-7.el6.1", custom_checks, [{"patched": ["CVE-1234"]}])

    def test_null_fix_version_is_not_safe(self):
        with pytest.raises(FormatError, match="Invalid check definition"):
            Scan().run("5.4.16", [{"cveid": "CVE-1", "fixVersions": {"base": [None]}}])

    def test_result_uses_own_version_not_stored_one(self, custom_checks):
        scan = Scan()
        scan.set_version("7.4.3")
        result = scan.execute("5.4.16", custom_checks)
        assert result.version == "5.4.16"
        assert scan.get_version() == "5.4.16"
        assert result.vulnerable[0].id == "CVE-1234"

    def test_rule_without_fix_versions(self):
        with pytest.raises(ConfigError, match="CVE-EMPTY"):
            Scan().run("5.4.16", [{"cveid": "CVE-EMPTY", "summary": "no data"}])

    def test_execute_details(self, custom_checks, custom_patches):
        result = Scan().execute("php-5.4.16-7.el6.1", custom_checks, custom_patches)
        assert result.version == "5.4.16-7.el6.1"
        assert result.vendor_build is True
        assert result.resolved_ids == {"CVE-1234"}
        assert result.state is ScanState.DONE
        assert result.vulnerable == []

    def test_threaded_run(self, custom_checks, custom_patches):
        verdicts = _verdicts_by_id(Scan(workers=8).run("5.4.16-7.el6.1", custom_checks * 3, custom_patches))
        assert verdicts["CVE-1234"].vulnerable is False


# ── to_patch_set ─────────────────────────────────────────────────────────────


class TestToPatchSet:
    def test_none(self):
        assert to_patch_set(None) == {}

    def test_bare_list_is_custom(self, custom_patches):
        patch_set = to_patch_set(custom_patches)
        assert list(patch_set) == ["custom"]
        assert patch_set["custom"][0].build_tag == "5.4.16-7.el6.1"

    def test_mapping_preserves_order(self):
        patch_set = to_patch_set({"redhat": [{"release": "b-1.el6"}, {"release": "a-1.el6"}]})
        assert [m.build_tag for m in patch_set["redhat"]] == ["b-1.el6", "a-1.el6"]
