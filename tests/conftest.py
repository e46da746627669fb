"""Shared fixtures for the versionscan test suite."""

import json
from pathlib import Path
from typing import Any

import pytest


@pytest.fixture
def custom_checks() -> list[dict[str, Any]]:
    """Two checks on the 5.4 line, one fixed after 5.4.16 and one before."""
    return [
        {"cveid": "CVE-1234", "summary": "This is a test", "fixVersions": ["5.4.17"]},
        {"cveid": "CVE-1235", "summary": "This is a test", "fixVersions": ["5.4.15"]},
    ]


@pytest.fixture
def custom_patches() -> list[dict[str, Any]]:
    return [{"release": "5.4.16-7.el6.1", "patched": ["CVE-1234"]}]


@pytest.fixture
def checks_file(tmp_path: Path) -> Path:
    """A check file whose first check is fixed in 5.4.32."""
    doc = {
        "checks": [
            {
                "threat": "7.5",
                "cveid": "CVE-2014-3538",
                "summary": "fileinfo denial of service",
                "fixVersions": {"base": ["5.4.32", "5.5.16"]},
            },
            {
                "threat": "5.0",
                "cveid": "CVE-2014-3668",
                "summary": "xmlrpc mkgmtime buffer overflow",
                "fixVersions": {"base": ["5.4.34", "5.5.18", "5.6.2"]},
            },
        ]
    }
    path = tmp_path / "checks.json"
    path.write_text(json.dumps(doc))
    return path


@pytest.fixture
def redhat_patch_file(tmp_path: Path) -> Path:
    """Red Hat builds of 5.4.16, newest first."""
    doc = {
        "patches": [
            {"release": "5.4.16-36.el7", "patched": ["CVE-2014-3668"]},
            {"release": "5.4.16-21.el7", "patched": ["CVE-2014-3538"]},
            {"release": "5.4.16-7.el7", "patched": []},
        ]
    }
    path = tmp_path / "redhat.json"
    path.write_text(json.dumps(doc))
    return path
