"""Configuration models using Pydantic.

A ``versionscan.yaml`` file names the check and patch sources, extra
vendor-build tokens and output defaults.  Every field is optional; command
line flags override whatever the file sets.
"""

import json
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError, FormatError, LoadError

CONFIG_FILENAMES = ("versionscan.yaml", "versionscan.yml", "versionscan.json")


class OutputConfig(BaseModel):
    """Report output options.

    Attributes:
        format: ``console``, ``json`` or ``markdown``.
        sort: Order of results: ``cve`` (by ID), ``threat`` (highest
            first) or ``none`` (rule file order).
        fail_only: Only list vulnerable results.
    """

    model_config = ConfigDict(extra="forbid")

    format: Literal["console", "json", "markdown"] = "console"
    sort: Literal["cve", "threat", "none"] = "cve"
    fail_only: bool = False


class ScanConfig(BaseModel):
    """Validated scanner configuration.

    Example YAML::

        checks_file: rules/checks.json
        patch_files:
          redhat: rules/patches/redhat.json
        patch_dir: rules/patches.d
        vendor_tokens:
          - mydistro
        workers: 4
        output:
          format: markdown
          sort: threat
    """

    model_config = ConfigDict(extra="forbid")

    checks_file: Path | None = None
    patch_files: dict[str, Path] = Field(default_factory=dict)
    patch_dir: Path | None = None
    vendor_tokens: list[str] = Field(default_factory=list)
    workers: int = Field(default=1, ge=1, le=64)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @field_validator("vendor_tokens", mode="before")
    @classmethod
    def _normalize_tokens(cls, v: Any) -> list[str]:
        """Lowercase and strip tokens, dropping blanks and duplicates."""
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        out: list[str] = []
        for item in v:
            if not isinstance(item, str):
                continue
            token = re.sub(r"\s+", "", item.strip().lower())
            if token and token not in out:
                out.append(token)
        return out

    def resolve_paths(self, base: Path) -> "ScanConfig":
        """Return a copy with relative paths anchored at ``base``."""

        def _anchor(p: Path | None) -> Path | None:
            if p is None or p.is_absolute():
                return p
            return base / p

        return self.model_copy(
            update={
                "checks_file": _anchor(self.checks_file),
                "patch_dir": _anchor(self.patch_dir),
                "patch_files": {k: _anchor(v) for k, v in self.patch_files.items()},
            }
        )


def load_config(path: Path) -> ScanConfig:
    """Load a configuration file (YAML, or JSON by suffix).

    Relative paths inside the file are taken relative to the file itself.

    Args:
        path: Path to the config file.

    Returns:
        Validated ``ScanConfig`` instance.

    Raises:
        LoadError: if the file doesn't exist or can't be read.
        FormatError: if the content doesn't parse.
        ConfigError: if the content fails validation.
    """
    if not path.is_file():
        raise LoadError(path, kind="config")
    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise FormatError(f"Invalid configuration in {path}: {e}") from e
    except OSError as e:
        raise LoadError(path, e.strerror or str(e), kind="config") from e

    try:
        if path.suffix.lower() == ".json":
            raw = json.loads(content)
        else:
            raw = yaml.safe_load(content) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise FormatError(f"Invalid configuration in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Invalid configuration in {path}: expected a mapping")
    try:
        config = ScanConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e
    return config.resolve_paths(path.parent)


def find_config(directory: Path | None = None) -> Path | None:
    """Find a config file, preferring YAML over JSON.

    Returns:
        Path of the first existing config file, or None.
    """
    directory = directory or Path.cwd()
    for name in CONFIG_FILENAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None
