"""Loading of rule and patch definition documents.

Reads ``{"checks": [...]}`` and ``{"patches": [...]}`` documents from JSON
or YAML files and validates them into definition records.  All file I/O of
the package happens here; the scanner itself only sees in-memory records.
"""

import json
import logging
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ValidationError

from .errors import FormatError, LoadError
from .models import PatchDefinition, PatchDocument, RuleDefinition, RuleDocument

logger = logging.getLogger(__name__)

DEFAULT_CHECKS_FILE = Path(__file__).parent / "data" / "checks.json"

_YAML_SUFFIXES = (".yaml", ".yml")
_PATCH_SUFFIXES = (".json",) + _YAML_SUFFIXES


def read_document(path: Path, *, vendor: str | None = None, kind: str | None = None) -> Any:
    """Read and parse a JSON or YAML file.

    The parser is picked by suffix: ``.yaml``/``.yml`` go through PyYAML,
    everything else is read as JSON.

    Args:
        path: File to read.
        vendor: Vendor name, for error messages about patch files.
        kind: Kind of document, for error messages.

    Returns:
        The parsed document.

    Raises:
        LoadError: if the file is missing or unreadable.
        FormatError: if the content does not parse.
    """
    if not path.is_file():
        raise LoadError(path, vendor=vendor, kind=kind)
    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise FormatError(f"Invalid {kind or 'check'} configuration in {path}: {e}") from e
    except OSError as e:
        raise LoadError(path, e.strerror or str(e), vendor=vendor, kind=kind) from e

    try:
        if path.suffix.lower() in _YAML_SUFFIXES:
            return yaml.safe_load(content)
        return json.loads(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise FormatError(f"Invalid {kind or 'check'} configuration in {path}: {e}") from e


def _validate(model: type[BaseModel], raw: Any, path: Path, kind: str) -> Any:
    if not isinstance(raw, dict):
        raise FormatError(f"Invalid {kind} configuration in {path}: expected an object")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise FormatError(f"Invalid {kind} configuration in {path}: {e}") from e


def load_rules(path: Path | None = None) -> list[RuleDefinition]:
    """Load check definitions from a ``{"checks": [...]}`` document.

    Args:
        path: Check file.  ``None`` loads the bundled ``checks.json``.

    Returns:
        Validated rule definitions, in file order.

    Raises:
        LoadError: if the file is missing or unreadable.
        FormatError: if the content is not a valid check document.
    """
    path = path or DEFAULT_CHECKS_FILE
    raw = read_document(path, kind="check")
    document = _validate(RuleDocument, raw, path, "check")
    logger.info("Loaded %d checks from %s", len(document.checks), path)
    return list(document.checks)


def load_patches(vendor: str, path: Path) -> list[PatchDefinition]:
    """Load one vendor's patch manifests, preserving file order.

    Raises:
        LoadError: if the file is missing or unreadable.
        FormatError: if the content is invalid or a release repeats.
    """
    raw = read_document(path, vendor=vendor, kind="patch")
    document = _validate(PatchDocument, raw, path, "patch")

    seen: set[str] = set()
    for patch in document.patches:
        if patch.release in seen:
            raise FormatError(f"Invalid patch configuration in {path}: duplicate release {patch.release}")
        seen.add(patch.release)

    logger.info("Loaded %d %s patches from %s", len(document.patches), vendor, path)
    return list(document.patches)


def load_patch_files(files: Mapping[str, Path]) -> dict[str, list[PatchDefinition]]:
    """Load several vendors' patch files.

    Args:
        files: Vendor name to patch file.

    Returns:
        Vendor name to its ordered patch definitions.
    """
    return {vendor: load_patches(vendor, Path(path)) for vendor, path in files.items()}


def load_patch_dir(directory: Path) -> dict[str, list[PatchDefinition]]:
    """Load every patch file in a directory, naming vendors after file stems.

    ``patches/redhat.json`` becomes the ``redhat`` set.

    Raises:
        LoadError: if ``directory`` does not exist.
    """
    if not directory.is_dir():
        raise LoadError(directory, "not a directory", kind="patch")
    files = {p.stem: p for p in sorted(directory.iterdir()) if p.is_file() and p.suffix.lower() in _PATCH_SUFFIXES}
    return load_patch_files(files)
