"""Command-line entry point for versionscan.

Exit codes: 0 when no check is vulnerable, 1 when at least one is, and 2
when the scan could not run (missing or invalid definitions, bad version).
"""

import argparse
import logging
import subprocess
import sys
from pathlib import Path
from typing import Any, Sequence

from . import __version__
from .config import ScanConfig, find_config, load_config
from .errors import LoadError, VersionScanError
from .loader import load_patch_dir, load_patch_files, load_rules
from .models import PatchDefinition, ScanResult
from .report import render, write_report
from .scan import Scan

EXIT_OK = 0
EXIT_VULNERABLE = 1
EXIT_ERROR = 2


def _parse_patch_option(value: str) -> tuple[str, Path]:
    """Parse a ``VENDOR=FILE`` option value."""
    vendor, sep, path = value.partition("=")
    if not sep or not vendor.strip() or not path.strip():
        raise argparse.ArgumentTypeError(f"expected VENDOR=FILE, got {value!r}")
    return vendor.strip(), Path(path.strip())


def _detect_runtime_version(binary: str = "php") -> str:
    """Ask the runtime binary for its version string.

    Raises:
        LoadError: if the binary can't be run or reports nothing.
    """
    try:
        proc = subprocess.run(
            [binary, "-r", "echo PHP_VERSION;"],
            capture_output=True,
            text=True,
            timeout=30,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as e:
        raise LoadError(binary, f"could not determine runtime version ({e})", kind="runtime") from e
    version = proc.stdout.strip()
    if not version:
        raise LoadError(binary, "runtime reported an empty version", kind="runtime")
    return version


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="versionscan",
        description="Check a PHP version against known CVEs, honouring vendor backport patches.",
    )
    p.add_argument("--php-version", help="Version to scan (default: ask the --php-binary)")
    p.add_argument("--php-binary", default="php", help="Runtime binary used to detect the version")
    p.add_argument("--checks", type=Path, help="Check definitions file (default: bundled checks.json)")
    p.add_argument(
        "--patch",
        action="append",
        type=_parse_patch_option,
        default=[],
        metavar="VENDOR=FILE",
        help="Vendor patch file; may be repeated",
    )
    p.add_argument("--patch-dir", type=Path, help="Directory of patch files, one per vendor")
    p.add_argument("--config", type=Path, help="Config file (default: ./versionscan.yaml if present)")
    p.add_argument("--format", choices=["console", "json", "markdown"], help="Output format")
    p.add_argument("--sort", choices=["cve", "threat", "none"], help="Result ordering")
    p.add_argument("--fail-only", action="store_true", default=None, help="Only list vulnerable checks")
    p.add_argument("--output", type=Path, help="Write the report to this file instead of stdout")
    p.add_argument("--workers", type=int, help="Threads used to evaluate checks")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def _merge_config(args: argparse.Namespace) -> ScanConfig:
    """Load the config file (if any) and apply command-line overrides."""
    config_path = args.config or find_config()
    config = load_config(config_path) if config_path else ScanConfig()

    updates: dict[str, Any] = {}
    if args.checks:
        updates["checks_file"] = args.checks
    if args.patch:
        updates["patch_files"] = {**config.patch_files, **dict(args.patch)}
    if args.patch_dir:
        updates["patch_dir"] = args.patch_dir
    if args.workers:
        updates["workers"] = max(1, args.workers)

    output_updates: dict[str, Any] = {}
    if args.format:
        output_updates["format"] = args.format
    if args.sort:
        output_updates["sort"] = args.sort
    if args.fail_only:
        output_updates["fail_only"] = True
    if output_updates:
        updates["output"] = config.output.model_copy(update=output_updates)

    return config.model_copy(update=updates)


def _load_patch_set(config: ScanConfig) -> dict[str, list[PatchDefinition]]:
    patches: dict[str, list[PatchDefinition]] = {}
    if config.patch_dir:
        patches.update(load_patch_dir(config.patch_dir))
    if config.patch_files:
        patches.update(load_patch_files(config.patch_files))
    return patches


def run_scan(config: ScanConfig, version: str) -> ScanResult:
    """Load definitions named by ``config`` and scan ``version``.

    Raises:
        VersionScanError: on any load, format or rule configuration error.
    """
    rules = load_rules(config.checks_file)
    patches = _load_patch_set(config)
    engine = Scan(workers=config.workers, vendor_tokens=config.vendor_tokens)
    return engine.execute(version, rules, patches or None)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _merge_config(args)
        version = args.php_version or _detect_runtime_version(args.php_binary)
        result = run_scan(config, version)
    except VersionScanError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    text = render(result, config.output.format, sort=config.output.sort, fail_only=config.output.fail_only)
    if args.output:
        write_report(args.output, text)
        print(f"Wrote {config.output.format} report to {args.output}")
    else:
        sys.stdout.write(text)

    return EXIT_VULNERABLE if result.vulnerable else EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
