"""Report generation using Jinja2 templates.

Renders a ``ScanResult`` as console text, Markdown or JSON.  Templates live
in ``versionscan/templates/``.
"""

import datetime as dt
import json
from pathlib import Path
from typing import Any, Iterable

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .models import RuleVerdict, ScanResult

_TEMPLATES_DIR = Path(__file__).parent / "templates"


def _now_utc_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()


def _cve_sort_key(verdict: RuleVerdict) -> tuple[int, int, str]:
    """Order CVE IDs by year then number; other IDs sort last by name."""
    parts = verdict.id.upper().split("-")
    if len(parts) == 3 and parts[0] == "CVE" and parts[1].isdigit() and parts[2].isdigit():
        return int(parts[1]), int(parts[2]), ""
    return 10**9, 0, verdict.id


def sort_verdicts(verdicts: Iterable[RuleVerdict], key: str = "cve") -> list[RuleVerdict]:
    """Sort verdicts for display.

    Args:
        verdicts: Verdicts to order.
        key: ``cve`` (by CVE year and number), ``threat`` (highest first,
            unknown threat last) or ``none`` (keep order).

    Returns:
        A new sorted list.
    """
    items = list(verdicts)
    if key == "cve":
        return sorted(items, key=_cve_sort_key)
    if key == "threat":
        return sorted(items, key=lambda v: (v.threat is None, -(v.threat or 0.0)))
    return items


def filter_verdicts(verdicts: Iterable[RuleVerdict], fail_only: bool = False) -> list[RuleVerdict]:
    """Drop non-vulnerable verdicts when ``fail_only`` is set."""
    return [v for v in verdicts if v.vulnerable or not fail_only]


def summarize(result: ScanResult) -> dict[str, int]:
    """Count total, vulnerable and vendor-patched verdicts."""
    return {
        "total": len(result.verdicts),
        "vulnerable": sum(1 for v in result.verdicts if v.vulnerable),
        "patched": sum(1 for v in result.verdicts if v.patched),
    }


def _prepare(result: ScanResult, sort: str, fail_only: bool) -> list[RuleVerdict]:
    return filter_verdicts(sort_verdicts(result.verdicts, sort), fail_only)


def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        autoescape=select_autoescape(default_for_string=False, default=False),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def _render(template_name: str, result: ScanResult, sort: str, fail_only: bool) -> str:
    template = _environment().get_template(template_name)
    return template.render(
        generated_at=_now_utc_iso(),
        version=result.version,
        vendor_build=result.vendor_build,
        summary=summarize(result),
        verdicts=_prepare(result, sort, fail_only),
        fail_only=fail_only,
    )


def render_console(result: ScanResult, sort: str = "cve", fail_only: bool = False) -> str:
    """Render a plain-text table for terminals."""
    return _render("console.txt.j2", result, sort, fail_only)


def render_markdown(result: ScanResult, sort: str = "cve", fail_only: bool = False) -> str:
    """Render a GitHub-renderable Markdown report."""
    return _render("report.md.j2", result, sort, fail_only)


def render_json(result: ScanResult, sort: str = "cve", fail_only: bool = False) -> str:
    """Render the scan as a JSON document."""
    payload: dict[str, Any] = {
        "version": result.version,
        "vendor_build": result.vendor_build,
        "generated_at": _now_utc_iso(),
        "summary": summarize(result),
        "results": [v.to_dict() for v in _prepare(result, sort, fail_only)],
    }
    return json.dumps(payload, indent=2) + "\n"


RENDERERS = {
    "console": render_console,
    "json": render_json,
    "markdown": render_markdown,
}


def render(result: ScanResult, fmt: str = "console", sort: str = "cve", fail_only: bool = False) -> str:
    """Render with the named format (``console``, ``json`` or ``markdown``).

    Raises:
        ValueError: for an unknown format.
    """
    try:
        renderer = RENDERERS[fmt]
    except KeyError:
        raise ValueError(f"Unknown output format: {fmt}") from None
    return renderer(result, sort=sort, fail_only=fail_only)


def write_report(path: Path, text: str) -> None:
    """Write a rendered report atomically (write-then-rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        with tmp.open("w", encoding="utf-8") as f:
            f.write(text)
        tmp.replace(path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
