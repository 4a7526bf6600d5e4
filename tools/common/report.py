"""Unified reporting utilities for binary triage tools.

This module provides shared terminal output and file-report generation
used across the toolkit.  Terminal output relies on the ``rich`` library
for colour, panels and tables.

File reports can be emitted as Markdown or JSON.

Designed for Python 3.10+ with ``rich`` as the only external dependency.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

# A module-level console instance used by all printing helpers.
_console: Console = Console()

# Severity-to-colour mapping for :func:`print_finding`.
_SEVERITY_STYLES: dict[str, str] = {
    "info": "bold cyan",
    "warning": "bold yellow",
    "critical": "bold red",
}


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class ReportSection:
    """A single section destined for a file report.

    Attributes
    ----------
    title:
        Section heading text.
    content:
        Body of the section.  Accepts a plain string, a list of strings
        (rendered as bullet points), or a dict (rendered as a key/value
        table).
    level:
        Markdown heading level (1 = ``#``, 2 = ``##``, etc.).
    code_language:
        When set, a string *content* is rendered as a fenced code block
        tagged with this language (e.g. ``"xml"``).
    """

    title: str
    content: str | list[str] | dict[str, Any]
    level: int = 1
    code_language: str | None = None


# ---------------------------------------------------------------------------
# Terminal output
# ---------------------------------------------------------------------------

def print_banner(tool_name: str, version: str = "1.0.0") -> None:
    """Print a styled banner identifying the tool and its version.

    Parameters
    ----------
    tool_name:
        Display name of the tool (e.g. ``"Manifest Auditor"``).
    version:
        Version string shown alongside the tool name.
    """
    title_text = Text(tool_name, style="bold white")
    subtitle = Text(f"v{version}", style="dim")
    panel = Panel(
        title_text,
        subtitle=subtitle,
        border_style="bright_blue",
        expand=False,
        padding=(1, 4),
    )
    _console.print(panel)


def print_finding(
    title: str,
    details: dict[str, Any],
    severity: str = "info",
) -> None:
    """Print a formatted finding to the terminal.

    Parameters
    ----------
    title:
        Short description of the finding.
    details:
        Key/value pairs providing additional context.
    severity:
        One of ``"info"``, ``"warning"``, or ``"critical"``.  Controls the
        colour and prefix label of the output.
    """
    severity = severity.lower()
    label = severity.upper()

    style = _SEVERITY_STYLES.get(severity, "bold cyan")
    header = Text(f"[{label}] {title}", style=style)
    _console.print(header)
    for key, value in details.items():
        # Values come from untrusted samples; keep rich from reading
        # square brackets in them as markup.
        _console.print(f"  {escape(str(key))}: {escape(str(value))}")
    _console.print()


def print_table(title: str, items: list[dict], columns: list[str]) -> None:
    """Print a table of items to the terminal.

    Parameters
    ----------
    title:
        Caption shown above the table.
    items:
        Rows of data.  Each dict should contain keys matching *columns*.
    columns:
        Column header names, in display order.
    """
    table = Table(title=title, show_header=True, header_style="bold magenta")
    for col in columns:
        table.add_column(col)
    for item in items:
        table.add_row(*(escape(str(item.get(col, ""))) for col in columns))
    _console.print(table)


def print_block(title: str, body: str) -> None:
    """Print *body* verbatim inside a titled panel."""
    _console.print(Panel(Text(body), title=escape(title), border_style="dim", expand=False))


def print_summary(title: str, stats: dict[str, Any]) -> None:
    """Print a summary box with key statistics.

    Parameters
    ----------
    title:
        Heading for the summary panel.
    stats:
        Key/value pairs rendered inside the box.
    """
    lines: list[str] = []
    for key, value in stats.items():
        lines.append(f"[bold]{escape(str(key))}:[/bold] {escape(str(value))}")
    body = "\n".join(lines)
    panel = Panel(body, title=title, border_style="green", expand=False)
    _console.print(panel)


# ---------------------------------------------------------------------------
# File report writers
# ---------------------------------------------------------------------------

def render_markdown(title: str, sections: list[ReportSection]) -> str:
    """Return the Markdown text of a report.

    Parameters
    ----------
    title:
        Top-level document title (rendered as ``# title``).
    sections:
        Ordered list of :class:`ReportSection` objects comprising the
        report body.
    """
    lines: list[str] = []
    lines.append(f"# {title}")
    lines.append("")
    lines.append(f"*Generated: {timestamp()}*")
    lines.append("")

    for section in sections:
        prefix = "#" * min(max(section.level, 1), 6)
        lines.append(f"{prefix} {section.title}")
        lines.append("")

        content = section.content

        if isinstance(content, str):
            if section.code_language is not None:
                lines.append(f"```{section.code_language}")
                lines.append(content)
                lines.append("```")
            else:
                lines.append(content)
            lines.append("")

        elif isinstance(content, list):
            for item in content:
                lines.append(f"- {item}")
            lines.append("")

        elif isinstance(content, dict):
            lines.append("| Key | Value |")
            lines.append("|-----|-------|")
            for key, value in content.items():
                lines.append(f"| {key} | {value} |")
            lines.append("")

    return "\n".join(lines)


def write_markdown_report(
    path: Path,
    title: str,
    sections: list[ReportSection],
) -> None:
    """Generate a Markdown report file.

    Parameters
    ----------
    path:
        Destination file path (will be created or overwritten).
    title:
        Top-level document title.
    sections:
        Report body, see :func:`render_markdown`.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_markdown(title, sections), encoding="utf-8")


def _json_serial(obj: Any) -> Any:
    """JSON serializer for objects not handled by the default encoder.

    Converts :class:`datetime.datetime` instances to ISO 8601 strings,
    :class:`pathlib.Path` to their string representation, and ``bytes``
    to hex strings.
    """
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_json_report(path: Path, data: dict) -> None:
    """Write a JSON report with pretty-printing and datetime serialisation.

    Parameters
    ----------
    path:
        Destination file path (will be created or overwritten).
    data:
        Arbitrary JSON-serialisable data to persist.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(data, indent=2, default=_json_serial, ensure_ascii=False) + "\n",
        encoding="utf-8",
    )


def timestamp() -> str:
    """Return the current UTC time as an ISO 8601 string.

    Returns
    -------
    str
        Timestamp in the form ``"2025-01-15T08:30:00+00:00"``.
    """
    return datetime.now(timezone.utc).isoformat()
