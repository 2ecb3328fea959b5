"""
Utility functions for md-playground.
"""

from typing import Optional

from rich.console import Group
from rich.text import Text

from md_playground.evaluation import Outcome, OutputRecord
from md_playground.fragments import CodeFragment


def format_record(record: OutputRecord) -> str:
    """
    Format an output record for display (plain text).

    Args:
        record: OutputRecord delivered by the driver

    Returns:
        Formatted string for display
    """
    if record.outcome == Outcome.TERMINATED:
        return f"[terminated] {record.stderr or ''}".rstrip()
    if record.outcome == Outcome.TIMED_OUT:
        return f"[timed out] {record.stderr or ''}".rstrip()

    parts = [record.stdout] if record.stdout else []
    if record.stderr:
        parts.append(record.stderr)
    return "\n".join(parts)


def format_rich_record(record: OutputRecord):
    """
    Format an output record as a Rich renderable.

    stdout is plain, stderr yellow, and interrupted evaluations red.
    """
    if record.outcome != Outcome.COMPLETED:
        label = "terminated" if record.outcome == Outcome.TERMINATED else "timed out"
        text = Text()
        text.append(label, style="bold red")
        if record.stderr:
            text.append(f": {record.stderr}", style="red")
        return text

    renderables = []
    if record.stdout:
        renderables.append(Text(record.stdout.rstrip("\n")))
    if record.stderr:
        renderables.append(Text(record.stderr, style="yellow"))
    if not renderables:
        return Text("(no output)", style="dim")
    return Group(*renderables)


def get_fragment_status(fragment: CodeFragment, output: Optional[str] = None) -> tuple[str, str]:
    """
    Get status indicator and style for a fragment.

    Returns:
        Tuple of (indicator_string, rich_style)
    """
    if fragment.error:
        return ("err", "red")
    if output is not None:
        return ("ok", "green")
    return ("--", "dim")


def fragment_title(fragment: CodeFragment) -> str:
    """Short label naming a fragment by language and line range."""
    first, last = fragment.range
    language = fragment.language or "code"
    return f"{language} · lines {first + 1}-{last}"


def error_summary(error: str, max_length: int = 80) -> str:
    """
    One-line summary of an error message.

    Tracebacks end with the exception line, so the last non-blank line is
    kept, truncated to max_length with an ellipsis.
    """
    lines = [line.strip() for line in error.splitlines() if line.strip()]
    summary = lines[-1] if lines else ""
    if len(summary) <= max_length:
        return summary
    return summary[: max_length - 3] + "..."
