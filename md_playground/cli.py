"""
CLI interface for md-playground with Rich output.
"""

import logging
import queue
import sys
import time
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.status import Status
from rich.table import Table

from md_playground.config import HighlightConfig, InterpreterProfile, PlaygroundConfig, SessionConfig
from md_playground.coordinator import FragmentEvent, FragmentEventKind, Playground
from md_playground.errors import LaunchFailure, PlaygroundError
from md_playground.evaluation import OutputRecord
from md_playground.file_watcher import FileWatcher
from md_playground.fragments import CodeFragment
from md_playground.highlight import render
from md_playground.utils import error_summary, format_record, format_rich_record, fragment_title, get_fragment_status


console = Console()


def _build_config(timeout: Optional[float], python: Optional[str], language: Optional[str] = None) -> PlaygroundConfig:
    """Environment defaults, overridden by command-line options."""
    config = PlaygroundConfig.from_env()
    session = config.session
    if python is not None or timeout is not None:
        session = SessionConfig(
            profile=InterpreterProfile.python(python) if python else session.profile,
            eval_timeout=(timeout or None) if timeout is not None else session.eval_timeout,
        )
    highlight = config.highlight
    if language is not None:
        highlight = HighlightConfig(
            language=language,
            cache_max_entries=highlight.cache_max_entries,
            cache_max_bytes=highlight.cache_max_bytes,
            style=highlight.style,
        )
    return PlaygroundConfig(session=session, highlight=highlight)


def _print_fragment(playground: Playground, fragment, tokens):
    style = playground.config.highlight.style
    status, status_style = get_fragment_status(fragment, playground.output_for(fragment))
    console.print(Panel(
        render(fragment.text.rstrip("\n"), tokens, style),
        title=f"[dim]{fragment_title(fragment)}[/dim]",
        subtitle=f"[{status_style}]{status}[/{status_style}]",
        border_style="blue",
        title_align="left",
    ))


def _print_failures(failures: list[tuple[CodeFragment, OutputRecord]], plain: bool):
    if plain:
        for fragment, record in failures:
            click.echo(f"FAILED {fragment_title(fragment)}: {error_summary(format_record(record))}")
        return

    table = Table(title="Failed code blocks", show_header=True, header_style="bold")
    table.add_column("Block")
    table.add_column("Error", style="red")
    for fragment, record in failures:
        table.add_row(fragment_title(fragment), escape(error_summary(format_record(record))))
    console.print(table)


def watch_document(playground: Playground, path: str | Path, interval: float = 1.0) -> FileWatcher:
    """
    Wire a playground to a document on disk.

    Code blocks added by an edit are evaluated, and every result is printed
    with its highlighted block. Blocks that did not change are not run
    again. The returned watcher is not started.
    """
    def on_event(event: FragmentEvent):
        if event.kind == FragmentEventKind.ADDED and playground.evaluable(event.fragment):
            playground.evaluate(event.fragment)
        elif event.kind == FragmentEventKind.EVALUATED and event.record is not None:
            if event.fragment is not None:
                [(fragment, tokens)] = playground.highlight([event.fragment])
                _print_fragment(playground, fragment, tokens)
            console.print(format_rich_record(event.record))

    playground.subscribe(on_event)
    return FileWatcher(path, on_change=playground.update, poll_interval=interval)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def main(verbose: bool):
    """md-playground: evaluate and highlight the code blocks of a markdown document."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--timeout", "-t", type=float, default=None, help="Per-fragment timeout in seconds, 0 disables")
@click.option("--python", "python", default=None, help="Interpreter executable")
@click.option("--keep-going", "-k", is_flag=True, help="Continue after a fragment fails")
@click.option("--plain", is_flag=True, help="Plain text output, without panels or colors")
def run(path: str, timeout: Optional[float], python: Optional[str], keep_going: bool, plain: bool):
    """Evaluate every code block of a document in order."""
    results: "queue.Queue[OutputRecord]" = queue.Queue()
    config = _build_config(timeout, python)

    with Playground(config, on_output=results.put) as playground:
        playground.load(Path(path))
        if not plain:
            console.print(Panel(
                f"[bold]{escape(Path(path).name)}[/bold]  [dim]{len(playground.fragments)} code block(s)[/dim]",
                title="[bold blue]md-playground[/bold blue]",
                border_style="blue",
            ))

        fragments = [f for f in playground.fragments if playground.evaluable(f) and f.text.strip()]
        if not fragments:
            console.print("[yellow]No code blocks to evaluate[/yellow]")
            return

        tokens = dict((f.text, t) for f, t in playground.highlight(fragments))
        wait = (config.session.eval_timeout or 3600) + config.session.terminate_grace + 5

        success_count = 0
        failures = []
        for fragment in fragments:
            try:
                with Status("Evaluating...", console=console, spinner="dots"):
                    playground.evaluate(fragment)
                    record = results.get(timeout=wait)
            except LaunchFailure as e:
                console.print(f"[red]{escape(str(e))}[/red]")
                sys.exit(1)
            except queue.Empty:
                console.print("[red]No result from interpreter[/red]")
                sys.exit(1)

            if plain:
                click.echo(f"--- {fragment_title(fragment)}")
                output = format_record(record)
                if output:
                    click.echo(output)
            else:
                _print_fragment(playground, fragment, tokens.get(fragment.text, []))
                console.print(format_rich_record(record))
                console.print()

            if record.has_error:
                failures.append((fragment, record))
                if not keep_going:
                    break
            else:
                success_count += 1

    total = len(fragments)
    if success_count == total:
        console.print(f"[green]All {total} code blocks evaluated successfully[/green]")
    else:
        _print_failures(failures, plain)
        console.print(f"[yellow]Evaluated {success_count}/{total} code blocks without errors[/yellow]")
        sys.exit(1)


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--language", "-l", default=None, help="Highlighting language (Pygments name)")
def highlight(path: str, language: Optional[str]):
    """Print a document with its markdown and code blocks highlighted."""
    try:
        playground = Playground(_build_config(None, None, language))
    except PlaygroundError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)

    with playground:
        playground.load(Path(path))
        console.print(Panel(
            playground.render_document(),
            title=f"[dim]{escape(Path(path).name)}[/dim]",
            border_style="blue",
            title_align="left",
        ))

        stats = playground.highlighter.cache.stats()
        table = Table(title="Highlight cache", show_header=True, header_style="bold")
        table.add_column("Fragments", justify="right")
        table.add_column("Cached", justify="right")
        table.add_column("Bytes", justify="right")
        table.add_column("Tokenizer calls", justify="right")
        table.add_row(
            str(len(playground.fragments)),
            str(stats["entries"]),
            str(stats["bytes"]),
            str(playground.highlighter.invocations),
        )
        console.print(table)

        if playground.highlighter.last_error is not None:
            console.print(f"[yellow]Tokenizer failed: {escape(str(playground.highlighter.last_error))}[/yellow]")


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--timeout", "-t", type=float, default=None, help="Per-fragment timeout in seconds, 0 disables")
@click.option("--python", "python", default=None, help="Interpreter executable")
@click.option("--interval", type=float, default=1.0, help="Seconds between file checks")
def watch(path: str, timeout: Optional[float], python: Optional[str], interval: float):
    """Re-evaluate code blocks whenever the document changes."""
    playground = Playground(_build_config(timeout, python))
    watcher = watch_document(playground, path, interval)

    console.print(f"[dim]Watching {escape(path)}, Ctrl+C to stop[/dim]")
    try:
        with playground:
            playground.driver
            with watcher:
                playground.load(Path(path))
                while True:
                    time.sleep(interval)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")
    except LaunchFailure as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
