#!/usr/bin/env python3
"""book-forge command line: write a whole book from a title and a description.

    book-forge "Rivers of Europe" --about "A travel guide to the great rivers"

This module only turns arguments into a GenerationConfig and a BookSpec,
shows stage progress with Rich and reports the outcome. Generation itself
runs in the pipeline's stage jobs.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import time
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .config import GenerationConfig
from .context import RunContext
from .exceptions import BookForgeError
from .jobs import StageOutcome
from .models import ParagraphStatus
from .schemas import BookSpec
from .services import ServiceFactory

# Shared console; progress and panels print through it
console = Console()

STAGE_DESCRIPTIONS = {
    "template": "Generating outline and chapter templates",
    "draft": "Writing paragraphs",
    "refine": "Refining paragraphs",
}


def setup_logging(log_file: str = "book_forge.log", debug: bool = False) -> None:
    """Set up logging configuration for the application.

    Detailed logs go to a file only; the terminal belongs to Rich.

    Args:
        log_file: Path to the log file. Defaults to "book_forge.log".
        debug: Log at DEBUG level instead of INFO
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.FileHandler(log_file, mode="w")],
    )
    # The OpenAI client logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def create_progress() -> Progress:
    """Create a Rich progress display with standard configuration."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed command-line arguments.
    """
    parser = argparse.ArgumentParser(
        description="Generate a complete book with a language model", prog="book-forge"
    )
    parser.add_argument("title", type=str, help="Title of the book")
    parser.add_argument("--about", type=str, required=True, help="What the book is about")
    parser.add_argument(
        "--prompt", type=str, default="", help="Extra instructions for every generation step"
    )
    parser.add_argument("--model", type=str, default=None, help="Model identifier to use")
    parser.add_argument(
        "--output-dir", type=str, default=None, help="Output directory (default: output)"
    )
    parser.add_argument(
        "--max-concurrent",
        type=int,
        default=None,
        help="Maximum concurrent generation calls (default: 3)",
    )
    parser.add_argument(
        "--transitions",
        action="store_true",
        help="Run a transition smoothing pass after refinement",
    )
    parser.add_argument("--scope", type=str, default="default", help="Storage scope")
    parser.add_argument("--config", type=str, default=None, help="Path to a TOML config file")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> GenerationConfig:
    """Load configuration and apply command-line overrides.

    Raises:
        ConfigurationError: If the resulting configuration is invalid
    """
    config = GenerationConfig.load(config_path=args.config)
    overrides: dict[str, object] = {}
    if args.model:
        overrides["model"] = args.model
    if args.output_dir:
        overrides["output_dir"] = Path(args.output_dir)
    if args.max_concurrent is not None:
        overrides["max_concurrent"] = args.max_concurrent
    if args.transitions:
        overrides["transition_pass"] = True
    if overrides:
        config.update(**overrides)
    return config


def display_header(title: str, config: GenerationConfig) -> None:
    """Display the header panel with book information."""
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]{title}[/bold cyan]\n"
            f"[dim]Model: {config.model} · Concurrency: {config.max_concurrent}[/dim]",
            title="[bold]Book Forge[/bold]",
            border_style="cyan",
        )
    )
    console.print()


def display_summary(ctx: RunContext, elapsed_time: float, book_path: Path) -> None:
    """Display the completion summary table."""
    minutes = int(elapsed_time // 60)
    seconds = int(elapsed_time % 60)
    time_formatted = f"{minutes}m {seconds}s" if minutes > 0 else f"{seconds}s"

    book = ctx.book
    counts = book.status_counts() if book is not None else {}
    chapters = len(book.chapters) if book is not None else 0
    paragraphs = len(book.paragraphs) if book is not None else 0

    console.print()
    summary_table = Table(
        title="[bold green]✓ Generation Complete[/bold green]",
        show_header=True,
        header_style="bold cyan",
    )
    summary_table.add_column("Metric", style="cyan", width=20)
    summary_table.add_column("Value", style="green", justify="right")

    summary_table.add_row("Chapters", str(chapters))
    summary_table.add_row("Paragraphs", str(paragraphs))
    summary_table.add_row("Refined", str(counts.get(ParagraphStatus.REFINED, 0)))
    summary_table.add_row("Failed", str(counts.get(ParagraphStatus.FAILED, 0)))
    summary_table.add_row("Generation Time", time_formatted)

    console.print(summary_table)
    console.print()
    console.print(f"[bold]Output:[/bold] [cyan]{book_path}[/cyan]")
    console.print()


def display_error(title: str, message: str) -> None:
    """Display an error panel."""
    console.print()
    console.print(
        Panel(
            message,
            title=f"[bold red]{title}[/bold red]",
            border_style="red",
        )
    )
    console.print()


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Generate one book and display its summary.

    Returns:
        Process exit code
    """
    args = parse_args(argv)

    try:
        config = build_config(args)
        spec = BookSpec(title=args.title, informative_text=args.about, prompt=args.prompt)
    except (BookForgeError, ValueError) as e:
        display_error("Invalid input", str(e))
        return 2

    setup_logging(debug=config.debug_mode)
    start_time = time.time()

    logging.info("=" * 80)
    logging.info(f"Generating: {spec.title}")
    logging.info(f"Configuration: {config.to_dict()}")
    logging.info("=" * 80)

    display_header(spec.title, config)

    factory = ServiceFactory(config=config)
    pipeline = factory.create_pipeline()

    with create_progress() as progress:
        tasks: dict[str, TaskID] = {}
        for i, stage in enumerate(pipeline.stages, 1):
            description = STAGE_DESCRIPTIONS.get(stage.name, stage.name)
            tasks[stage.name] = progress.add_task(f"Phase {i}: {description}", total=1)

        def on_stage_done(outcome: StageOutcome) -> None:
            stage_name = outcome.job.stage
            mark = "[green]✓[/green]" if outcome.succeeded else "[red]✗[/red]"
            progress.update(tasks[stage_name], completed=1)
            progress.console.print(f"{mark} {STAGE_DESCRIPTIONS.get(stage_name, stage_name)}")

        for stage in pipeline.stages:
            pipeline.jobs.subscribe(stage.name, on_stage_done)

        book_id = await pipeline.start(spec, scope=args.scope)
        ctx = await pipeline.wait(book_id)
        await pipeline.close()

    book_path = factory.create_repository().path_for(args.scope, book_id)
    elapsed_time = time.time() - start_time

    if ctx.error is not None:
        logging.error(f"Generation failed: {ctx.error}")
        display_error(
            "Generation failed",
            f"{ctx.error}\n\n"
            f"[dim]Partial results: {book_path}\n"
            f"Check book_forge.log for detailed error information.[/dim]",
        )
        return 1

    logging.info("\n" + "=" * 80)
    logging.info("COMPLETE")
    logging.info("=" * 80)
    logging.info(f"Counters: {ctx.metrics.snapshot()}")
    logging.info(f"Time: {elapsed_time:.1f}s")
    logging.info(f"Output: {book_path}")

    display_summary(ctx, elapsed_time, book_path)
    return 0


def main() -> None:
    """Entry point for the book-forge CLI command."""
    try:
        exit_code = asyncio.run(main_async())
    except KeyboardInterrupt:
        console.print()
        console.print(
            Panel(
                "[yellow]Generation interrupted by user[/yellow]\n\n"
                "[dim]Partial results may be available in the output directory.[/dim]",
                title="[bold yellow]Interrupted[/bold yellow]",
                border_style="yellow",
            )
        )
        console.print()
        raise SystemExit(130) from None
    except Exception as e:  # Intentional catch-all for CLI entry point
        display_error(
            "Error",
            f"[bold red]An unexpected error occurred:[/bold red]\n\n"
            f"{e!s}\n\n"
            f"[dim]Check book_forge.log for detailed error information.[/dim]",
        )
        logging.exception("Unexpected error during generation")
        raise
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
