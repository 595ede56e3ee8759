"""
main.py — VoxLedger Entry Point

Usage:
    voxledger listen                          # one utterance, end to end
    voxledger listen --model small --language hi
    voxledger parse "paid 500 for lunch yesterday"
    voxledger models                          # supported models + on-disk state
    voxledger download base                   # fetch a model into models_dir
    voxledger vocab list [--all]
    voxledger vocab add "gstr one" GSTR-1 cat_gst
    voxledger vocab remove term_ab12cd34ef56
    voxledger vocab search gst
    voxledger --log-level DEBUG --config path/to/config.yaml listen
"""

from __future__ import annotations

from dotenv import load_dotenv
from pathlib import Path


def _find_env_file() -> Path | None:
    """Walk up from CWD looking for .env file."""
    cwd = Path.cwd()
    for d in [cwd, *cwd.parents]:
        candidate = d / ".env"
        if candidate.is_file():
            return candidate
    return None


_env_path = _find_env_file()
if _env_path:
    load_dotenv(dotenv_path=_env_path)

import argparse
import asyncio
import sys
from typing import Optional

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from voxledger.voice.interpreter import format_for_display, validate_command

console = Console()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="voxledger",
        description="VoxLedger — offline voice commands for bookkeeping",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $VOXLEDGER_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    listen = sub.add_parser("listen", help="Capture one utterance and interpret it")
    listen.add_argument("--model", default=None, help="Model id for this run (tiny/base/small/medium)")
    listen.add_argument("--language", default=None, help="Recognizer language code, e.g. en or hi")

    parse = sub.add_parser("parse", help="Interpret typed text as if it were spoken")
    parse.add_argument("text", nargs="+", help="Command text")

    sub.add_parser("models", help="List supported recognizer models")

    download = sub.add_parser("download", help="Download a recognizer model")
    download.add_argument("model", help="Model id (tiny/base/small/medium)")

    vocab = sub.add_parser("vocab", help="Manage the spoken-term vocabulary")
    vocab_sub = vocab.add_subparsers(dest="vocab_command", required=True)
    vocab_list = vocab_sub.add_parser("list", help="List vocabulary terms")
    vocab_list.add_argument("--all", action="store_true", help="Include inactive terms")
    vocab_add = vocab_sub.add_parser("add", help="Add a term")
    vocab_add.add_argument("spoken", help="What people say")
    vocab_add.add_argument("mapped", help="What the ledger should see")
    vocab_add.add_argument("category", help="Category id, e.g. cat_gst")
    vocab_remove = vocab_sub.add_parser("remove", help="Remove a term by id")
    vocab_remove.add_argument("term_id")
    vocab_search = vocab_sub.add_parser("search", help="Search spoken and mapped forms")
    vocab_search.add_argument("query")
    vocab_search.add_argument("--limit", type=int, default=20)

    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from pydantic import ValidationError

    from voxledger.config.settings import ConfigError, load_settings
    from voxledger.observability.logger import get_logger, setup_logging

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {e['loc'][-1] if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    # CLI --log-level flag overrides config.yaml
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("voxledger.main")
    return settings, log


# ─────────────────────────────────────────────────────────────────────────────
# Rendering
# ─────────────────────────────────────────────────────────────────────────────

def _render_result(result) -> None:
    command = result.command
    console.print(Panel(
        Markdown(format_for_display(command)),
        title=f"[bold]{escape(command.raw_text) or '(nothing heard)'}[/bold]",
        box=box.ROUNDED,
        border_style="cyan",
    ))
    style = "yellow" if result.requires_confirmation else "green"
    console.print(f"[{style}]{result.suggested_response}[/{style}]")

    validation = validate_command(command)
    for error in validation.errors:
        console.print(f"[red]• {error}[/red]")


def _render_terms(terms, title: str) -> None:
    table = Table(title=title, box=box.SIMPLE_HEAVY)
    table.add_column("ID", style="dim")
    table.add_column("Spoken")
    table.add_column("Mapped", style="bold")
    table.add_column("Category")
    table.add_column("Active", justify="center")
    for t in terms:
        table.add_row(t.id, t.spoken, t.mapped, t.category, "✓" if t.is_active else "·")
    console.print(table)


# ─────────────────────────────────────────────────────────────────────────────
# Subcommands
# ─────────────────────────────────────────────────────────────────────────────

async def _cmd_listen(settings, args, log) -> int:
    from voxledger.bootstrap import build_voice_stack
    from voxledger.exceptions import ModelNotFoundError
    from voxledger.voice.events import (
        CommandReady,
        ErrorOccurred,
        ExecuteRequested,
        TranscriptionComplete,
    )

    stack = await build_voice_stack(settings)
    try:
        if args.model:
            try:
                await stack.transcriber.set_model(args.model)
            except ModelNotFoundError as e:
                console.print(f"[red]{e}[/red]")
                return 1
        if args.language:
            stack.transcriber.set_language(args.language)

        if not stack.recognizer.is_available():
            console.print("[yellow]No whisper.cpp executable found; transcripts will be empty.[/yellow]")
        elif not stack.transcriber.model_path.is_file():
            console.print(
                f"[yellow]Model '{stack.transcriber.model_id}' is not downloaded. "
                f"Run: voxledger download {stack.transcriber.model_id}[/yellow]"
            )

        stack.events.subscribe(
            TranscriptionComplete,
            lambda e: console.print(f"[dim]Heard:[/dim] {e.result.text or '(nothing)'}"),
        )
        stack.events.subscribe(
            ErrorOccurred,
            lambda e: console.print(f"[red]Error during {e.stage}: {e.error}[/red]"),
        )
        stack.events.subscribe(
            CommandReady,
            lambda e: console.print("[yellow]Confirmation required before recording.[/yellow]"),
        )
        stack.events.subscribe(
            ExecuteRequested,
            lambda e: console.print(f"[green]Ready to execute {e.command.intent.value}.[/green]"),
        )

        if not await stack.session.start_listening():
            return 1
        console.print("[bold cyan]🎙  Listening…[/bold cyan] (pause to finish, Ctrl+C to stop)")
        try:
            result = await stack.session.wait_for_turn()
        except (KeyboardInterrupt, asyncio.CancelledError):
            result = await stack.session.stop_listening()

        if result is None:
            log.info("listen.no_command")
            return 0
        _render_result(result)
        return 0
    finally:
        await stack.close()


async def _cmd_parse(settings, args) -> int:
    from voxledger.vocabulary.sqlite_store import SQLiteVocabularyStore
    from voxledger.voice.interpreter import CommandInterpreter

    store = SQLiteVocabularyStore(settings.dictionary_path, seed_defaults=settings.vocabulary.seed_defaults)
    await store.init()
    try:
        result = await CommandInterpreter(store).parse(" ".join(args.text))
    finally:
        await store.close()
    _render_result(result)
    return 0


def _cmd_models(settings) -> int:
    from voxledger.voice.models import ModelCatalog

    catalog = ModelCatalog(settings.models_dir, url_template=settings.recognizer.download_url_template)
    table = Table(title="Recognizer models", box=box.SIMPLE_HEAVY)
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Languages")
    table.add_column("Accuracy", justify="right")
    table.add_column("Downloaded", justify="center")
    for m in catalog.list_models():
        marker = "✓" if m.is_downloaded else "·"
        if m.id == settings.recognizer.model_size:
            marker += " (active)"
        table.add_row(m.id, m.name, m.size, ", ".join(m.languages), f"{m.accuracy:.0%}", marker)
    console.print(table)
    console.print(f"[dim]Models directory: {catalog.models_dir}[/dim]")
    return 0


async def _cmd_download(settings, args) -> int:
    from voxledger.exceptions import ModelDownloadError, ModelNotFoundError
    from voxledger.voice.models import ModelCatalog

    catalog = ModelCatalog(settings.models_dir, url_template=settings.recognizer.download_url_template)
    with Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task(f"ggml-{args.model}.bin", total=1.0)
        try:
            info = await catalog.download(
                args.model,
                lambda fraction: progress.update(task, completed=fraction),
            )
        except (ModelNotFoundError, ModelDownloadError) as e:
            console.print(f"[red]{e}[/red]")
            return 1
    console.print(f"[green]Saved to {info.local_path}[/green]")
    return 0


async def _cmd_vocab(settings, args) -> int:
    from voxledger.vocabulary.sqlite_store import SQLiteVocabularyStore

    store = SQLiteVocabularyStore(settings.dictionary_path, seed_defaults=settings.vocabulary.seed_defaults)
    await store.init()
    try:
        action = args.vocab_command
        if action == "list":
            terms = await (store.get_all_terms() if args.all else store.get_active_terms())
            _render_terms(terms, f"Vocabulary ({len(terms)} terms)")
            return 0

        if action == "add":
            known = {c.id for c in await store.get_categories()}
            if args.category not in known:
                console.print(
                    f"[red]Unknown category '{args.category}'. "
                    f"Choose one of: {', '.join(sorted(known))}[/red]"
                )
                return 1
            term = await store.add_term(args.spoken, args.mapped, args.category)
            console.print(f"[green]Added {term.id}: '{term.spoken}' → {term.mapped}[/green]")
            return 0

        if action == "remove":
            if await store.remove_term(args.term_id):
                console.print(f"[green]Removed {args.term_id}[/green]")
                return 0
            console.print(f"[red]No term with id {args.term_id}[/red]")
            return 1

        if action == "search":
            terms = await store.search_terms(args.query, limit=args.limit)
            _render_terms(terms, f"Matches for '{args.query}'")
            return 0
    finally:
        await store.close()
    return 1


async def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    settings, log = bootstrap(args)
    log.debug("voxledger.command", command=args.command)

    if args.command == "listen":
        return await _cmd_listen(settings, args, log)
    if args.command == "parse":
        return await _cmd_parse(settings, args)
    if args.command == "models":
        return _cmd_models(settings)
    if args.command == "download":
        return await _cmd_download(settings, args)
    if args.command == "vocab":
        return await _cmd_vocab(settings, args)
    return 1


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)
