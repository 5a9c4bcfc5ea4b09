"""CLI entrypoint for the rulebook retrieval engine."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import typer

from rulebook_rag.core.config import Settings
from rulebook_rag.core.logging import configure_logging
from rulebook_rag.engine import RetrievalEngine

app = typer.Typer(name="rbrag", help="Rulebook retrieval engine command-line interface")


def _load_settings(backend: Optional[str], db: Optional[Path]) -> Settings:
    settings = Settings.from_yaml()
    if backend:
        if backend not in ("lexical", "vector"):
            typer.echo(f"Unknown backend: {backend}", err=True)
            raise typer.Exit(code=2)
        settings.backend = backend
    if db:
        settings.db_path = db
    return settings


def _read_text(path: Optional[Path]) -> str:
    if path is None:
        return ""
    try:
        return path.expanduser().read_text(encoding="utf-8")
    except OSError as exc:
        typer.echo(f"Cannot read {path}: {exc}", err=True)
        raise typer.Exit(code=1)


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Root log level"),
    json_logs: bool = typer.Option(False, "--json-logs/--plain-logs", help="Emit JSON log lines"),
) -> None:
    configure_logging(log_level.upper(), use_json=json_logs, stream=sys.stderr)


@app.command()
def ingest(
    primary: Path = typer.Argument(..., help="Primary rulebook text file"),
    secondary: Optional[Path] = typer.Argument(None, help="Secondary (expansions) text file"),
    backend: Optional[str] = typer.Option(None, "--backend", help="lexical or vector"),
    db: Optional[Path] = typer.Option(None, "--db", help="Override index database path"),
) -> None:
    """Build or refresh the index for the given documents."""
    settings = _load_settings(backend, db)
    primary_text = _read_text(primary)
    secondary_text = _read_text(secondary)

    async def run() -> dict[str, object]:
        async with RetrievalEngine(settings) as engine:
            report = await engine.ingest(primary_text, secondary_text)
            return {
                "state": engine.state.value,
                "index_error": engine.index_error,
                "report": report.to_dict() if report else None,
            }

    result = asyncio.run(run())
    typer.echo(json.dumps(result, indent=2))
    if result["index_error"]:
        raise typer.Exit(code=1)


@app.command()
def query(
    question: str = typer.Argument(..., help="Question text"),
    primary: Path = typer.Option(..., "--primary", help="Primary rulebook text file"),
    secondary: Optional[Path] = typer.Option(None, "--secondary", help="Secondary (expansions) text file"),
    backend: Optional[str] = typer.Option(None, "--backend", help="lexical or vector"),
    db: Optional[Path] = typer.Option(None, "--db", help="Override index database path"),
    trace: bool = typer.Option(False, "--trace", help="Print the retrieval record instead of the context"),
) -> None:
    """Retrieve context for a question, indexing the documents first if needed."""
    settings = _load_settings(backend, db)
    primary_text = _read_text(primary)
    secondary_text = _read_text(secondary)

    async def run() -> object:
        async with RetrievalEngine(settings) as engine:
            await engine.ingest(primary_text, secondary_text)
            context = await engine.retrieve(question)
            if trace:
                record = engine.last_retrieval()
                return record.model_dump(mode="json") if record else None
            return context.model_dump() if context else None

    typer.echo(json.dumps(asyncio.run(run()), indent=2))


if __name__ == "__main__":
    app()
