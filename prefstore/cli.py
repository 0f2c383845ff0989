from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Iterator
from pathlib import Path

import typer

from . import app as session
from .backend import build_backend
from .config import Settings
from .errors import CryptoError, PersistenceError
from .logging import configure_logging
from .state.codec import dumps, stats_to_dict
from .state.store import Store
from .transport.gist import create_gist as create_remote_gist

app = typer.Typer(help="Per-user preference store utility")


def _settings(**overrides: object) -> Settings:
    return Settings(**{k: v for k, v in overrides.items() if v is not None})


def _fail(exc: Exception) -> None:
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _read_events(path: str) -> Iterator[dict]:
    stream = sys.stdin if path == "-" else Path(path).open(encoding="utf-8")
    try:
        for lineno, line in enumerate(stream, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                raise typer.BadParameter(f"line {lineno} is not valid JSON") from None
            if not isinstance(event, dict):
                raise typer.BadParameter(f"line {lineno} is not a JSON object")
            yield event
    finally:
        if stream is not sys.stdin:
            stream.close()


@app.callback()
def main() -> None:
    configure_logging()


@app.command()
def apply(
    events_file: str = typer.Argument("-", help="JSON lines of events, '-' for stdin"),
    gist_id: str | None = typer.Option(None, help="Gist holding the preference document"),
    rate_limit: int | None = typer.Option(None, help="Events admitted per user per window"),
    verbose: bool = typer.Option(False, help="Print effective settings"),
) -> None:
    """Apply events to the stored preferences and save the result."""
    settings = _settings(gist_id=gist_id, rate_limit=rate_limit)
    if verbose:
        typer.echo(settings.model_dump_json(indent=2))
    events = list(_read_events(events_file))
    try:
        report = asyncio.run(session.run(settings=settings, events=events))
    except (ValueError, PersistenceError, CryptoError) as exc:
        _fail(exc)
    summary = {outcome.value: count for outcome, count in sorted(report.outcomes.items())}
    typer.echo(json.dumps({"outcomes": summary, "saved": report.saved}))


async def _load_mutate_save(settings: Settings, mutate) -> object:  # noqa: ANN001
    backend = build_backend(settings)
    store: Store = await backend.load()
    result = mutate(store)
    await backend.save(store)
    return result


@app.command("archive-stats")
def archive_stats(gist_id: str | None = typer.Option(None, help="Gist ID")) -> None:
    """Move every user's current week of statistics into their history."""
    settings = _settings(gist_id=gist_id)
    try:
        archived = asyncio.run(_load_mutate_save(settings, lambda store: store.archive_all_weeks()))
    except (ValueError, PersistenceError, CryptoError) as exc:
        _fail(exc)
    typer.echo(f"Archived stats for {len(archived)} user(s)")


@app.command("prune-history")
def prune_history(
    days: int | None = typer.Option(None, help="Keep seen items newer than this many days"),
    gist_id: str | None = typer.Option(None, help="Gist ID"),
) -> None:
    """Forget seen-item history older than the retention period."""
    settings = _settings(gist_id=gist_id, seen_retention_days=days)
    try:
        removed = asyncio.run(
            _load_mutate_save(settings, lambda store: store.prune_seen(settings.seen_retention_days))
        )
    except (ValueError, PersistenceError, CryptoError) as exc:
        _fail(exc)
    typer.echo(f"Removed {removed} seen item(s)")


@app.command()
def stats(
    key: str = typer.Argument(..., help="User key"),
    gist_id: str | None = typer.Option(None, help="Gist ID"),
) -> None:
    """Print a user's all-time statistics as JSON."""
    settings = _settings(gist_id=gist_id)
    try:
        store = asyncio.run(build_backend(settings).load())
    except (ValueError, PersistenceError, CryptoError) as exc:
        _fail(exc)
    record = store.get(key)
    if record is None:
        typer.echo(f"Unknown user {key}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(stats_to_dict(record.all_time_stats()), indent=2))


@app.command("create-gist")
def create_gist(
    description: str = typer.Option("Preference store", help="Gist description"),
) -> None:
    """Create a private gist holding an empty preference document."""
    settings = _settings()
    try:
        gist_id = asyncio.run(
            create_remote_gist(
                settings.github_token.get_secret_value(),
                description,
                dumps({}),
                filename=settings.gist_filename,
                api_url=settings.gist_api_url,
                timeout_s=settings.request_timeout_s,
            )
        )
    except (ValueError, PersistenceError) as exc:
        _fail(exc)
    typer.echo(gist_id)


if __name__ == "__main__":  # pragma: no cover
    app()
