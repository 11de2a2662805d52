"""Cliphy CLI — queue videos and read summaries from the terminal.

Usage:
    cliphy enqueue "https://youtube.com/watch?v=abc" --user me
    cliphy batch URL1 URL2 --user me
    cliphy list --user me
    cliphy show ITEM_ID --user me --markdown
    cliphy summarize "https://youtu.be/abc" --raw

Workflows run inline, so ``enqueue`` returns once the item is completed or
failed.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import NoReturn, Optional

import typer

from . import config
from .checks import run_checks
from .errors import CliphyError
from .ledger import PLAN_LIMITS
from .pipeline import DEFAULT_TITLE
from .renderer import render_summary
from .schemas import QueueAddRequest, QueueItem
from .service import Services, build_services
from .video_id import require_video_id

app = typer.Typer(add_completion=False, pretty_exceptions_enable=False)

_services: Optional[Services] = None


def _get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services(dispatcher="inline")
    return _services


def _fail(exc: CliphyError) -> NoReturn:
    typer.echo(f"Error [{exc.code}]: {exc.message}", err=True)
    raise typer.Exit(1)


def _line(item: QueueItem) -> str:
    title = item.video_title or item.video_id
    line = f"{item.id}  [{item.status.upper():10}] {title}"
    if item.error_message:
        line += f"  ({item.error_message})"
    return line


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Queue YouTube videos and get structured AI summaries."""
    sys.stdout.reconfigure(encoding="utf-8")
    level = "DEBUG" if verbose else config.get("CLIPHY_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@app.command()
def enqueue(
    url: str = typer.Argument(..., help="YouTube video URL"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    title: Optional[str] = typer.Option(None, help="Video title"),
    channel: Optional[str] = typer.Option(None, help="Channel name"),
    duration: Optional[int] = typer.Option(None, min=0, help="Video length in seconds"),
) -> None:
    """Queue one video for summarization."""
    try:
        result = _get_services().queue.enqueue(user, url, title, channel, duration)
    except CliphyError as exc:
        _fail(exc)
    typer.echo(f"Queued at position {result.position}")
    typer.echo(_line(result.item))


@app.command()
def batch(
    urls: list[str] = typer.Argument(..., help="Up to 10 YouTube URLs"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
) -> None:
    """Queue several videos at once (pro plan)."""
    videos = [QueueAddRequest(video_url=url) for url in urls]
    try:
        result = _get_services().queue.enqueue_batch(user, videos)
    except CliphyError as exc:
        _fail(exc)

    typer.echo(f"Queued {len(result.items)} of {len(urls)} video(s)")
    for item in result.items:
        typer.echo(f"  {_line(item)}")
    for video_id, reason in result.skipped:
        typer.echo(f"  skipped {video_id}: {reason}")
    if result.rate_limited:
        typer.echo("Daily limit reached; remaining videos were not queued.", err=True)


@app.command("list")
def list_items(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    status: Optional[str] = typer.Option(None, help="Filter by status"),
) -> None:
    """List queue items, newest first."""
    try:
        items = _get_services().queue.list_items(user, status)
    except CliphyError as exc:
        _fail(exc)
    if not items:
        typer.echo("Queue is empty. Add a video with: cliphy enqueue <URL> --user <USER>")
        raise typer.Exit()
    for item in items:
        typer.echo(_line(item))


@app.command()
def show(
    item_id: str = typer.Argument(..., help="Queue item id"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    markdown: bool = typer.Option(False, "--markdown", help="Render as markdown"),
    raw: bool = typer.Option(False, "--raw", help="Output raw JSON"),
) -> None:
    """Show a queue item and its summary."""
    try:
        item = _get_services().queue.get(user, item_id)
    except CliphyError as exc:
        _fail(exc)

    if raw:
        typer.echo(json.dumps(item.to_api(), indent=2, ensure_ascii=False))
    elif item.summary_json is None:
        typer.echo(_line(item))
    else:
        typer.echo(render_summary(item, "markdown" if markdown else "text"))


@app.command()
def retry(
    item_id: str = typer.Argument(..., help="Queue item id"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
) -> None:
    """Retry a failed item."""
    try:
        item = _get_services().queue.retry(user, item_id)
    except CliphyError as exc:
        _fail(exc)
    typer.echo(_line(item))


@app.command()
def delete(
    item_id: str = typer.Argument(..., help="Queue item id"),
    user: str = typer.Option(..., "--user", "-u", help="User id"),
) -> None:
    """Delete a pending or failed item."""
    try:
        _get_services().queue.delete(user, item_id)
    except CliphyError as exc:
        _fail(exc)
    typer.echo(f"Deleted {item_id}")


@app.command()
def usage(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
) -> None:
    """Show today's usage against the plan limit."""
    info = _get_services().queue.usage(user)
    typer.echo(f"Plan: {info.plan}")
    typer.echo(f"Used today: {info.used}/{info.limit}")
    typer.echo(f"Resets at: {info.reset_at}")
    typer.echo(f"Time saved: {info.total_time_saved_seconds // 60} min")


@app.command()
def drain() -> None:
    """Process every item still pending (e.g. after a crash)."""
    count = _get_services().queue.redispatch_pending()
    typer.echo(f"Processed {count} pending item(s)")


@app.command()
def plan(
    user: str = typer.Argument(..., help="User id"),
    tier: str = typer.Argument(..., help="free or pro"),
) -> None:
    """Set a user's plan."""
    if tier not in PLAN_LIMITS:
        typer.echo(f"Error: plan must be one of {', '.join(PLAN_LIMITS)}", err=True)
        raise typer.Exit(1)
    _get_services().store.set_plan(user, tier)
    typer.echo(f"{user} is now on the {tier} plan ({PLAN_LIMITS[tier]} summaries/day)")


@app.command()
def summarize(
    url: str = typer.Argument(..., help="YouTube video URL"),
    title: Optional[str] = typer.Option(None, help="Video title"),
    raw: bool = typer.Option(False, "--raw", help="Output raw JSON instead of rendered text"),
    check: bool = typer.Option(False, "--check", help="Run quality checks on the result"),
) -> None:
    """Summarize one video without queueing it."""
    services = _get_services()
    try:
        video_id = require_video_id(url)
        transcript = services.acquirer.acquire(video_id)
        outcome = services.summarizer.generate(transcript, title or DEFAULT_TITLE)
    except CliphyError as exc:
        _fail(exc)

    if raw:
        typer.echo(json.dumps(outcome.summary.model_dump(by_alias=True), indent=2, ensure_ascii=False))
    else:
        item = QueueItem(
            id=video_id,
            user_id="",
            video_id=video_id,
            video_url=url,
            video_title=title,
            status="completed",
            summary_json=outcome.summary,
        )
        typer.echo(render_summary(item))

    if check:
        typer.echo()
        for result in run_checks(outcome.summary, outcome.retried):
            mark = "PASS" if result.passed else "FAIL"
            typer.echo(f"  {mark}  {result.name}: {result.value} (expected {result.expected})")


if __name__ == "__main__":
    app()
