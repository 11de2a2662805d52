"""Cliphy renderer — turns a completed queue item into readable text.

Two formats:
  text      boxed plain-text card (terminal output, ``cliphy show``)
  markdown  headings and bullet lists (``/api/summaries/{id}/export``)
"""

from __future__ import annotations

from typing import Literal

from .schemas import QueueItem, SummaryJson

RenderFormat = Literal["text", "markdown"]

_WIDTH = 50


def _rule(label: str, char: str = "─") -> str:
    head = f"{char * 3} {label} "
    return head + char * max(1, _WIDTH - len(head))


def _format_duration(seconds: int | None) -> str:
    if not seconds:
        return ""
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def _render_text(item: QueueItem, summary: SummaryJson) -> str:
    lines: list[str] = [_rule("CLIPHY", "═"), item.video_title or "Untitled Video", item.video_url]

    meta = []
    if item.video_channel:
        meta.append(f"Channel: {item.video_channel}")
    duration = _format_duration(item.video_duration_seconds)
    if duration:
        meta.append(f"Length: {duration}")
    if item.created_at:
        meta.append(item.created_at[:10])
    if meta:
        lines.append(" | ".join(meta))

    lines += ["", _rule("SUMMARY"), summary.summary]

    if summary.key_points:
        lines += ["", _rule("KEY POINTS")]
        lines += [f"• {kp}" for kp in summary.key_points]

    if summary.action_items:
        lines += ["", _rule("ACTION ITEMS")]
        lines += [f"→ {a}" for a in summary.action_items]

    if summary.timestamps:
        lines += ["", _rule("MOMENTS")]
        lines += [f"▸ {ts}" for ts in summary.timestamps]

    return "\n".join(lines)


def _render_markdown(item: QueueItem, summary: SummaryJson) -> str:
    lines: list[str] = [f"# {item.video_title or 'Untitled Video'}", ""]

    source = f"<{item.video_url}>"
    if item.video_channel:
        source = f"{item.video_channel}: {source}"
    lines += [source, "", "## Summary", "", summary.summary]

    if summary.key_points:
        lines += ["", "## Key points", ""]
        lines += [f"- {kp}" for kp in summary.key_points]

    if summary.action_items:
        lines += ["", "## Action items", ""]
        lines += [f"- [ ] {a}" for a in summary.action_items]

    if summary.timestamps:
        lines += ["", "## Timestamps", ""]
        lines += [f"- {ts}" for ts in summary.timestamps]

    return "\n".join(lines) + "\n"


def render_summary(item: QueueItem, fmt: RenderFormat = "text") -> str:
    """Render a completed item. Raises ValueError if it has no summary yet."""
    if item.summary_json is None:
        raise ValueError(f"item {item.id} has no summary (status={item.status})")
    if fmt == "markdown":
        return _render_markdown(item, item.summary_json)
    return _render_text(item, item.summary_json)
