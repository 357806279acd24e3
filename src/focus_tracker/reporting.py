"""Console summaries of locally recorded focus sessions."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Iterable, Mapping, Optional
from urllib.parse import urlsplit

from .db import database_connection, fetch_summary_by_day


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def print_daily_summary(self, day: datetime) -> None:
        with database_connection(self.db_path) as conn:
            rows = fetch_summary_by_day(conn, day)
        if not rows:
            print("No focus sessions recorded for the selected day.")
            return
        for line in render_daily_summary(day, rows):
            print(line)


def render_daily_summary(day: datetime, rows: list[Mapping]) -> list[str]:
    total = sum(row["seconds"] for row in rows)
    sessions = sum(row["sessions"] for row in rows)
    lines = [
        f"Summary for {day:%Y-%m-%d}",
        "-" * 40,
        f"Focused time: {format_duration(total)} across {sessions} sessions",
        "",
        "Top apps:",
    ]
    for app_name, seconds in aggregate_by_app(rows)[:5]:
        share = 100.0 * seconds / total if total else 0.0
        lines.append(f"  {app_name:<30} {format_duration(seconds)} {share:5.1f}%")

    sites = aggregate_by_site(rows)
    if sites:
        lines += ["", "Top sites:"]
        for host, seconds in sites[:5]:
            lines.append(f"  {host[:30]:<30} {format_duration(seconds)}")

    windows = aggregate_top_windows(rows)
    if windows:
        lines += ["", "Top windows / tabs:"]
        for app_name, window, seconds in windows[:5]:
            label = window or "(untitled)"
            lines.append(f"  {app_name[:12]:<12} {label[:45]:<45} {format_duration(seconds)}")
    return lines


def aggregate_by_app(rows: Iterable[Mapping]) -> list[tuple[str, float]]:
    totals: defaultdict[str, float] = defaultdict(float)
    for row in rows:
        totals[row["app_name"] or "Unknown"] += row["seconds"]
    return sorted(totals.items(), key=lambda item: item[1], reverse=True)


def aggregate_by_site(rows: Iterable[Mapping]) -> list[tuple[str, float]]:
    """Browser time grouped by host, ``www.`` dropped."""
    totals: defaultdict[str, float] = defaultdict(float)
    for row in rows:
        host = site_of(row["url"])
        if host:
            totals[host] += row["seconds"]
    return sorted(totals.items(), key=lambda item: item[1], reverse=True)


def aggregate_top_windows(rows: Iterable[Mapping]) -> list[tuple[str, Optional[str], float]]:
    totals: defaultdict[tuple[str, Optional[str]], float] = defaultdict(float)
    for row in rows:
        totals[(row["app_name"] or "Unknown", row["window_title"] or None)] += row["seconds"]
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [(app_name, window, seconds) for (app_name, window), seconds in ranked]


def site_of(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    host = urlsplit(url).hostname
    if not host:
        return None
    return host[4:] if host.startswith("www.") else host


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
