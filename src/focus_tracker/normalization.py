"""Utilities to normalize application names and window titles."""

from __future__ import annotations

import re
from typing import Optional

_BROWSER_SUFFIXES: dict[str, tuple[str, ...]] = {
    "msedge.exe": (" - Microsoft Edge",),
    "chrome.exe": (" - Google Chrome",),
    "firefox.exe": (" - Mozilla Firefox",),
    "brave.exe": (" - Brave",),
    "opera.exe": (" - Opera",),
    "arc.exe": (" - Arc",),
}

_APP_DISPLAY_NAMES: dict[str, str] = {
    "msedge.exe": "Microsoft Edge",
    "chrome.exe": "Google Chrome",
    "firefox.exe": "Firefox",
    "brave.exe": "Brave Browser",
    "opera.exe": "Opera",
    "arc.exe": "Arc",
    "code.exe": "Visual Studio Code",
    "explorer.exe": "File Explorer",
}


def is_browser(process_name: Optional[str]) -> bool:
    return bool(process_name) and process_name.lower() in _BROWSER_SUFFIXES


def display_app_name(process_name: Optional[str]) -> str:
    """Return a human-facing application name for an executable."""
    if not process_name:
        return "Unknown"
    known = _APP_DISPLAY_NAMES.get(process_name.lower())
    if known:
        return known
    stem = process_name[:-4] if process_name.lower().endswith(".exe") else process_name
    return stem or "Unknown"


def normalize_window_title(process_name: Optional[str], window_title: Optional[str]) -> Optional[str]:
    """Remove common browser suffixes to surface tab names."""
    if not window_title:
        return None
    normalized = window_title.strip()
    if not process_name:
        return normalized or None

    suffixes = _BROWSER_SUFFIXES.get(process_name.lower())
    if suffixes:
        for suffix in suffixes:
            if normalized.endswith(suffix):
                normalized = normalized[: -len(suffix)].rstrip(" -")
                break

    normalized = _strip_tab_count(normalized)
    normalized = re.sub(r"\s{2,}", " ", normalized).strip()
    return normalized or None


_EXTRA_TAB_COUNT_PATTERN = re.compile(r"\s+and\s+(\d+)\s+more\s+pages?", re.IGNORECASE)


def extract_tab_count(window_title: Optional[str]) -> Optional[int]:
    """Return the tab count hinted by "and N more pages", counting the visible tab."""
    if not window_title:
        return None
    match = _EXTRA_TAB_COUNT_PATTERN.search(window_title)
    if not match:
        return None
    return int(match.group(1)) + 1


def _strip_tab_count(value: str) -> str:
    cleaned = _EXTRA_TAB_COUNT_PATTERN.sub("", value)
    return cleaned.strip(" -|")
