"""Foreground context sampling for Windows."""

from __future__ import annotations

import ctypes
import logging
import sys
from ctypes import wintypes
from typing import Optional, Protocol

import psutil

from .errors import FocusTrackerError, SamplingError
from .models import FocusContext
from .normalization import (
    display_app_name,
    extract_tab_count,
    is_browser,
    normalize_window_title,
)

logger = logging.getLogger(__name__)

SM_CXSCREEN = 0
SM_CYSCREEN = 1


class ContextSampler(Protocol):
    def sample(self) -> FocusContext:
        """Return the current foreground context or raise :class:`SamplingError`."""


class IdleSource(Protocol):
    def seconds_since_input(self) -> float:
        """Return seconds since the last keyboard/mouse input."""


class WindowsIdleDetector:
    """Detects idle state using Win32 APIs."""

    class LASTINPUTINFO(ctypes.Structure):
        _fields_ = [("cbSize", wintypes.UINT), ("dwTime", wintypes.DWORD)]

    def __init__(self) -> None:
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        self._kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]

    def seconds_since_input(self) -> float:
        last_input = self.LASTINPUTINFO()
        last_input.cbSize = ctypes.sizeof(last_input)
        if not self._user32.GetLastInputInfo(ctypes.byref(last_input)):
            raise SamplingError(str(ctypes.WinError()))
        # dwTime wraps every ~49 days; GetTickCount is 32-bit as well.
        elapsed = (self._kernel32.GetTickCount() - last_input.dwTime) & 0xFFFFFFFF
        return elapsed / 1000.0


class WindowsContextSampler:
    """Retrieves the foreground window context and owning process."""

    class RECT(ctypes.Structure):
        _fields_ = [
            ("left", wintypes.LONG),
            ("top", wintypes.LONG),
            ("right", wintypes.LONG),
            ("bottom", wintypes.LONG),
        ]

    def __init__(self) -> None:
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]

    def sample(self) -> FocusContext:
        hwnd = self._user32.GetForegroundWindow()
        if not hwnd:
            raise SamplingError("No foreground window")

        length = self._user32.GetWindowTextLengthW(hwnd)
        buffer = ctypes.create_unicode_buffer(length + 1)
        self._user32.GetWindowTextW(hwnd, buffer, length + 1)
        raw_title = buffer.value.strip()

        pid = wintypes.DWORD()
        self._user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
        if not pid.value:
            raise SamplingError("Foreground window has no owning process")
        process_name, exe_path = self._describe_process(pid.value)

        title = normalize_window_title(process_name, raw_title) or ""
        browser = is_browser(process_name)
        return FocusContext(
            app_name=display_app_name(process_name),
            window_title=title,
            bundle_id=exe_path or (process_name.lower() if process_name else None),
            tab_title=(title or None) if browser else None,
            tab_count=extract_tab_count(raw_title) if browser else None,
            is_full_screen=self._is_full_screen(hwnd),
            is_minimized=bool(self._user32.IsIconic(hwnd)),
        )

    @staticmethod
    def _describe_process(pid: int) -> tuple[str, Optional[str]]:
        try:
            process = psutil.Process(pid)
            name = process.name()
        except (psutil.Error, ProcessLookupError) as exc:
            raise SamplingError(f"Cannot inspect process {pid}: {exc}") from exc
        try:
            exe_path: Optional[str] = process.exe() or None
        except psutil.Error:
            exe_path = None
        return name, exe_path

    def _is_full_screen(self, hwnd: int) -> bool:
        rect = self.RECT()
        if not self._user32.GetWindowRect(hwnd, ctypes.byref(rect)):
            return False
        width = self._user32.GetSystemMetrics(SM_CXSCREEN)
        height = self._user32.GetSystemMetrics(SM_CYSCREEN)
        return (
            rect.left <= 0
            and rect.top <= 0
            and rect.right - rect.left >= width
            and rect.bottom - rect.top >= height
        )


def battery_saver_active() -> bool:
    """True when running on battery, which stretches the polling interval."""
    try:
        battery = psutil.sensors_battery()
    except (AttributeError, OSError, NotImplementedError):
        return False
    if battery is None:
        return False
    return not battery.power_plugged


def create_default_sampler() -> tuple[ContextSampler, IdleSource]:
    if sys.platform != "win32":
        raise FocusTrackerError(
            f"Foreground sampling is only implemented for Windows (got {sys.platform})."
        )
    return WindowsContextSampler(), WindowsIdleDetector()
