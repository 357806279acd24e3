"""Lock, power and foreground notifications from Windows, as recorder signals."""

from __future__ import annotations

import ctypes
import logging
import threading
from typing import Callable, Optional

from .recorder import Signal

logger = logging.getLogger(__name__)

WM_QUIT = 0x0012
WM_POWERBROADCAST = 0x0218
WM_WTSSESSION_CHANGE = 0x02B1
WTS_SESSION_LOCK = 0x7
WTS_SESSION_UNLOCK = 0x8
PBT_APMSUSPEND = 0x4
PBT_APMRESUMESUSPEND = 0x7
PBT_APMRESUMEAUTOMATIC = 0x12
EVENT_SYSTEM_FOREGROUND = 0x0003
WINEVENT_OUTOFCONTEXT = 0x0000
WINEVENT_SKIPOWNPROCESS = 0x0002
NOTIFY_FOR_THIS_SESSION = 0

_SESSION_SIGNALS = {
    WTS_SESSION_LOCK: Signal.SCREEN_LOCKED,
    WTS_SESSION_UNLOCK: Signal.SCREEN_UNLOCKED,
}
_POWER_SIGNALS = {
    PBT_APMSUSPEND: Signal.WILL_SLEEP,
    PBT_APMRESUMESUSPEND: Signal.DID_WAKE,
    PBT_APMRESUMEAUTOMATIC: Signal.DID_WAKE,
}


def signal_for_message(message: int, wparam: int) -> Optional[Signal]:
    """Map a window message to the recorder signal it stands for, if any."""
    if message == WM_WTSSESSION_CHANGE:
        return _SESSION_SIGNALS.get(wparam)
    if message == WM_POWERBROADCAST:
        return _POWER_SIGNALS.get(wparam)
    return None


class WindowsSignalSource:
    """Forwards foreground, lock and power notifications to ``dispatch``.

    A hidden top-level window receives session-change and power broadcasts,
    and an out-of-context WinEvent hook reports foreground changes. Both are
    serviced by a message loop on a dedicated thread.
    """

    def __init__(self, dispatch: Callable[[Signal], object]) -> None:
        self._dispatch = dispatch
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._thread_id: Optional[int] = None

    def start(self, timeout: float = 5.0) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._ready.clear()
            thread = threading.Thread(target=self._run, name="os-signals", daemon=True)
            self._thread = thread
            thread.start()
        if not self._ready.wait(timeout):
            logger.warning("OS signal listener did not come up within %.0fs.", timeout)

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            thread, self._thread = self._thread, None
        if thread is None:
            return
        thread_id = self._thread_id
        if thread_id is not None:
            ctypes.windll.user32.PostThreadMessageW(thread_id, WM_QUIT, 0, 0)  # type: ignore[attr-defined]
        thread.join(timeout=timeout)
        logger.info("OS signal listener stopped.")

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    def emit(self, signal: Signal) -> None:
        try:
            self._dispatch(signal)
        except Exception:
            logger.exception("Failed to handle %s signal", signal.value)

    def _run(self) -> None:
        from ctypes import wintypes

        user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
        wtsapi32 = ctypes.windll.wtsapi32  # type: ignore[attr-defined]

        lresult = ctypes.c_ssize_t
        wndproc_type = ctypes.WINFUNCTYPE(  # type: ignore[attr-defined]
            lresult, wintypes.HWND, wintypes.UINT, wintypes.WPARAM, wintypes.LPARAM
        )
        wineventproc_type = ctypes.WINFUNCTYPE(  # type: ignore[attr-defined]
            None,
            wintypes.HANDLE,
            wintypes.DWORD,
            wintypes.HWND,
            wintypes.LONG,
            wintypes.LONG,
            wintypes.DWORD,
            wintypes.DWORD,
        )

        class WNDCLASSW(ctypes.Structure):
            _fields_ = [
                ("style", wintypes.UINT),
                ("lpfnWndProc", wndproc_type),
                ("cbClsExtra", ctypes.c_int),
                ("cbWndExtra", ctypes.c_int),
                ("hInstance", wintypes.HINSTANCE),
                ("hIcon", wintypes.HICON),
                ("hCursor", wintypes.HANDLE),
                ("hbrBackground", wintypes.HBRUSH),
                ("lpszMenuName", wintypes.LPCWSTR),
                ("lpszClassName", wintypes.LPCWSTR),
            ]

        user32.DefWindowProcW.restype = lresult
        user32.DefWindowProcW.argtypes = [
            wintypes.HWND, wintypes.UINT, wintypes.WPARAM, wintypes.LPARAM
        ]
        user32.CreateWindowExW.restype = wintypes.HWND
        user32.CreateWindowExW.argtypes = [
            wintypes.DWORD, wintypes.LPCWSTR, wintypes.LPCWSTR, wintypes.DWORD,
            ctypes.c_int, ctypes.c_int, ctypes.c_int, ctypes.c_int,
            wintypes.HWND, wintypes.HMENU, wintypes.HINSTANCE, wintypes.LPVOID,
        ]
        user32.SetWinEventHook.restype = wintypes.HANDLE
        user32.SetWinEventHook.argtypes = [
            wintypes.DWORD, wintypes.DWORD, wintypes.HMODULE, wineventproc_type,
            wintypes.DWORD, wintypes.DWORD, wintypes.DWORD,
        ]
        user32.UnhookWinEvent.argtypes = [wintypes.HANDLE]
        user32.DestroyWindow.argtypes = [wintypes.HWND]
        wtsapi32.WTSRegisterSessionNotification.argtypes = [wintypes.HWND, wintypes.DWORD]
        wtsapi32.WTSUnRegisterSessionNotification.argtypes = [wintypes.HWND]
        kernel32.GetModuleHandleW.restype = wintypes.HMODULE

        def window_proc(hwnd, message, wparam, lparam):
            signal = signal_for_message(message, wparam)
            if signal is not None:
                self.emit(signal)
                if message == WM_POWERBROADCAST:
                    return 1
            return user32.DefWindowProcW(hwnd, message, wparam, lparam)

        def on_foreground(hook, event, hwnd, id_object, id_child, event_thread, event_time):
            self.emit(Signal.APP_ACTIVATED)

        # Both callbacks must stay referenced for as long as the loop runs.
        wnd_proc = wndproc_type(window_proc)
        foreground_proc = wineventproc_type(on_foreground)
        hinstance = kernel32.GetModuleHandleW(None)
        window_class = WNDCLASSW(
            lpfnWndProc=wnd_proc, hInstance=hinstance, lpszClassName="FocusTrackerSignals"
        )
        # Fails harmlessly when the class survives from an earlier start().
        user32.RegisterClassW(ctypes.byref(window_class))
        hwnd = user32.CreateWindowExW(
            0, "FocusTrackerSignals", "FocusTracker", 0, 0, 0, 0, 0,
            None, None, hinstance, None,
        )
        if not hwnd:
            logger.error("Could not create the signal window: %s", ctypes.WinError())  # type: ignore[attr-defined]
            self._ready.set()
            return

        hook = user32.SetWinEventHook(
            EVENT_SYSTEM_FOREGROUND,
            EVENT_SYSTEM_FOREGROUND,
            None,
            foreground_proc,
            0,
            0,
            WINEVENT_OUTOFCONTEXT | WINEVENT_SKIPOWNPROCESS,
        )
        if not hook:
            logger.warning("Foreground hook unavailable; app switches rely on polling.")
        registered = bool(wtsapi32.WTSRegisterSessionNotification(hwnd, NOTIFY_FOR_THIS_SESSION))
        if not registered:
            logger.warning("Session notifications unavailable; locks rely on the idle check.")

        self._thread_id = kernel32.GetCurrentThreadId()
        self._ready.set()
        logger.info("OS signal listener started.")
        msg = wintypes.MSG()
        try:
            while user32.GetMessageW(ctypes.byref(msg), None, 0, 0) > 0:
                user32.TranslateMessage(ctypes.byref(msg))
                user32.DispatchMessageW(ctypes.byref(msg))
        finally:
            if registered:
                wtsapi32.WTSUnRegisterSessionNotification(hwnd)
            if hook:
                user32.UnhookWinEvent(hook)
            user32.DestroyWindow(hwnd)
            self._thread_id = None
