"""Tk overlay that displays translations at the top centre of the screen."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional, Tuple

try:  # pragma: no cover - executed during module import
    import pyperclip  # type: ignore
except ImportError:  # pragma: no cover - copy button disabled
    pyperclip = None  # type: ignore

try:
    import tkinter as tk
    from tkinter import font as tkfont
except ImportError as exc:  # pragma: no cover - tkinter ships with CPython on Windows
    raise SystemExit("tkinter is required to display the translation popup") from exc

from activation_controller import POLL_INTERVAL, PopupContent, Point, Rect, ScreenGeometry


logger = logging.getLogger("popup_translator.window")

POPUP_WIDTH = 480
POPUP_HEIGHT = 173
REVEAL_DURATION = 0.25
DISMISS_DURATION = 0.3
DISMISS_OVERSHOOT = 20
FRAME_INTERVAL_MS = 15

BACKGROUND = "#000000"
PANEL = "#0f0f0f"
BORDER = "#171717"
TEXT_COLOR = "#cccccc"
ERROR_COLOR = "#e06c75"
ACCENT = "#4b5bdc"

CursorSampler = Callable[[Point, ScreenGeometry, Optional[Rect]], None]


def ease_in_out(progress: float) -> float:
    progress = min(max(progress, 0.0), 1.0)
    if progress < 0.5:
        return 2 * progress * progress
    return 1 - (-2 * progress + 2) ** 2 / 2


def interpolate(start: Rect, end: Rect, progress: float) -> Rect:
    eased = ease_in_out(progress)
    return Rect(
        start.x + (end.x - start.x) * eased,
        start.y + (end.y - start.y) * eased,
        start.width + (end.width - start.width) * eased,
        start.height + (end.height - start.height) * eased,
    )


def to_tk_geometry(rect: Rect, screen: ScreenGeometry) -> str:
    """Convert a bottom-left-origin rectangle into a Tk geometry string."""

    width = max(int(round(rect.width)), 1)
    height = max(int(round(rect.height)), 1)
    x = int(round(rect.x))
    y = int(round(screen.height - (rect.y + rect.height)))
    return f"{width}x{height}{x:+d}{y:+d}"


def popup_frames(screen: ScreenGeometry, width: float = POPUP_WIDTH, height: float = POPUP_HEIGHT) -> Tuple[Rect, Rect, Rect]:
    """Return the collapsed, expanded and dismissed frames for ``screen``."""

    mid_x = screen.width / 2
    top = screen.height
    collapsed = Rect(mid_x, top, 0, 0)
    expanded = Rect(mid_x - width / 2, top - height, width, height)
    dismissed = Rect(mid_x, top + DISMISS_OVERSHOOT, 0, 0)
    return collapsed, expanded, dismissed


class PopupWindow:
    """Create and reuse a single borderless Tk window for the popup.

    Tk only runs on its own thread; the public methods queue commands that a
    periodic ``after`` callback applies. The same callback samples the cursor
    and hands it to ``cursor_sampler``.
    """

    def __init__(
        self,
        cursor_sampler: CursorSampler,
        *,
        poll_interval: float = POLL_INTERVAL,
        clipboard_module=pyperclip,
    ) -> None:
        self._cursor_sampler = cursor_sampler
        self._poll_ms = max(int(poll_interval * 1000), 10)
        self._clipboard = clipboard_module
        self._queue: "queue.Queue[tuple]" = queue.Queue()
        self._ready = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._window: Optional[tk.Tk] = None
        self._visible = False
        self._frame: Optional[Rect] = None
        self._content: Optional[PopupContent] = None
        self._languages_label: Optional[tk.Label] = None
        self._text_label: Optional[tk.Label] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._ready.clear()
        self._thread = threading.Thread(target=self._run_window, name="PopupWindow", daemon=True)
        self._thread.start()
        self._ready.wait()

    def stop(self) -> None:
        self._queue.put(("quit",))

    # Presenter interface -------------------------------------------------

    def reveal(self, content: PopupContent, on_done: Callable[[], None]) -> None:
        self._submit(("reveal", content, on_done), on_done)

    def update(self, content: PopupContent) -> None:
        self._submit(("update", content, None), None)

    def dismiss(self, on_done: Callable[[], None]) -> None:
        self._submit(("dismiss", None, on_done), on_done)

    def _submit(self, command: tuple, on_done: Optional[Callable[[], None]]) -> None:
        if self._thread is None or not self._thread.is_alive():
            logger.error("Popup window is not running; completing %s immediately", command[0])
            if on_done is not None:
                on_done()
            return
        self._queue.put(command)

    # Tk thread -----------------------------------------------------------

    def _screen(self) -> ScreenGeometry:
        assert self._window is not None
        return ScreenGeometry(self._window.winfo_screenwidth(), self._window.winfo_screenheight())

    def _run_window(self) -> None:
        window = tk.Tk()
        self._window = window
        window.title("Popup Translator")
        window.overrideredirect(True)
        window.attributes("-topmost", True)
        window.configure(bg=BACKGROUND)
        window.withdraw()

        default_font = tkfont.nametofont("TkDefaultFont")
        family = default_font.actual("family")
        small_font = tkfont.Font(family=family, size=9, weight="bold")
        text_font = tkfont.Font(family=family, size=12)

        panel = tk.Frame(window, bg=PANEL, highlightbackground=BORDER, highlightthickness=1)
        panel.pack(fill=tk.BOTH, expand=True, padx=15, pady=(20, 15))

        header = tk.Frame(panel, bg=PANEL)
        header.pack(fill=tk.X, padx=10, pady=(6, 0))

        languages_label = tk.Label(header, text="", font=small_font, bg=ACCENT, fg="white", padx=8, pady=2)
        languages_label.pack(side=tk.LEFT)
        self._languages_label = languages_label

        copy_button = tk.Button(
            header,
            text="⧉",
            font=small_font,
            bg=BACKGROUND,
            fg=TEXT_COLOR,
            activebackground=BORDER,
            activeforeground="white",
            relief=tk.FLAT,
            bd=0,
            cursor="hand2",
            command=self._copy_translation,
        )
        copy_button.pack(side=tk.RIGHT)

        text_label = tk.Label(
            panel,
            text="",
            font=text_font,
            bg=PANEL,
            fg=TEXT_COLOR,
            justify=tk.LEFT,
            anchor="nw",
            wraplength=POPUP_WIDTH - 80,
        )
        text_label.pack(fill=tk.BOTH, expand=True, padx=20, pady=(8, 16))
        self._text_label = text_label

        self._ready.set()
        self._pump()
        window.mainloop()
        self._window = None
        self._languages_label = None
        self._text_label = None

    def _pump(self) -> None:
        window = self._window
        if window is None:
            return
        while True:
            try:
                command = self._queue.get_nowait()
            except queue.Empty:
                break
            if command[0] == "quit":
                window.quit()
                return
            try:
                self._apply_command(*command)
            except Exception as exc:
                logger.exception("Popup command failed: %s", exc)
                # The controller stays busy until it hears back.
                on_done = command[2]
                if on_done is not None:
                    on_done()

        self._sample_cursor()
        window.after(self._poll_ms, self._pump)

    def _sample_cursor(self) -> None:
        assert self._window is not None
        screen = self._screen()
        pointer_x, pointer_y = self._window.winfo_pointerxy()
        position = Point(pointer_x, screen.height - pointer_y)
        bounds = self._frame if self._visible else None
        try:
            self._cursor_sampler(position, screen, bounds)
        except Exception as exc:  # pragma: no cover - sampler is the controller's post()
            logger.exception("Cursor sampler failed: %s", exc)

    def _apply_command(self, name: str, content: Optional[PopupContent], on_done) -> None:
        if name == "reveal":
            assert content is not None
            self._render(content)
            self._reveal(on_done)
        elif name == "update":
            assert content is not None
            self._render(content)
        elif name == "dismiss":
            self._dismiss(on_done)
        else:
            logger.debug("Unknown popup command %s", name)

    def _render(self, content: PopupContent) -> None:
        self._content = content
        if self._languages_label is not None:
            self._languages_label.configure(text=f"{content.source_lang} -> {content.target_lang}")
        if self._text_label is not None:
            self._text_label.configure(
                text=content.translated,
                fg=ERROR_COLOR if content.failed else TEXT_COLOR,
            )

    def _reveal(self, on_done: Callable[[], None]) -> None:
        assert self._window is not None
        collapsed, expanded, _ = popup_frames(self._screen())
        self._place(collapsed)
        self._window.deiconify()
        self._window.lift()
        self._visible = True
        self._animate(collapsed, expanded, REVEAL_DURATION, on_done)

    def _dismiss(self, on_done: Callable[[], None]) -> None:
        assert self._window is not None
        _, expanded, dismissed = popup_frames(self._screen())
        start = self._frame or expanded

        def finish() -> None:
            if self._window is not None:
                self._window.withdraw()
            self._visible = False
            self._frame = None
            on_done()

        self._animate(start, dismissed, DISMISS_DURATION, finish)

    def _animate(self, start: Rect, end: Rect, duration: float, on_done: Callable[[], None]) -> None:
        steps = max(int(duration * 1000 / FRAME_INTERVAL_MS), 1)

        def step(index: int) -> None:
            if self._window is None:
                on_done()
                return
            try:
                self._place(interpolate(start, end, index / steps))
            except Exception as exc:
                logger.exception("Popup animation failed: %s", exc)
                on_done()
                return
            if index >= steps:
                on_done()
                return
            self._window.after(FRAME_INTERVAL_MS, step, index + 1)

        step(1)

    def _place(self, rect: Rect) -> None:
        assert self._window is not None
        self._frame = rect
        self._window.geometry(to_tk_geometry(rect, self._screen()))

    def _copy_translation(self) -> None:
        if self._content is None or self._content.failed or self._clipboard is None:
            return
        try:
            self._clipboard.copy(self._content.translated)
        except Exception as exc:
            logger.error("Failed to copy translation: %s", exc)
