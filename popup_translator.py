"""Floating translation popup: reveal with the top hot corner or a global hotkey."""

from __future__ import annotations

import argparse
import contextlib
import logging
import sys
import tempfile
import threading
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import IO, Optional

from activation_controller import ActivationController
from clipboard_bridge import ClipboardBridge
from hotkey_manager import HOTKEY_CHOICES, HotkeyBinding, HotkeyMonitor, chord_for_binding
from preferences import PREFERENCES_FILE, Preferences, load_preferences, save_preferences
from selection_probe import SelectionProbe, create_accessibility_backend
from sound_player import SoundPlayer
from translation_service import TranslationClient


LOG_FILE_NAME = "popup_translator.log"
LOG_MAX_BYTES = 2_097_152
LOG_BACKUP_COUNT = 3

logger = logging.getLogger("popup_translator")


def configure_logging(verbose: bool = False, log_dir: Optional[Path] = None) -> logging.Logger:
    """Install the rotating file and console handlers once."""

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if logger.handlers:
        return logger

    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    log_dir = log_dir or PREFERENCES_FILE.parent
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as exc:
        print(f"File logging disabled: {exc}", file=sys.stderr)
    else:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)
    return logger


class SingleInstanceError(RuntimeError):
    """Raised when another instance of the application is already running."""


def _lock_exclusive(handle: IO[str]) -> None:
    """Take a non-blocking exclusive lock on ``handle``; raises ``OSError`` if held."""

    if sys.platform == "win32":  # pragma: no cover - platform specific
        import msvcrt  # type: ignore

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
    else:  # pragma: no cover - exercised on non-Windows platforms
        import fcntl  # type: ignore

        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock(handle: IO[str]) -> None:
    if sys.platform == "win32":  # pragma: no cover - platform specific
        import msvcrt  # type: ignore

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:  # pragma: no cover - exercised on non-Windows platforms
        import fcntl  # type: ignore

        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class SingleInstanceGuard:
    """Keeps one popup translator per session by locking ``<lock_dir>/<name>.lock``.

    Only the holder removes the lock file; a rejected instance leaves it alone.
    """

    def __init__(self, name: str, lock_dir: Optional[Path] = None) -> None:
        self.lock_path = Path(lock_dir or tempfile.gettempdir()) / f"{name}.lock"
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if self._handle is not None:
            return
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.lock_path, "a+")
        try:
            _lock_exclusive(handle)
        except OSError as exc:
            handle.close()
            raise SingleInstanceError(f"Another instance holds {self.lock_path}") from exc
        self._handle = handle
        logger.debug("Acquired instance lock %s", self.lock_path)

    def release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            with contextlib.suppress(OSError):
                _unlock(handle)
        finally:
            handle.close()
        with contextlib.suppress(OSError):
            self.lock_path.unlink()

    def __enter__(self) -> "SingleInstanceGuard":
        self.acquire()
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.release()


class PopupTranslatorApp:
    """Wires the popup window, hotkey monitor and capture services to the controller."""

    def __init__(
        self,
        preferences: Preferences,
        *,
        preferences_path: Optional[Path] = None,
        popup=None,
        translator=None,
        selection_probe: Optional[SelectionProbe] = None,
        clipboard_bridge: Optional[ClipboardBridge] = None,
        hotkey_monitor: Optional[HotkeyMonitor] = None,
        sound_player: Optional[SoundPlayer] = None,
        scheduler=None,
        spawn=None,
    ) -> None:
        self._preferences = preferences
        self._preferences_path = preferences_path
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        timing = preferences.timing

        if popup is None:
            from popup_window import PopupWindow

            popup = PopupWindow(self._on_cursor_sample, poll_interval=timing.poll_interval)
        self._popup = popup

        if hotkey_monitor is None:
            hotkey_monitor = HotkeyMonitor(self._on_hotkey)

        extra = {}
        if scheduler is not None:
            extra["scheduler"] = scheduler
        if spawn is not None:
            extra["spawn"] = spawn

        self._controller = ActivationController(
            popup=popup,
            selection_probe=selection_probe
            or SelectionProbe(create_accessibility_backend(), settle_delay=timing.probe_settle_delay),
            clipboard_bridge=clipboard_bridge
            or ClipboardBridge(
                key_event_delay=timing.key_event_delay, settle_delay=timing.clipboard_settle_delay
            ),
            translator=translator
            or TranslationClient(preferences.endpoint, timeout=timing.request_timeout),
            hotkey_monitor=hotkey_monitor,
            sound_player=sound_player or SoundPlayer(enabled=preferences.sound_enabled),
            source_language=preferences.source_language,
            target_language=preferences.target_language,
            corner_margins=preferences.hot_corner,
            auto_hide_delay=timing.auto_hide_delay,
            **extra,
        )

    @property
    def preferences(self) -> Preferences:
        return self._preferences

    @property
    def controller(self) -> ActivationController:
        return self._controller

    def _on_cursor_sample(self, position, screen, popup_bounds) -> None:
        self._controller.post_cursor_tick(position, screen, popup_bounds)

    def _on_hotkey(self) -> None:
        self._controller.notify_hotkey()

    # Lifecycle -------------------------------------------------------------

    def start(self, *, tray_controller=None) -> None:
        """Run until :meth:`stop` is called."""

        start_popup = getattr(self._popup, "start", None)
        if start_popup is not None:
            start_popup()
        self._controller.apply_hotkey_binding(self._preferences.hotkey)
        self._controller.start()
        if tray_controller is not None:
            tray_controller.start()

        chord = self._describe_hotkey()
        logger.info("Popup Translator is running. Move the cursor to the top centre or press %s.", chord)
        try:
            self._stop_event.wait()
        except KeyboardInterrupt:  # pragma: no cover - manual console interruption
            self.stop()
        finally:
            if tray_controller is not None:
                tray_controller.stop()
            self._controller.stop()
            stop_popup = getattr(self._popup, "stop", None)
            if stop_popup is not None:
                stop_popup()
            logger.info("Popup Translator stopped")

    def stop(self) -> None:
        self._stop_event.set()

    def _describe_hotkey(self) -> str:
        chord = chord_for_binding(self._preferences.hotkey)
        return chord.display if chord is not None else "no hotkey (disabled)"

    # Settings --------------------------------------------------------------

    def set_hotkey_enabled(self, enabled: bool) -> None:
        self._update_hotkey(replace(self._preferences.hotkey, enabled=enabled))

    def select_hotkey(self, index: int) -> None:
        if not 0 <= index < len(HOTKEY_CHOICES):
            raise ValueError(f"Unknown hotkey index: {index}")
        self._update_hotkey(replace(self._preferences.hotkey, key_index=index))

    def set_source_language(self, language: str) -> None:
        self._update_languages(language, self._preferences.target_language)

    def set_target_language(self, language: str) -> None:
        self._update_languages(self._preferences.source_language, language)

    def swap_languages(self) -> None:
        self._update_languages(self._preferences.target_language, self._preferences.source_language)

    def _update_hotkey(self, binding: HotkeyBinding) -> None:
        with self._lock:
            self._preferences = self._preferences.with_hotkey(binding)
            if not save_preferences(self._preferences, self._preferences_path):
                logger.warning("Hotkey change applies to this session only")
        self._controller.apply_hotkey_binding(binding)

    def _update_languages(self, source: str, target: str) -> None:
        with self._lock:
            self._preferences = self._preferences.with_languages(source, target)
            save_preferences(self._preferences, self._preferences_path)
        self._controller.set_languages(source, target)


def parse_args(argv: Optional[list] = None, preferences: Optional[Preferences] = None) -> argparse.Namespace:
    preferences = preferences or Preferences()
    parser = argparse.ArgumentParser(
        description="Translate the selected text from a popup at the top of the screen."
    )
    parser.add_argument(
        "--src",
        default=preferences.source_language,
        help="Source language code (default: last saved or ru).",
    )
    parser.add_argument(
        "--dest",
        default=preferences.target_language,
        help="Target language code (default: last saved or en).",
    )
    parser.add_argument(
        "--endpoint",
        default=preferences.endpoint,
        help="Translation endpoint URL.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> None:
    try:
        with SingleInstanceGuard("popup_translator"):
            preferences = load_preferences()
            args = parse_args(argv, preferences)
            configure_logging(args.verbose)
            preferences = replace(
                preferences.with_languages(args.src, args.dest), endpoint=args.endpoint
            )
            save_preferences(preferences)

            from tray_icon import SystemTrayController

            app = PopupTranslatorApp(preferences)
            app.start(tray_controller=SystemTrayController(app))
    except SingleInstanceError:
        configure_logging()
        logger.error("Popup Translator is already running.")


if __name__ == "__main__":
    main()
