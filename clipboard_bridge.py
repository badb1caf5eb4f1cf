"""Clipboard based fallback for capturing the foreground application's selection."""

from __future__ import annotations

import logging
import sys
import time
from typing import Callable, Optional

from text_normalizer import normalize

try:  # pragma: no cover - executed during module import
    import pyperclip  # type: ignore
except ImportError:  # pragma: no cover - handled in __init__
    pyperclip = None  # type: ignore

try:  # pragma: no cover - optional dependency, needs privileges on some platforms
    import keyboard  # type: ignore
except Exception:  # pragma: no cover - handled in __init__
    keyboard = None  # type: ignore


logger = logging.getLogger("popup_translator.clipboard")

KEY_EVENT_DELAY = 0.01
CLIPBOARD_SETTLE_DELAY = 0.1
COPY_MODIFIER = "command" if sys.platform == "darwin" else "ctrl"
COPY_KEY = "c"


class ClipboardBridge:
    """Clears the clipboard, sends the copy shortcut and reads the result back.

    The foreground application updates the clipboard asynchronously, so a
    ``None`` result after the settle delay is an expected outcome.
    """

    def __init__(
        self,
        *,
        clipboard_module=pyperclip,
        keyboard_module=keyboard,
        key_event_delay: float = KEY_EVENT_DELAY,
        settle_delay: float = CLIPBOARD_SETTLE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if clipboard_module is None:
            raise RuntimeError(
                "The 'pyperclip' package is required. Install it with 'pip install pyperclip'."
            )
        if keyboard_module is None:
            raise RuntimeError(
                "The 'keyboard' package is required. Install it with 'pip install keyboard'."
            )
        self._clipboard = clipboard_module
        self._keyboard = keyboard_module
        self._key_event_delay = key_event_delay
        self._settle_delay = settle_delay
        self._sleep = sleep

    def capture(self) -> Optional[str]:
        try:
            self._clipboard.copy("")
        except Exception as exc:
            logger.warning("Failed to clear clipboard: %s", exc)
            return None

        try:
            self._send_copy_shortcut()
        except Exception as exc:
            logger.error("Failed to send copy shortcut: %s", exc)
            return None
        self._sleep(self._settle_delay)

        try:
            text = self._clipboard.paste()
        except Exception as exc:
            if pyperclip is not None and isinstance(exc, pyperclip.PyperclipException):
                logger.error("Failed to read clipboard: %s", exc)
            else:
                logger.error("Unexpected error while accessing clipboard: %s", exc)
            return None

        if not text:
            return None
        text = normalize(text)
        return text or None

    def _send_copy_shortcut(self) -> None:
        """Press modifier, press key, release key, release modifier.

        Keys that went down are released in reverse order even when a later
        event fails, so the modifier never stays held.
        """

        pressed = []
        try:
            for key in (COPY_MODIFIER, COPY_KEY):
                if pressed:
                    self._sleep(self._key_event_delay)
                self._keyboard.press(key)
                pressed.append(key)
        finally:
            for key in reversed(pressed):
                self._sleep(self._key_event_delay)
                try:
                    self._keyboard.release(key)
                except Exception as exc:
                    logger.error("Failed to release %s: %s", key, exc)
