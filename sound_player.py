"""Audible cue played when the popup captured some text."""

from __future__ import annotations

import logging
import sys

try:  # pragma: no cover - Windows only module
    import winsound  # type: ignore
except ImportError:  # pragma: no cover - non-Windows platforms
    winsound = None  # type: ignore


logger = logging.getLogger("popup_translator.sound")

CAPTURE_SOUND = "SystemAsterisk"


class SoundPlayer:
    """Plays named system sounds asynchronously; a new sound replaces the current one."""

    def __init__(self, *, enabled: bool = True, sound_module=winsound) -> None:
        self.enabled = enabled
        self._sound = sound_module

    def play_capture_cue(self) -> None:
        self.play(CAPTURE_SOUND)

    def play(self, name: str) -> None:
        if not self.enabled:
            return
        if self._sound is None:
            logger.debug("No sound backend on %s; skipping %s", sys.platform, name)
            return
        flags = self._sound.SND_ALIAS | self._sound.SND_ASYNC
        try:
            self._sound.PlaySound(name, flags)
        except RuntimeError as exc:
            logger.warning("Failed to play sound %s: %s", name, exc)
