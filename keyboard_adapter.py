"""Global chord detection on top of the ``keyboard`` package's low-level hook."""

from __future__ import annotations

import threading
from typing import Callable, Dict, FrozenSet, Optional, Set

try:  # pragma: no cover - optional dependency, needs privileges on some platforms
    import keyboard  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    keyboard = None  # type: ignore


Callback = Callable[[], None]

_MODIFIER_ALIASES = {
    "control": "ctrl",
    "ctrl": "ctrl",
    "shift": "shift",
    "alt": "alt",
    "alt gr": "alt",
    "option": "alt",
    "menu": "alt",
    "windows": "cmd",
    "win": "cmd",
    "command": "cmd",
    "cmd": "cmd",
    "super": "cmd",
}


def normalize_modifier(name: str) -> Optional[str]:
    """Map a key name reported by the hook to a modifier token, or ``None``."""

    token = name.strip().lower()
    for prefix in ("left ", "right "):
        if token.startswith(prefix):
            token = token[len(prefix):]
    return _MODIFIER_ALIASES.get(token)


class ChordHook:
    """Fires ``callback`` when ``key`` goes down with exactly ``modifiers`` held.

    Extra modifiers suppress the chord and held-key auto-repeat does not fire
    it again.
    """

    def __init__(
        self,
        modifiers: FrozenSet[str],
        key: str,
        callback: Callback,
        *,
        keyboard_module=keyboard,
    ) -> None:
        if keyboard_module is None:
            raise RuntimeError(
                "The 'keyboard' package is required. Install it with 'pip install keyboard'."
            )
        self._keyboard = keyboard_module
        self._modifiers = frozenset(modifiers)
        self._key = key.lower()
        self._key_scan_codes = frozenset(keyboard_module.key_to_scan_codes(key))
        self._callback = callback
        self._lock = threading.Lock()
        self._held_modifiers: Dict[str, Set[int]] = {}
        self._key_down = False
        self._handler = None

    @property
    def active(self) -> bool:
        return self._handler is not None

    def start(self) -> None:
        if self._handler is not None:
            return
        self._handler = self._keyboard.hook(self._on_event)

    def stop(self) -> None:
        handler, self._handler = self._handler, None
        if handler is None:
            return
        self._keyboard.unhook(handler)
        with self._lock:
            self._held_modifiers.clear()
            self._key_down = False

    def _on_event(self, event) -> None:
        name = getattr(event, "name", None) or ""
        scan_code = getattr(event, "scan_code", None)
        is_down = getattr(event, "event_type", None) == "down"

        modifier = normalize_modifier(name)
        if modifier is not None:
            with self._lock:
                codes = self._held_modifiers.setdefault(modifier, set())
                if is_down:
                    codes.add(scan_code)
                else:
                    codes.discard(scan_code)
                    if not codes:
                        self._held_modifiers.pop(modifier, None)
            return

        if not self._matches_key(name, scan_code):
            return

        with self._lock:
            if not is_down:
                self._key_down = False
                return
            if self._key_down:
                return
            self._key_down = True
            held = frozenset(self._held_modifiers)

        if held == self._modifiers:
            self._callback()

    def _matches_key(self, name: str, scan_code: Optional[int]) -> bool:
        if scan_code is not None and scan_code in self._key_scan_codes:
            return True
        return name.lower() == self._key
