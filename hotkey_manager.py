"""Global hotkey bindings and the monitor that (re)registers them."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Callable, FrozenSet, List, Optional, Sequence

from keyboard_adapter import ChordHook, normalize_modifier


logger = logging.getLogger("popup_translator.hotkeys")


@dataclass(frozen=True)
class HotkeyBinding:
    """Persisted hotkey configuration: on/off plus an index into ``HOTKEY_CHOICES``."""

    enabled: bool = True
    key_index: int = 0


@dataclass(frozen=True)
class HotkeyChord:
    """An exact modifier set plus one non-modifier key."""

    modifiers: FrozenSet[str]
    key: str
    display: str


_DISPLAY_NAMES = {"ctrl": "Ctrl", "shift": "Shift", "alt": "Alt", "cmd": "Cmd"}
_DISPLAY_ORDER = ("cmd", "ctrl", "alt", "shift")


def parse_chord(combo: str) -> HotkeyChord:
    """Create a :class:`HotkeyChord` from a textual representation like ``Ctrl+Shift+1``."""

    parts = [part.strip() for part in combo.replace("-", "+").split("+") if part.strip()]
    if not parts:
        raise ValueError(f"Invalid hotkey definition: {combo!r}")

    modifiers = set()
    key: Optional[str] = None
    for token in parts:
        modifier = normalize_modifier(token)
        if modifier is not None:
            modifiers.add(modifier)
            continue
        if key is not None:
            raise ValueError(f"Hotkey combination has more than one key: {combo!r}")
        key = token.lower()

    if key is None:
        raise ValueError(f"Hotkey combination is missing a non-modifier key: {combo!r}")
    if not modifiers:
        raise ValueError(f"Hotkey combination needs at least one modifier: {combo!r}")

    labels = [_DISPLAY_NAMES[name] for name in _DISPLAY_ORDER if name in modifiers]
    labels.append(key.upper() if len(key) == 1 else key.title())
    return HotkeyChord(modifiers=frozenset(modifiers), key=key, display="+".join(labels))


_PRIMARY = "Cmd" if sys.platform == "darwin" else "Ctrl"

HOTKEY_CHOICES: Sequence[HotkeyChord] = tuple(
    parse_chord(combo)
    for combo in (
        f"{_PRIMARY}+Shift+1",
        f"{_PRIMARY}+Shift+2",
        f"{_PRIMARY}+Shift+3",
        f"{_PRIMARY}+Alt+T",
    )
)


def chord_for_binding(
    binding: HotkeyBinding, choices: Sequence[HotkeyChord] = HOTKEY_CHOICES
) -> Optional[HotkeyChord]:
    """Return the chord selected by ``binding``, or ``None`` when disabled."""

    if not binding.enabled:
        return None
    if not 0 <= binding.key_index < len(choices):
        logger.warning("Hotkey index %s out of range; using %s", binding.key_index, choices[0].display)
        return choices[0]
    return choices[binding.key_index]


def describe_choices(choices: Sequence[HotkeyChord] = HOTKEY_CHOICES) -> List[str]:
    return [chord.display for chord in choices]


HookFactory = Callable[[HotkeyChord, Callable[[], None]], ChordHook]


def _default_hook_factory(chord: HotkeyChord, callback: Callable[[], None]) -> ChordHook:
    return ChordHook(chord.modifiers, chord.key, callback)


class HotkeyMonitor:
    """Keeps at most one global chord listener registered."""

    def __init__(
        self,
        callback: Callable[[], None],
        *,
        hook_factory: HookFactory = _default_hook_factory,
        choices: Sequence[HotkeyChord] = HOTKEY_CHOICES,
    ) -> None:
        self._callback = callback
        self._hook_factory = hook_factory
        self._choices = choices
        self._hook: Optional[ChordHook] = None
        self._chord: Optional[HotkeyChord] = None

    @property
    def active_chord(self) -> Optional[HotkeyChord]:
        return self._chord

    def apply(self, binding: HotkeyBinding) -> None:
        """Unsubscribe the current listener, then subscribe the one ``binding`` selects."""

        self.unsubscribe()
        chord = chord_for_binding(binding, self._choices)
        if chord is None:
            logger.info("Global hotkey disabled")
            return
        self.subscribe(chord)

    def subscribe(self, chord: HotkeyChord) -> None:
        if self._hook is not None:
            raise RuntimeError("A hotkey listener is already registered")
        try:
            hook = self._hook_factory(chord, self._callback)
            hook.start()
        except Exception as exc:
            logger.error("Failed to register hotkey %s: %s", chord.display, exc)
            return
        self._hook = hook
        self._chord = chord
        logger.info("Registered hotkey %s", chord.display)

    def unsubscribe(self) -> None:
        hook, self._hook = self._hook, None
        chord, self._chord = self._chord, None
        if hook is None:
            return
        try:
            hook.stop()
        except Exception as exc:  # pragma: no cover - depends on the OS hook
            logger.warning("Failed to unregister hotkey: %s", exc)
        else:
            logger.info("Unregistered hotkey %s", chord.display if chord else "?")
