"""Persisted user preferences stored as JSON in the home directory."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from activation_controller import AUTO_HIDE_DELAY, POLL_INTERVAL, HotCornerMargins
from clipboard_bridge import CLIPBOARD_SETTLE_DELAY, KEY_EVENT_DELAY
from hotkey_manager import HOTKEY_CHOICES, HotkeyBinding
from selection_probe import PROBE_SETTLE_DELAY
from translation_service import DEFAULT_ENDPOINT


logger = logging.getLogger("popup_translator.preferences")

PREFERENCES_FILE = Path.home() / ".popup_translator_preferences.json"

LANGUAGE_DISPLAY_NAMES = {
    "ru": "Русский",
    "en": "English",
    "es": "Español",
    "fr": "Français",
    "de": "Deutsch",
    "ja": "日本語",
}
DEFAULT_FAVORITES = ("ru", "en", "es", "fr")


def language_display(code: str) -> str:
    return LANGUAGE_DISPLAY_NAMES.get(code, code)


@dataclass(frozen=True)
class Timing:
    poll_interval: float = POLL_INTERVAL
    auto_hide_delay: float = AUTO_HIDE_DELAY
    probe_settle_delay: float = PROBE_SETTLE_DELAY
    clipboard_settle_delay: float = CLIPBOARD_SETTLE_DELAY
    key_event_delay: float = KEY_EVENT_DELAY
    request_timeout: float = 10.0


@dataclass(frozen=True)
class Preferences:
    hotkey: HotkeyBinding = HotkeyBinding()
    source_language: str = "ru"
    target_language: str = "en"
    favorite_languages: List[str] = field(default_factory=lambda: list(DEFAULT_FAVORITES))
    endpoint: str = DEFAULT_ENDPOINT
    timing: Timing = Timing()
    hot_corner: HotCornerMargins = HotCornerMargins()
    sound_enabled: bool = True

    def with_languages(self, source: str, target: str) -> "Preferences":
        return replace(self, source_language=source, target_language=target)

    def with_hotkey(self, binding: HotkeyBinding) -> "Preferences":
        return replace(self, hotkey=binding)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hotkey": {"enabled": self.hotkey.enabled, "index": self.hotkey.key_index},
            "source_language": self.source_language,
            "target_language": self.target_language,
            "favorite_languages": list(self.favorite_languages),
            "endpoint": self.endpoint,
            "timing": {
                "poll_interval": self.timing.poll_interval,
                "auto_hide_delay": self.timing.auto_hide_delay,
                "probe_settle_delay": self.timing.probe_settle_delay,
                "clipboard_settle_delay": self.timing.clipboard_settle_delay,
                "key_event_delay": self.timing.key_event_delay,
                "request_timeout": self.timing.request_timeout,
            },
            "hot_corner": {
                "half_width": self.hot_corner.half_width,
                "depth_below": self.hot_corner.depth_below,
                "depth_above": self.hot_corner.depth_above,
                "top_offset": self.hot_corner.top_offset,
            },
            "sound_enabled": self.sound_enabled,
        }


def _read_raw(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def _section(data: dict, key: str) -> dict:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _language(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _number(section: dict, key: str, default: float, *, minimum: float = 0.0) -> float:
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < minimum:
        return default
    return float(value)


def load_preferences(path: Optional[Path] = None) -> Preferences:
    """Load preferences, falling back to defaults for anything missing or invalid."""

    data = _read_raw(path or PREFERENCES_FILE)
    defaults = Preferences()

    hotkey_data = _section(data, "hotkey")
    enabled = hotkey_data.get("enabled")
    index = hotkey_data.get("index")
    binding = HotkeyBinding(
        enabled=enabled if isinstance(enabled, bool) else defaults.hotkey.enabled,
        key_index=(
            index
            if isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(HOTKEY_CHOICES)
            else defaults.hotkey.key_index
        ),
    )

    favorites = data.get("favorite_languages")
    if isinstance(favorites, list):
        favorite_languages = [code.strip() for code in favorites if isinstance(code, str) and code.strip()]
    else:
        favorite_languages = []
    if not favorite_languages:
        favorite_languages = list(DEFAULT_FAVORITES)

    endpoint = data.get("endpoint")
    timing_data = _section(data, "timing")
    corner_data = _section(data, "hot_corner")
    sound_enabled = data.get("sound_enabled")

    return Preferences(
        hotkey=binding,
        source_language=_language(data.get("source_language"), defaults.source_language),
        target_language=_language(data.get("target_language"), defaults.target_language),
        favorite_languages=favorite_languages,
        endpoint=endpoint.strip() if isinstance(endpoint, str) and endpoint.strip() else defaults.endpoint,
        timing=Timing(
            poll_interval=_number(timing_data, "poll_interval", defaults.timing.poll_interval, minimum=0.01),
            auto_hide_delay=_number(timing_data, "auto_hide_delay", defaults.timing.auto_hide_delay),
            probe_settle_delay=_number(timing_data, "probe_settle_delay", defaults.timing.probe_settle_delay),
            clipboard_settle_delay=_number(
                timing_data, "clipboard_settle_delay", defaults.timing.clipboard_settle_delay
            ),
            key_event_delay=_number(timing_data, "key_event_delay", defaults.timing.key_event_delay),
            request_timeout=_number(timing_data, "request_timeout", defaults.timing.request_timeout, minimum=0.1),
        ),
        hot_corner=HotCornerMargins(
            half_width=_number(corner_data, "half_width", defaults.hot_corner.half_width),
            depth_below=_number(corner_data, "depth_below", defaults.hot_corner.depth_below),
            depth_above=_number(corner_data, "depth_above", defaults.hot_corner.depth_above),
            top_offset=_number(corner_data, "top_offset", defaults.hot_corner.top_offset),
        ),
        sound_enabled=sound_enabled if isinstance(sound_enabled, bool) else defaults.sound_enabled,
    )


def save_preferences(preferences: Preferences, path: Optional[Path] = None) -> bool:
    """Write ``preferences``; returns ``False`` when the file could not be written."""

    target = path or PREFERENCES_FILE
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            json.dumps(preferences.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8"
        )
    except OSError as exc:
        logger.warning("Failed to save preferences to %s: %s", target, exc)
        return False
    return True
