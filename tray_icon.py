"""System tray icon exposing hotkey and language settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional

try:  # pragma: no cover - optional dependency for system tray support
    import pystray  # type: ignore
    from pystray import MenuItem  # type: ignore
except Exception:  # pragma: no cover - handled when starting the tray icon
    pystray = None  # type: ignore
    MenuItem = None  # type: ignore

try:  # pragma: no cover - optional dependency for system tray support
    from PIL import Image, ImageDraw  # type: ignore
except ImportError:  # pragma: no cover - handled when starting the tray icon
    Image = None  # type: ignore
    ImageDraw = None  # type: ignore

from hotkey_manager import HOTKEY_CHOICES
from preferences import language_display

if TYPE_CHECKING:  # pragma: no cover
    from popup_translator import PopupTranslatorApp


logger = logging.getLogger("popup_translator.tray")


class SystemTrayController:
    """Tray menu: hotkey toggle and choice, language pair, swap and exit."""

    def __init__(self, app: "PopupTranslatorApp") -> None:
        self._app = app
        self._icon: Optional["pystray.Icon"] = None

    @staticmethod
    def _is_supported() -> bool:
        return pystray is not None and MenuItem is not None and Image is not None and ImageDraw is not None

    def start(self) -> None:
        if not self._is_supported():
            logger.warning("System tray icon is unavailable because required dependencies are missing.")
            return

        assert pystray is not None  # noqa: S101 - guarded by _is_supported
        self._icon = pystray.Icon(
            "popup_translator", self._create_icon_image(), "Popup Translator", menu=self._build_menu()
        )
        self._icon.run_detached()

    def stop(self) -> None:
        if self._icon is not None:
            self._icon.stop()
            self._icon = None

    def _build_menu(self) -> "pystray.Menu":
        assert pystray is not None and MenuItem is not None  # noqa: S101 - guarded by _is_supported
        hotkey_items = [
            MenuItem(
                chord.display,
                self._hotkey_selector(index),
                checked=lambda item, index=index: self._app.preferences.hotkey.key_index == index,
                radio=True,
            )
            for index, chord in enumerate(HOTKEY_CHOICES)
        ]
        return pystray.Menu(
            MenuItem(
                "Hotkey enabled",
                self._on_toggle_hotkey,
                checked=lambda item: self._app.preferences.hotkey.enabled,
            ),
            MenuItem("Hotkey", pystray.Menu(*hotkey_items)),
            MenuItem("Source language", pystray.Menu(*self._language_items(source=True))),
            MenuItem("Target language", pystray.Menu(*self._language_items(source=False))),
            MenuItem("Swap languages", self._on_swap_languages),
            pystray.Menu.SEPARATOR,
            MenuItem("Exit", self._on_exit),
        )

    def _language_items(self, *, source: bool) -> list:
        assert MenuItem is not None  # noqa: S101 - guarded by _is_supported
        items = []
        for code in self._app.preferences.favorite_languages:
            if source:
                checked = lambda item, code=code: self._app.preferences.source_language == code
            else:
                checked = lambda item, code=code: self._app.preferences.target_language == code
            items.append(
                MenuItem(
                    f"{code} - {language_display(code)}",
                    self._language_selector(code, source=source),
                    checked=checked,
                    radio=True,
                )
            )
        return items

    def _hotkey_selector(self, index: int) -> Callable[["pystray.Icon", object], None]:
        def select(icon: "pystray.Icon", _: object) -> None:
            self._app.select_hotkey(index)
            self._refresh(icon)

        return select

    def _language_selector(self, code: str, *, source: bool) -> Callable[["pystray.Icon", object], None]:
        def select(icon: "pystray.Icon", _: object) -> None:
            if source:
                self._app.set_source_language(code)
            else:
                self._app.set_target_language(code)
            self._refresh(icon)

        return select

    def _on_toggle_hotkey(self, icon: "pystray.Icon", _: object) -> None:
        self._app.set_hotkey_enabled(not self._app.preferences.hotkey.enabled)
        self._refresh(icon)

    def _on_swap_languages(self, icon: "pystray.Icon", _: object) -> None:
        self._app.swap_languages()
        self._refresh(icon)

    def _on_exit(self, icon: "pystray.Icon", _: object) -> None:
        self._app.stop()
        icon.stop()

    @staticmethod
    def _refresh(icon: "pystray.Icon") -> None:
        update_menu = getattr(icon, "update_menu", None)
        if update_menu is not None:
            update_menu()

    @staticmethod
    def _create_icon_image() -> "Image.Image":
        """Draw a small popup glyph: dark panel, accent tab, two text lines."""

        assert Image is not None and ImageDraw is not None  # noqa: S101 - guarded by _is_supported
        size = 64
        image = Image.new("RGBA", (size, size), (0, 0, 0, 0))
        draw = ImageDraw.Draw(image)
        draw.rounded_rectangle((6, 14, size - 6, size - 14), radius=10, fill=(15, 15, 15, 255))
        draw.rectangle((size // 2 - 12, 14, size // 2 + 12, 20), fill=(75, 91, 220, 255))
        draw.line((16, 34, size - 16, 34), fill=(204, 204, 204, 255), width=3)
        draw.line((16, 42, size - 28, 42), fill=(204, 204, 204, 255), width=3)
        return image
