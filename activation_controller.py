"""Popup visibility state machine.

The :class:`ActivationController` is the only object that changes popup
state. Every other thread (keyboard hook, Tk loop, timers, capture and
translation workers) talks to it by posting event objects onto its queue;
the controller's dispatcher thread applies them one at a time.
"""

from __future__ import annotations

import enum
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple, Union

from clipboard_bridge import ClipboardBridge
from hotkey_manager import HotkeyBinding, HotkeyMonitor
from selection_probe import AccessibilityFailure, Error, NoSelection, SelectionProbe, Success
from translation_service import TranslationError, TranslationResult


logger = logging.getLogger("popup_translator.activation")

POLL_INTERVAL = 0.1
AUTO_HIDE_DELAY = 5.0
FAILURE_PLACEHOLDER = "Translation failed: {}"

# Accessibility failures that mean "ask the clipboard instead".
CLIPBOARD_FALLBACK_FAILURES = frozenset(
    {AccessibilityFailure.ATTRIBUTE_UNSUPPORTED, AccessibilityFailure.CANNOT_COMPLETE}
)


class PopupState(enum.Enum):
    HIDDEN = "hidden"
    SHOWING = "showing"
    VISIBLE = "visible"
    HIDING = "hiding"


class ActivationMethod(enum.Enum):
    NONE = "none"
    GESTURE = "gesture"
    HOTKEY = "hotkey"


class AnimationDirection(enum.Enum):
    REVEAL = "reveal"
    DISMISS = "dismiss"


# Geometry ------------------------------------------------------------
#
# Coordinates have their origin in the bottom-left corner of the screen and y
# grows upward, so the top edge of a 1080 px screen is y=1080.


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    def contains(self, point: Point) -> bool:
        return (
            self.x <= point.x < self.x + self.width
            and self.y <= point.y < self.y + self.height
        )


@dataclass(frozen=True)
class ScreenGeometry:
    width: float
    height: float


@dataclass(frozen=True)
class HotCornerMargins:
    half_width: float = 100.0
    depth_below: float = 30.0
    depth_above: float = 10.0
    top_offset: float = 10.0


@dataclass(frozen=True)
class HotCorner:
    """Rectangle around ``anchor``; membership uses strict inequalities."""

    anchor: Point
    half_width: float = 100.0
    depth_below: float = 30.0
    depth_above: float = 10.0

    @classmethod
    def for_screen(
        cls, screen: ScreenGeometry, margins: HotCornerMargins = HotCornerMargins()
    ) -> "HotCorner":
        anchor = Point(screen.width / 2, screen.height - margins.top_offset)
        return cls(anchor, margins.half_width, margins.depth_below, margins.depth_above)

    def contains(self, point: Point) -> bool:
        return (
            self.anchor.x - self.half_width < point.x < self.anchor.x + self.half_width
            and self.anchor.y - self.depth_below < point.y < self.anchor.y + self.depth_above
        )


# Capture outcomes ----------------------------------------------------


@dataclass(frozen=True)
class Captured:
    text: str
    origin: str


@dataclass(frozen=True)
class NothingSelected:
    pass


@dataclass(frozen=True)
class Abandoned:
    reason: str


Acquisition = Union[Captured, NothingSelected, Abandoned]


# Events --------------------------------------------------------------


@dataclass(frozen=True)
class CursorTick:
    position: Point
    screen: ScreenGeometry
    popup_bounds: Optional[Rect] = None


@dataclass(frozen=True)
class HotkeyPressed:
    pass


@dataclass(frozen=True)
class CaptureFinished:
    attempt: int
    acquisition: Acquisition


@dataclass(frozen=True)
class TranslationFinished:
    attempt: int
    text: str
    source_lang: str
    target_lang: str
    result: Optional[TranslationResult] = None
    error: Optional[Exception] = None


@dataclass(frozen=True)
class AnimationFinished:
    attempt: int
    direction: AnimationDirection


@dataclass(frozen=True)
class AutoHideElapsed:
    attempt: int


@dataclass(frozen=True)
class BindingChanged:
    binding: HotkeyBinding


@dataclass(frozen=True)
class LanguagesChanged:
    source_lang: str
    target_lang: str


_STOP = object()


# Collaborators -------------------------------------------------------


@dataclass(frozen=True)
class PopupContent:
    original: str
    translated: str
    source_lang: str
    target_lang: str
    failed: bool = False


class PopupPresenter(Protocol):  # pragma: no cover - protocol is for type checking only
    def reveal(self, content: PopupContent, on_done: Callable[[], None]) -> None:
        """Show the popup with ``content`` and call ``on_done`` once the animation ends."""

    def update(self, content: PopupContent) -> None:
        """Replace the content of the visible popup."""

    def dismiss(self, on_done: Callable[[], None]) -> None:
        """Hide the popup and call ``on_done`` once the animation ends."""


class Cancellable(Protocol):  # pragma: no cover - protocol is for type checking only
    def cancel(self) -> None:
        ...


class TimerScheduler:
    """Runs callbacks after a delay on daemon ``threading.Timer`` threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


def _spawn_thread(job: Callable[[], None]) -> None:
    threading.Thread(target=job, name="PopupWorker", daemon=True).start()


class ActivationController:
    """Owns popup visibility and arbitrates between cursor and hotkey triggers."""

    def __init__(
        self,
        *,
        popup: PopupPresenter,
        selection_probe: SelectionProbe,
        clipboard_bridge: ClipboardBridge,
        translator,
        hotkey_monitor: Optional[HotkeyMonitor] = None,
        sound_player=None,
        source_language: str = "ru",
        target_language: str = "en",
        corner_margins: HotCornerMargins = HotCornerMargins(),
        auto_hide_delay: float = AUTO_HIDE_DELAY,
        scheduler=None,
        spawn: Callable[[Callable[[], None]], None] = _spawn_thread,
    ) -> None:
        self._popup = popup
        self._probe = selection_probe
        self._clipboard = clipboard_bridge
        self._translator = translator
        self._hotkey_monitor = hotkey_monitor
        self._sound_player = sound_player
        self._languages: Tuple[str, str] = (source_language, target_language)
        self._displayed_languages: Optional[Tuple[str, str]] = None
        self._corner_margins = corner_margins
        self._auto_hide_delay = auto_hide_delay
        self._scheduler = scheduler if scheduler is not None else TimerScheduler()
        self._spawn = spawn

        self._events: "queue.Queue[object]" = queue.Queue()
        self._tick_pending = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._state = PopupState.HIDDEN
        self._method = ActivationMethod.NONE
        self._busy = False
        self._attempt = 0
        self._current_text: Optional[str] = None
        self._auto_hide_timer: Optional[Cancellable] = None
        # Gesture reveals fire on entering the hot corner, not on every tick inside it.
        self._corner_armed = True

        self._handlers: Dict[type, Callable[[object], None]] = {
            CursorTick: self._on_cursor_tick,
            HotkeyPressed: self._on_hotkey,
            CaptureFinished: self._on_capture_finished,
            TranslationFinished: self._on_translation_finished,
            AnimationFinished: self._on_animation_finished,
            AutoHideElapsed: self._on_auto_hide,
            BindingChanged: self._on_binding_changed,
            LanguagesChanged: self._on_languages_changed,
        }

    # Read-only views ---------------------------------------------------

    @property
    def state(self) -> PopupState:
        return self._state

    @property
    def method(self) -> ActivationMethod:
        return self._method

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def languages(self) -> Tuple[str, str]:
        return self._languages

    # Thread-safe entry points ------------------------------------------

    def post(self, event: object) -> None:
        self._events.put(event)

    def post_cursor_tick(
        self, position: Point, screen: ScreenGeometry, popup_bounds: Optional[Rect] = None
    ) -> None:
        """Queue a cursor sample unless the previous one has not been handled yet."""

        if self._tick_pending.is_set():
            return
        self._tick_pending.set()
        self.post(CursorTick(position, screen, popup_bounds))

    def notify_hotkey(self) -> None:
        self.post(HotkeyPressed())

    def apply_hotkey_binding(self, binding: HotkeyBinding) -> None:
        self.post(BindingChanged(binding))

    def set_languages(self, source_lang: str, target_lang: str) -> None:
        self.post(LanguagesChanged(source_lang, target_lang))

    # Actor loop --------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self.run, name="ActivationController", daemon=True)
        self._thread.start()

    def run(self) -> None:
        while True:
            event = self._events.get()
            if event is _STOP:
                break
            self.dispatch(event)
        self._shutdown()

    def stop(self, timeout: float = 2.0) -> None:
        self.post(_STOP)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None

    def run_pending(self) -> int:
        """Dispatch every queued event without blocking; returns how many ran."""

        handled = 0
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return handled
            if event is _STOP:
                self._shutdown()
                return handled
            self.dispatch(event)
            handled += 1

    def dispatch(self, event: object) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug("Ignoring unknown event %r", event)
            return
        try:
            handler(event)
        except Exception as exc:
            logger.exception("Error while handling %s: %s", type(event).__name__, exc)
            self._recover()

    # Transitions -------------------------------------------------------

    def show(self, method: ActivationMethod) -> bool:
        """Begin a reveal; returns ``False`` when another transition is in flight."""

        if method is ActivationMethod.NONE:
            raise ValueError("show() needs a concrete activation method")
        if self._busy or self._state is not PopupState.HIDDEN:
            return False

        self._busy = True
        self._cancel_auto_hide()
        self._attempt += 1
        self._state = PopupState.SHOWING
        self._method = method
        attempt = self._attempt
        logger.debug("Showing popup (attempt=%d, method=%s)", attempt, method.value)

        self._run_in_background(
            lambda: CaptureFinished(attempt, self._acquire_text()),
            lambda exc: CaptureFinished(attempt, Abandoned(f"capture failed: {exc}")),
        )
        return True

    def hide(self) -> bool:
        """Begin a dismissal; returns ``False`` unless the popup is idle and visible."""

        if self._busy or self._state is not PopupState.VISIBLE:
            return False

        self._busy = True
        self._cancel_auto_hide()
        self._state = PopupState.HIDING
        attempt = self._attempt
        logger.debug("Hiding popup (attempt=%d)", attempt)
        self._popup.dismiss(lambda: self.post(AnimationFinished(attempt, AnimationDirection.DISMISS)))
        return True

    # Text acquisition (runs on a worker thread) --------------------------

    def _acquire_text(self) -> Acquisition:
        result = self._probe.probe()
        if isinstance(result, Success):
            return Captured(result.text, "selection")
        if isinstance(result, NoSelection):
            return NothingSelected()
        if isinstance(result, Error):
            if result.reason in CLIPBOARD_FALLBACK_FAILURES:
                text = self._clipboard.capture()
                if text is None:
                    return NothingSelected()
                return Captured(text, "clipboard")
            logger.info(
                "Abandoning activation after accessibility error %s (code=%s)",
                result.reason.value,
                result.code,
            )
            return Abandoned(f"accessibility error {result.code}")
        raise TypeError(f"Unexpected selection result: {result!r}")

    def _translate(self, attempt: int, text: str, source: str, target: str) -> TranslationFinished:
        try:
            result = self._translator.translate(text, source, target)
        except TranslationError as exc:
            logger.warning("Translation failed: %s", exc)
            return TranslationFinished(attempt, text, source, target, error=exc)
        return TranslationFinished(attempt, text, source, target, result=result)

    def _request_translation(self, attempt: int, text: str, languages: Tuple[str, str]) -> None:
        source, target = languages
        self._run_in_background(
            lambda: self._translate(attempt, text, source, target),
            lambda exc: TranslationFinished(attempt, text, source, target, error=exc),
        )

    def _run_in_background(
        self,
        produce: Callable[[], object],
        on_error: Callable[[Exception], object],
    ) -> None:
        def job() -> None:
            try:
                event = produce()
            except Exception as exc:
                logger.exception("Background job failed: %s", exc)
                event = on_error(exc)
            self.post(event)

        self._spawn(job)

    # Event handlers ----------------------------------------------------

    def _on_cursor_tick(self, tick: CursorTick) -> None:
        self._tick_pending.clear()
        in_corner = HotCorner.for_screen(tick.screen, self._corner_margins).contains(tick.position)
        in_popup = tick.popup_bounds is not None and tick.popup_bounds.contains(tick.position)

        if not in_corner:
            self._corner_armed = True

        if self._state is PopupState.HIDDEN:
            if in_corner and self._corner_armed and not self._busy:
                if self.show(ActivationMethod.GESTURE):
                    self._corner_armed = False
        elif self._state is PopupState.VISIBLE and self._method is ActivationMethod.GESTURE:
            if not in_corner and not in_popup:
                self.hide()

    def _on_hotkey(self, _event: HotkeyPressed) -> None:
        if self._state is PopupState.HIDDEN:
            self.show(ActivationMethod.HOTKEY)
        elif self._state is PopupState.VISIBLE and self._method is ActivationMethod.HOTKEY:
            self.hide()
        else:
            logger.debug("Hotkey ignored in state %s (method=%s)", self._state.value, self._method.value)

    def _on_capture_finished(self, event: CaptureFinished) -> None:
        if event.attempt != self._attempt or self._state is not PopupState.SHOWING:
            logger.debug("Dropping stale capture for attempt %d", event.attempt)
            return

        acquisition = event.acquisition
        if isinstance(acquisition, Captured):
            logger.debug("Captured %d characters via %s", len(acquisition.text), acquisition.origin)
            self._current_text = acquisition.text
            self._play_capture_cue()
            self._request_translation(event.attempt, acquisition.text, self._languages)
        elif isinstance(acquisition, (NothingSelected, Abandoned)):
            self._settle_hidden()
        else:
            raise TypeError(f"Unexpected acquisition: {acquisition!r}")

    def _on_translation_finished(self, event: TranslationFinished) -> None:
        if event.attempt != self._attempt or self._method is ActivationMethod.NONE:
            logger.debug("Dropping translation for stale attempt %d", event.attempt)
            return
        if event.text != self._current_text:
            return

        languages = (event.source_lang, event.target_lang)
        content = self._content_for(event)
        if self._state is PopupState.SHOWING:
            self._displayed_languages = languages
            attempt = event.attempt
            self._popup.reveal(
                content,
                lambda: self.post(AnimationFinished(attempt, AnimationDirection.REVEAL)),
            )
        elif self._state is PopupState.VISIBLE and languages == self._languages:
            self._displayed_languages = languages
            self._popup.update(content)
        else:
            logger.debug("Dropping translation in state %s", self._state.value)

    def _on_animation_finished(self, event: AnimationFinished) -> None:
        if event.attempt != self._attempt:
            return

        if event.direction is AnimationDirection.REVEAL and self._state is PopupState.SHOWING:
            self._state = PopupState.VISIBLE
            self._busy = False
            if self._method is ActivationMethod.HOTKEY:
                self._schedule_auto_hide()
            if self._displayed_languages != self._languages and self._current_text:
                self._request_translation(self._attempt, self._current_text, self._languages)
        elif event.direction is AnimationDirection.DISMISS and self._state is PopupState.HIDING:
            self._settle_hidden()

    def _on_auto_hide(self, event: AutoHideElapsed) -> None:
        if event.attempt != self._attempt:
            return
        if self._state is PopupState.VISIBLE and self._method is ActivationMethod.HOTKEY:
            self._auto_hide_timer = None
            self.hide()

    def _on_binding_changed(self, event: BindingChanged) -> None:
        if self._hotkey_monitor is None:
            logger.warning("No hotkey monitor available; ignoring binding %s", event.binding)
            return
        self._hotkey_monitor.apply(event.binding)

    def _on_languages_changed(self, event: LanguagesChanged) -> None:
        languages = (event.source_lang, event.target_lang)
        if languages == self._languages:
            return
        self._languages = languages
        logger.info("Languages set to %s -> %s", *languages)
        if self._state is PopupState.VISIBLE and self._current_text:
            self._request_translation(self._attempt, self._current_text, languages)

    # Helpers -------------------------------------------------------------

    def _content_for(self, event: TranslationFinished) -> PopupContent:
        if event.result is not None and event.result.text:
            return PopupContent(
                original=event.text,
                translated=event.result.text,
                source_lang=event.result.source_lang or event.source_lang,
                target_lang=event.result.target_lang or event.target_lang,
            )
        reason = event.error if event.error is not None else "empty response"
        return PopupContent(
            original=event.text,
            translated=FAILURE_PLACEHOLDER.format(reason),
            source_lang=event.source_lang,
            target_lang=event.target_lang,
            failed=True,
        )

    def _play_capture_cue(self) -> None:
        if self._sound_player is None:
            return
        self._sound_player.play_capture_cue()

    def _schedule_auto_hide(self) -> None:
        self._cancel_auto_hide()
        attempt = self._attempt
        self._auto_hide_timer = self._scheduler.call_later(
            self._auto_hide_delay, lambda: self.post(AutoHideElapsed(attempt))
        )

    def _cancel_auto_hide(self) -> None:
        timer, self._auto_hide_timer = self._auto_hide_timer, None
        if timer is not None:
            timer.cancel()

    def _settle_hidden(self) -> None:
        self._cancel_auto_hide()
        self._state = PopupState.HIDDEN
        self._method = ActivationMethod.NONE
        self._busy = False
        self._current_text = None
        self._displayed_languages = None

    def _recover(self) -> None:
        if self._state in (PopupState.SHOWING, PopupState.HIDING):
            logger.warning("Resetting popup state after failure in state %s", self._state.value)
            self._settle_hidden()
        self._busy = False

    def _shutdown(self) -> None:
        self._cancel_auto_hide()
        if self._hotkey_monitor is not None:
            self._hotkey_monitor.unsubscribe()
