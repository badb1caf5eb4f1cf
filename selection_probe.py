"""Read the selected text of the foreground application via accessibility APIs."""

from __future__ import annotations

import enum
import logging
import os
import sys
import time
from dataclasses import dataclass
from typing import Callable, ContextManager, Optional, Protocol, Union

from text_normalizer import normalize

try:  # pragma: no cover - optional dependency on non-Windows platforms
    import uiautomation as auto  # type: ignore
except Exception:  # pragma: no cover - optional dependency on non-Windows platforms
    auto = None  # type: ignore

try:  # pragma: no cover - optional dependency on non-Windows platforms
    import win32gui  # type: ignore
    import win32process  # type: ignore
except Exception:  # pragma: no cover - optional dependency on non-Windows platforms
    win32gui = None  # type: ignore
    win32process = None  # type: ignore


logger = logging.getLogger("popup_translator.selection")

PROBE_SETTLE_DELAY = 0.05

# HRESULTs reported by UI Automation through comtypes.COMError.
UIA_E_ELEMENTNOTAVAILABLE = -2147220991  # 0x80040201
UIA_E_NOTSUPPORTED = -2147220988  # 0x80040204
E_NOTIMPL = -2147467263  # 0x80004001


class AccessibilityFailure(enum.Enum):
    """Classification of an accessibility query failure."""

    NO_VALUE = "no_value"
    ATTRIBUTE_UNSUPPORTED = "attribute_unsupported"
    CANNOT_COMPLETE = "cannot_complete"
    OTHER = "other"


class AccessibilityQueryError(RuntimeError):
    """Raised by an accessibility backend when a query does not succeed."""

    def __init__(self, failure: AccessibilityFailure, code: int = 0, message: str = "") -> None:
        super().__init__(message or f"{failure.value} (code={code})")
        self.failure = failure
        self.code = code


@dataclass(frozen=True)
class Success:
    text: str


@dataclass(frozen=True)
class NoSelection:
    pass


@dataclass(frozen=True)
class Error:
    """The platform refused the query; ``code`` is the raw platform code."""

    reason: AccessibilityFailure
    code: int


SelectionResult = Union[Success, NoSelection, Error]


class AccessibilityBackend(Protocol):  # pragma: no cover - protocol is for type checking only
    def session(self) -> ContextManager[object]:
        """Prepare the calling thread for accessibility queries."""

    def foreground_process_id(self) -> Optional[int]:
        """Return the process id owning the foreground window."""

    def focused_element(self, process_id: int) -> object:
        """Return the focused element of ``process_id``."""

    def selected_text(self, element: object) -> str:
        """Return the selected text of ``element``."""


class UIAutomationBackend:
    """Windows backend built on UI Automation and the Win32 window APIs."""

    def __init__(self) -> None:
        if auto is None or win32gui is None or win32process is None:  # pragma: no cover - guarded by factory
            raise RuntimeError("uiautomation and pywin32 are required")

    def session(self) -> ContextManager[object]:
        return auto.UIAutomationInitializerInThread()

    def foreground_process_id(self) -> Optional[int]:
        hwnd = win32gui.GetForegroundWindow()
        if not hwnd:
            return None
        _, process_id = win32process.GetWindowThreadProcessId(hwnd)
        return process_id

    def focused_element(self, process_id: int) -> object:
        try:
            control = auto.GetFocusedControl()
        except Exception as exc:
            raise _translate_com_error(exc) from exc
        if control is None or control.ProcessId != process_id:
            raise AccessibilityQueryError(
                AccessibilityFailure.CANNOT_COMPLETE,
                message="Focused element does not belong to the foreground process",
            )
        return control

    def selected_text(self, element: object) -> str:
        try:
            pattern = element.GetTextPattern()  # type: ignore[attr-defined]
            if pattern is None:
                raise AccessibilityQueryError(
                    AccessibilityFailure.ATTRIBUTE_UNSUPPORTED,
                    UIA_E_NOTSUPPORTED,
                    "Focused element does not expose a text pattern",
                )
            ranges = pattern.GetSelection()
        except AccessibilityQueryError:
            raise
        except Exception as exc:
            raise _translate_com_error(exc) from exc

        text = "".join(text_range.GetText() for text_range in ranges or ())
        if not text:
            raise AccessibilityQueryError(AccessibilityFailure.NO_VALUE)
        return text


def _translate_com_error(exc: Exception) -> AccessibilityQueryError:
    code = getattr(exc, "hresult", None)
    if code is None and exc.args and isinstance(exc.args[0], int):
        code = exc.args[0]
    if code == UIA_E_ELEMENTNOTAVAILABLE:
        failure = AccessibilityFailure.CANNOT_COMPLETE
    elif code in (UIA_E_NOTSUPPORTED, E_NOTIMPL):
        failure = AccessibilityFailure.ATTRIBUTE_UNSUPPORTED
    else:
        failure = AccessibilityFailure.OTHER
    return AccessibilityQueryError(failure, int(code or 0), str(exc))


def create_accessibility_backend() -> Optional[UIAutomationBackend]:
    """Create the platform accessibility backend if one is supported."""

    if sys.platform != "win32":  # pragma: no cover - Windows specific functionality
        return None
    if auto is None or win32gui is None or win32process is None:
        return None
    return UIAutomationBackend()


class SelectionProbe:
    """Classifies the foreground application's selection as a ``SelectionResult``."""

    def __init__(
        self,
        backend: Optional[AccessibilityBackend],
        *,
        own_process_id: Optional[int] = None,
        settle_delay: float = PROBE_SETTLE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._backend = backend
        self._own_process_id = os.getpid() if own_process_id is None else own_process_id
        self._settle_delay = settle_delay
        self._sleep = sleep

    def probe(self) -> SelectionResult:
        if self._backend is None:
            return Error(AccessibilityFailure.ATTRIBUTE_UNSUPPORTED, 0)

        if self._settle_delay > 0:
            self._sleep(self._settle_delay)

        with self._backend.session():
            try:
                process_id = self._backend.foreground_process_id()
                if process_id is None or process_id == self._own_process_id:
                    return NoSelection()
                element = self._backend.focused_element(process_id)
                raw_text = self._backend.selected_text(element)
            except AccessibilityQueryError as exc:
                if exc.failure is AccessibilityFailure.NO_VALUE:
                    return NoSelection()
                logger.debug("Accessibility query failed: %s", exc)
                return Error(exc.failure, exc.code)

        text = normalize(raw_text)
        if not text:
            return NoSelection()
        return Success(text)
