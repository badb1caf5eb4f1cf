import threading
import unittest

from activation_controller import (
    AUTO_HIDE_DELAY,
    ActivationController,
    ActivationMethod,
    CursorTick,
    HotCorner,
    HotkeyPressed,
    Point,
    PopupState,
    Rect,
    ScreenGeometry,
)
from hotkey_manager import HotkeyBinding
from selection_probe import AccessibilityFailure, Error, NoSelection, Success
from translation_service import RequestFailedError, TranslationResult


SCREEN = ScreenGeometry(1920, 1080)
IN_CORNER = Point(960, 1065)
OUTSIDE = Point(200, 300)
POPUP_BOUNDS = Rect(720, 907, 480, 173)


class FakeProbe:
    def __init__(self, *results) -> None:
        self.results = list(results) or [Success("hello")]
        self.calls = 0

    def probe(self):
        self.calls += 1
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class RaisingProbe:
    def probe(self):
        raise RuntimeError("accessibility backend crashed")


class FakeClipboardBridge:
    def __init__(self, text="from clipboard") -> None:
        self.text = text
        self.calls = 0

    def capture(self):
        self.calls += 1
        return self.text


class FakeTranslator:
    def __init__(self, error=None) -> None:
        self.calls = []
        self.error = error

    def translate(self, text, source_lang, target_lang):
        self.calls.append((text, source_lang, target_lang))
        if self.error is not None:
            raise self.error
        return TranslationResult(f"<{text}:{target_lang}>", source_lang, target_lang)


class FakePopup:
    def __init__(self) -> None:
        self.reveals = []
        self.updates = []
        self.dismissals = 0
        self._pending = []
        self.fail_on_reveal = False

    def reveal(self, content, on_done) -> None:
        if self.fail_on_reveal:
            raise RuntimeError("window gone")
        self.reveals.append(content)
        self._pending.append(on_done)

    def update(self, content) -> None:
        self.updates.append(content)

    def dismiss(self, on_done) -> None:
        self.dismissals += 1
        self._pending.append(on_done)

    def finish_animation(self) -> None:
        self._pending.pop(0)()


class FakeTimer:
    def __init__(self, delay, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.callback()


class FakeScheduler:
    def __init__(self) -> None:
        self.timers = []

    def call_later(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer


class DeferredSpawner:
    def __init__(self) -> None:
        self.jobs = []

    def __call__(self, job) -> None:
        self.jobs.append(job)

    def run_all(self) -> None:
        jobs, self.jobs = self.jobs, []
        for job in jobs:
            job()


class FakeSoundPlayer:
    def __init__(self) -> None:
        self.cues = 0

    def play_capture_cue(self) -> None:
        self.cues += 1


class FakeHotkeyMonitor:
    def __init__(self) -> None:
        self.applied = []
        self.unsubscribed = 0

    def apply(self, binding) -> None:
        self.applied.append(binding)

    def unsubscribe(self) -> None:
        self.unsubscribed += 1


class ActivationControllerTestMixin:
    def _create_controller(self, **overrides) -> ActivationController:
        self.probe = overrides.pop("selection_probe", FakeProbe())
        self.clipboard = overrides.pop("clipboard_bridge", FakeClipboardBridge())
        self.translator = overrides.pop("translator", FakeTranslator())
        self.popup = overrides.pop("popup", FakePopup())
        self.scheduler = overrides.pop("scheduler", FakeScheduler())
        self.sound = overrides.pop("sound_player", FakeSoundPlayer())
        self.monitor = overrides.pop("hotkey_monitor", FakeHotkeyMonitor())
        defaults = dict(
            popup=self.popup,
            selection_probe=self.probe,
            clipboard_bridge=self.clipboard,
            translator=self.translator,
            hotkey_monitor=self.monitor,
            sound_player=self.sound,
            source_language="ru",
            target_language="en",
            scheduler=self.scheduler,
            spawn=lambda job: job(),
        )
        defaults.update(overrides)
        return ActivationController(**defaults)

    def _tick(self, controller, position, bounds=None) -> None:
        controller.dispatch(CursorTick(position, SCREEN, bounds))
        controller.run_pending()

    def _show_with_gesture(self, controller) -> None:
        self._tick(controller, IN_CORNER)
        self.popup.finish_animation()
        controller.run_pending()

    def _show_with_hotkey(self, controller) -> None:
        controller.dispatch(HotkeyPressed())
        controller.run_pending()
        self.popup.finish_animation()
        controller.run_pending()


class HotCornerTests(unittest.TestCase):
    def test_anchor_sits_below_top_edge_at_screen_centre(self):
        corner = HotCorner.for_screen(SCREEN)
        self.assertEqual(corner.anchor, Point(960, 1070))

    def test_membership_is_strict_rectangle(self):
        corner = HotCorner.for_screen(SCREEN)
        self.assertTrue(corner.contains(Point(960, 1065)))
        self.assertTrue(corner.contains(Point(861, 1041)))
        self.assertFalse(corner.contains(Point(860, 1065)))
        self.assertFalse(corner.contains(Point(1060, 1065)))
        self.assertFalse(corner.contains(Point(960, 1040)))
        self.assertFalse(corner.contains(Point(960, 1080)))


class GestureActivationTests(ActivationControllerTestMixin, unittest.TestCase):
    def test_cursor_entering_hot_corner_starts_showing_and_probes(self):
        controller = self._create_controller(spawn=DeferredSpawner())
        controller.dispatch(CursorTick(IN_CORNER, SCREEN))

        self.assertIs(controller.state, PopupState.SHOWING)
        self.assertIs(controller.method, ActivationMethod.GESTURE)
        self.assertTrue(controller.busy)

    def test_probe_runs_when_capture_job_executes(self):
        controller = self._create_controller()
        controller.dispatch(CursorTick(IN_CORNER, SCREEN))
        self.assertEqual(self.probe.calls, 1)

    def test_full_reveal_sequence_reaches_visible(self):
        controller = self._create_controller()
        self._tick(controller, IN_CORNER)

        self.assertIs(controller.state, PopupState.SHOWING)
        self.assertEqual(self.translator.calls, [("hello", "ru", "en")])
        self.assertEqual(len(self.popup.reveals), 1)
        self.assertEqual(self.popup.reveals[0].translated, "<hello:en>")
        self.assertEqual(self.sound.cues, 1)

        self.popup.finish_animation()
        controller.run_pending()

        self.assertIs(controller.state, PopupState.VISIBLE)
        self.assertFalse(controller.busy)
        self.assertEqual(self.scheduler.timers, [])

    def test_cursor_inside_popup_keeps_it_visible(self):
        controller = self._create_controller()
        self._show_with_gesture(controller)

        self._tick(controller, Point(800, 950), POPUP_BOUNDS)

        self.assertIs(controller.state, PopupState.VISIBLE)
        self.assertEqual(self.popup.dismissals, 0)

    def test_cursor_leaving_both_regions_hides(self):
        controller = self._create_controller()
        self._show_with_gesture(controller)

        self._tick(controller, OUTSIDE, POPUP_BOUNDS)
        self.assertIs(controller.state, PopupState.HIDING)
        self.assertEqual(self.popup.dismissals, 1)

        self.popup.finish_animation()
        controller.run_pending()
        self.assertIs(controller.state, PopupState.HIDDEN)
        self.assertIs(controller.method, ActivationMethod.NONE)
        self.assertFalse(controller.busy)

    def test_hot_corner_must_be_re_entered_after_empty_capture(self):
        controller = self._create_controller(selection_probe=FakeProbe(NoSelection()))
        self._tick(controller, IN_CORNER)
        self.assertIs(controller.state, PopupState.HIDDEN)

        self._tick(controller, IN_CORNER)
        self.assertEqual(self.probe.calls, 1)

        self._tick(controller, OUTSIDE)
        self._tick(controller, IN_CORNER)
        self.assertEqual(self.probe.calls, 2)

    def test_hotkey_does_not_hide_gesture_popup(self):
        controller = self._create_controller()
        self._show_with_gesture(controller)

        controller.dispatch(HotkeyPressed())

        self.assertIs(controller.state, PopupState.VISIBLE)
        self.assertIs(controller.method, ActivationMethod.GESTURE)

    def test_cursor_ticks_are_coalesced_until_handled(self):
        controller = self._create_controller(spawn=DeferredSpawner())
        controller.post_cursor_tick(OUTSIDE, SCREEN)
        controller.post_cursor_tick(IN_CORNER, SCREEN)

        self.assertEqual(controller.run_pending(), 1)
        self.assertIs(controller.state, PopupState.HIDDEN)

        controller.post_cursor_tick(IN_CORNER, SCREEN)
        controller.run_pending()
        self.assertIs(controller.state, PopupState.SHOWING)


class HotkeyActivationTests(ActivationControllerTestMixin, unittest.TestCase):
    def test_hotkey_shows_and_schedules_auto_hide(self):
        controller = self._create_controller()
        self._show_with_hotkey(controller)

        self.assertIs(controller.state, PopupState.VISIBLE)
        self.assertIs(controller.method, ActivationMethod.HOTKEY)
        self.assertEqual(len(self.scheduler.timers), 1)
        self.assertEqual(self.scheduler.timers[0].delay, AUTO_HIDE_DELAY)

    def test_repeated_hotkey_hides_without_waiting_for_timer(self):
        controller = self._create_controller()
        self._show_with_hotkey(controller)

        controller.dispatch(HotkeyPressed())

        self.assertIs(controller.state, PopupState.HIDING)
        self.assertTrue(self.scheduler.timers[0].cancelled)

        self.popup.finish_animation()
        controller.run_pending()
        self.assertIs(controller.state, PopupState.HIDDEN)
        self.assertIs(controller.method, ActivationMethod.NONE)

    def test_auto_hide_timer_hides_popup(self):
        controller = self._create_controller()
        self._show_with_hotkey(controller)

        self.scheduler.timers[0].fire()
        controller.run_pending()

        self.assertIs(controller.state, PopupState.HIDING)
        self.assertEqual(self.popup.dismissals, 1)

    def test_cursor_exit_does_not_hide_hotkey_popup(self):
        controller = self._create_controller()
        self._show_with_hotkey(controller)

        self._tick(controller, OUTSIDE, POPUP_BOUNDS)

        self.assertIs(controller.state, PopupState.VISIBLE)

    def test_stale_auto_hide_from_previous_popup_is_ignored(self):
        controller = self._create_controller()
        self._show_with_hotkey(controller)
        first_timer = self.scheduler.timers[0]
        controller.dispatch(HotkeyPressed())
        self.popup.finish_animation()
        controller.run_pending()

        self._show_with_hotkey(controller)
        first_timer.callback()
        controller.run_pending()

        self.assertIs(controller.state, PopupState.VISIBLE)


class BusyGuardTests(ActivationControllerTestMixin, unittest.TestCase):
    def test_second_show_while_busy_is_noop(self):
        controller = self._create_controller(spawn=DeferredSpawner())

        self.assertTrue(controller.show(ActivationMethod.GESTURE))
        self.assertFalse(controller.show(ActivationMethod.HOTKEY))
        self.assertFalse(controller.hide())

        self.assertIs(controller.state, PopupState.SHOWING)
        self.assertIs(controller.method, ActivationMethod.GESTURE)

    def test_second_hide_while_busy_does_not_schedule_another_animation(self):
        controller = self._create_controller()
        self._show_with_gesture(controller)

        self.assertTrue(controller.hide())
        self.assertFalse(controller.hide())
        self.assertFalse(controller.show(ActivationMethod.HOTKEY))

        self.assertEqual(self.popup.dismissals, 1)
        self.assertIs(controller.state, PopupState.HIDING)

    def test_hotkey_during_reveal_is_ignored(self):
        controller = self._create_controller()
        self._tick(controller, IN_CORNER)

        controller.dispatch(HotkeyPressed())

        self.assertIs(controller.state, PopupState.SHOWING)
        self.assertIs(controller.method, ActivationMethod.GESTURE)
        self.assertEqual(self.probe.calls, 1)

    def test_show_requires_a_method(self):
        controller = self._create_controller()
        with self.assertRaises(ValueError):
            controller.show(ActivationMethod.NONE)


class AcquisitionTests(ActivationControllerTestMixin, unittest.TestCase):
    def test_attribute_unsupported_falls_back_to_clipboard_once(self):
        probe = FakeProbe(Error(AccessibilityFailure.ATTRIBUTE_UNSUPPORTED, -25205))
        controller = self._create_controller(selection_probe=probe)

        self._tick(controller, IN_CORNER)

        self.assertEqual(self.clipboard.calls, 1)
        self.assertEqual(self.translator.calls, [("from clipboard", "ru", "en")])
        self.assertEqual(self.popup.reveals[0].original, "from clipboard")

    def test_cannot_complete_falls_back_to_clipboard(self):
        probe = FakeProbe(Error(AccessibilityFailure.CANNOT_COMPLETE, -25204))
        controller = self._create_controller(selection_probe=probe)

        self._tick(controller, IN_CORNER)

        self.assertEqual(self.clipboard.calls, 1)
        self.assertEqual(len(self.popup.reveals), 1)

    def test_other_error_abandons_without_clipboard(self):
        probe = FakeProbe(Error(AccessibilityFailure.OTHER, -25200))
        controller = self._create_controller(selection_probe=probe)

        self._tick(controller, IN_CORNER)

        self.assertEqual(self.clipboard.calls, 0)
        self.assertEqual(self.popup.reveals, [])
        self.assertEqual(self.translator.calls, [])
        self.assertIs(controller.state, PopupState.HIDDEN)
        self.assertIs(controller.method, ActivationMethod.NONE)
        self.assertFalse(controller.busy)

    def test_no_selection_keeps_popup_hidden(self):
        controller = self._create_controller(selection_probe=FakeProbe(NoSelection()))

        controller.dispatch(HotkeyPressed())
        controller.run_pending()

        self.assertEqual(self.clipboard.calls, 0)
        self.assertEqual(self.popup.reveals, [])
        self.assertIs(controller.state, PopupState.HIDDEN)
        self.assertEqual(self.sound.cues, 0)

    def test_empty_clipboard_is_treated_as_no_selection(self):
        probe = FakeProbe(Error(AccessibilityFailure.ATTRIBUTE_UNSUPPORTED, -25205))
        controller = self._create_controller(
            selection_probe=probe, clipboard_bridge=FakeClipboardBridge(text=None)
        )

        self._tick(controller, IN_CORNER)

        self.assertEqual(self.popup.reveals, [])
        self.assertIs(controller.state, PopupState.HIDDEN)
        self.assertFalse(controller.busy)

    def test_probe_crash_releases_busy_flag(self):
        controller = self._create_controller(selection_probe=RaisingProbe())

        with self.assertLogs("popup_translator.activation", level="ERROR"):
            self._tick(controller, IN_CORNER)

        self.assertIs(controller.state, PopupState.HIDDEN)
        self.assertFalse(controller.busy)


class TranslationHandlingTests(ActivationControllerTestMixin, unittest.TestCase):
    def test_translation_failure_is_shown_as_placeholder(self):
        translator = FakeTranslator(error=RequestFailedError("timed out"))
        controller = self._create_controller(translator=translator)

        self._show_with_gesture(controller)

        content = self.popup.reveals[0]
        self.assertTrue(content.failed)
        self.assertIn("Translation failed", content.translated)
        self.assertIn("timed out", content.translated)
        self.assertIs(controller.state, PopupState.VISIBLE)

    def test_language_change_while_visible_updates_popup(self):
        controller = self._create_controller()
        self._show_with_gesture(controller)

        controller.set_languages("ru", "es")
        controller.run_pending()

        self.assertEqual(self.translator.calls[-1], ("hello", "ru", "es"))
        self.assertEqual(self.popup.updates[-1].translated, "<hello:es>")
        self.assertEqual(controller.languages, ("ru", "es"))

    def test_language_change_during_reveal_retranslates_after_reveal(self):
        controller = self._create_controller()
        self._tick(controller, IN_CORNER)

        controller.set_languages("ru", "fr")
        controller.run_pending()
        self.assertEqual(self.popup.updates, [])

        self.popup.finish_animation()
        controller.run_pending()

        self.assertEqual(self.popup.updates[-1].translated, "<hello:fr>")

    def test_late_translation_for_hidden_popup_is_dropped(self):
        spawner = DeferredSpawner()
        controller = self._create_controller(spawn=spawner)
        controller.dispatch(CursorTick(IN_CORNER, SCREEN))
        spawner.run_all()
        controller.run_pending()
        spawner.run_all()
        controller.run_pending()
        self.popup.finish_animation()
        controller.run_pending()
        self.assertIs(controller.state, PopupState.VISIBLE)

        controller.set_languages("ru", "es")
        controller.run_pending()
        self.assertEqual(len(spawner.jobs), 1)

        controller.hide()
        self.popup.finish_animation()
        controller.run_pending()
        self.assertIs(controller.state, PopupState.HIDDEN)

        spawner.run_all()
        controller.run_pending()

        self.assertEqual(self.popup.updates, [])
        self.assertEqual(len(self.popup.reveals), 1)
        self.assertIs(controller.state, PopupState.HIDDEN)

    def test_translation_from_previous_attempt_does_not_reveal_new_one(self):
        spawner = DeferredSpawner()
        controller = self._create_controller(spawn=spawner)
        controller.show(ActivationMethod.HOTKEY)
        spawner.run_all()
        controller.run_pending()
        stale_job = spawner.jobs.pop()
        self.assertIs(controller.state, PopupState.SHOWING)

        # Force the attempt to end, then begin a new one.
        controller._settle_hidden()
        controller.show(ActivationMethod.GESTURE)

        stale_job()
        controller.run_pending()

        self.assertEqual(self.popup.reveals, [])

    def test_reveal_failure_resets_state(self):
        popup = FakePopup()
        popup.fail_on_reveal = True
        controller = self._create_controller(popup=popup)

        with self.assertLogs("popup_translator.activation", level="ERROR"):
            self._tick(controller, IN_CORNER)

        self.assertIs(controller.state, PopupState.HIDDEN)
        self.assertIs(controller.method, ActivationMethod.NONE)
        self.assertFalse(controller.busy)


class ControllerLifecycleTests(ActivationControllerTestMixin, unittest.TestCase):
    def test_binding_change_is_applied_to_monitor(self):
        controller = self._create_controller()
        binding = HotkeyBinding(enabled=True, key_index=2)

        controller.apply_hotkey_binding(binding)
        controller.run_pending()

        self.assertEqual(self.monitor.applied, [binding])

    def test_run_loop_processes_events_until_stopped(self):
        controller = self._create_controller()
        handled = threading.Event()
        controller.apply_hotkey_binding(HotkeyBinding())
        original_apply = self.monitor.apply

        def apply(binding):
            original_apply(binding)
            handled.set()

        self.monitor.apply = apply
        controller.start()
        try:
            self.assertTrue(handled.wait(timeout=1))
        finally:
            controller.stop()

        self.assertEqual(self.monitor.unsubscribed, 1)


if __name__ == "__main__":
    unittest.main()
