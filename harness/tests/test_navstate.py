import sys
import unittest
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from bridge_fakes import FakeTimers, Host

from webbridge.dispatcher import Dispatcher
from webbridge.envelope import MessageType
from webbridge.navstate import (
    BackAction,
    BackNavigator,
    BackTestPanel,
    Hint,
    History,
    NavRegister,
    NavState,
    Phase,
    decide,
)


def _never(_: str) -> bool:
    raise AssertionError("confirm must not be asked")


class NavStateTests(unittest.TestCase):
    def test_payload_uses_wire_names(self):
        state = NavState(is_root=True, has_blocking_ui=True, hint=Hint.MODAL, context={"count": 1})
        self.assertEqual(
            state.to_payload(),
            {
                "isRoot": True,
                "canGoBackInWeb": False,
                "hasBlockingUI": True,
                "needsConfirm": False,
                "hint": "webview_back_modal",
                "context": {"count": 1},
            },
        )

    def test_from_payload_only_trusts_true(self):
        state = NavState.from_payload({"isRoot": "yes", "hasBlockingUI": 1, "needsConfirm": True})
        self.assertFalse(state.is_root)
        self.assertFalse(state.has_blocking_ui)
        self.assertTrue(state.needs_confirm)
        self.assertEqual(NavState.from_payload(None), NavState())

    def test_context_is_ignored_for_equality(self):
        self.assertEqual(NavState(hint="x", context={"a": 1}), NavState(hint="x", context={"b": 2}))


class DecideTests(unittest.TestCase):
    def test_blocking_wins_over_confirm(self):
        nav = NavState(has_blocking_ui=True, needs_confirm=True, can_go_back_in_web=True, is_root=True)
        self.assertEqual(decide(nav, confirm=_never, has_open_ui=True), BackAction.CLOSE_BLOCKING_UI)

    def test_all_false_is_noop(self):
        self.assertEqual(decide(NavState(), confirm=_never, has_open_ui=False), BackAction.NOOP)

    def test_declined_confirm_stays(self):
        nav = NavState(needs_confirm=True, can_go_back_in_web=True)
        self.assertEqual(decide(nav, confirm=lambda _: False, has_open_ui=False), BackAction.CONFIRM_DECLINED)

    def test_confirmed_leave_goes_back_or_exits(self):
        accept = lambda _: True  # noqa: E731
        self.assertEqual(
            decide(NavState(needs_confirm=True, can_go_back_in_web=True), confirm=accept, has_open_ui=False),
            BackAction.HISTORY_BACK,
        )
        self.assertEqual(
            decide(NavState(needs_confirm=True, is_root=True), confirm=accept, has_open_ui=False),
            BackAction.EXIT_SIGNAL,
        )

    def test_history_before_root_before_open_ui(self):
        self.assertEqual(
            decide(NavState(can_go_back_in_web=True, is_root=True), confirm=_never, has_open_ui=True),
            BackAction.HISTORY_BACK,
        )
        self.assertEqual(decide(NavState(is_root=True), confirm=_never, has_open_ui=True), BackAction.EXIT_SIGNAL)
        self.assertEqual(decide(NavState(), confirm=_never, has_open_ui=True), BackAction.CLOSE_OPEN_UI)


class NavRegisterTests(unittest.TestCase):
    def setUp(self):
        self.host = Host()
        self.register = NavRegister(self.host.transport, NavState(is_root=True, hint=Hint.ENTRY))

    def test_release_restores_base(self):
        owner = self.register.claim("sheet")
        owner.publish(NavState(has_blocking_ui=True, hint=Hint.MODAL))
        owner.release()

        self.assertEqual(self.register.current, NavState(is_root=True, hint=Hint.ENTRY))
        self.assertFalse(self.host.last(MessageType.NAV_STATE)["payload"]["hasBlockingUI"])

    def test_shadowed_owner_is_held_until_on_top(self):
        lower = self.register.claim("lower")
        lower.publish(NavState(hint="lower"))
        upper = self.register.claim("upper")
        upper.publish(NavState(has_blocking_ui=True, hint="upper"))

        published = self.register.published
        lower.publish(NavState(hint="lower-2"))
        self.assertEqual(self.register.published, published)
        self.assertEqual(self.register.current.hint, "upper")

        upper.release()
        self.assertEqual(self.register.current.hint, "lower-2")
        lower.release()
        self.assertEqual(self.register.current.hint, Hint.ENTRY)
        self.assertEqual(self.register.owners(), [])

    def test_each_owner_transition_emits_one_nav_state(self):
        def emitted(step):
            before = self.host.sent_types().count("NAV_STATE")
            step()
            return self.host.sent_types().count("NAV_STATE") - before

        lower = self.register.claim("lower")
        upper = self.register.claim("upper")
        silent = self.register.claim("silent")

        self.assertEqual(emitted(lambda: lower.publish(NavState(hint="lower"))), 1)
        self.assertEqual(emitted(lambda: upper.publish(NavState(has_blocking_ui=True, hint="upper"))), 1)
        self.assertEqual(emitted(lambda: lower.publish(NavState(hint="lower-2"))), 0)
        self.assertEqual(emitted(silent.release), 0)
        self.assertEqual(emitted(upper.release), 1)
        self.assertEqual(self.host.last(MessageType.NAV_STATE)["payload"]["hint"], "lower-2")
        self.assertEqual(emitted(lower.release), 1)
        self.assertEqual(emitted(lower.release), 0)

    def test_releasing_a_shadowed_owner_emits_nothing(self):
        lower = self.register.claim("lower")
        lower.publish(NavState(hint="lower"))
        upper = self.register.claim("upper")
        upper.publish(NavState(hint="upper"))

        self.host.clear()
        lower.release()

        self.assertEqual(self.host.frames, [])
        self.assertEqual(self.register.current.hint, "upper")

    def test_publish_base_waits_for_owners(self):
        with self.register.claim("sheet") as owner:
            owner.publish(NavState(has_blocking_ui=True))
            self.assertFalse(self.register.publish_base(NavState(can_go_back_in_web=True)))
        self.assertTrue(self.register.current.can_go_back_in_web)


class BackTestPanelTests(unittest.TestCase):
    def setUp(self):
        self.host = Host()
        self.timers = FakeTimers(start_ms=1_000)
        self.register = NavRegister(self.host.transport, NavState(hint=Hint.ENTRY))
        self.panel = BackTestPanel(self.register, History(), self.timers, run_duration_s=1.5)
        self.panel.set_field("title", "back test")

    def test_open_then_close_leaves_no_blocking_state(self):
        self.panel.open()
        self.assertTrue(self.register.current.has_blocking_ui)
        self.assertEqual(self.register.current.hint, Hint.MODAL)

        self.panel.close()

        self.assertFalse(self.register.current.has_blocking_ui)
        self.assertFalse(self.host.last(MessageType.NAV_STATE)["payload"]["hasBlockingUI"])

    def test_close_while_running_cancels_the_run(self):
        self.panel.set_field("mode", "modal")
        self.panel.open()
        self.assertTrue(self.panel.submit())
        self.assertIs(self.panel.phase, Phase.RUNNING)

        self.panel.close()
        self.timers.advance(5)

        self.assertIs(self.panel.phase, Phase.ENTRY)
        self.assertFalse(self.register.current.has_blocking_ui)
        self.assertEqual(self.timers.pending(), [])

    def test_run_reaches_result_after_duration(self):
        self.panel.set_field("mode", "form")
        self.panel.open()
        self.panel.submit()
        self.assertIs(self.panel.phase, Phase.CONFIRM_PENDING)
        self.assertTrue(self.register.current.needs_confirm)

        self.timers.advance(1.5)

        self.assertIs(self.panel.phase, Phase.RESULT)
        self.assertEqual(self.register.current.hint, Hint.RESULT)
        self.assertTrue(self.register.current.has_blocking_ui)
        self.assertEqual(self.register.current.context["at"], 2_500)

    def test_submit_refuses_invalid_form(self):
        self.panel.set_field("title", "  ")
        self.panel.open()
        self.assertIn("title", self.panel.errors)
        self.assertFalse(self.panel.submit())
        self.assertIs(self.panel.phase, Phase.OPEN)

    def test_manual_flags_override_scenario(self):
        self.panel.set_field("use_manual_flags", True)
        self.panel.set_field("m_is_root", True)
        self.panel.set_field("m_can_go_back_in_web", True)
        payload = self.panel.preview().payload
        self.assertTrue(payload["isRoot"])
        self.assertTrue(payload["canGoBackInWeb"])
        self.assertFalse(payload["hasBlockingUI"])

    def test_each_panel_transition_emits_one_nav_state(self):
        def emitted(step):
            before = self.host.sent_types().count("NAV_STATE")
            step()
            return self.host.sent_types().count("NAV_STATE") - before

        self.assertEqual(emitted(self.panel.open), 1)
        self.assertEqual(emitted(self.panel.submit), 1)
        self.assertEqual(emitted(lambda: self.timers.advance(1.5)), 1)
        self.assertIs(self.panel.phase, Phase.RESULT)
        self.assertEqual(emitted(self.panel.abort), 1)
        self.assertIs(self.panel.phase, Phase.OPEN)
        self.assertEqual(emitted(self.panel.close), 1)
        self.assertEqual(emitted(lambda: self.timers.advance(5)), 0)
        self.assertFalse(self.register.current.has_blocking_ui)

    def test_abort_returns_to_open(self):
        self.panel.open()
        self.panel.submit()
        self.panel.abort()
        self.timers.advance(5)
        self.assertIs(self.panel.phase, Phase.OPEN)
        self.assertEqual(self.register.current.hint, Hint.MODAL)

    def test_request_close_asks_while_running(self):
        asked = []
        self.panel.confirm = lambda text: asked.append(text) or False
        self.panel.open()
        self.panel.submit()

        self.assertFalse(self.panel.request_close())
        self.assertTrue(self.panel.is_open)
        self.assertEqual(len(asked), 1)

    def test_context_manager_tears_down(self):
        with self.panel:
            self.panel.open()
        self.assertFalse(self.register.current.has_blocking_ui)


class BackNavigatorTests(unittest.TestCase):
    def setUp(self):
        self.host = Host()
        self.dispatcher = Dispatcher(self.host.transport)
        self.history = History(["/", "/detail"])
        self.register = NavRegister(self.host.transport, NavState(can_go_back_in_web=True, hint=Hint.ENTRY))
        self.timers = FakeTimers()
        self.panel = BackTestPanel(self.register, self.history, self.timers)
        self.exits = []
        self.navigator = BackNavigator(
            self.register,
            self.history,
            confirm=_never,
            surfaces=[self.panel],
            on_exit=self.exits.append,
        )
        self.navigator.bind(self.dispatcher)

    def _back(self, nav: NavState) -> None:
        self.host.reply(MessageType.BACK_REQUEST, {"nav": nav.to_payload()})

    def test_blocking_back_request_closes_only_the_panel(self):
        self.panel.open()
        self._back(NavState(has_blocking_ui=True, needs_confirm=True, can_go_back_in_web=True))

        self.assertEqual(list(self.navigator.actions), [BackAction.CLOSE_BLOCKING_UI])
        self.assertFalse(self.panel.is_open)
        self.assertEqual(self.history.current, "/detail")
        self.assertFalse(self.register.current.has_blocking_ui)

    def test_history_back_republishes_base(self):
        self._back(NavState(can_go_back_in_web=True))

        self.assertEqual(self.history.current, "/")
        self.assertFalse(self.register.current.can_go_back_in_web)
        self.assertFalse(self.host.last(MessageType.NAV_STATE)["payload"]["canGoBackInWeb"])

    def test_root_back_signals_exit(self):
        self._back(NavState(is_root=True))
        self.assertEqual(list(self.navigator.actions), [BackAction.EXIT_SIGNAL])
        self.assertEqual(len(self.exits), 1)

    def test_all_false_does_nothing(self):
        self.host.clear()
        self._back(NavState())
        self.assertEqual(list(self.navigator.actions), [BackAction.NOOP])
        self.assertEqual(self.history.current, "/detail")
        self.assertEqual(self.host.frames, [])

    def test_action_history_is_capped(self):
        navigator = BackNavigator(self.register, History(), confirm=_never, max_actions=2)
        for _ in range(3):
            navigator.handle(NavState())
        navigator.handle(NavState(is_root=True))

        self.assertEqual(list(navigator.actions), [BackAction.NOOP, BackAction.EXIT_SIGNAL])


if __name__ == "__main__":
    unittest.main()
