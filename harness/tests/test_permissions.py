import sys
import unittest
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from bridge_fakes import FakeTimers, Host

from webbridge.config import PollingConfig
from webbridge.dispatcher import Dispatcher
from webbridge.envelope import MessageType
from webbridge.permissions import BRIDGE_POST_ERROR, TIMEOUT, PermissionPoller


class PermissionPollerTests(unittest.TestCase):
    def setUp(self):
        self.host = Host()
        self.timers = FakeTimers()
        self.dispatcher = Dispatcher(self.host.transport)
        self.poller = PermissionPoller(self.host.transport, self.timers)
        self.poller.bind(self.dispatcher)

    def tearDown(self):
        self.poller.close()

    def _checks(self):
        return [frame for frame in self.host.sent if frame["type"] == "CHECK_PERMISSION"]

    def test_timeout_then_single_retry_after_backoff(self):
        self.assertTrue(self.poller.check("push"))
        self.assertEqual(self._checks(), [{"type": "CHECK_PERMISSION", "payload": {"name": "push"}}])

        self.timers.advance(2.999)
        self.assertIsNone(self.poller.error)
        self.timers.advance(0.001)
        self.assertEqual(self.poller.error, TIMEOUT)
        self.assertFalse(self.poller.in_flight)
        self.assertEqual(len(self._checks()), 1)

        self.timers.advance(4.999)
        self.assertEqual(len(self._checks()), 1)
        self.timers.advance(0.001)
        self.assertEqual(len(self._checks()), 2)
        self.assertEqual(self._checks()[-1]["payload"], {"name": "all"})

    def test_duplicate_check_while_in_flight_is_ignored(self):
        self.assertTrue(self.poller.check("camera"))
        self.assertFalse(self.poller.check("push"))
        self.assertEqual(len(self._checks()), 1)

        self.host.reply(MessageType.PERMISSION_STATUS, {"camera": {"granted": True, "blocked": False}})
        self.assertTrue(self.poller.check("push"))
        self.assertEqual(len(self._checks()), 2)

    def test_status_resolves_and_cancels_timeout(self):
        self.poller.check("all")
        self.timers.advance(1)
        self.host.reply(
            MessageType.PERMISSION_STATUS,
            {"camera": {"granted": True}, "push": {"granted": False, "blocked": True}},
        )
        self.timers.advance(10)

        self.assertIsNone(self.poller.error)
        self.assertEqual(self.poller.last_updated_at, 1_000)
        self.assertEqual(
            self.poller.snapshot(),
            {"camera": {"granted": True, "blocked": None}, "push": {"granted": False, "blocked": True}},
        )
        self.assertEqual(len(self._checks()), 1)

    def test_backoff_grows_and_caps(self):
        self.poller.check("all")
        waits = []
        for _ in range(4):
            wait = self.poller.next_backoff_seconds
            self.timers.advance(3)
            waits.append(wait)
            self.timers.advance(wait)

        self.assertEqual(waits, [5.0, 15.0, 60.0, 60.0])
        self.assertEqual(len(self._checks()), 5)

    def test_success_resets_backoff(self):
        self.poller.check("all")
        self.timers.advance(3)
        self.timers.advance(5)
        self.host.reply(MessageType.PERMISSION_STATUS, {"camera": {"granted": True}})

        self.assertEqual(self.poller.next_backoff_seconds, 5.0)
        self.assertEqual(self.timers.pending(), [])

    def test_check_without_native_bridge_fails_and_backs_off(self):
        self.host.transport.react_native.detach()
        with self.assertLogs("webbridge.permissions", level="WARNING"):
            self.assertFalse(self.poller.check("all"))

        self.assertEqual(self.poller.error, BRIDGE_POST_ERROR)
        self.assertFalse(self.poller.in_flight)
        self.assertEqual([timer.due_ms for timer in self.timers.pending()], [5_000])

        self.host.transport.react_native.attach(self.host.frames.append)
        self.timers.advance(5)
        self.assertEqual(len(self._checks()), 1)
        self.assertTrue(self.poller.in_flight)

    def test_unknown_name_is_rejected(self):
        with self.assertRaises(ValueError):
            self.poller.check("microphone")
        with self.assertRaises(ValueError):
            self.poller.request_permission("all")

    def test_request_permission_posts_prompt(self):
        self.assertTrue(self.poller.request_permission("camera"))
        self.assertEqual(self.host.last(MessageType.REQUEST_PERMISSION)["payload"], {"name": "camera"})

    def test_focus_is_debounced(self):
        self.assertTrue(self.poller.notify_focus())
        self.host.reply(MessageType.PERMISSION_STATUS, {})
        self.timers.advance(0.5)
        self.assertFalse(self.poller.notify_focus())
        self.timers.advance(0.5)
        self.assertTrue(self.poller.notify_focus())

    def test_start_polls_periodically(self):
        poller = PermissionPoller(
            self.host.transport, self.timers, PollingConfig(interval_seconds=60, timeout_seconds=1)
        )
        poller.bind(self.dispatcher)
        poller.start()
        self.host.reply(MessageType.PERMISSION_STATUS, {})
        self.poller.close()

        self.timers.advance(60)
        self.assertEqual(len(self._checks()), 2)
        poller.close()
        self.assertEqual(self.timers.pending(), [])


if __name__ == "__main__":
    unittest.main()
