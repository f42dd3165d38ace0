"""One bridge harness: every section wired to a single transport and dispatcher."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from .auth import AuthSession
from .boot import BootConsole, BootMonitor, web_ready
from .config import HarnessConfig
from .dispatcher import Dispatcher
from .envelope import Message, MessageType
from .navstate import BackNavigator, BackTestPanel, Hint, History, NavRegister, NavState, nav_state_message
from .permissions import PermissionPoller
from .push import PushInbox
from .section_log import AggregateLog, SectionLog
from .share import DownloadSession, ShareSession
from .storage import MemoryStorage
from .subscription import SubscriptionSession
from .timers import LoopTimers, Timers
from .transport import Transport

logger = logging.getLogger(__name__)

SECTIONS: Dict[str, tuple] = {
    "boot": (
        MessageType.SPLASH_STATE,
        MessageType.OFFLINE_FALLBACK,
        MessageType.RETRY_TRIGGER,
        MessageType.WEB_READY_ACK,
        MessageType.WEB_ERROR_ACK,
    ),
    "auth": (MessageType.SIGNIN_RESULT, MessageType.SIGNOUT_RESULT),
    "subscription": (MessageType.SUBSCRIPTION_RESULT, MessageType.RESTORE_RESULT),
    "permission": (MessageType.PERMISSION_STATUS,),
    "push": (MessageType.PUSH_EVENT, MessageType.PUSH_TOKEN),
    "share": (MessageType.SHARE_RESULT, MessageType.DOWNLOAD_RESULT),
    "back": (MessageType.BACK_REQUEST,),
}


def _accept(_: str) -> bool:
    return True


class Harness:
    def __init__(
        self,
        config: HarnessConfig | None = None,
        *,
        transport: Transport | None = None,
        timers: Timers | None = None,
        storage=None,
        confirm: Callable[[str], bool] = _accept,
    ) -> None:
        self.config = config or HarnessConfig()
        self.transport = transport or Transport()
        self.timers = timers or LoopTimers()
        self.storage = storage if storage is not None else MemoryStorage()
        self.dispatcher = Dispatcher()
        self.exits: List[NavState] = []

        self.history = History()
        self.register = NavRegister(
            self.transport,
            NavState(
                is_root=self.config.is_root,
                can_go_back_in_web=self.history.can_go_back,
                hint=Hint.ENTRY,
            ),
        )
        self.back_panel = BackTestPanel(
            self.register,
            self.history,
            self.timers,
            is_root=self.config.is_root,
            run_duration_s=self.config.run_duration_seconds,
            confirm=confirm,
        )
        self.subscription = SubscriptionSession(self.transport)
        self.share = ShareSession(self.transport)
        self.navigator = BackNavigator(
            self.register,
            self.history,
            confirm=confirm,
            surfaces=(self.subscription, self.share, self.back_panel),
            on_exit=self.exits.append,
        )
        self.poller = PermissionPoller(self.transport, self.timers, self.config.polling)
        self.auth = AuthSession(
            self.transport, self.storage, self.timers, redirect_uri=self.config.signin_redirect_uri
        )
        self.download = DownloadSession(self.transport)
        self.push = PushInbox()
        self.boot = BootConsole(self.transport, self.timers)
        self.boot_monitor = BootMonitor()

        self.aggregate = AggregateLog(self.config.aggregate_log_len)
        self.sections: Dict[str, SectionLog] = {
            name: SectionLog(types, self.config.section_log_len) for name, types in SECTIONS.items()
        }
        self._started = False
        self.ready_at: Optional[int] = None

    def start(self, *, poll: bool = True) -> None:
        """Bind every consumer, announce WEB_READY and publish the page's nav state."""

        if self._started:
            return
        self._started = True
        self.dispatcher.attach(self.transport)
        self.aggregate.bind(self.dispatcher)
        for log in self.sections.values():
            log.bind(self.dispatcher)
        self.navigator.bind(self.dispatcher)
        for consumer in (
            self.poller,
            self.auth,
            self.subscription,
            self.share,
            self.download,
            self.push,
            self.boot_monitor,
        ):
            consumer.bind(self.dispatcher)

        self.ready_at = self.timers.now_ms()
        self.transport.send(web_ready(self.ready_at, self.config.version))
        self.register.publish_base()
        if poll:
            self.poller.start()
        logger.info("harness started version=%s", self.config.version)

    def handshake(self) -> List[Message]:
        """What a host attaching late has missed: WEB_READY and the current NAV_STATE."""

        if not self._started or self.ready_at is None:
            return []
        return [web_ready(self.ready_at, self.config.version), nav_state_message(self.register.current)]

    def navigate(self, location: str) -> None:
        self.history.push(location)
        self.register.publish_base(
            NavState(
                is_root=self.config.is_root,
                can_go_back_in_web=self.history.can_go_back,
                hint=Hint.ENTRY,
            )
        )

    def section(self, name: str) -> Optional[SectionLog]:
        return self.sections.get(name)

    def close(self) -> None:
        self.back_panel.teardown()
        self.poller.close()
        self.auth.close()
        for session in (self.subscription, self.share, self.download):
            session.close_binding()
        self.push.close()
        self.boot_monitor.close()
        self.navigator.unbind()
        self.aggregate.close()
        for log in self.sections.values():
            log.close()
        self.dispatcher.detach()
        self._started = False

    def __enter__(self) -> "Harness":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
