"""Navigation state negotiation with the native back-button handler.

The web layer publishes a ``NAV_STATE`` snapshot on every transition; the
host echoes the last snapshot back inside ``BACK_REQUEST`` when the hardware
back action fires, and the web layer reacts with exactly one action chosen by
a fixed precedence (see :func:`decide`).
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Protocol

from .envelope import Message, MessageType
from .timers import TimerHandle, Timers
from .transport import Binding, RawEvent, Transport

logger = logging.getLogger(__name__)


class Hint:
    ENTRY = "webview_back_entry"
    MODAL = "webview_back_modal"
    RUNNING = "webview_back_running"
    RESULT = "webview_back_result"


@dataclass(frozen=True)
class NavState:
    is_root: bool = False
    can_go_back_in_web: bool = False
    has_blocking_ui: bool = False
    needs_confirm: bool = False
    hint: str = ""
    # Diagnostics only; never consulted when deciding how to react to back.
    context: Optional[Dict[str, Any]] = field(default=None, compare=False)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "isRoot": self.is_root,
            "canGoBackInWeb": self.can_go_back_in_web,
            "hasBlockingUI": self.has_blocking_ui,
            "needsConfirm": self.needs_confirm,
            "hint": self.hint,
        }
        if self.context:
            payload["context"] = dict(self.context)
        return payload

    @classmethod
    def from_payload(cls, payload: Any) -> "NavState":
        if not isinstance(payload, dict):
            return cls()
        context = payload.get("context")
        hint = payload.get("hint")
        return cls(
            is_root=payload.get("isRoot") is True,
            can_go_back_in_web=payload.get("canGoBackInWeb") is True,
            has_blocking_ui=payload.get("hasBlockingUI") is True,
            needs_confirm=payload.get("needsConfirm") is True,
            hint=hint if isinstance(hint, str) else "",
            context=context if isinstance(context, dict) else None,
        )


def nav_state_message(state: NavState) -> Message:
    return Message.of(MessageType.NAV_STATE, state.to_payload())


class History:
    """The web layer's local navigation history (``window.history`` analogue)."""

    def __init__(self, entries: Iterable[str] = ("/",)) -> None:
        self._entries: List[str] = list(entries) or ["/"]

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def current(self) -> str:
        return self._entries[-1]

    @property
    def can_go_back(self) -> bool:
        return len(self._entries) > 1

    def push(self, location: str) -> None:
        self._entries.append(location)

    def back(self) -> bool:
        if not self.can_go_back:
            return False
        self._entries.pop()
        return True


class NavOwner:
    """A claim on the navigation register held by one foreground UI."""

    def __init__(self, register: "NavRegister", name: str) -> None:
        self.register = register
        self.name = name
        self.state: Optional[NavState] = None
        self.released = False

    def publish(self, state: NavState) -> None:
        self.register._publish(self, state)

    def release(self) -> None:
        self.register._release(self)

    def __enter__(self) -> "NavOwner":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class NavRegister:
    """Latest-value register for the published NavState.

    Foreground UIs claim an owner; the published state is the newest owner's
    state, or the base (page) state once every owner has released. A
    shadowed owner's updates are kept and published when it is on top again.
    """

    def __init__(self, transport: Transport, base: NavState | None = None) -> None:
        self._transport = transport
        self._base = base or NavState(hint=Hint.ENTRY)
        self._owners: List[NavOwner] = []
        self._current = self._base
        self.published = 0

    @property
    def current(self) -> NavState:
        return self._current

    @property
    def base(self) -> NavState:
        return self._base

    def owners(self) -> List[str]:
        return [owner.name for owner in self._owners]

    def claim(self, name: str) -> NavOwner:
        owner = NavOwner(self, name)
        self._owners.append(owner)
        return owner

    def publish_base(self, state: NavState | None = None) -> bool:
        """Replace the base state; publish it unless an owner is in control."""

        if state is not None:
            self._base = state
        if self._effective() is not self._base:
            return False
        self._emit(self._base)
        return True

    def _effective(self) -> NavState:
        for owner in reversed(self._owners):
            if owner.state is not None:
                return owner.state
        return self._base

    def _publish(self, owner: NavOwner, state: NavState) -> None:
        if owner.released:
            logger.warning("ignoring nav state from released owner %s", owner.name)
            return
        owner.state = state
        if self._effective() is state:
            self._emit(state)
        else:
            logger.debug("owner %s is shadowed, holding %s", owner.name, state.hint)

    def _release(self, owner: NavOwner) -> None:
        if owner.released:
            return
        owner.released = True
        was_effective = owner.state is not None and self._effective() is owner.state
        try:
            self._owners.remove(owner)
        except ValueError:
            return
        owner.state = None
        if was_effective:
            self._emit(self._effective())

    def _emit(self, state: NavState) -> None:
        self._current = state
        self.published += 1
        self._transport.send(nav_state_message(state))


class Phase(str, Enum):
    ENTRY = "entry"
    OPEN = "open"
    RUNNING = "running"
    CONFIRM_PENDING = "confirm_pending"
    RESULT = "result"


MODES = ("detail", "home", "modal", "form")


@dataclass
class BackTestForm:
    title: str = ""
    mode: str = "detail"
    hint: str = "detail"
    count: int = 1
    use_manual_flags: bool = False
    m_is_root: bool = False
    m_can_go_back_in_web: bool = False
    m_has_blocking_ui: bool = False
    m_needs_confirm: bool = False

    def errors(self) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        if not (self.title or "").strip():
            errors["title"] = "title is required"
        if self.mode not in MODES:
            errors["mode"] = "mode must be one of " + ", ".join(MODES)
        if not (self.hint or "").strip():
            errors["hint"] = "hint is required"
        try:
            count = int(self.count)
        except (TypeError, ValueError):
            count = 0
        if count < 1:
            errors["count"] = "count must be at least 1"
        return errors

    def context(self, at_ms: int) -> Dict[str, Any]:
        try:
            count = int(self.count)
        except (TypeError, ValueError):
            count = 0
        return {
            "title": (self.title or "").strip(),
            "scenario": self.mode,
            "hint": (self.hint or "").strip(),
            "count": count,
            "at": at_ms,
            "manual": bool(self.use_manual_flags),
        }


@dataclass(frozen=True)
class Overrides:
    is_root: Optional[bool] = None
    can_go_back_in_web: Optional[bool] = None


class BackTestPanel:
    """Drawer that drives the back-navigation test: edit, run, show result.

    Every transition publishes exactly one NAV_STATE through the register.
    Any exit path (close, dismiss, teardown) releases the blocking claim.
    """

    def __init__(
        self,
        register: NavRegister,
        history: History,
        timers: Timers,
        *,
        is_root: bool = False,
        run_duration_s: float = 1.5,
        confirm: Callable[[str], bool] | None = None,
    ) -> None:
        self.register = register
        self.history = history
        self.timers = timers
        self.is_root = is_root
        self.run_duration_s = run_duration_s
        self.confirm = confirm
        self.form = BackTestForm()
        self.phase = Phase.ENTRY
        self._owner: Optional[NavOwner] = None
        self._run_timer: Optional[TimerHandle] = None
        self._overrides = Overrides()

    @property
    def is_open(self) -> bool:
        return self.phase is not Phase.ENTRY

    @property
    def errors(self) -> Dict[str, str]:
        return self.form.errors()

    def set_field(self, key: str, value: Any) -> None:
        if not hasattr(self.form, key):
            raise AttributeError(f"unknown form field: {key}")
        setattr(self.form, key, value)

    def build_state(
        self,
        hint: str,
        has_blocking_ui: bool,
        needs_confirm: bool,
        overrides: Overrides = Overrides(),
    ) -> NavState:
        is_root = self.is_root if overrides.is_root is None else overrides.is_root
        can_go_back = (
            self.history.can_go_back if overrides.can_go_back_in_web is None else overrides.can_go_back_in_web
        )
        return NavState(
            is_root=is_root,
            can_go_back_in_web=can_go_back,
            has_blocking_ui=has_blocking_ui,
            needs_confirm=needs_confirm,
            hint=hint,
            context=self.form.context(self.timers.now_ms()),
        )

    def preview(self) -> Message:
        """The NAV_STATE that submitting the current form would publish."""

        has_blocking_ui, needs_confirm, overrides = self._form_flags()
        hint = (self.form.hint or "detail").strip()
        return nav_state_message(self.build_state(hint, has_blocking_ui, needs_confirm, overrides))

    def _send(self, state: NavState) -> None:
        if self._owner is None:
            self._owner = self.register.claim("webview_back_panel")
        self._owner.publish(state)

    def _release(self) -> None:
        owner, self._owner = self._owner, None
        if owner is not None:
            owner.release()
        else:
            self.register.publish_base()

    def _cancel_run(self) -> None:
        timer, self._run_timer = self._run_timer, None
        if timer is not None:
            timer.cancel()

    def _form_flags(self) -> tuple[bool, bool, Overrides]:
        form = self.form
        if form.use_manual_flags:
            return (
                bool(form.m_has_blocking_ui),
                bool(form.m_needs_confirm),
                Overrides(is_root=bool(form.m_is_root), can_go_back_in_web=bool(form.m_can_go_back_in_web)),
            )
        return form.mode == "modal", form.mode == "form", Overrides(is_root=form.mode == "home")

    def open(self) -> None:
        self._cancel_run()
        self.phase = Phase.OPEN
        self._send(self.build_state(Hint.MODAL, True, False))

    def close(self) -> None:
        self._cancel_run()
        self.phase = Phase.ENTRY
        self._overrides = Overrides()
        self._release()

    def submit(self) -> bool:
        if self.errors or self.phase not in (Phase.OPEN, Phase.RESULT):
            return False
        has_blocking_ui, needs_confirm, overrides = self._form_flags()
        self._overrides = overrides
        self.phase = Phase.CONFIRM_PENDING if needs_confirm else Phase.RUNNING
        hint = (self.form.hint or "detail").strip()
        self._send(self.build_state(hint, has_blocking_ui, needs_confirm, overrides))
        self._run_timer = self.timers.call_later(self.run_duration_s, self._complete)
        return True

    def _complete(self) -> None:
        self._run_timer = None
        if self.phase not in (Phase.RUNNING, Phase.CONFIRM_PENDING):
            return
        self.phase = Phase.RESULT
        self._send(self.build_state(Hint.RESULT, True, False, self._overrides))

    def abort(self) -> None:
        self._cancel_run()
        if self.phase is Phase.ENTRY:
            return
        self.phase = Phase.OPEN
        form = self.form
        overrides = Overrides(
            is_root=bool(form.m_is_root) if form.use_manual_flags else form.mode == "home",
            can_go_back_in_web=bool(form.m_can_go_back_in_web) if form.use_manual_flags else None,
        )
        self._send(self.build_state(Hint.MODAL, True, False, overrides))

    def request_close(self) -> bool:
        """Close from the panel's own close button; a running test asks first."""

        if self.phase in (Phase.RUNNING, Phase.CONFIRM_PENDING) and self.confirm is not None:
            if not self.confirm("A test is running. Stop it and close?"):
                return False
        self.close()
        return True

    def dismiss(self) -> None:
        if self.is_open:
            self.close()

    def teardown(self) -> None:
        self._cancel_run()
        if self._owner is not None:
            self.phase = Phase.ENTRY
            self._release()

    def __enter__(self) -> "BackTestPanel":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.teardown()


class BackAction(str, Enum):
    CLOSE_BLOCKING_UI = "close_blocking_ui"
    HISTORY_BACK = "history_back"
    EXIT_SIGNAL = "exit_signal"
    CONFIRM_DECLINED = "confirm_declined"
    CLOSE_OPEN_UI = "close_open_ui"
    NOOP = "noop"


def decide(nav: NavState, *, confirm: Callable[[str], bool], has_open_ui: bool) -> BackAction:
    """Pick the single reaction to a back request. Order matters."""

    if nav.has_blocking_ui:
        return BackAction.CLOSE_BLOCKING_UI
    if nav.needs_confirm:
        if not confirm("Leave this page? Unsaved input will be lost."):
            return BackAction.CONFIRM_DECLINED
        if nav.can_go_back_in_web:
            return BackAction.HISTORY_BACK
        if nav.is_root:
            return BackAction.EXIT_SIGNAL
        return BackAction.NOOP
    if nav.can_go_back_in_web:
        return BackAction.HISTORY_BACK
    if nav.is_root:
        return BackAction.EXIT_SIGNAL
    if has_open_ui:
        return BackAction.CLOSE_OPEN_UI
    return BackAction.NOOP


class Dismissable(Protocol):
    @property
    def is_open(self) -> bool: ...

    def dismiss(self) -> None: ...


class BackNavigator:
    """Reacts to BACK_REQUEST using the nav snapshot the host echoed back."""

    def __init__(
        self,
        register: NavRegister,
        history: History,
        *,
        confirm: Callable[[str], bool],
        surfaces: Iterable[Dismissable] = (),
        on_exit: Callable[[NavState], None] | None = None,
        max_actions: int = 200,
    ) -> None:
        self.register = register
        self.history = history
        self.confirm = confirm
        self.surfaces: List[Dismissable] = list(surfaces)
        self.on_exit = on_exit
        self.actions: Deque[BackAction] = deque(maxlen=max_actions)
        self._binding: Optional[Binding] = None

    def bind(self, dispatcher) -> Binding:
        self.unbind()
        self._binding = dispatcher.add_listener(self._on_message)
        return self._binding

    def unbind(self) -> None:
        if self._binding is not None:
            self._binding()
            self._binding = None

    def _on_message(self, message: Message, _: RawEvent) -> None:
        if message.type != MessageType.BACK_REQUEST.value:
            return
        nav = NavState.from_payload(message.payload_or_empty().get("nav"))
        self.handle(nav)

    def _open_surface(self) -> Optional[Dismissable]:
        for surface in reversed(self.surfaces):
            if surface.is_open:
                return surface
        return None

    def handle(self, nav: NavState) -> BackAction:
        action = decide(nav, confirm=self.confirm, has_open_ui=self._open_surface() is not None)
        self.actions.append(action)
        logger.info("back request hint=%s -> %s", nav.hint, action.value)

        if action in (BackAction.CLOSE_BLOCKING_UI, BackAction.CLOSE_OPEN_UI):
            surface = self._open_surface()
            if surface is not None:
                surface.dismiss()
        elif action is BackAction.HISTORY_BACK:
            if self.history.back():
                self.register.publish_base(replace(self.register.base, can_go_back_in_web=self.history.can_go_back))
        elif action is BackAction.EXIT_SIGNAL:
            if self.on_exit is not None:
                self.on_exit(nav)
        return action
