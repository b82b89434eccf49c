"""
Flow store: holds one flow's state, applies the pure reducer, enforces the
step graph and notifies subscribers.
"""

import uuid
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

import structlog

from authflow.core.exceptions import InvalidTransitionError

from .actions import (
    FlowState,
    GoBack,
    Reset,
    get_operation_error,
    is_operation_loading,
)
from .base import FlowMachine

logger = structlog.get_logger(__name__)

StateT = TypeVar("StateT", bound=FlowState)
Listener = Callable[[Any], None]


def step_value(step: Any) -> str:
    return step.value if isinstance(step, Enum) else str(step)


class FlowStore(Generic[StateT]):
    """
    Single owner of a flow's state.

    dispatch() is the only way the state changes. When a reducer moves the
    step, the move is replayed on the flow's FlowMachine first; a move the
    graph does not declare raises InvalidTransitionError and the state is
    left untouched.
    """

    def __init__(
        self,
        reducer: Callable[[StateT, Any], StateT],
        initial_state: StateT,
        machine_factory: Callable[..., FlowMachine],
        flow_id: Optional[str] = None,
    ):
        self._reducer = reducer
        self._initial_state = initial_state
        self._machine_factory = machine_factory
        self.flow_id = flow_id or uuid.uuid4().hex[:12]
        self.state: StateT = initial_state
        self.machine = machine_factory(flow_id=self.flow_id)
        self._listeners: List[Listener] = []

    def dispatch(self, action: Any) -> StateT:
        previous = self.state
        next_state = self._reducer(previous, action)

        if isinstance(action, Reset):
            self.machine = self._machine_factory(flow_id=self.flow_id)
            logger.info("flow_reset", flow=self.machine.flow_name, flow_id=self.flow_id)
        elif next_state.step != previous.step:
            event = getattr(action, "event", None) or type(action).__name__
            self.machine.advance(event, step_value(next_state.step))

        self.state = next_state
        if next_state is not previous:
            self._notify(next_state)
        return next_state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with every new state; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, state: StateT) -> None:
        for listener in list(self._listeners):
            listener(state)


class AuthStateMachine(Generic[StateT]):
    """
    Common surface of the three auth flow state machines: state access,
    per-operation loading/error queries, navigation and subscriptions.
    """

    def __init__(self, store: FlowStore[StateT]):
        self.store = store

    @property
    def state(self) -> StateT:
        return self.store.state

    @property
    def step(self) -> str:
        return self.store.state.step

    @property
    def can_go_back(self) -> bool:
        return self.store.state.can_go_back

    def dispatch(self, action: Any) -> StateT:
        return self.store.dispatch(action)

    def is_loading(self, operation: str) -> bool:
        return is_operation_loading(self.store.state, operation)

    def get_error(self, operation: str) -> Optional[Exception]:
        return get_operation_error(self.store.state, operation)

    def go_back(self) -> None:
        if self.store.state.can_go_back:
            self.store.dispatch(GoBack())

    def reset(self) -> None:
        self.store.dispatch(Reset())

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.store.subscribe(listener)

    def get_flow_info(self) -> Dict[str, Any]:
        return self.store.machine.get_flow_info(self.store.state)

    def ensure_event_allowed(self, event: str) -> None:
        """
        Fail fast before doing any async work for an event the current step
        cannot take.
        """
        machine = self.store.machine
        if not machine.can_send(event):
            raise InvalidTransitionError(machine.flow_name, event, machine.step)
