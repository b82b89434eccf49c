"""
Base step-graph machine for all auth flows.

Each flow declares its steps and the events allowed to move between them as
a python-statemachine class. Reducers compute the next flow state; the store
then replays the step change on the graph, which rejects any move the flow
did not declare and logs every accepted one.
"""

from typing import Any, Dict, List, Optional

import structlog
from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from authflow.core.exceptions import InvalidTransitionError


class FlowMachine(StateMachine):
    """
    Base class for all flow step graphs.

    Features:
    - Every transition is guarded by reaches(), so a transition only fires
      toward the step the reducer actually computed
    - Structured logging on every transition
    - get_flow_info() for API/UI consumers
    """

    flow_name: str = "flow"

    def __init__(self, flow_id: Optional[str] = None, **kwargs):
        """
        Initialize flow machine.

        Args:
            flow_id: Identifier of the flow run, used for logging
            **kwargs: Additional context passed to StateMachine
        """
        self.flow_id = flow_id
        self.logger = structlog.get_logger(__name__)
        super().__init__(**kwargs)

    # Guards
    def reaches(self, target: State, next_step: Optional[str] = None) -> bool:
        """Guard: the transition leads to the step the reducer computed."""
        return next_step is not None and target.value == next_step

    @property
    def step(self) -> str:
        return self.current_state.value

    def allowed_event_names(self) -> List[str]:
        return [str(getattr(event, "id", None) or getattr(event, "name", event)) for event in self.allowed_events]

    def can_send(self, event: str) -> bool:
        return event in self.allowed_event_names()

    def advance(self, event: str, next_step: str) -> None:
        """
        Move the graph along `event` to `next_step`.

        Raises:
            InvalidTransitionError: If the graph has no such transition
        """
        from_step = self.step
        try:
            self.send(event, next_step=next_step)
        except TransitionNotAllowed:
            self.logger.warning(
                "state_transition_rejected",
                flow=self.flow_name,
                flow_id=self.flow_id,
                transition_event=event,
                from_state=from_step,
                to_state=next_step,
            )
            raise InvalidTransitionError(self.flow_name, event, from_step, next_step)

    def get_flow_info(self, state: Any = None) -> Dict[str, Any]:
        """
        Returns current step + allowed events for API/UI responses.

        Args:
            state: Optional flow state whose loading/error maps are included
        """
        info: Dict[str, Any] = {
            "flow": self.flow_name,
            "state": self.step,
            "allowed_events": self.allowed_event_names(),
        }
        if state is not None:
            info["can_go_back"] = state.can_go_back
            info["is_loading"] = {op: True for op, loading in state.is_loading.items() if loading}
            info["errors"] = {op: str(err) for op, err in state.errors.items() if err is not None}
        return info

    def log_transition(self, event: str, from_state: str, to_state: str):
        """
        Log state transition with structured logging.

        Args:
            event: Event name that triggered transition
            from_state: Previous state
            to_state: New state
        """
        self.logger.info(
            "state_transition",
            flow=self.flow_name,
            flow_id=self.flow_id,
            transition_event=event,
            from_state=from_state,
            to_state=to_state,
        )

    def on_transition(self, event: str, source: State, target: State):
        """Hook called on every transition."""
        self.log_transition(str(event), getattr(source, "value", None), target.value)
