"""Shared surface of the UI-facing flow adapters."""

from typing import Any, Dict, Optional

from authflow.state_machines.store import AuthStateMachine


class FlowAdapter:
    machine: AuthStateMachine

    @property
    def state(self):
        return self.machine.state

    def is_loading(self, operation: str) -> bool:
        return self.machine.is_loading(operation)

    def get_error(self, operation: str) -> Optional[Exception]:
        return self.machine.get_error(operation)

    def go_back(self) -> None:
        self.machine.go_back()

    def reset(self) -> None:
        self.machine.reset()

    def get_flow_info(self) -> Dict[str, Any]:
        return self.machine.get_flow_info()
