"""Direct Nostr login flow adapter."""

from typing import List, Optional

from authflow.domain.schemas import NostrAuthMethod, NostrCredentials
from authflow.state_machines.nostr_login_flow import (
    NostrLoginDependencies,
    NostrLoginStateMachine,
    NostrLoginStep,
)

from .base import FlowAdapter
from .capabilities import NostrCapabilities, StaticCapabilities, supported_methods
from .results import raise_for_result

STEP_TITLES = {
    NostrLoginStep.AUTH: "Sign in",
    NostrLoginStep.COMPLETE: "Welcome back!",
}

STEP_DESCRIPTIONS = {
    NostrLoginStep.AUTH: "Sign in with your Nostr account",
    NostrLoginStep.COMPLETE: "You're signed in successfully",
}


class NostrLoginFlow(FlowAdapter):
    def __init__(
        self,
        dependencies: NostrLoginDependencies,
        capabilities: Optional[NostrCapabilities] = None,
        flow_id: Optional[str] = None,
    ):
        self.machine = NostrLoginStateMachine(dependencies, flow_id=flow_id)
        # Queried once; the picker does not change during a flow run
        self._supported_methods = supported_methods(capabilities or StaticCapabilities())

    async def handle_nostr_authentication(self, method: NostrAuthMethod, credentials: NostrCredentials) -> None:
        result = await self.machine.authenticate_with_nostr(method, credentials)
        raise_for_result(result, "authenticate_with_nostr", "Authentication failed")

    def get_step_title(self) -> str:
        return STEP_TITLES.get(self.machine.state.step, "")

    def get_step_description(self) -> str:
        return STEP_DESCRIPTIONS.get(self.machine.state.step, "")

    def get_supported_methods(self) -> List[NostrAuthMethod]:
        return list(self._supported_methods)
