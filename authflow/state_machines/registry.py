"""
State machine registry for dynamic instantiation.

Provides factory functions to create step graphs and full flow state
machines by flow type.
"""

from typing import Any, Dict, Optional

from .base import FlowMachine


FLOW_REGISTRY: Dict[str, str] = {
    "signup": "SignupFlowMachine",
    "nostr_login": "NostrLoginFlowMachine",
    "legacy_migration": "LegacyMigrationFlowMachine",
}


def _check_flow_type(flow_type: str) -> None:
    if flow_type not in FLOW_REGISTRY:
        raise ValueError(
            f"Unknown flow type: {flow_type}. "
            f"Available: {list(FLOW_REGISTRY.keys())}"
        )


def get_flow_machine(flow_type: str, flow_id: Optional[str] = None, **kwargs) -> FlowMachine:
    """
    Factory to instantiate a flow's step graph by flow type.

    Args:
        flow_type: Type of flow (signup, nostr_login, legacy_migration)
        flow_id: Flow run identifier for logging
        **kwargs: Additional context

    Returns:
        Instantiated step graph at its initial step

    Raises:
        ValueError: If flow_type is not registered
    """
    _check_flow_type(flow_type)

    if flow_type == "signup":
        from .signup_flow import SignupFlowMachine
        return SignupFlowMachine(flow_id=flow_id, **kwargs)
    elif flow_type == "nostr_login":
        from .nostr_login_flow import NostrLoginFlowMachine
        return NostrLoginFlowMachine(flow_id=flow_id, **kwargs)
    else:
        from .legacy_migration_flow import LegacyMigrationFlowMachine
        return LegacyMigrationFlowMachine(flow_id=flow_id, **kwargs)


def create_state_machine(flow_type: str, dependencies: Any, flow_id: Optional[str] = None, **kwargs):
    """
    Factory for the full flow state machine (reducer, step graph and async
    actions) bound to a dependency bundle.

    Raises:
        ValueError: If flow_type is not registered
    """
    _check_flow_type(flow_type)

    if flow_type == "signup":
        from .signup_flow import SignupStateMachine
        return SignupStateMachine(dependencies, flow_id=flow_id, **kwargs)
    elif flow_type == "nostr_login":
        from .nostr_login_flow import NostrLoginStateMachine
        return NostrLoginStateMachine(dependencies, flow_id=flow_id, **kwargs)
    else:
        from .legacy_migration_flow import LegacyMigrationStateMachine
        return LegacyMigrationStateMachine(dependencies, flow_id=flow_id, **kwargs)
