"""
State machine infrastructure for the auth flows.

This package provides the shared async action wrapper and base reducer, the
flow store, and the signup, direct Nostr login and legacy migration state
machines.
"""

from .actions import ActionResult, create_async_action, handle_base_actions
from .base import FlowMachine
from .registry import FLOW_REGISTRY, create_state_machine, get_flow_machine
from .store import AuthStateMachine, FlowStore

__all__ = [
    "ActionResult",
    "AuthStateMachine",
    "FlowMachine",
    "FlowStore",
    "create_async_action",
    "create_state_machine",
    "get_flow_machine",
    "handle_base_actions",
    "FLOW_REGISTRY",
]
