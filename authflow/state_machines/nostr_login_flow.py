"""
Nostr Login Flow State Machine.

Direct protocol-native sign in: authenticate a keypair (extension, nsec or
bunker), activate it as the session and sync the profile.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Protocol

import structlog
from statemachine import State

from authflow.core.config import settings
from authflow.core.exceptions import KeypairAuthError, UnhandledActionError
from authflow.core.logging_config import truncate_pubkey
from authflow.domain.schemas import Account, NostrAuthMethod, NostrCredentials, ProfileData
from authflow.utils.auth_validation import validate_nostr_credentials

from .actions import (
    FlowState,
    GoBack,
    Reset,
    create_async_action,
    handle_base_actions,
)
from .base import FlowMachine
from .store import AuthStateMachine, FlowStore

logger = structlog.get_logger(__name__)

SYNC_PROFILE_OPERATION = "sync_profile"


class NostrLoginStep(str, Enum):
    AUTH = "auth"
    COMPLETE = "complete"


class NostrLoginState(FlowState):
    step: NostrLoginStep = NostrLoginStep.AUTH
    authenticated_pubkey: Optional[str] = None
    auth_method: Optional[NostrAuthMethod] = None
    profile: Optional[ProfileData] = None


@dataclass(frozen=True)
class AuthCompleted:
    event: ClassVar[str] = "authenticate"
    pubkey: str
    method: NostrAuthMethod
    profile: Optional[ProfileData] = None


def initial_nostr_login_state() -> NostrLoginState:
    return NostrLoginState()


def nostr_login_reducer(state: NostrLoginState, action: Any) -> NostrLoginState:
    base_result = handle_base_actions(state, action)
    if base_result is not None:
        return base_result

    if isinstance(action, AuthCompleted):
        return state.model_copy(
            update={
                "step": NostrLoginStep.COMPLETE,
                "authenticated_pubkey": action.pubkey,
                "auth_method": action.method,
                "profile": action.profile,
                "can_go_back": False,
            }
        )

    # Two steps, nothing to go back to
    if isinstance(action, GoBack):
        return state

    if isinstance(action, Reset):
        return initial_nostr_login_state()

    raise UnhandledActionError("nostr_login", action)


class NostrLoginFlowMachine(FlowMachine):
    """Step graph for direct Nostr login."""

    flow_name = "nostr_login"

    auth = State(initial=True, value=NostrLoginStep.AUTH.value)
    complete = State(value=NostrLoginStep.COMPLETE.value, final=True)

    authenticate = auth.to(complete, cond="reaches")


class NostrLoginDependencies(Protocol):
    """Collaborators the direct login flow needs. sync_profile may be None."""

    sync_profile: Any

    async def authenticate(self, method: NostrAuthMethod, credentials: NostrCredentials) -> Account: ...

    async def activate_login(self, credential: Any) -> None: ...


class NostrLoginStateMachine(AuthStateMachine[NostrLoginState]):
    def __init__(
        self,
        dependencies: NostrLoginDependencies,
        flow_id: Optional[str] = None,
        profile_sync_fatal: Optional[bool] = None,
    ):
        super().__init__(
            FlowStore(nostr_login_reducer, initial_nostr_login_state(), NostrLoginFlowMachine, flow_id=flow_id)
        )
        self.deps = dependencies
        self.profile_sync_fatal = (
            settings.login_profile_sync_fatal if profile_sync_fatal is None else profile_sync_fatal
        )

        self.authenticate_with_nostr = create_async_action(
            "authenticate_with_nostr", self._authenticate_with_nostr, self.dispatch
        )
        self.sync_profile = create_async_action(SYNC_PROFILE_OPERATION, self._sync_profile, self.dispatch)

    async def _sync_profile(self) -> None:
        sync = getattr(self.deps, "sync_profile", None)
        if sync is None:
            return None
        await sync()

    async def _authenticate_with_nostr(
        self, method: NostrAuthMethod, credentials: NostrCredentials
    ) -> Dict[str, Any]:
        self.ensure_event_allowed(AuthCompleted.event)
        method = NostrAuthMethod(method)
        validate_nostr_credentials(method, credentials)

        account = await self.deps.authenticate(method, credentials)
        if not account or not account.pubkey:
            raise KeypairAuthError("Authentication did not return a public key")

        await self.deps.activate_login(account.credential)
        logger.info(
            "nostr_login_authenticated",
            flow_id=self.store.flow_id,
            method=method.value,
            pubkey=truncate_pubkey(account.pubkey),
        )

        if self.profile_sync_fatal:
            await self._sync_profile()
            self.dispatch(AuthCompleted(pubkey=account.pubkey, method=method, profile=account.profile))
            profile_synced = True
        else:
            self.dispatch(AuthCompleted(pubkey=account.pubkey, method=method, profile=account.profile))
            # Own operation bucket: a failed sync does not fail the login
            sync_result = await self.sync_profile()
            profile_synced = sync_result.success
            if not profile_synced:
                logger.warning(
                    "profile_sync_failed",
                    flow_id=self.store.flow_id,
                    pubkey=truncate_pubkey(account.pubkey),
                    error=str(sync_result.error),
                    error_type=type(sync_result.error).__name__,
                )

        return {
            "pubkey": account.pubkey,
            "auth_method": method,
            "profile": account.profile,
            "profile_synced": profile_synced,
        }
