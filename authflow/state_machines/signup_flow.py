"""
Signup Flow State Machine.

Manages new account signup: user type selection, artist type, profile setup,
optional email backup account and final login activation.

The pending credential created during signup is not a session. Only
complete_login() activates it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Protocol

import structlog
from statemachine import State

from authflow.core.exceptions import UnhandledActionError, ValidationError
from authflow.core.logging_config import email_domain, truncate_pubkey
from authflow.domain.schemas import ExternalUser, PendingCredential, ProfileData

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


class SignupStep(str, Enum):
    USER_TYPE = "user-type"
    ARTIST_TYPE = "artist-type"
    PROFILE_SETUP = "profile-setup"
    FIREBASE_BACKUP = "firebase-backup"
    COMPLETE = "complete"


class SignupState(FlowState):
    step: SignupStep = SignupStep.USER_TYPE
    is_artist: bool = False
    is_solo_artist: bool = True
    created_login: Optional[PendingCredential] = None
    generated_name: Optional[str] = None
    profile_data: Optional[ProfileData] = None
    backup_user: Optional[ExternalUser] = None
    backup_linked: Optional[bool] = None
    session_active: bool = False


# Actions
@dataclass(frozen=True)
class SetUserType:
    event: ClassVar[str] = "set_user_type"
    is_artist: bool
    login: Optional[PendingCredential] = None


@dataclass(frozen=True)
class SetArtistType:
    event: ClassVar[str] = "set_artist_type"
    is_solo: bool
    login: PendingCredential


@dataclass(frozen=True)
class ProfileCompleted:
    event: ClassVar[str] = "complete_profile"
    profile_data: ProfileData


@dataclass(frozen=True)
class FirebaseBackupCompleted:
    event: ClassVar[str] = "complete_backup"
    backup_user: ExternalUser
    linked: bool


@dataclass(frozen=True)
class FirebaseBackupSkipped:
    event: ClassVar[str] = "skip_backup"


@dataclass(frozen=True)
class LoginActivated:
    pass


def initial_signup_state() -> SignupState:
    return SignupState()


def get_previous_step(current_step: SignupStep, is_artist: bool) -> SignupStep:
    if current_step == SignupStep.ARTIST_TYPE:
        return SignupStep.USER_TYPE
    if current_step == SignupStep.PROFILE_SETUP:
        return SignupStep.ARTIST_TYPE if is_artist else SignupStep.USER_TYPE
    if current_step == SignupStep.FIREBASE_BACKUP:
        return SignupStep.PROFILE_SETUP
    return current_step


def signup_reducer(state: SignupState, action: Any) -> SignupState:
    base_result = handle_base_actions(state, action)
    if base_result is not None:
        return base_result

    if isinstance(action, SetUserType):
        return state.model_copy(
            update={
                "is_artist": action.is_artist,
                "step": SignupStep.ARTIST_TYPE if action.is_artist else SignupStep.PROFILE_SETUP,
                "created_login": action.login,
                "generated_name": action.login.generated_name if action.login else None,
                "can_go_back": True,
            }
        )

    if isinstance(action, SetArtistType):
        return state.model_copy(
            update={
                "is_solo_artist": action.is_solo,
                "created_login": action.login,
                "generated_name": action.login.generated_name,
                "step": SignupStep.PROFILE_SETUP,
                "can_go_back": True,
            }
        )

    if isinstance(action, ProfileCompleted):
        return state.model_copy(
            update={
                "profile_data": action.profile_data,
                "step": SignupStep.FIREBASE_BACKUP if state.is_artist else SignupStep.COMPLETE,
                "can_go_back": state.is_artist,
            }
        )

    if isinstance(action, FirebaseBackupCompleted):
        return state.model_copy(
            update={
                "backup_user": action.backup_user,
                "backup_linked": action.linked,
                "step": SignupStep.COMPLETE,
                "can_go_back": False,
            }
        )

    if isinstance(action, FirebaseBackupSkipped):
        return state.model_copy(update={"step": SignupStep.COMPLETE, "can_go_back": False})

    if isinstance(action, LoginActivated):
        return state.model_copy(update={"session_active": True})

    if isinstance(action, GoBack):
        if not state.can_go_back:
            return state
        previous_step = get_previous_step(state.step, state.is_artist)
        return state.model_copy(
            update={
                "step": previous_step,
                "can_go_back": previous_step != SignupStep.USER_TYPE,
            }
        )

    if isinstance(action, Reset):
        return initial_signup_state()

    raise UnhandledActionError("signup", action)


class SignupFlowMachine(FlowMachine):
    """Step graph for the signup flow."""

    flow_name = "signup"

    user_type = State(initial=True, value=SignupStep.USER_TYPE.value)
    artist_type = State(value=SignupStep.ARTIST_TYPE.value)
    profile_setup = State(value=SignupStep.PROFILE_SETUP.value)
    firebase_backup = State(value=SignupStep.FIREBASE_BACKUP.value)
    complete = State(value=SignupStep.COMPLETE.value, final=True)

    set_user_type = (
        user_type.to(artist_type, cond="reaches")
        | user_type.to(profile_setup, cond="reaches")
    )
    set_artist_type = artist_type.to(profile_setup, cond="reaches")
    complete_profile = (
        profile_setup.to(firebase_backup, cond="reaches")
        | profile_setup.to(complete, cond="reaches")
    )
    complete_backup = firebase_backup.to(complete, cond="reaches")
    skip_backup = firebase_backup.to(complete, cond="reaches")

    go_back = (
        artist_type.to(user_type, cond="reaches")
        | profile_setup.to(artist_type, cond="reaches")
        | profile_setup.to(user_type, cond="reaches")
        | firebase_backup.to(profile_setup, cond="reaches")
    )


class SignupDependencies(Protocol):
    """Collaborators the signup flow needs."""

    async def create_pending_credential(self) -> PendingCredential: ...

    async def save_profile(self, profile_data: ProfileData) -> None: ...

    async def create_backup_account(self, email: str, password: Optional[str]) -> ExternalUser: ...

    async def link_backup_account(self, backup_user: ExternalUser, login: PendingCredential) -> None: ...

    async def activate_login(self, credential: Any) -> None: ...

    async def setup_account(self, profile_data: Optional[ProfileData], generated_name: str) -> None: ...


class SignupStateMachine(AuthStateMachine[SignupState]):
    """
    Signup flow: pure reducer + step graph + async actions over injected
    dependencies.
    """

    def __init__(self, dependencies: SignupDependencies, flow_id: Optional[str] = None):
        super().__init__(
            FlowStore(signup_reducer, initial_signup_state(), SignupFlowMachine, flow_id=flow_id)
        )
        self.deps = dependencies

        self.set_user_type = create_async_action("set_user_type", self._set_user_type, self.dispatch)
        self.set_artist_type = create_async_action("set_artist_type", self._set_artist_type, self.dispatch)
        self.complete_profile = create_async_action("complete_profile", self._complete_profile, self.dispatch)
        self.create_firebase_account = create_async_action(
            "create_firebase_account", self._create_firebase_account, self.dispatch
        )
        self.complete_login = create_async_action("complete_login", self._complete_login, self.dispatch)

    async def _create_pending_credential(self) -> PendingCredential:
        login = await self.deps.create_pending_credential()
        logger.info(
            "pending_credential_created",
            flow_id=self.store.flow_id,
            pubkey=truncate_pubkey(login.pubkey),
            generated_name=login.generated_name,
        )
        return login

    async def _set_user_type(self, is_artist: bool) -> Dict[str, Any]:
        self.ensure_event_allowed(SetUserType.event)

        # Artists pick band/solo first; the credential waits for that choice
        if is_artist:
            self.dispatch(SetUserType(is_artist=True))
            return {"login": None}

        login = await self._create_pending_credential()
        self.dispatch(SetUserType(is_artist=False, login=login))
        return {"login": login}

    async def _set_artist_type(self, is_solo: bool) -> Dict[str, Any]:
        self.ensure_event_allowed(SetArtistType.event)

        login = await self._create_pending_credential()
        self.dispatch(SetArtistType(is_solo=is_solo, login=login))
        return {"login": login}

    async def _complete_profile(self, profile_data: ProfileData | Dict[str, Any]) -> Dict[str, Any]:
        self.ensure_event_allowed(ProfileCompleted.event)
        if not isinstance(profile_data, ProfileData):
            profile_data = ProfileData.model_validate(profile_data)

        await self.deps.save_profile(profile_data)
        self.dispatch(ProfileCompleted(profile_data=profile_data))
        return {"profile_data": profile_data}

    async def _create_firebase_account(self, email: str, password: Optional[str] = None) -> Dict[str, Any]:
        self.ensure_event_allowed(FirebaseBackupCompleted.event)

        backup_user = await self.deps.create_backup_account(email, password)
        logger.info("backup_account_created", flow_id=self.store.flow_id, email_domain=email_domain(email))

        linked = True
        link_error: Optional[Exception] = None
        login = self.state.created_login
        try:
            if login is None:
                raise ValidationError("No pending account to link the backup to")
            await self.deps.link_backup_account(backup_user, login)
        except Exception as e:
            # The backup account exists either way; linking can be retried from settings
            linked = False
            link_error = e
            logger.warning(
                "backup_account_link_failed",
                flow_id=self.store.flow_id,
                error=str(e),
                error_type=type(e).__name__,
            )

        self.dispatch(FirebaseBackupCompleted(backup_user=backup_user, linked=linked))
        return {"backup_user": backup_user, "linked": linked, "link_error": link_error}

    def skip_firebase_backup(self) -> None:
        self.ensure_event_allowed(FirebaseBackupSkipped.event)
        self.dispatch(FirebaseBackupSkipped())
        logger.info("backup_account_skipped", flow_id=self.store.flow_id)

    async def _complete_login(self) -> Dict[str, Any]:
        state = self.state
        if state.step != SignupStep.COMPLETE:
            raise ValidationError(
                "Signup is not finished yet",
                details={"step": state.step.value},
            )
        login = state.created_login
        if login is None:
            raise ValidationError("No pending login to activate")

        if state.session_active:
            return {"pubkey": login.pubkey, "setup_completed": None}

        await self.deps.activate_login(login.credential)
        self.dispatch(LoginActivated())
        logger.info("signup_login_activated", flow_id=self.store.flow_id, pubkey=truncate_pubkey(login.pubkey))

        setup_completed = True
        try:
            await self.deps.setup_account(state.profile_data, login.generated_name)
        except Exception as e:
            # Session is live; wallet/profile can be retried later
            setup_completed = False
            logger.error(
                "signup_account_setup_failed",
                flow_id=self.store.flow_id,
                pubkey=truncate_pubkey(login.pubkey),
                error=str(e),
                error_type=type(e).__name__,
            )

        return {"pubkey": login.pubkey, "setup_completed": setup_completed}
