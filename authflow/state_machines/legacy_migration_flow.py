"""
Legacy Migration Flow State Machine.

Moves a user from a legacy email/password account onto a Nostr keypair:
identity provider sign in, lookup of keypairs already linked to that
account, then either sign in with the linked key (resolving a pubkey
mismatch if needed), generate a new keypair or import an existing one.

New keypairs are linked to the legacy account before they are activated,
so a linking failure never leaves an unlinked session behind.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Protocol

import structlog
from pydantic import Field
from statemachine import State

from authflow.core.config import settings
from authflow.core.exceptions import KeypairAuthError, UnhandledActionError, ValidationError
from authflow.core.logging_config import email_domain, truncate_pubkey
from authflow.domain.schemas import (
    Account,
    AccountChoice,
    ExternalUser,
    LinkedKeypair,
    NostrAuthMethod,
    NostrCredentials,
    PendingCredential,
    ProfileData,
)
from authflow.utils.auth_validation import (
    generate_display_name,
    pubkeys_match,
    translate_linking_error,
    validate_login_inputs,
    validate_nostr_credentials,
)

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


class LegacyMigrationStep(str, Enum):
    IDENTITY_PROVIDER_AUTH = "identity-provider-auth"
    CHECKING_LINKS = "checking-links"
    LINKED_KEYPAIR_AUTH = "linked-keypair-auth"
    PUBKEY_MISMATCH = "pubkey-mismatch"
    ACCOUNT_CHOICE = "account-choice"
    ACCOUNT_GENERATION = "account-generation"
    BRING_OWN_KEYPAIR = "bring-own-keypair"
    PROFILE_SETUP = "profile-setup"
    COMPLETE = "complete"


class LegacyMigrationState(FlowState):
    step: LegacyMigrationStep = LegacyMigrationStep.IDENTITY_PROVIDER_AUTH
    identity_provider_user: Optional[ExternalUser] = None
    linked_keypairs: List[LinkedKeypair] = Field(default_factory=list)
    expected_pubkey: Optional[str] = None
    actual_pubkey: Optional[str] = None
    mismatched_account: Optional[Account] = None
    generated_account: Optional[Account] = None
    created_login: Optional[PendingCredential] = None
    generated_name: Optional[str] = None
    profile_data: Optional[ProfileData] = None
    session_active: bool = False


# Actions
@dataclass(frozen=True)
class IdentityProviderAuthenticated:
    event: ClassVar[str] = "authenticate_identity_provider"
    user: ExternalUser


@dataclass(frozen=True)
class LinksChecked:
    event: ClassVar[str] = "check_links"
    linked_keypairs: List[LinkedKeypair]


@dataclass(frozen=True)
class AccountChoiceMade:
    event: ClassVar[str] = "choose_account"
    choice: AccountChoice


@dataclass(frozen=True)
class LinkedKeypairVerified:
    event: ClassVar[str] = "verify_linked_keypair"
    account: Account


@dataclass(frozen=True)
class PubkeyMismatchDetected:
    event: ClassVar[str] = "detect_mismatch"
    actual_pubkey: str
    account: Account


@dataclass(frozen=True)
class MismatchRetry:
    event: ClassVar[str] = "retry_linked_keypair"


@dataclass(frozen=True)
class NewPubkeyAccepted:
    event: ClassVar[str] = "accept_new_pubkey"
    linked: LinkedKeypair


@dataclass(frozen=True)
class AccountCreated:
    login: PendingCredential


@dataclass(frozen=True)
class AccountLinked:
    event: ClassVar[str] = "link_generated_account"
    account: Account


@dataclass(frozen=True)
class OwnKeypairLinked:
    event: ClassVar[str] = "link_own_keypair"
    account: Account


@dataclass(frozen=True)
class ProfileSaved:
    profile_data: ProfileData


@dataclass(frozen=True)
class LoginCompleted:
    event: ClassVar[str] = "complete_login"


def initial_legacy_migration_state() -> LegacyMigrationState:
    return LegacyMigrationState()


def select_most_recent(linked_keypairs: List[LinkedKeypair]) -> Optional[LinkedKeypair]:
    """
    Pick the keypair the user is expected to sign in with.

    An explicit is_most_recently_linked flag wins, then the latest linked_at,
    then the first entry as returned by the linking service.
    """
    if not linked_keypairs:
        return None

    for linked in linked_keypairs:
        if linked.is_most_recently_linked:
            return linked

    dated = [linked for linked in linked_keypairs if linked.linked_at is not None]
    if dated:
        return max(dated, key=lambda linked: linked.linked_at)

    return linked_keypairs[0]


def get_previous_step(current_step: LegacyMigrationStep, has_linked_accounts: bool) -> LegacyMigrationStep:
    if current_step == LegacyMigrationStep.CHECKING_LINKS:
        return LegacyMigrationStep.IDENTITY_PROVIDER_AUTH
    # checking-links is skipped, its result is already in state
    if current_step == LegacyMigrationStep.LINKED_KEYPAIR_AUTH:
        return LegacyMigrationStep.IDENTITY_PROVIDER_AUTH
    if current_step == LegacyMigrationStep.PUBKEY_MISMATCH:
        return LegacyMigrationStep.LINKED_KEYPAIR_AUTH
    if current_step == LegacyMigrationStep.ACCOUNT_CHOICE:
        return LegacyMigrationStep.IDENTITY_PROVIDER_AUTH
    if current_step in (LegacyMigrationStep.ACCOUNT_GENERATION, LegacyMigrationStep.BRING_OWN_KEYPAIR):
        return LegacyMigrationStep.LINKED_KEYPAIR_AUTH if has_linked_accounts else LegacyMigrationStep.ACCOUNT_CHOICE
    if current_step == LegacyMigrationStep.PROFILE_SETUP:
        return LegacyMigrationStep.ACCOUNT_GENERATION
    return current_step


_MISMATCH_CLEARED = {"actual_pubkey": None, "mismatched_account": None}


def legacy_migration_reducer(state: LegacyMigrationState, action: Any) -> LegacyMigrationState:
    base_result = handle_base_actions(state, action)
    if base_result is not None:
        return base_result

    if isinstance(action, IdentityProviderAuthenticated):
        return state.model_copy(
            update={
                "identity_provider_user": action.user,
                "linked_keypairs": [],
                "expected_pubkey": None,
                **_MISMATCH_CLEARED,
                "step": LegacyMigrationStep.CHECKING_LINKS,
                "can_go_back": True,
            }
        )

    if isinstance(action, LinksChecked):
        expected = select_most_recent(action.linked_keypairs)
        return state.model_copy(
            update={
                "linked_keypairs": list(action.linked_keypairs),
                "expected_pubkey": expected.pubkey if expected else None,
                "step": (
                    LegacyMigrationStep.LINKED_KEYPAIR_AUTH if expected else LegacyMigrationStep.ACCOUNT_CHOICE
                ),
                "can_go_back": True,
            }
        )

    if isinstance(action, AccountChoiceMade):
        return state.model_copy(
            update={
                "step": (
                    LegacyMigrationStep.ACCOUNT_GENERATION
                    if action.choice == AccountChoice.GENERATE
                    else LegacyMigrationStep.BRING_OWN_KEYPAIR
                ),
                "can_go_back": True,
            }
        )

    if isinstance(action, LinkedKeypairVerified):
        return state.model_copy(
            update={
                **_MISMATCH_CLEARED,
                "generated_account": action.account,
                "session_active": True,
                "step": LegacyMigrationStep.COMPLETE,
                "can_go_back": False,
            }
        )

    if isinstance(action, PubkeyMismatchDetected):
        return state.model_copy(
            update={
                "actual_pubkey": action.actual_pubkey,
                "mismatched_account": action.account,
                "step": LegacyMigrationStep.PUBKEY_MISMATCH,
                "can_go_back": True,
            }
        )

    if isinstance(action, MismatchRetry):
        return state.model_copy(
            update={
                **_MISMATCH_CLEARED,
                "step": LegacyMigrationStep.LINKED_KEYPAIR_AUTH,
                "can_go_back": True,
            }
        )

    if isinstance(action, NewPubkeyAccepted):
        previous = [
            linked.model_copy(update={"is_most_recently_linked": False}) for linked in state.linked_keypairs
        ]
        return state.model_copy(
            update={
                "linked_keypairs": previous + [action.linked],
                "expected_pubkey": action.linked.pubkey,
                "generated_account": state.mismatched_account,
                **_MISMATCH_CLEARED,
                "session_active": True,
                "step": LegacyMigrationStep.COMPLETE,
                "can_go_back": False,
            }
        )

    if isinstance(action, AccountCreated):
        return state.model_copy(
            update={
                "created_login": action.login,
                "generated_name": action.login.generated_name,
            }
        )

    if isinstance(action, AccountLinked):
        return state.model_copy(
            update={
                "generated_account": action.account,
                "step": LegacyMigrationStep.PROFILE_SETUP,
                "can_go_back": True,
            }
        )

    if isinstance(action, OwnKeypairLinked):
        return state.model_copy(
            update={
                "generated_account": action.account,
                "session_active": True,
                "step": LegacyMigrationStep.COMPLETE,
                "can_go_back": False,
            }
        )

    if isinstance(action, ProfileSaved):
        return state.model_copy(update={"profile_data": action.profile_data})

    if isinstance(action, LoginCompleted):
        return state.model_copy(
            update={
                "session_active": True,
                "step": LegacyMigrationStep.COMPLETE,
                "can_go_back": False,
            }
        )

    if isinstance(action, GoBack):
        if not state.can_go_back:
            return state
        previous_step = get_previous_step(state.step, bool(state.linked_keypairs))
        update: Dict[str, Any] = {
            "step": previous_step,
            "can_go_back": previous_step != LegacyMigrationStep.IDENTITY_PROVIDER_AUTH,
        }
        if state.step == LegacyMigrationStep.PUBKEY_MISMATCH:
            update.update(_MISMATCH_CLEARED)
        return state.model_copy(update=update)

    if isinstance(action, Reset):
        return initial_legacy_migration_state()

    raise UnhandledActionError("legacy_migration", action)


class LegacyMigrationFlowMachine(FlowMachine):
    """Step graph for legacy account migration."""

    flow_name = "legacy_migration"

    identity_provider_auth = State(initial=True, value=LegacyMigrationStep.IDENTITY_PROVIDER_AUTH.value)
    checking_links = State(value=LegacyMigrationStep.CHECKING_LINKS.value)
    linked_keypair_auth = State(value=LegacyMigrationStep.LINKED_KEYPAIR_AUTH.value)
    pubkey_mismatch = State(value=LegacyMigrationStep.PUBKEY_MISMATCH.value)
    account_choice = State(value=LegacyMigrationStep.ACCOUNT_CHOICE.value)
    account_generation = State(value=LegacyMigrationStep.ACCOUNT_GENERATION.value)
    bring_own_keypair = State(value=LegacyMigrationStep.BRING_OWN_KEYPAIR.value)
    profile_setup = State(value=LegacyMigrationStep.PROFILE_SETUP.value)
    complete = State(value=LegacyMigrationStep.COMPLETE.value, final=True)

    authenticate_identity_provider = identity_provider_auth.to(checking_links, cond="reaches")
    check_links = (
        checking_links.to(linked_keypair_auth, cond="reaches")
        | checking_links.to(account_choice, cond="reaches")
    )
    choose_account = (
        account_choice.to(account_generation, cond="reaches")
        | account_choice.to(bring_own_keypair, cond="reaches")
        | linked_keypair_auth.to(account_generation, cond="reaches")
        | linked_keypair_auth.to(bring_own_keypair, cond="reaches")
    )
    verify_linked_keypair = linked_keypair_auth.to(complete, cond="reaches")
    detect_mismatch = linked_keypair_auth.to(pubkey_mismatch, cond="reaches")
    retry_linked_keypair = pubkey_mismatch.to(linked_keypair_auth, cond="reaches")
    accept_new_pubkey = pubkey_mismatch.to(complete, cond="reaches")
    link_generated_account = account_generation.to(profile_setup, cond="reaches")
    link_own_keypair = bring_own_keypair.to(complete, cond="reaches")
    complete_login = profile_setup.to(complete, cond="reaches")

    go_back = (
        checking_links.to(identity_provider_auth, cond="reaches")
        | linked_keypair_auth.to(identity_provider_auth, cond="reaches")
        | pubkey_mismatch.to(linked_keypair_auth, cond="reaches")
        | account_choice.to(identity_provider_auth, cond="reaches")
        | account_generation.to(linked_keypair_auth, cond="reaches")
        | account_generation.to(account_choice, cond="reaches")
        | bring_own_keypair.to(linked_keypair_auth, cond="reaches")
        | bring_own_keypair.to(account_choice, cond="reaches")
        | profile_setup.to(account_generation, cond="reaches")
    )


class LegacyMigrationDependencies(Protocol):
    """Collaborators the migration flow needs. publish_profile may be None."""

    publish_profile: Any

    async def identity_provider_auth(self, email: str, password: str) -> ExternalUser: ...

    async def lookup_linked_keypairs(self, user: ExternalUser) -> List[LinkedKeypair]: ...

    async def authenticate_keypair(self, method: NostrAuthMethod, credentials: NostrCredentials) -> Account: ...

    async def create_pending_credential(self) -> PendingCredential: ...

    async def activate_login(self, credential: Any) -> None: ...

    async def create_linking_proof(self, signer: Any, pubkey: str, external_id: str) -> str: ...

    async def link_keypair(self, pubkey: str, external_id: str, proof: str) -> None: ...

    async def setup_account(self, profile_data: Optional[ProfileData], generated_name: str) -> None: ...


class LegacyMigrationStateMachine(AuthStateMachine[LegacyMigrationState]):
    """
    Legacy migration flow.

    Async actions are exposed as attributes wrapped by create_async_action and
    always return an ActionResult. retry_linked_keypair_auth() is a pure
    transition and runs synchronously.
    """

    def __init__(
        self,
        dependencies: LegacyMigrationDependencies,
        flow_id: Optional[str] = None,
        activation_settle_seconds: Optional[float] = None,
    ):
        super().__init__(
            FlowStore(
                legacy_migration_reducer,
                initial_legacy_migration_state(),
                LegacyMigrationFlowMachine,
                flow_id=flow_id,
            )
        )
        self.deps = dependencies
        self.activation_settle_seconds = (
            settings.activation_settle_seconds if activation_settle_seconds is None else activation_settle_seconds
        )

        self.authenticate_with_identity_provider = create_async_action(
            "authenticate_with_identity_provider", self._authenticate_with_identity_provider, self.dispatch
        )
        self.recheck_linked_keypairs = create_async_action(
            "recheck_linked_keypairs", self._recheck_linked_keypairs, self.dispatch
        )
        self.authenticate_with_linked_keypair = create_async_action(
            "authenticate_with_linked_keypair", self._authenticate_with_linked_keypair, self.dispatch
        )
        self.continue_with_new_pubkey = create_async_action(
            "continue_with_new_pubkey", self._continue_with_new_pubkey, self.dispatch
        )
        self.generate_new_account = create_async_action(
            "generate_new_account", self._generate_new_account, self.dispatch
        )
        self.bring_own_keypair = create_async_action("bring_own_keypair", self._bring_own_keypair, self.dispatch)
        self.complete_profile = create_async_action("complete_profile", self._complete_profile, self.dispatch)
        self.complete_login = create_async_action("complete_login", self._complete_login, self.dispatch)

    # Helpers
    def _require_user(self) -> ExternalUser:
        user = self.state.identity_provider_user
        if user is None:
            raise ValidationError("Sign in to your legacy account first")
        return user

    def _log_context(self) -> Dict[str, Any]:
        return {"flow_id": self.store.flow_id, "step": self.state.step.value}

    async def _check_links(self, user: ExternalUser) -> List[LinkedKeypair]:
        linked_keypairs = list(await self.deps.lookup_linked_keypairs(user) or [])
        self.dispatch(LinksChecked(linked_keypairs=linked_keypairs))
        logger.info(
            "linked_keypairs_checked",
            **self._log_context(),
            linked_count=len(linked_keypairs),
            expected_pubkey=truncate_pubkey(self.state.expected_pubkey),
        )
        return linked_keypairs

    async def _link(self, account: Account, user: ExternalUser) -> None:
        """Prove ownership of account's keypair and link it to the legacy account."""
        proof = await self.deps.create_linking_proof(account.signer, account.pubkey, user.uid)
        try:
            await self.deps.link_keypair(account.pubkey, user.uid, proof)
        except Exception as e:
            translated = translate_linking_error(e)
            logger.warning(
                "keypair_link_failed",
                **self._log_context(),
                pubkey=truncate_pubkey(account.pubkey),
                error_type=type(e).__name__,
                translated_type=type(translated).__name__,
            )
            raise translated from e
        logger.info("keypair_linked", **self._log_context(), pubkey=truncate_pubkey(account.pubkey))

    def _choice_pending(self, event: str) -> bool:
        """
        Fail fast unless `event` can follow from the current step.

        From a choosing step the account choice has to come first; True means
        the caller dispatches it only once its linking I/O has succeeded, so a
        failed attempt leaves the step unchanged.
        """
        if self.state.step in (LegacyMigrationStep.ACCOUNT_CHOICE, LegacyMigrationStep.LINKED_KEYPAIR_AUTH):
            self.ensure_event_allowed(AccountChoiceMade.event)
            return True
        self.ensure_event_allowed(event)
        return False

    async def _authenticate(self, credentials: NostrCredentials) -> Account:
        validate_nostr_credentials(credentials.method, credentials)
        account = await self.deps.authenticate_keypair(credentials.method, credentials)
        if not account or not account.pubkey:
            raise KeypairAuthError("Authentication did not return a public key")
        return account

    async def _run_setup(self, profile_data: Optional[ProfileData], generated_name: str, pubkey: str) -> bool:
        try:
            await self.deps.setup_account(profile_data, generated_name)
            return True
        except Exception as e:
            logger.error(
                "migration_account_setup_failed",
                **self._log_context(),
                pubkey=truncate_pubkey(pubkey),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    # Actions
    async def _authenticate_with_identity_provider(self, email: str, password: str) -> Dict[str, Any]:
        self.ensure_event_allowed(IdentityProviderAuthenticated.event)
        credentials = validate_login_inputs(email, password)

        user = await self.deps.identity_provider_auth(credentials.email, credentials.password)
        self.dispatch(IdentityProviderAuthenticated(user=user))
        logger.info(
            "identity_provider_authenticated", **self._log_context(), email_domain=email_domain(credentials.email)
        )

        linked_keypairs = await self._check_links(user)
        return {"user": user, "linked_keypairs": linked_keypairs}

    async def _recheck_linked_keypairs(self) -> Dict[str, Any]:
        self.ensure_event_allowed(LinksChecked.event)
        linked_keypairs = await self._check_links(self._require_user())
        return {"linked_keypairs": linked_keypairs}

    async def _authenticate_with_linked_keypair(self, credentials: NostrCredentials) -> Dict[str, Any]:
        self.ensure_event_allowed(LinkedKeypairVerified.event)
        expected_pubkey = self.state.expected_pubkey
        if not expected_pubkey:
            raise ValidationError("No linked Nostr account to sign in with")

        account = await self._authenticate(credentials)

        if not pubkeys_match(account.pubkey, expected_pubkey):
            self.dispatch(PubkeyMismatchDetected(actual_pubkey=account.pubkey, account=account))
            logger.warning(
                "linked_keypair_mismatch",
                **self._log_context(),
                expected_pubkey=truncate_pubkey(expected_pubkey),
                actual_pubkey=truncate_pubkey(account.pubkey),
            )
            return {
                "account": account,
                "matched": False,
                "expected_pubkey": expected_pubkey,
                "actual_pubkey": account.pubkey,
            }

        # Link already exists, nothing to create
        await self.deps.activate_login(account.credential)
        self.dispatch(LinkedKeypairVerified(account=account))
        logger.info("linked_keypair_verified", **self._log_context(), pubkey=truncate_pubkey(account.pubkey))
        return {"account": account, "matched": True}

    def retry_linked_keypair_auth(self) -> None:
        self.ensure_event_allowed(MismatchRetry.event)
        self.dispatch(MismatchRetry())

    def choose_account_option(self, choice: AccountChoice | str) -> None:
        choice = AccountChoice(choice)
        self.ensure_event_allowed(AccountChoiceMade.event)
        self.dispatch(AccountChoiceMade(choice=choice))
        logger.info("account_option_chosen", **self._log_context(), choice=choice.value)

    async def _continue_with_new_pubkey(self) -> Dict[str, Any]:
        self.ensure_event_allowed(NewPubkeyAccepted.event)
        account = self.state.mismatched_account
        if account is None:
            raise ValidationError("No mismatched account to continue with")
        user = self._require_user()
        previous_pubkey = self.state.expected_pubkey

        await self._link(account, user)
        await self.deps.activate_login(account.credential)

        linked = LinkedKeypair(
            pubkey=account.pubkey,
            profile=account.profile,
            linked_at=datetime.now(timezone.utc),
            is_most_recently_linked=True,
        )
        self.dispatch(NewPubkeyAccepted(linked=linked))
        logger.info(
            "new_pubkey_accepted",
            **self._log_context(),
            previous_pubkey=truncate_pubkey(previous_pubkey),
            pubkey=truncate_pubkey(account.pubkey),
        )
        return {"account": account, "previous_pubkey": previous_pubkey}

    async def _generate_new_account(self) -> Dict[str, Any]:
        choice_pending = self._choice_pending(AccountLinked.event)
        user = self._require_user()

        # Reuse the keypair from a previous attempt whose linking failed
        login = self.state.created_login
        if login is None:
            login = await self.deps.create_pending_credential()
            self.dispatch(AccountCreated(login=login))
            logger.info(
                "pending_credential_created",
                **self._log_context(),
                pubkey=truncate_pubkey(login.pubkey),
                generated_name=login.generated_name,
            )

        account = login.to_account()
        await self._link(account, user)
        if choice_pending:
            self.choose_account_option(AccountChoice.GENERATE)
        self.dispatch(AccountLinked(account=account))
        return {"login": login, "account": account, "generated_name": login.generated_name}

    async def _bring_own_keypair(self, credentials: NostrCredentials) -> Dict[str, Any]:
        choice_pending = self._choice_pending(OwnKeypairLinked.event)
        user = self._require_user()

        account = await self._authenticate(credentials)
        await self._link(account, user)
        await self.deps.activate_login(account.credential)
        if choice_pending:
            self.choose_account_option(AccountChoice.BRING_OWN)
        self.dispatch(OwnKeypairLinked(account=account))

        profile = account.profile
        name = (profile.display_name or profile.name) if profile else None
        setup_completed = await self._run_setup(
            profile, name or generate_display_name(account.pubkey), account.pubkey
        )
        return {"account": account, "setup_completed": setup_completed}

    async def _complete_profile(self, profile_data: ProfileData | Dict[str, Any]) -> Dict[str, Any]:
        self.ensure_event_allowed(LoginCompleted.event)
        if not isinstance(profile_data, ProfileData):
            profile_data = ProfileData.model_validate(profile_data)
        login = self.state.created_login
        if login is None:
            raise ValidationError("No generated account to complete")

        self.dispatch(ProfileSaved(profile_data=profile_data))
        await self.deps.activate_login(login.credential)
        self.dispatch(LoginCompleted())

        # Give the activated signer time to become the current user
        await asyncio.sleep(self.activation_settle_seconds)

        setup_completed = await self._run_setup(profile_data, login.generated_name, login.pubkey)
        fallback_published = False
        if not setup_completed:
            fallback_published = await self._publish_minimal_profile(profile_data, login)

        return {
            "pubkey": login.pubkey,
            "setup_completed": setup_completed,
            "fallback_published": fallback_published,
        }

    async def _publish_minimal_profile(self, profile_data: ProfileData, login: PendingCredential) -> bool:
        publish = getattr(self.deps, "publish_profile", None)
        if publish is None:
            return False

        name = profile_data.name or profile_data.display_name or settings.fallback_display_name or login.generated_name
        minimal = ProfileData(name=name, display_name=name, about=profile_data.about, picture=profile_data.picture)
        try:
            await publish(minimal)
        except Exception as e:
            logger.error(
                "minimal_profile_publish_failed",
                **self._log_context(),
                pubkey=truncate_pubkey(login.pubkey),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.info("minimal_profile_published", **self._log_context(), pubkey=truncate_pubkey(login.pubkey))
        return True

    async def _complete_login(self) -> Dict[str, Any]:
        self.ensure_event_allowed(LoginCompleted.event)
        login = self.state.created_login
        if login is None or not login.generated_name:
            raise ValidationError("No login or generated name available")

        await self.deps.activate_login(login.credential)
        self.dispatch(LoginCompleted())
        setup_completed = await self._run_setup(self.state.profile_data, login.generated_name, login.pubkey)
        return {"pubkey": login.pubkey, "setup_completed": setup_completed}
