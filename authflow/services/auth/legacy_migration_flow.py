"""
Legacy migration flow adapter.

LegacyMigrationServices implements the linking half of the migration
dependencies on top of LinkingClient and translates identity provider
errors. LegacyMigrationFlow exposes UI handlers and step copy.
"""

from typing import Any, Dict, List, Optional, Protocol

import structlog

from authflow.core.exceptions import (
    AccountDisabledError,
    AuthenticationError,
    IdentityProviderError,
    InvalidCredentialsError,
    UserNotFoundError,
)
from authflow.core.logging_config import email_domain
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
from authflow.state_machines.legacy_migration_flow import (
    LegacyMigrationDependencies,
    LegacyMigrationStateMachine,
    LegacyMigrationStep,
)

from .base import FlowAdapter
from .linking import LinkingClient
from .results import raise_for_result

logger = structlog.get_logger(__name__)


def translate_identity_provider_error(error: Exception) -> AuthenticationError:
    """Map identity provider error codes (auth/...) to typed errors with friendly messages."""
    if isinstance(error, AuthenticationError):
        return error

    code = getattr(error, "code", None)
    details = {"code": code} if code else {}
    if code == "auth/user-not-found":
        return UserNotFoundError(details=details)
    if code in ("auth/wrong-password", "auth/invalid-credential"):
        return InvalidCredentialsError(details=details)
    if code == "auth/invalid-email":
        return InvalidCredentialsError("Invalid email address", details=details)
    if code == "auth/user-disabled":
        return AccountDisabledError(details=details)
    return IdentityProviderError(getattr(error, "message", None) or str(error) or "Login failed", details=details)


class IdentityProvider(Protocol):
    async def sign_in(self, email: str, password: str) -> ExternalUser: ...


class KeypairAuthenticator(Protocol):
    async def authenticate(self, method: NostrAuthMethod, credentials: NostrCredentials) -> Account: ...

    async def create_pending_credential(self) -> PendingCredential: ...

    async def activate_login(self, credential: Any) -> None: ...


class AccountSetup(Protocol):
    async def setup_account(self, profile_data: Optional[ProfileData], generated_name: str) -> None: ...

    async def publish_profile(self, profile_data: ProfileData) -> None: ...


class LegacyMigrationServices:
    """Concrete LegacyMigrationDependencies over an identity provider, a signer backend and the linking API."""

    def __init__(
        self,
        identity_provider: IdentityProvider,
        authenticator: KeypairAuthenticator,
        account_setup: AccountSetup,
        linking_client: Optional[LinkingClient] = None,
    ):
        self.identity_provider = identity_provider
        self.authenticator = authenticator
        self.account_setup = account_setup
        self.linking_client = linking_client or LinkingClient()
        self._user: Optional[ExternalUser] = None

    async def identity_provider_auth(self, email: str, password: str) -> ExternalUser:
        try:
            user = await self.identity_provider.sign_in(email, password)
        except Exception as e:
            translated = translate_identity_provider_error(e)
            logger.warning(
                "identity_provider_auth_failed",
                email_domain=email_domain(email),
                error_type=type(translated).__name__,
                code=translated.details.get("code"),
            )
            raise translated from e
        self._user = user
        return user

    async def lookup_linked_keypairs(self, user: ExternalUser) -> List[LinkedKeypair]:
        self._user = user
        return await self.linking_client.fetch_linked_keypairs(user)

    async def authenticate_keypair(self, method: NostrAuthMethod, credentials: NostrCredentials) -> Account:
        return await self.authenticator.authenticate(method, credentials)

    async def create_pending_credential(self) -> PendingCredential:
        return await self.authenticator.create_pending_credential()

    async def activate_login(self, credential: Any) -> None:
        await self.authenticator.activate_login(credential)

    async def create_linking_proof(self, signer: Any, pubkey: str, external_id: str) -> str:
        return await self.linking_client.create_linking_proof(signer, pubkey, external_id)

    async def link_keypair(self, pubkey: str, external_id: str, proof: str) -> None:
        id_token = self._user.id_token if self._user and self._user.uid == external_id else None
        await self.linking_client.link_pubkey(pubkey, external_id, proof, id_token)

    async def setup_account(self, profile_data: Optional[ProfileData], generated_name: str) -> None:
        await self.account_setup.setup_account(profile_data, generated_name)

    async def publish_profile(self, profile_data: ProfileData) -> None:
        await self.account_setup.publish_profile(profile_data)


STEP_TITLES = {
    LegacyMigrationStep.IDENTITY_PROVIDER_AUTH: "Sign in to Legacy Account",
    LegacyMigrationStep.CHECKING_LINKS: "Checking Linked Accounts",
    LegacyMigrationStep.LINKED_KEYPAIR_AUTH: "Sign in with Linked Nostr Account",
    LegacyMigrationStep.PUBKEY_MISMATCH: "Different Nostr Account",
    LegacyMigrationStep.ACCOUNT_CHOICE: "Choose Account Setup",
    LegacyMigrationStep.ACCOUNT_GENERATION: "Generating New Account",
    LegacyMigrationStep.BRING_OWN_KEYPAIR: "Import Your Keys",
    LegacyMigrationStep.PROFILE_SETUP: "Set Up Your Profile",
    LegacyMigrationStep.COMPLETE: "Migration Complete",
}

STEP_DESCRIPTIONS = {
    LegacyMigrationStep.IDENTITY_PROVIDER_AUTH: "Enter your email and password to access your legacy account",
    LegacyMigrationStep.CHECKING_LINKS: "Looking for existing Nostr accounts linked to your email...",
    LegacyMigrationStep.LINKED_KEYPAIR_AUTH: (
        "We found a Nostr account linked to your email. Please sign in with it."
    ),
    LegacyMigrationStep.PUBKEY_MISMATCH: (
        "You signed in with a different Nostr account than the one linked to your email. "
        "Try again with the linked account or continue with this one."
    ),
    LegacyMigrationStep.ACCOUNT_CHOICE: "How would you like to set up your Nostr account?",
    LegacyMigrationStep.ACCOUNT_GENERATION: "Creating a new Nostr account for you...",
    LegacyMigrationStep.BRING_OWN_KEYPAIR: "Import your existing Nostr keys",
    LegacyMigrationStep.PROFILE_SETUP: "Set up your public profile",
    LegacyMigrationStep.COMPLETE: "Your accounts have been successfully migrated!",
}


class LegacyMigrationFlow(FlowAdapter):
    def __init__(
        self,
        dependencies: LegacyMigrationDependencies,
        flow_id: Optional[str] = None,
        activation_settle_seconds: Optional[float] = None,
    ):
        self.machine = LegacyMigrationStateMachine(
            dependencies, flow_id=flow_id, activation_settle_seconds=activation_settle_seconds
        )

    # Handlers
    async def handle_identity_provider_authentication(self, email: str, password: str) -> None:
        result = await self.machine.authenticate_with_identity_provider(email, password)
        raise_for_result(result, "authenticate_with_identity_provider", "Login failed")

    async def handle_recheck_links(self) -> None:
        result = await self.machine.recheck_linked_keypairs()
        raise_for_result(result, "recheck_linked_keypairs", "Failed to check linked accounts")

    async def handle_linked_keypair_authentication(self, credentials: NostrCredentials) -> bool:
        """Returns False when the signed-in key differs from the linked one."""
        result = await self.machine.authenticate_with_linked_keypair(credentials)
        raise_for_result(result, "authenticate_with_linked_keypair", "Authentication failed")
        return result.data["matched"]

    def handle_retry_linked_keypair(self) -> None:
        self.machine.retry_linked_keypair_auth()

    async def handle_continue_with_new_pubkey(self) -> None:
        result = await self.machine.continue_with_new_pubkey()
        raise_for_result(result, "continue_with_new_pubkey", "Failed to link the new account")

    def handle_account_choice(self, choice: AccountChoice | str) -> None:
        self.machine.choose_account_option(choice)

    async def handle_account_generation(self) -> None:
        result = await self.machine.generate_new_account()
        raise_for_result(result, "generate_new_account", "Failed to generate account")

    async def handle_bring_own_keypair(self, credentials: NostrCredentials) -> None:
        result = await self.machine.bring_own_keypair(credentials)
        raise_for_result(result, "bring_own_keypair", "Failed to import keys")

    async def handle_profile_completion(self, profile_data: ProfileData | Dict[str, Any]) -> None:
        result = await self.machine.complete_profile(profile_data)
        raise_for_result(result, "complete_profile", "Failed to complete profile")

    async def handle_complete_login(self) -> None:
        result = await self.machine.complete_login()
        raise_for_result(result, "complete_login", "Failed to complete login")

    # UI helpers
    def get_step_title(self) -> str:
        return STEP_TITLES.get(self.machine.state.step, "")

    def get_step_description(self) -> str:
        return STEP_DESCRIPTIONS.get(self.machine.state.step, "")

    def has_linked_accounts(self) -> bool:
        return len(self.machine.state.linked_keypairs) > 0

    def get_expected_pubkey(self) -> Optional[str]:
        return self.machine.state.expected_pubkey

    def is_pubkey_mismatch(self) -> bool:
        return self.machine.state.step == LegacyMigrationStep.PUBKEY_MISMATCH

