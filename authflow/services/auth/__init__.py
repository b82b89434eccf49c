from authflow.services.auth.legacy_migration_flow import (
    LegacyMigrationFlow,
    LegacyMigrationServices,
    translate_identity_provider_error,
)
from authflow.services.auth.linking import LinkingClient, create_nip98_token
from authflow.services.auth.nostr_login_flow import NostrLoginFlow
from authflow.services.auth.signup_flow import BackupOutcome, SignupFlow

__all__ = [
    "LegacyMigrationFlow",
    "LegacyMigrationServices",
    "translate_identity_provider_error",
    "LinkingClient",
    "create_nip98_token",
    "NostrLoginFlow",
    "BackupOutcome",
    "SignupFlow",
]
