"""
Shared fixtures for auth flow tests.

Dependency bundles are SimpleNamespaces of AsyncMocks so every flow can be
driven without a live identity provider, signer or linking API.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from authflow.domain.schemas import (
    Account,
    ExternalUser,
    LinkedKeypair,
    NostrCredentials,
    PendingCredential,
    ProfileData,
)

PUBKEY_A = "a" * 64
PUBKEY_B = "b" * 64
PUBKEY_GENERATED = "c" * 64
VALID_NSEC = "nsec1" + "q" * 58
BUNKER_URI = f"bunker://{'d' * 64}?relay=wss://relay.example.com"


# ---------------------------------------------------------------------------
# Fake signer / identities
# ---------------------------------------------------------------------------

class FakeSigner:
    """Signs by stamping id/pubkey/sig onto the template and records calls."""

    def __init__(self, pubkey: str):
        self.pubkey = pubkey
        self.signed = []

    async def get_public_key(self) -> str:
        return self.pubkey

    async def sign_event(self, event):
        self.signed.append(event)
        return {**event, "pubkey": self.pubkey, "id": "e" * 64, "sig": "f" * 128}


def make_account(pubkey: str = PUBKEY_A, name: str | None = None) -> Account:
    profile = ProfileData(name=name) if name else None
    return Account(pubkey=pubkey, signer=FakeSigner(pubkey), profile=profile, credential=f"cred-{pubkey[:4]}")


def make_pending_credential(pubkey: str = PUBKEY_GENERATED, name: str = "Swift Fox") -> PendingCredential:
    return PendingCredential(
        credential=f"pending-{pubkey[:4]}",
        pubkey=pubkey,
        signer=FakeSigner(pubkey),
        generated_name=name,
    )


def make_external_user(uid: str = "firebase-uid-1", email: str = "user@example.com") -> ExternalUser:
    return ExternalUser(uid=uid, email=email, id_token="id-token-1")


def nsec_credentials() -> NostrCredentials:
    return NostrCredentials.from_nsec(VALID_NSEC)


# ---------------------------------------------------------------------------
# Dependency bundles
# ---------------------------------------------------------------------------

@pytest.fixture
def signup_deps():
    return SimpleNamespace(
        create_pending_credential=AsyncMock(return_value=make_pending_credential()),
        save_profile=AsyncMock(return_value=None),
        create_backup_account=AsyncMock(return_value=make_external_user(email="artist@example.com")),
        link_backup_account=AsyncMock(return_value=None),
        activate_login=AsyncMock(return_value=None),
        setup_account=AsyncMock(return_value=None),
    )


@pytest.fixture
def login_deps():
    return SimpleNamespace(
        authenticate=AsyncMock(return_value=make_account(PUBKEY_A, name="Alice")),
        activate_login=AsyncMock(return_value=None),
        sync_profile=AsyncMock(return_value=None),
    )


@pytest.fixture
def migration_deps():
    return SimpleNamespace(
        identity_provider_auth=AsyncMock(return_value=make_external_user()),
        lookup_linked_keypairs=AsyncMock(return_value=[]),
        authenticate_keypair=AsyncMock(return_value=make_account(PUBKEY_A)),
        create_pending_credential=AsyncMock(return_value=make_pending_credential()),
        activate_login=AsyncMock(return_value=None),
        create_linking_proof=AsyncMock(return_value="Nostr proof-token"),
        link_keypair=AsyncMock(return_value=None),
        setup_account=AsyncMock(return_value=None),
        publish_profile=AsyncMock(return_value=None),
    )


@pytest.fixture
def linked_a():
    return [LinkedKeypair(pubkey=PUBKEY_A)]
