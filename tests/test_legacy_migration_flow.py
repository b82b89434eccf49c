"""
Tests for the legacy migration state machine: link lookup, linked keypair
verification, mismatch resolution, account generation/import and the
profile completion stage.
"""

from datetime import datetime, timezone

import pytest

from authflow.core.exceptions import (
    AlreadyLinkedError,
    InvalidCredentialsError,
    InvalidTransitionError,
    LinkingError,
    LinkNetworkError,
    UnhandledActionError,
    ValidationError,
)
from authflow.domain.schemas import AccountChoice, LinkedKeypair, ProfileData
from authflow.state_machines.legacy_migration_flow import (
    LegacyMigrationStateMachine,
    LegacyMigrationStep,
    initial_legacy_migration_state,
    legacy_migration_reducer,
    select_most_recent,
)
from authflow.utils.auth_validation import LINK_ALREADY_LINKED_MESSAGE, LINK_NETWORK_MESSAGE
from conftest import PUBKEY_A, PUBKEY_B, PUBKEY_GENERATED, make_account, nsec_credentials

EMAIL = "user@example.com"
PASSWORD = "hunter22"


@pytest.fixture
def machine(migration_deps):
    return LegacyMigrationStateMachine(migration_deps, activation_settle_seconds=0)


async def signed_in_with_links(machine, migration_deps, linked):
    migration_deps.lookup_linked_keypairs.return_value = linked
    result = await machine.authenticate_with_identity_provider(EMAIL, PASSWORD)
    assert result.success is True
    return result


# ── identity provider + link lookup ──────────────────────────────────────


@pytest.mark.asyncio
async def test_no_linked_keypairs_goes_to_account_choice(machine, migration_deps):
    await signed_in_with_links(machine, migration_deps, [])

    assert machine.state.step == LegacyMigrationStep.ACCOUNT_CHOICE
    assert machine.state.expected_pubkey is None
    assert machine.state.identity_provider_user.uid == "firebase-uid-1"


@pytest.mark.asyncio
async def test_linked_keypairs_go_to_linked_auth(machine, migration_deps, linked_a):
    await signed_in_with_links(machine, migration_deps, linked_a)

    assert machine.state.step == LegacyMigrationStep.LINKED_KEYPAIR_AUTH
    assert machine.state.expected_pubkey == PUBKEY_A


@pytest.mark.asyncio
async def test_invalid_login_inputs_never_reach_provider(machine, migration_deps):
    result = await machine.authenticate_with_identity_provider("not-an-email", PASSWORD)

    assert result.success is False
    assert isinstance(result.error, ValidationError)
    migration_deps.identity_provider_auth.assert_not_awaited()


@pytest.mark.asyncio
async def test_provider_failure_keeps_first_step(machine, migration_deps):
    migration_deps.identity_provider_auth.side_effect = InvalidCredentialsError()

    result = await machine.authenticate_with_identity_provider(EMAIL, PASSWORD)

    assert result.success is False
    assert machine.state.step == LegacyMigrationStep.IDENTITY_PROVIDER_AUTH
    assert machine.get_error("authenticate_with_identity_provider") is result.error
    assert machine.is_loading("authenticate_with_identity_provider") is False


@pytest.mark.asyncio
async def test_lookup_failure_can_be_rechecked(machine, migration_deps, linked_a):
    migration_deps.lookup_linked_keypairs.side_effect = [LinkNetworkError("offline"), linked_a]

    first = await machine.authenticate_with_identity_provider(EMAIL, PASSWORD)
    assert first.success is False
    assert machine.state.step == LegacyMigrationStep.CHECKING_LINKS

    second = await machine.recheck_linked_keypairs()
    assert second.success is True
    assert machine.state.step == LegacyMigrationStep.LINKED_KEYPAIR_AUTH
    migration_deps.identity_provider_auth.assert_awaited_once()


def test_most_recent_prefers_flag_then_date_then_first():
    older = LinkedKeypair(pubkey=PUBKEY_A, linked_at=datetime(2023, 1, 1, tzinfo=timezone.utc))
    newer = LinkedKeypair(pubkey=PUBKEY_B, linked_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    flagged = LinkedKeypair(pubkey=PUBKEY_GENERATED, is_most_recently_linked=True)

    assert select_most_recent([older, newer]).pubkey == PUBKEY_B
    assert select_most_recent([newer, flagged, older]).pubkey == PUBKEY_GENERATED
    assert select_most_recent([LinkedKeypair(pubkey=PUBKEY_B), LinkedKeypair(pubkey=PUBKEY_A)]).pubkey == PUBKEY_B
    assert select_most_recent([]) is None


def test_most_recent_compares_naive_and_aware_dates():
    aware = LinkedKeypair(pubkey=PUBKEY_A, linked_at="2024-01-01T00:00:00Z")
    naive = LinkedKeypair(pubkey=PUBKEY_B, linked_at="2024-06-01T00:00:00")

    assert naive.linked_at.tzinfo is timezone.utc
    assert select_most_recent([aware, naive]).pubkey == PUBKEY_B


@pytest.mark.asyncio
async def test_mixed_link_dates_still_reach_linked_auth(machine, migration_deps):
    linked = [
        LinkedKeypair(pubkey=PUBKEY_A, linked_at="2024-06-01T00:00:00"),
        LinkedKeypair(pubkey=PUBKEY_B, linked_at="2024-01-01T00:00:00Z"),
    ]

    await signed_in_with_links(machine, migration_deps, linked)

    assert machine.state.step == LegacyMigrationStep.LINKED_KEYPAIR_AUTH
    assert machine.state.expected_pubkey == PUBKEY_A


# ── linked keypair auth ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_matching_keypair_completes_without_linking(machine, migration_deps, linked_a):
    await signed_in_with_links(machine, migration_deps, linked_a)
    migration_deps.authenticate_keypair.return_value = make_account(PUBKEY_A)

    result = await machine.authenticate_with_linked_keypair(nsec_credentials())

    assert result.success is True
    assert result.data["matched"] is True
    assert machine.state.step == LegacyMigrationStep.COMPLETE
    assert machine.state.session_active is True
    assert migration_deps.link_keypair.await_count == 0
    assert migration_deps.create_linking_proof.await_count == 0
    migration_deps.activate_login.assert_awaited_once()


@pytest.mark.asyncio
async def test_pubkey_match_ignores_case(machine, migration_deps, linked_a):
    await signed_in_with_links(machine, migration_deps, linked_a)
    migration_deps.authenticate_keypair.return_value = make_account(PUBKEY_A.upper())

    await machine.authenticate_with_linked_keypair(nsec_credentials())

    assert machine.state.step == LegacyMigrationStep.COMPLETE


@pytest.mark.asyncio
async def test_mismatch_preserves_expected_and_records_actual(machine, migration_deps, linked_a):
    await signed_in_with_links(machine, migration_deps, linked_a)
    migration_deps.authenticate_keypair.return_value = make_account(PUBKEY_B)

    result = await machine.authenticate_with_linked_keypair(nsec_credentials())

    assert result.success is True
    assert result.data["matched"] is False
    assert machine.state.step == LegacyMigrationStep.PUBKEY_MISMATCH
    assert machine.state.expected_pubkey == PUBKEY_A
    assert machine.state.actual_pubkey == PUBKEY_B
    assert machine.state.mismatched_account.pubkey == PUBKEY_B
    assert machine.state.session_active is False
    migration_deps.activate_login.assert_not_awaited()
    migration_deps.link_keypair.assert_not_awaited()


@pytest.mark.asyncio
async def test_retry_after_mismatch_clears_mismatch(machine, migration_deps, linked_a):
    await signed_in_with_links(machine, migration_deps, linked_a)
    migration_deps.authenticate_keypair.return_value = make_account(PUBKEY_B)
    await machine.authenticate_with_linked_keypair(nsec_credentials())

    machine.retry_linked_keypair_auth()

    assert machine.state.step == LegacyMigrationStep.LINKED_KEYPAIR_AUTH
    assert machine.state.actual_pubkey is None
    assert machine.state.mismatched_account is None
    assert machine.state.expected_pubkey == PUBKEY_A


@pytest.mark.asyncio
async def test_go_back_from_mismatch_clears_mismatch(machine, migration_deps, linked_a):
    await signed_in_with_links(machine, migration_deps, linked_a)
    migration_deps.authenticate_keypair.return_value = make_account(PUBKEY_B)
    await machine.authenticate_with_linked_keypair(nsec_credentials())

    machine.go_back()

    assert machine.state.step == LegacyMigrationStep.LINKED_KEYPAIR_AUTH
    assert machine.state.actual_pubkey is None


@pytest.mark.asyncio
async def test_continue_with_new_pubkey_links_and_completes(machine, migration_deps, linked_a):
    await signed_in_with_links(machine, migration_deps, linked_a)
    account_b = make_account(PUBKEY_B)
    migration_deps.authenticate_keypair.return_value = account_b
    await machine.authenticate_with_linked_keypair(nsec_credentials())

    result = await machine.continue_with_new_pubkey()

    assert result.success is True
    assert result.data["previous_pubkey"] == PUBKEY_A
    assert machine.state.step == LegacyMigrationStep.COMPLETE
    assert machine.state.expected_pubkey == PUBKEY_B
    assert [k.pubkey for k in machine.state.linked_keypairs] == [PUBKEY_A, PUBKEY_B]
    assert select_most_recent(machine.state.linked_keypairs).pubkey == PUBKEY_B
    migration_deps.create_linking_proof.assert_awaited_once_with(account_b.signer, PUBKEY_B, "firebase-uid-1")
    migration_deps.link_keypair.assert_awaited_once_with(PUBKEY_B, "firebase-uid-1", "Nostr proof-token")
    migration_deps.activate_login.assert_awaited_once_with(account_b.credential)


@pytest.mark.asyncio
async def test_continue_link_failure_stays_on_mismatch(machine, migration_deps, linked_a):
    await signed_in_with_links(machine, migration_deps, linked_a)
    migration_deps.authenticate_keypair.return_value = make_account(PUBKEY_B)
    await machine.authenticate_with_linked_keypair(nsec_credentials())
    migration_deps.link_keypair.side_effect = AlreadyLinkedError("409 conflict")

    result = await machine.continue_with_new_pubkey()

    assert result.success is False
    assert isinstance(result.error, AlreadyLinkedError)
    assert result.error.message == LINK_ALREADY_LINKED_MESSAGE
    assert machine.state.step == LegacyMigrationStep.PUBKEY_MISMATCH
    assert machine.state.expected_pubkey == PUBKEY_A
    migration_deps.activate_login.assert_not_awaited()


@pytest.mark.asyncio
async def test_linked_auth_not_allowed_from_account_choice(machine, migration_deps):
    await signed_in_with_links(machine, migration_deps, [])

    result = await machine.authenticate_with_linked_keypair(nsec_credentials())

    assert result.success is False
    assert isinstance(result.error, InvalidTransitionError)
    migration_deps.authenticate_keypair.assert_not_awaited()


# ── account generation ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_happy_path_generate_and_complete_profile(machine, migration_deps):
    await signed_in_with_links(machine, migration_deps, [])
    assert machine.state.step == LegacyMigrationStep.ACCOUNT_CHOICE

    result = await machine.generate_new_account()

    assert result.success is True
    assert machine.state.step == LegacyMigrationStep.PROFILE_SETUP
    assert machine.state.generated_account.pubkey == PUBKEY_GENERATED
    assert machine.state.created_login is not None
    assert machine.state.session_active is False
    migration_deps.activate_login.assert_not_awaited()
    migration_deps.link_keypair.assert_awaited_once_with(PUBKEY_GENERATED, "firebase-uid-1", "Nostr proof-token")

    result = await machine.complete_profile({"name": "Alice"})

    assert result.success is True
    assert result.data["setup_completed"] is True
    assert machine.state.step == LegacyMigrationStep.COMPLETE
    assert machine.state.session_active is True
    assert machine.state.profile_data.name == "Alice"
    migration_deps.activate_login.assert_awaited_once_with("pending-cccc")
    migration_deps.setup_account.assert_awaited_once_with(ProfileData(name="Alice"), "Swift Fox")


@pytest.mark.asyncio
async def test_link_failure_leaves_no_session(machine, migration_deps):
    await signed_in_with_links(machine, migration_deps, [])
    migration_deps.link_keypair.side_effect = ConnectionError("connection refused")

    result = await machine.generate_new_account()

    assert result.success is False
    assert isinstance(result.error, LinkNetworkError)
    assert result.error.message == LINK_NETWORK_MESSAGE
    assert machine.state.step == LegacyMigrationStep.ACCOUNT_CHOICE
    assert machine.state.created_login is not None
    assert machine.state.session_active is False
    migration_deps.activate_login.assert_not_awaited()


@pytest.mark.asyncio
async def test_retry_generation_reuses_pending_credential(machine, migration_deps):
    await signed_in_with_links(machine, migration_deps, [])
    migration_deps.link_keypair.side_effect = [ConnectionError("timeout"), None]

    await machine.generate_new_account()
    result = await machine.generate_new_account()

    assert result.success is True
    assert machine.state.step == LegacyMigrationStep.PROFILE_SETUP
    migration_deps.create_pending_credential.assert_awaited_once()


@pytest.mark.asyncio
async def test_unclassified_link_error_gets_generic_message(machine, migration_deps):
    await signed_in_with_links(machine, migration_deps, [])
    migration_deps.link_keypair.side_effect = RuntimeError("boom")

    result = await machine.generate_new_account()

    assert type(result.error) is LinkingError


@pytest.mark.asyncio
async def test_setup_failure_falls_back_to_minimal_profile(machine, migration_deps):
    await signed_in_with_links(machine, migration_deps, [])
    await machine.generate_new_account()
    migration_deps.setup_account.side_effect = RuntimeError("wallet mint offline")

    result = await machine.complete_profile({"name": "Alice", "about": "hi", "website": "https://a.example"})

    assert result.success is True
    assert result.data["setup_completed"] is False
    assert result.data["fallback_published"] is True
    assert machine.state.step == LegacyMigrationStep.COMPLETE
    published = migration_deps.publish_profile.await_args.args[0]
    assert published.name == "Alice"
    assert published.about == "hi"
    assert published.website is None


@pytest.mark.asyncio
async def test_fallback_failure_is_swallowed(machine, migration_deps):
    await signed_in_with_links(machine, migration_deps, [])
    await machine.generate_new_account()
    migration_deps.setup_account.side_effect = RuntimeError("wallet mint offline")
    migration_deps.publish_profile.side_effect = RuntimeError("relay down")

    result = await machine.complete_profile({"name": "Alice"})

    assert result.success is True
    assert result.data["fallback_published"] is False
    assert machine.state.session_active is True


@pytest.mark.asyncio
async def test_complete_login_fallback(machine, migration_deps):
    await signed_in_with_links(machine, migration_deps, [])
    await machine.generate_new_account()

    result = await machine.complete_login()

    assert result.success is True
    assert machine.state.step == LegacyMigrationStep.COMPLETE
    migration_deps.setup_account.assert_awaited_once_with(None, "Swift Fox")


# ── bring own keypair ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_bring_own_keypair_links_activates_and_completes(machine, migration_deps):
    await signed_in_with_links(machine, migration_deps, [])
    machine.choose_account_option("bring-own")
    assert machine.state.step == LegacyMigrationStep.BRING_OWN_KEYPAIR
    migration_deps.authenticate_keypair.return_value = make_account(PUBKEY_B, name="Bob")

    result = await machine.bring_own_keypair(nsec_credentials())

    assert result.success is True
    assert machine.state.step == LegacyMigrationStep.COMPLETE
    assert machine.state.session_active is True
    migration_deps.link_keypair.assert_awaited_once_with(PUBKEY_B, "firebase-uid-1", "Nostr proof-token")
    migration_deps.setup_account.assert_awaited_once_with(ProfileData(name="Bob"), "Bob")


@pytest.mark.asyncio
async def test_bring_own_setup_failure_is_not_fatal(machine, migration_deps):
    await signed_in_with_links(machine, migration_deps, [])
    migration_deps.authenticate_keypair.return_value = make_account(PUBKEY_B)
    migration_deps.setup_account.side_effect = RuntimeError("wallet mint offline")

    result = await machine.bring_own_keypair(nsec_credentials())

    assert result.success is True
    assert result.data["setup_completed"] is False
    assert machine.state.step == LegacyMigrationStep.COMPLETE


@pytest.mark.asyncio
async def test_bring_own_link_failure_does_not_activate(machine, migration_deps):
    await signed_in_with_links(machine, migration_deps, [])
    migration_deps.authenticate_keypair.return_value = make_account(PUBKEY_B)
    migration_deps.link_keypair.side_effect = AlreadyLinkedError("already linked")

    result = await machine.bring_own_keypair(nsec_credentials())

    assert result.success is False
    assert machine.state.step == LegacyMigrationStep.ACCOUNT_CHOICE
    migration_deps.activate_login.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_generation_keeps_the_step_it_started_from(machine, migration_deps, linked_a):
    migration_deps.link_keypair.side_effect = ConnectionError("connection refused")
    await signed_in_with_links(machine, migration_deps, linked_a)

    result = await machine.generate_new_account()

    assert result.success is False
    assert machine.state.step == LegacyMigrationStep.LINKED_KEYPAIR_AUTH
    assert machine.state.expected_pubkey == PUBKEY_A

    machine.choose_account_option(AccountChoice.GENERATE)
    result = await machine.generate_new_account()

    assert result.success is False
    assert machine.state.step == LegacyMigrationStep.ACCOUNT_GENERATION


# ── navigation ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_back_from_linked_auth_skips_checking_links(machine, migration_deps, linked_a):
    await signed_in_with_links(machine, migration_deps, linked_a)

    machine.go_back()

    assert machine.state.step == LegacyMigrationStep.IDENTITY_PROVIDER_AUTH
    assert machine.state.can_go_back is False


@pytest.mark.asyncio
async def test_back_from_generation_depends_on_links(machine, migration_deps, linked_a):
    await signed_in_with_links(machine, migration_deps, linked_a)
    machine.choose_account_option(AccountChoice.GENERATE)
    machine.go_back()
    assert machine.state.step == LegacyMigrationStep.LINKED_KEYPAIR_AUTH

    machine.reset()
    await signed_in_with_links(machine, migration_deps, [])
    machine.choose_account_option(AccountChoice.GENERATE)
    machine.go_back()
    assert machine.state.step == LegacyMigrationStep.ACCOUNT_CHOICE


@pytest.mark.asyncio
async def test_back_from_profile_setup_returns_to_generation(machine, migration_deps):
    await signed_in_with_links(machine, migration_deps, [])
    await machine.generate_new_account()

    machine.go_back()

    assert machine.state.step == LegacyMigrationStep.ACCOUNT_GENERATION


@pytest.mark.asyncio
async def test_no_back_from_complete(machine, migration_deps, linked_a):
    await signed_in_with_links(machine, migration_deps, linked_a)
    await machine.authenticate_with_linked_keypair(nsec_credentials())

    machine.go_back()

    assert machine.state.step == LegacyMigrationStep.COMPLETE
    assert machine.state.can_go_back is False


def test_reducer_rejects_unknown_action():
    with pytest.raises(UnhandledActionError):
        legacy_migration_reducer(initial_legacy_migration_state(), "LINKS_CHECKED")
