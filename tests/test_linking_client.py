"""
Tests for the linking API client and the NIP-98 linking proof.
"""

import base64
import hashlib
import json

import httpx
import pytest

from authflow.core.exceptions import AlreadyLinkedError, LinkAuthError, LinkingError, LinkNetworkError
from authflow.services.auth.linking import (
    HTTP_AUTH_KIND,
    LinkingClient,
    create_nip98_token,
    serialize_body,
)
from authflow.state_machines.legacy_migration_flow import select_most_recent
from conftest import PUBKEY_A, PUBKEY_B, FakeSigner, make_external_user

BASE_URL = "https://links.example.com/v1"


def make_client(handler) -> LinkingClient:
    return LinkingClient(
        base_url=BASE_URL,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry_wait=0,
    )


def decode_token(header: str) -> dict:
    scheme, token = header.split(" ", 1)
    assert scheme == "Nostr"
    return json.loads(base64.b64decode(token))


# ── fetch_linked_keypairs ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_fetch_sends_bearer_token_and_parses_entries():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "success": True,
                "linked_pubkeys": [
                    {"pubkey": PUBKEY_A, "linked_at": "2024-03-01T10:00:00Z"},
                    {"pubkey": PUBKEY_B, "linked_at": "2024-05-01T10:00:00Z"},
                ],
            },
        )

    client = make_client(handler)
    linked = await client.fetch_linked_keypairs(make_external_user())

    assert [k.pubkey for k in linked] == [PUBKEY_A, PUBKEY_B]
    assert linked[1].linked_at.year == 2024
    assert requests[0].method == "GET"
    assert str(requests[0].url) == f"{BASE_URL}/auth/get-linked-pubkeys"
    assert requests[0].headers["Authorization"] == "Bearer id-token-1"
    await client.close()


@pytest.mark.asyncio
async def test_fetch_keeps_camel_case_fields():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "success": True,
                "linked_pubkeys": [
                    {"pubkey": PUBKEY_A, "linked_at": "2024-06-01T00:00:00Z"},
                    {"pubkey": PUBKEY_B, "linkedAt": "2024-01-01T00:00:00Z", "isMostRecentlyLinked": True},
                ],
            },
        )

    linked = await make_client(handler).fetch_linked_keypairs(make_external_user())

    assert linked[0].is_most_recently_linked is False
    assert linked[1].is_most_recently_linked is True
    assert linked[1].linked_at.month == 1
    assert select_most_recent(linked).pubkey == PUBKEY_B


@pytest.mark.asyncio
async def test_fetch_drops_invalid_pubkeys():
    def handler(request):
        return httpx.Response(
            200,
            json={"success": True, "linked_pubkeys": [{"pubkey": "npub-not-hex"}, {"pubkey": PUBKEY_A}]},
        )

    linked = await make_client(handler).fetch_linked_keypairs(make_external_user())

    assert [k.pubkey for k in linked] == [PUBKEY_A]


@pytest.mark.asyncio
async def test_fetch_all_invalid_is_an_error():
    def handler(request):
        return httpx.Response(200, json={"success": True, "linked_pubkeys": [{"pubkey": "bad"}, {}]})

    with pytest.raises(LinkingError, match="All 2 pubkeys"):
        await make_client(handler).fetch_linked_keypairs(make_external_user())


@pytest.mark.asyncio
async def test_fetch_without_links_returns_empty():
    def handler(request):
        return httpx.Response(200, json={"success": True})

    assert await make_client(handler).fetch_linked_keypairs(make_external_user()) == []


@pytest.mark.asyncio
async def test_fetch_unsuccessful_response_with_error_raises():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": "lookup disabled"})

    with pytest.raises(LinkingError, match="lookup disabled"):
        await make_client(handler).fetch_linked_keypairs(make_external_user())


@pytest.mark.asyncio
async def test_fetch_requires_id_token():
    user = make_external_user().model_copy(update={"id_token": None})

    with pytest.raises(LinkAuthError):
        await make_client(lambda request: httpx.Response(200)).fetch_linked_keypairs(user)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error_type",
    [(401, LinkAuthError), (403, LinkAuthError), (409, AlreadyLinkedError), (500, LinkingError)],
)
async def test_fetch_maps_status_codes(status, error_type):
    def handler(request):
        return httpx.Response(status, json={"error": "nope"})

    with pytest.raises(error_type) as exc_info:
        await make_client(handler).fetch_linked_keypairs(make_external_user())

    assert exc_info.value.details["status_code"] == status


@pytest.mark.asyncio
async def test_transport_errors_become_network_errors_after_retries():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(LinkNetworkError):
        await make_client(handler).fetch_linked_keypairs(make_external_user())

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_lookup_recovers_from_transient_transport_error():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json={"success": True, "linked_pubkeys": [{"pubkey": PUBKEY_A}]})

    linked = await make_client(handler).fetch_linked_keypairs(make_external_user())

    assert [k.pubkey for k in linked] == [PUBKEY_A]
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_error_statuses_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"error": "boom"})

    with pytest.raises(LinkingError):
        await make_client(handler).fetch_linked_keypairs(make_external_user())

    assert len(calls) == 1


# ── link_pubkey / proof ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_link_request_carries_proof_for_exact_body():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"success": True})

    client = make_client(handler)
    signer = FakeSigner(PUBKEY_A)

    proof = await client.create_linking_proof(signer, PUBKEY_A, "firebase-uid-1")
    result = await client.link_pubkey(PUBKEY_A, "firebase-uid-1", proof, "id-token-1")

    request = requests[0]
    assert result == {"success": True}
    assert request.method == "POST"
    assert str(request.url) == f"{BASE_URL}/auth/link-pubkey"
    assert request.headers["X-Firebase-Token"] == "id-token-1"
    assert request.headers["Authorization"] == proof
    assert json.loads(request.content) == {"pubkey": PUBKEY_A, "firebaseUid": "firebase-uid-1"}

    event = decode_token(proof)
    tags = dict((tag[0], tag[1]) for tag in event["tags"])
    assert event["kind"] == HTTP_AUTH_KIND
    assert event["pubkey"] == PUBKEY_A
    assert tags["u"] == f"{BASE_URL}/auth/link-pubkey"
    assert tags["method"] == "POST"
    assert tags["payload"] == hashlib.sha256(request.content).hexdigest()


@pytest.mark.asyncio
async def test_link_conflict_is_already_linked():
    def handler(request):
        return httpx.Response(409, json={"error": "Pubkey already linked to another account"})

    with pytest.raises(AlreadyLinkedError, match="already linked"):
        await make_client(handler).link_pubkey(PUBKEY_A, "uid", "Nostr x", "id-token-1")


@pytest.mark.asyncio
async def test_link_requires_id_token():
    with pytest.raises(LinkAuthError):
        await make_client(lambda request: httpx.Response(200)).link_pubkey(PUBKEY_A, "uid", "Nostr x", None)


@pytest.mark.asyncio
async def test_nip98_token_without_body_has_no_payload_tag():
    token = await create_nip98_token(FakeSigner(PUBKEY_B), "https://x.example/a", "get", include_scheme=False)

    event = json.loads(base64.b64decode(token))
    assert [tag[0] for tag in event["tags"]] == ["u", "method"]
    assert event["tags"][1] == ["method", "GET"]


@pytest.mark.asyncio
async def test_nip98_requires_signer():
    with pytest.raises(ValueError):
        await create_nip98_token(None, "https://x.example/a", "POST", serialize_body({}))
