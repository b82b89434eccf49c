"""
Account linking client.

Talks to the linking API that stores which Nostr pubkeys belong to a legacy
(Firebase) account:

  GET  {base}/auth/get-linked-pubkeys   Authorization: Bearer <id token>
  POST {base}/auth/link-pubkey          Authorization: Nostr <NIP-98 token>
                                        X-Firebase-Token: <id token>

Link requests are authorized with a NIP-98 HTTP auth event signed by the
keypair being linked, which doubles as the proof of keypair ownership.
"""

import base64
import hashlib
import json
import time
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from authflow.core.config import settings
from authflow.core.exceptions import (
    AlreadyLinkedError,
    LinkAuthError,
    LinkingError,
    LinkNetworkError,
)
from authflow.core.logging_config import truncate_pubkey
from authflow.domain.schemas import ExternalUser, LinkedKeypair, NostrSigner
from authflow.utils.auth_validation import is_valid_pubkey

logger = structlog.get_logger(__name__)

HTTP_AUTH_KIND = 27235
NOSTR_AUTH_SCHEME = "Nostr"


def serialize_body(body: Dict[str, Any]) -> str:
    """Compact JSON; the exact bytes sent are the bytes hashed into the proof."""
    return json.dumps(body, separators=(",", ":"))


def build_http_auth_event(url: str, method: str, body: Optional[str] = None) -> Dict[str, Any]:
    """Unsigned NIP-98 event template for one HTTP request."""
    tags = [["u", url], ["method", method.upper()]]
    if body is not None:
        tags.append(["payload", hashlib.sha256(body.encode("utf-8")).hexdigest()])
    return {
        "kind": HTTP_AUTH_KIND,
        "created_at": int(time.time()),
        "tags": tags,
        "content": "",
    }


async def create_nip98_token(
    signer: NostrSigner,
    url: str,
    method: str,
    body: Optional[str] = None,
    include_scheme: bool = True,
) -> str:
    """
    Sign a NIP-98 HTTP auth event and pack it as an Authorization value.

    Args:
        signer: Signer of the keypair proving ownership
        url: Absolute request URL
        method: HTTP method
        body: Serialized request body, hashed into the payload tag
        include_scheme: Prefix the token with "Nostr "

    Raises:
        ValueError: If no signer is available
    """
    if signer is None:
        raise ValueError("Signer is required for NIP-98 authentication")

    signed = await signer.sign_event(build_http_auth_event(url, method, body))
    token = base64.b64encode(json.dumps(signed).encode("utf-8")).decode("ascii")
    return f"{NOSTR_AUTH_SCHEME} {token}" if include_scheme else token


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"Request failed with status {response.status_code}"


def raise_for_link_status(response: httpx.Response) -> None:
    """Map a linking API error response to a typed LinkingError."""
    if response.is_success:
        return

    message = _error_message(response)
    details = {"status_code": response.status_code}
    if response.status_code in (401, 403):
        raise LinkAuthError(message, details=details)
    if response.status_code == 409:
        raise AlreadyLinkedError(message, details=details)
    raise LinkingError(message, details=details)


class LinkingClient:
    """Async client for the pubkey linking API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: Optional[int] = None,
        retry_wait: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.link_api_url).rstrip("/")
        self.max_retries = settings.link_api_max_retries if max_retries is None else max_retries
        self.retry_wait = settings.link_api_retry_wait if retry_wait is None else retry_wait
        self.client = client or httpx.AsyncClient(
            timeout=settings.link_api_timeout if timeout is None else timeout
        )

    @property
    def link_url(self) -> str:
        return f"{self.base_url}/auth/link-pubkey"

    @property
    def linked_pubkeys_url(self) -> str:
        return f"{self.base_url}/auth/get-linked-pubkeys"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("link_api_timeout", url=url, error=str(e))
            raise LinkNetworkError("Linking service timed out", details={"url": url}) from e
        except httpx.TransportError as e:
            logger.warning("link_api_unreachable", url=url, error=str(e), error_type=type(e).__name__)
            raise LinkNetworkError("Linking service is unreachable", details={"url": url}) from e

        raise_for_link_status(response)
        return response

    async def _get_with_retry(self, url: str, **kwargs) -> httpx.Response:
        """GET with exponential backoff on transport failures; HTTP error statuses are not retried."""
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(LinkNetworkError),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_wait, min=self.retry_wait, max=10),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._request("GET", url, **kwargs)

    async def fetch_linked_keypairs(self, user: ExternalUser) -> List[LinkedKeypair]:
        """
        Keypairs linked to a legacy account.

        Entries with a malformed pubkey are dropped. A response in which every
        entry is malformed is treated as a service error.

        Raises:
            LinkAuthError: Missing or rejected identity token
            LinkNetworkError: Transport failure
            LinkingError: Any other API failure or malformed response
        """
        if not user.id_token:
            raise LinkAuthError("Identity token is required to look up linked keypairs")

        response = await self._get_with_retry(
            self.linked_pubkeys_url,
            headers={"Authorization": f"Bearer {user.id_token}"},
        )

        try:
            data = response.json()
        except ValueError as e:
            raise LinkingError("Invalid response format: expected JSON") from e
        if not isinstance(data, dict):
            raise LinkingError("Invalid response format: expected object")

        if not data.get("success"):
            if data.get("error"):
                raise LinkingError(f"API error: {data['error']}")
            return []

        items = data.get("linked_pubkeys") or []
        if not isinstance(items, list):
            raise LinkingError("Invalid response format: linked_pubkeys must be an array")

        linked: List[LinkedKeypair] = []
        invalid_count = 0
        for item in items:
            pubkey = item.get("pubkey") if isinstance(item, dict) else None
            if not isinstance(pubkey, str) or not is_valid_pubkey(pubkey):
                invalid_count += 1
                continue
            try:
                # Either casing: the service has shipped both
                linked.append(LinkedKeypair.model_validate(item))
            except PydanticValidationError:
                invalid_count += 1

        if invalid_count:
            logger.warning(
                "linked_pubkeys_invalid_entries",
                uid=user.uid,
                invalid_count=invalid_count,
                valid_count=len(linked),
            )
            if not linked:
                raise LinkingError(f"All {invalid_count} pubkeys in response are invalid")

        logger.info("linked_pubkeys_fetched", uid=user.uid, count=len(linked))
        return linked

    async def create_linking_proof(self, signer: NostrSigner, pubkey: str, external_id: str) -> str:
        """NIP-98 Authorization value for linking `pubkey` to `external_id`."""
        body = serialize_body({"pubkey": pubkey, "firebaseUid": external_id})
        return await create_nip98_token(signer, self.link_url, "POST", body)

    async def link_pubkey(self, pubkey: str, external_id: str, proof: str, id_token: Optional[str]) -> Dict[str, Any]:
        """
        Link a pubkey to a legacy account.

        Args:
            pubkey: Hex pubkey being linked
            external_id: Legacy account uid
            proof: Authorization value from create_linking_proof()
            id_token: Legacy account identity token

        Raises:
            LinkAuthError: Missing token or rejected token/proof
            AlreadyLinkedError: Pubkey belongs to another account
            LinkNetworkError: Transport failure
            LinkingError: Any other API failure
        """
        if not id_token:
            raise LinkAuthError("Identity token is required to link accounts")

        body = serialize_body({"pubkey": pubkey, "firebaseUid": external_id})
        response = await self._request(
            "POST",
            self.link_url,
            content=body,
            headers={
                "Content-Type": "application/json",
                "Authorization": proof,
                "X-Firebase-Token": id_token,
            },
        )
        logger.info("pubkey_link_created", uid=external_id, pubkey=truncate_pubkey(pubkey))

        try:
            return response.json()
        except ValueError:
            return {}

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()
