"""
Validation and error translation for authentication inputs.
Catches malformed credentials before any flow action is dispatched.
"""

import re
from typing import Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from authflow.core.exceptions import (
    AlreadyLinkedError,
    LinkAuthError,
    LinkingError,
    LinkNetworkError,
    ValidationError,
)
from authflow.domain.schemas import EmailPasswordCredentials, NostrAuthMethod, NostrCredentials

PUBKEY_PATTERN = re.compile(r"^[a-fA-F0-9]{64}$")
NSEC_PATTERN = re.compile(r"^nsec1[02-9ac-hj-np-z]{58}$")
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

LINK_NETWORK_MESSAGE = "Unable to link accounts. Please check your connection and try again."
LINK_AUTH_MESSAGE = "Session expired. Please sign in again to link accounts."
LINK_ALREADY_LINKED_MESSAGE = (
    "This Nostr account is already linked to a different email account. "
    "Sign in with that account or choose another key."
)
LINK_GENERIC_MESSAGE = "Unable to link accounts. Please try again."


def validate_email(email: str) -> Tuple[bool, str | None]:
    """
    Validate email format.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not email:
        return False, "Email is required"

    if len(email) > 254:
        return False, "Email is too long"

    if not EMAIL_PATTERN.match(email):
        return False, "Invalid email address"

    return True, None


def validate_password(password: str) -> Tuple[bool, str | None]:
    """
    Validate password strength for newly created backup accounts.

    Existing legacy accounts are not held to these rules; see
    validate_login_inputs.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not password:
        return False, "Password is required"

    if len(password) < 8:
        return False, "Password must be at least 8 characters long"

    if len(password) > 128:
        return False, "Password is too long"

    if not re.search(r"[a-z]", password):
        return False, "Password must contain at least one lowercase letter"

    if not re.search(r"[A-Z]", password):
        return False, "Password must contain at least one uppercase letter"

    if not re.search(r"\d", password):
        return False, "Password must contain at least one number"

    return True, None


def validate_login_inputs(email: str, password: str) -> EmailPasswordCredentials:
    """Credentials for a sign-in attempt; raises ValidationError if they are unusable."""
    email = (email or "").strip()
    is_valid, error = validate_email(email)
    if not is_valid:
        raise ValidationError(error, details={"field": "email"})
    if not password:
        raise ValidationError("Password is required", details={"field": "password"})

    try:
        return EmailPasswordCredentials(email=email, password=password)
    except PydanticValidationError as e:
        raise ValidationError("Invalid email address", details={"field": "email"}) from e


def is_valid_pubkey(pubkey: Optional[str]) -> bool:
    return bool(pubkey) and bool(PUBKEY_PATTERN.match(pubkey))


def is_valid_nsec(nsec: Optional[str]) -> bool:
    return bool(nsec) and bool(NSEC_PATTERN.match(nsec.strip()))


def is_valid_bunker_uri(uri: Optional[str]) -> bool:
    if not uri:
        return False
    uri = uri.strip()
    if not uri.startswith("bunker://"):
        return False
    remote_pubkey = uri[len("bunker://"):].split("?", 1)[0]
    return is_valid_pubkey(remote_pubkey)


def validate_nostr_credentials(method: NostrAuthMethod, credentials: NostrCredentials) -> None:
    """
    Check that credentials carry what the chosen method needs.

    Raises:
        ValidationError: On mismatched method or malformed key material
    """
    method = NostrAuthMethod(method)
    if credentials.method != method:
        raise ValidationError(
            f"Invalid credentials for {method.value} method",
            details={"method": method.value, "credentials_method": credentials.method.value},
        )

    if method == NostrAuthMethod.NSEC and not is_valid_nsec(credentials.nsec):
        raise ValidationError("Invalid private key. It should start with nsec1.", details={"field": "nsec"})

    if method == NostrAuthMethod.BUNKER and not is_valid_bunker_uri(credentials.bunker_uri):
        raise ValidationError(
            "Invalid bunker URI. It should look like bunker://<pubkey>?relay=...",
            details={"field": "bunker_uri"},
        )


def pubkeys_match(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


def translate_linking_error(error: BaseException) -> LinkingError:
    """
    Rewrite a linking failure into a message the user can act on.

    Typed linking errors map directly; anything else is classified by its
    message the way transport layers usually word it.
    """
    if isinstance(error, AlreadyLinkedError):
        return AlreadyLinkedError(LINK_ALREADY_LINKED_MESSAGE, details=error.details)
    if isinstance(error, LinkAuthError):
        return LinkAuthError(LINK_AUTH_MESSAGE, details=error.details)
    if isinstance(error, LinkNetworkError):
        return LinkNetworkError(LINK_NETWORK_MESSAGE, details=error.details)

    message = str(error).lower()
    details = {"cause": type(error).__name__}
    if "already linked" in message or "duplicate" in message or "409" in message:
        return AlreadyLinkedError(LINK_ALREADY_LINKED_MESSAGE, details=details)
    if "token" in message or "authentication" in message or "unauthorized" in message or "401" in message:
        return LinkAuthError(LINK_AUTH_MESSAGE, details=details)
    if "network" in message or "fetch" in message or "timeout" in message or "connect" in message:
        return LinkNetworkError(LINK_NETWORK_MESSAGE, details=details)
    if isinstance(error, (ConnectionError, TimeoutError)):
        return LinkNetworkError(LINK_NETWORK_MESSAGE, details=details)
    return LinkingError(LINK_GENERIC_MESSAGE, details=details)


def format_auth_error(error: BaseException | str | None) -> str:
    """Turn an auth failure into display text."""
    if error is None:
        return "An unexpected error occurred"
    if isinstance(error, str):
        return error

    message = str(error)
    lowered = message.lower()
    if "user rejected" in lowered:
        return "Authentication was cancelled"
    if "no extension" in lowered:
        return "No Nostr extension found. Please install a Nostr browser extension"
    return message or "An unexpected error occurred"


def generate_display_name(pubkey: str) -> str:
    """Fallback display name derived from a pubkey."""
    return f"User {pubkey[:8]}...{pubkey[-4:]}"
