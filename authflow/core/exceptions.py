"""Custom exceptions for domain-specific errors"""

from typing import Any, Dict, Optional


class DomainException(Exception):
    """Base exception for all domain errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# Identity provider errors
class AuthenticationError(DomainException):
    """Raised when authentication fails"""

    pass


class InvalidCredentialsError(AuthenticationError):
    """Raised when email/password do not match"""

    def __init__(self, message: str = "Incorrect email or password", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class AccountDisabledError(AuthenticationError):
    """Raised when the identity provider account has been disabled"""

    def __init__(self, message: str = "This account has been disabled", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class UserNotFoundError(AuthenticationError):
    """Raised when no identity provider account exists for the email"""

    def __init__(
        self,
        message: str = "No account found with this email address",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)


class IdentityProviderError(AuthenticationError):
    """Raised for any other identity provider failure"""

    pass


# Keypair errors
class KeypairAuthError(AuthenticationError):
    """Raised when a Nostr keypair cannot be authenticated"""

    pass


# Linking errors
class LinkingError(DomainException):
    """Base exception for pubkey <-> external account linking failures"""

    pass


class LinkNetworkError(LinkingError):
    """Raised when the linking service cannot be reached"""

    pass


class LinkAuthError(LinkingError):
    """Raised when the linking service rejects the identity token or proof"""

    pass


class AlreadyLinkedError(LinkingError):
    """Raised when the pubkey is already linked to a different account"""

    pass


# Validation errors
class ValidationError(DomainException):
    """Raised when input validation fails"""

    pass


# State machine errors
class InvalidTransitionError(DomainException):
    """Raised when a step change is not part of the flow's step graph"""

    def __init__(self, flow: str, event: str, from_step: str, to_step: Optional[str] = None):
        target = f" to '{to_step}'" if to_step else ""
        super().__init__(
            message=f"{flow}: '{event}' is not allowed from '{from_step}'{target}",
            details={"flow": flow, "event": event, "from_step": from_step, "to_step": to_step},
        )


class UnhandledActionError(DomainException):
    """Raised when a reducer receives an action it does not know"""

    def __init__(self, flow: str, action: Any):
        super().__init__(
            message=f"{flow}: unhandled action {type(action).__name__}",
            details={"flow": flow, "action": type(action).__name__},
        )


class AuthFlowError(DomainException):
    """Raised by flow handlers when a step fails; message is safe to show users"""

    def __init__(self, message: str, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(message, details={"operation": operation})
