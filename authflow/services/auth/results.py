"""Turning failed ActionResults into errors for UI handlers."""

from authflow.core.exceptions import AuthFlowError, DomainException
from authflow.state_machines.actions import ActionResult
from authflow.utils.auth_validation import format_auth_error


def raise_for_result(result: ActionResult, operation: str, fallback: str) -> ActionResult:
    """
    Return result unchanged when it succeeded, otherwise raise AuthFlowError.

    Domain errors already carry a user-facing message; anything else goes
    through format_auth_error, falling back to `fallback`.
    """
    if result.success:
        return result

    error = result.error
    if isinstance(error, DomainException):
        message = error.message
    elif error is not None:
        message = format_auth_error(error)
    else:
        message = fallback
    raise AuthFlowError(message or fallback, operation, cause=error)
