"""
Shared action types and helpers for the auth flow state machines.

Every flow reducer handles the async bookkeeping signals through
handle_base_actions() first and only then applies its own transitions.
Every async flow operation goes through create_async_action(), which is the
single place where loading flags and per-operation errors are recorded.
"""

import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, ClassVar, Dict, Generic, Optional, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field

from authflow.core.exceptions import DomainException

logger = structlog.get_logger(__name__)

T = TypeVar("T")
StateT = TypeVar("StateT", bound="FlowState")


class FlowState(BaseModel):
    """Fields every flow state carries."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    step: str
    is_loading: Dict[str, bool] = Field(default_factory=dict)
    errors: Dict[str, Optional[Exception]] = Field(default_factory=dict)
    can_go_back: bool = False


@dataclass
class ActionResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[Exception] = None


# Base actions
@dataclass(frozen=True)
class AsyncStart:
    operation: str


@dataclass(frozen=True)
class AsyncSuccess:
    operation: str
    data: Any = None


@dataclass(frozen=True)
class AsyncError:
    operation: str
    error: Exception


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class GoBack:
    event: ClassVar[str] = "go_back"


class OperationCancelledError(DomainException):
    """Recorded when an async operation is cancelled before it resolves"""

    def __init__(self, operation: str):
        super().__init__(f"Operation '{operation}' was cancelled", details={"operation": operation})


Dispatch = Callable[[Any], Any]


def handle_base_actions(state: StateT, action: Any) -> Optional[StateT]:
    """
    Apply the shared async bookkeeping signals.

    Returns the next state for AsyncStart/AsyncSuccess/AsyncError and None for
    everything else (Reset and GoBack included) so the flow reducer decides.
    """
    if isinstance(action, AsyncStart):
        return state.model_copy(
            update={
                "is_loading": {**state.is_loading, action.operation: True},
                "errors": {**state.errors, action.operation: None},
            }
        )

    if isinstance(action, AsyncSuccess):
        return state.model_copy(
            update={
                "is_loading": {**state.is_loading, action.operation: False},
                "errors": {**state.errors, action.operation: None},
            }
        )

    if isinstance(action, AsyncError):
        return state.model_copy(
            update={
                "is_loading": {**state.is_loading, action.operation: False},
                "errors": {**state.errors, action.operation: action.error},
            }
        )

    return None


def create_async_action(
    operation: str,
    fn: Callable[..., Awaitable[T]],
    dispatch: Dispatch,
) -> Callable[..., Awaitable[ActionResult[T]]]:
    """
    Wrap an async operation so it records loading/error state and never raises.

    Args:
        operation: Name used as the key in is_loading/errors
        fn: Coroutine function doing the work; may dispatch flow actions itself
        dispatch: Store dispatch

    Returns:
        Coroutine function with fn's parameters returning an ActionResult
    """

    @functools.wraps(fn)
    async def action(*args, **kwargs) -> ActionResult[T]:
        dispatch(AsyncStart(operation))
        try:
            data = await fn(*args, **kwargs)
        except asyncio.CancelledError:
            dispatch(AsyncError(operation, OperationCancelledError(operation)))
            raise
        except Exception as e:
            logger.warning(
                "flow_action_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            dispatch(AsyncError(operation, e))
            return ActionResult(success=False, error=e)

        dispatch(AsyncSuccess(operation, data))
        return ActionResult(success=True, data=data)

    return action


def is_operation_loading(state: FlowState, operation: str) -> bool:
    return state.is_loading.get(operation, False)


def get_operation_error(state: FlowState, operation: str) -> Optional[Exception]:
    return state.errors.get(operation)
