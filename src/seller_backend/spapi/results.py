"""Tagged call results and the settle-all join used for fan-out."""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Mapping, TypeVar, Union

import anyio

logger = logging.getLogger("spapi.results")

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """A call that completed with `value`."""

    value: T


@dataclass(frozen=True)
class Err:
    """A call that raised `error`."""

    error: Exception

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__


Result = Union[Ok[T], Err]


def unwrap(result: "Result[T]") -> T:
    """Return the value of an Ok, or raise the error carried by an Err."""
    if isinstance(result, Err):
        raise result.error
    return result.value


async def settle(call: Callable[[], Awaitable[T]]) -> "Result[T]":
    """Await `call()` and capture its outcome instead of raising."""
    try:
        return Ok(await call())
    except Exception as e:
        return Err(e)


async def settle_all(calls: Mapping[str, Callable[[], Awaitable[Any]]]) -> dict[str, "Result[Any]"]:
    """
    Run every call concurrently and wait for all of them to finish.

    A failing call never cancels its siblings; its exception is returned as
    an Err under the same key. Cancellation of the caller still propagates.

    Args:
        calls: Mapping of branch name to a zero-argument coroutine function.

    Returns:
        dict[str, Result]: One result per branch name.
    """
    results: dict[str, Result[Any]] = {}

    async def _branch(name: str, call: Callable[[], Awaitable[Any]]) -> None:
        outcome = await settle(call)
        if isinstance(outcome, Err):
            logger.warning("Branch %s failed: %s", name, outcome.message)
        results[name] = outcome

    async with anyio.create_task_group() as tg:
        for name, call in calls.items():
            tg.start_soon(_branch, name, call)

    return results
