"""Concurrency helpers for provenance tagging and contained fan-out."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from loguru import logger

from discom_dashboard.core.errors import NetworkFailure

T = TypeVar("T")


class Generation:
    """Monotonic counter used to tag async work with the input that spawned it.

    A component advances the generation whenever its input changes and keeps
    the returned token alongside the task. On completion the task compares its
    token with :attr:`current`; a mismatch means a newer input superseded it
    and the result must be dropped.
    """

    def __init__(self) -> None:
        self._value = 0

    @property
    def current(self) -> int:
        return self._value

    def advance(self) -> int:
        self._value += 1
        return self._value

    def is_current(self, token: int) -> bool:
        return token == self._value


@dataclass(frozen=True)
class Settled(Generic[T]):
    """Outcome of one contained task: either a value or a failure."""

    value: Optional[T] = None
    error: Optional[NetworkFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def settle(
    operation: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    label: str = "task",
) -> Settled[T]:
    """Run ``operation`` with a timeout and never raise.

    Timeouts and upstream failures become a ``Settled`` carrying a
    :class:`NetworkFailure`; unexpected exceptions are logged with their
    traceback and reported the same way so siblings are never affected.
    """

    try:
        value = await asyncio.wait_for(operation(), timeout=timeout)
        return Settled(value=value)
    except asyncio.TimeoutError:
        logger.bind(task=label, timeout=timeout).warning("task_timed_out")
        return Settled(error=NetworkFailure(f"Request timed out after {timeout:g} seconds"))
    except NetworkFailure as exc:
        logger.bind(task=label, error=str(exc), status=exc.status_code).warning("task_failed")
        return Settled(error=exc)
    except Exception as exc:  # noqa: BLE001 - contained per task
        logger.bind(task=label).exception("task_crashed")
        return Settled(error=NetworkFailure(str(exc) or exc.__class__.__name__))


async def settle_all(
    operations: dict[str, Callable[[], Awaitable[Any]]],
    *,
    timeout: float,
) -> dict[str, Settled[Any]]:
    """Settle every operation concurrently; keys keep their insertion order."""

    names = list(operations)
    outcomes = await asyncio.gather(
        *(settle(operations[name], timeout=timeout, label=name) for name in names)
    )
    return dict(zip(names, outcomes))
