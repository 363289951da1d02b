from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from quark.core.exceptions import FanOutError

T = TypeVar('T')
R = TypeVar('R')


@dataclass(frozen=True)
class TaskFailure:
    label: str
    error: Exception


@dataclass
class FanOutResult(Generic[R]):
    """
    Outcome of one fan-out phase.

    ``results`` keeps the order of the dispatched items (``None`` for failed
    items), ``failures`` keeps the order in which failures were observed.
    """

    results: list[R | None]
    failures: list[TaskFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def errors(self) -> list[Exception]:
        return [x.error for x in self.failures]

    @property
    def first_error(self) -> Exception | None:
        return self.failures[0].error if self.failures else None

    def values(self) -> list[R]:
        return [x for x in self.results if x is not None]

    def raise_first(self) -> None:
        if self.failures:
            raise self.failures[0].error

    def raise_all(self, message: str) -> None:
        if self.failures:
            raise FanOutError(message, self.errors)


async def fan_out(
    items: Iterable[T], func: Callable[[T], Awaitable[R]], label: Callable[[T], str] = str
) -> FanOutResult[R]:
    """Run ``func`` for every item concurrently and wait for all of them (join barrier)."""
    items = list(items)
    outcome: FanOutResult[R] = FanOutResult(results=[None] * len(items))

    async def run(index: int, item: T) -> None:
        try:
            outcome.results[index] = await func(item)
        except Exception as e:
            outcome.failures.append(TaskFailure(label(item), e))

    await asyncio.gather(*(run(i, item) for i, item in enumerate(items)))

    return outcome
