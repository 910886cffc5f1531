import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Hashable, Iterable, List, Mapping, Optional, TypeVar, Union

from lptrace.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")
TaskFactory = Callable[[], Awaitable[T]]


@dataclass
class TaskOutcome(Generic[T]):
    key: Hashable
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TaskRunner:
    """
    Runs coroutine factories with at most `limit` of them in flight.

    Admission is FIFO (asyncio.Semaphore wakes waiters in order). A failing
    task is recorded in its outcome and never cancels its siblings. Outcomes
    are returned in completion order; use `key` to match them back.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ConfigurationError(f"Concurrency limit must be at least 1, got {limit}")
        self.limit = limit
        self.running = 0
        self.peak_running = 0

    async def run(
        self,
        tasks: Union[Mapping[Hashable, TaskFactory], Iterable[TaskFactory]],
        on_complete: Optional[Callable[[TaskOutcome], Any]] = None,
    ) -> List[TaskOutcome]:
        if isinstance(tasks, Mapping):
            items = list(tasks.items())
        else:
            items = list(enumerate(tasks))

        semaphore = asyncio.Semaphore(self.limit)
        outcomes: List[TaskOutcome] = []

        async def guarded(key: Hashable, factory: TaskFactory) -> None:
            async with semaphore:
                self.running += 1
                self.peak_running = max(self.peak_running, self.running)
                try:
                    outcome = TaskOutcome(key=key, value=await factory())
                except Exception as e:
                    logger.warning(f"Task {key!r} failed: {e}")
                    outcome = TaskOutcome(key=key, error=e)
                finally:
                    self.running -= 1
            outcomes.append(outcome)
            if on_complete:
                on_complete(outcome)

        await asyncio.gather(*(guarded(key, factory) for key, factory in items))
        return outcomes
