import asyncio
import logging
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CoroFactory = Callable[[], Awaitable[T]]


class FanOut(Generic[T]):
    """Runs calls derived from one request with bounded parallelism.

    Results are joined in submission order. The first failure cancels every
    sibling and is re-raised, so callers see all results or none. Producers
    call ``raise_if_failed`` between submissions to stop feeding work once
    the outcome is already decided.
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._semaphore = asyncio.Semaphore(limit)
        self._tasks: list[asyncio.Task[T]] = []
        self._failure: BaseException | None = None

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def failure(self) -> BaseException | None:
        return self._failure

    def _record_failure(self, task: asyncio.Future) -> None:
        if task.cancelled() or self._failure is not None:
            return
        self._failure = task.exception()

    def raise_if_failed(self) -> None:
        if self._failure is not None:
            raise self._failure

    def submit(self, coro_factory: CoroFactory[T]) -> None:
        async def wrapper() -> T:
            async with self._semaphore:
                return await coro_factory()

        task = asyncio.ensure_future(wrapper())
        task.add_done_callback(self._record_failure)
        self._tasks.append(task)

    async def join(self) -> list[T]:
        try:
            return list(await asyncio.gather(*self._tasks))
        except BaseException:
            await self.cancel()
            raise

    async def cancel(self) -> None:
        pending = [task for task in self._tasks if not task.done()]
        if pending:
            logger.debug("Cancelling %d pending fan-out tasks", len(pending))
        for task in pending:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
