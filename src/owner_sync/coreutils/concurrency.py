import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def gather_bounded(
    func: Callable[[T], Awaitable[R]], items: Iterable[T], limit: int
) -> List[R]:
    """
    Run func over items concurrently, at most `limit` at a time

    Results come back in input order regardless of completion order. An
    exception from any call propagates once every call has finished, so
    callers that need per-item isolation must catch inside func.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")

    semaphore = asyncio.Semaphore(limit)

    async def run(item: T) -> R:
        async with semaphore:
            return await func(item)

    results = await asyncio.gather(
        *(run(item) for item in items), return_exceptions=True
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results
