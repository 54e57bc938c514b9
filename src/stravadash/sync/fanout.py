"""
Bounded concurrent fan-out for per-item API calls.

At most `limit` requests are in flight at once. Once any result halts the
batch (the quota is exhausted, or Strava rejected the access token), the
shared stop event is set: requests already in flight finish normally, but
items that have not started yet are returned with a result of None
(skipped) instead of calling the API.

Results come back as (item, result) pairs in input order after all requests
have resolved. Callers apply them to shared state afterwards, in one pass.
"""
import asyncio
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple, TypeVar

from stravadash.strava.gateway import ApiResult, Fault

T = TypeVar("T")


def halts_batch(result: ApiResult) -> bool:
    """True when no further request of the batch can succeed this cycle."""
    if isinstance(result, Fault) and result.is_invalid_token:
        return True
    return result.quota_exhausted


async def fan_out(
    items: Iterable[T],
    call: Callable[[T], Awaitable[ApiResult]],
    *,
    limit: int,
    stop: Optional[asyncio.Event] = None,
    should_stop: Callable[[ApiResult], bool] = halts_batch,
) -> List[Tuple[T, Optional[ApiResult]]]:
    stop = stop or asyncio.Event()
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(item: T) -> Tuple[T, Optional[ApiResult]]:
        async with semaphore:
            if stop.is_set():
                return item, None
            result = await call(item)
            if should_stop(result):
                stop.set()
            return item, result

    return list(await asyncio.gather(*(run(item) for item in items)))
