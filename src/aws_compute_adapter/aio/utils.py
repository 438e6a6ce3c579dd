#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from asyncio import iscoroutine, sleep
from collections.abc import AsyncIterable, AsyncIterator, Callable, Hashable, Iterable
from typing import Any


async def async_list[E](lst: Iterable[E]) -> AsyncIterable[E]:
    """Turn an Iterable into an AsyncIterable."""
    for x in lst:
        await sleep(0)
        yield x


async def close(stream: Any) -> None:
    """Close a stream, awaiting it if it's async."""
    closer = getattr(stream, "aclose", None) or getattr(stream, "close", None)
    if closer is not None:
        if iscoroutine(result := closer()):
            await result


async def merge_unique[E](
    sources: Iterable[Callable[[], AsyncIterable[E]]],
    key: Callable[[E], Hashable],
) -> AsyncIterator[E]:
    """Chain several async sources, yielding each key at most once.

    Sources are opened lazily and consumed in order, so earlier sources win when the
    same key appears twice. Closing the returned generator closes whichever source is
    currently open.
    """
    seen: set[Hashable] = set()
    for source in sources:
        iterator = aiter(source())
        try:
            async for element in iterator:
                identity = key(element)
                if identity in seen:
                    continue
                seen.add(identity)
                yield element
        finally:
            await close(iterator)
