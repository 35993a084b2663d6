"""Reusable-allocation pools.

A pileup run visits millions of sites, and every site needs a fresh batch of
observation units, per-UMI lists and UMI strings. Instead of building those
per site, each aggregator owns one pool per element kind and hands the same
objects out again after :meth:`ObjectPool.reset`.

Example
-------
>>> pool = ObjectPool(list, clear=list.clear)
>>> a = pool.acquire(); a.append(1)
>>> pool.reset()              # ``a`` is cleared and available again
>>> pool.acquire() is a
True
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Optional, TypeVar, Union

from .errors import AllocationError, PileupError
from .models import ObservationUnit

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ObjectPool(Generic[T]):
    """Index-addressed arena of reusable elements.

    Parameters
    ----------
    factory:
        Zero-argument callable creating a new element.
    clear:
        Optional callback releasing an element's sub-resources. Called once
        per element per reuse cycle, on :meth:`reset`.
    max_size:
        Optional upper bound on the number of elements ever created.
    name:
        Used in log and error messages.
    """

    def __init__(
        self,
        factory: Callable[[], T],
        clear: Optional[Callable[[T], None]] = None,
        *,
        max_size: Optional[int] = None,
        name: str = "pool",
    ) -> None:
        self._factory = factory
        self._clear = clear
        self._max_size = max_size
        self.name = name
        self._items: List[T] = []
        self._n = 0  # next available slot
        self._destroyed = False

    def acquire(self) -> T:
        if self._destroyed:
            raise PileupError(f"{self.name}: acquire() on a destroyed pool")
        if self._n < len(self._items):
            item = self._items[self._n]
        else:
            if self._max_size is not None and len(self._items) >= self._max_size:
                raise AllocationError(
                    f"{self.name}: pool exhausted ({self._max_size} elements)",
                    pool=self.name,
                    size=len(self._items),
                )
            try:
                item = self._factory()
            except MemoryError as e:
                raise AllocationError(
                    f"{self.name}: could not allocate element #{len(self._items) + 1}",
                    pool=self.name,
                    size=len(self._items),
                ) from e
            self._items.append(item)
        self._n += 1
        return item

    def reset(self) -> None:
        if self._clear is not None:
            for i in range(self._n):
                self._clear(self._items[i])
        self._n = 0

    def destroy(self) -> None:
        self.reset()
        self._items = []
        self._destroyed = True

    @property
    def in_use(self) -> int:
        return self._n

    @property
    def capacity(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return self._n


class _StrBuf:
    __slots__ = ("value",)

    def __init__(self) -> None:
        self.value: Optional[str] = None


def _release_str(buf: _StrBuf) -> None:
    buf.value = None


class StringPool(ObjectPool[_StrBuf]):
    """Pool of owned UMI strings.

    Map keys built from :meth:`intern` are copies owned by the pool rather
    than references into read buffers, so they stay valid until the next
    :meth:`reset` no matter what happens to the reads.
    """

    def __init__(self, *, max_size: Optional[int] = None, name: str = "umi-strings") -> None:
        super().__init__(_StrBuf, _release_str, max_size=max_size, name=name)

    def intern(self, value: Union[str, bytes]) -> str:
        buf = self.acquire()
        if isinstance(value, bytes):
            value = value.decode("ascii", errors="replace")
        buf.value = str(value)
        return buf.value


@dataclass
class PileupPools:
    """The three pools one aggregator owns."""

    # units need no clear callback: callers overwrite base/qual after acquire()
    units: ObjectPool[ObservationUnit] = field(
        default_factory=lambda: ObjectPool(ObservationUnit, name="observation-units")
    )
    lists: ObjectPool[list] = field(
        default_factory=lambda: ObjectPool(list, list.clear, name="umi-lists")
    )
    strings: StringPool = field(default_factory=StringPool)

    def reset(self) -> None:
        self.units.reset()
        self.lists.reset()
        self.strings.reset()

    def destroy(self) -> None:
        logger.debug(
            "Destroying pools (units=%d, lists=%d, strings=%d)",
            self.units.capacity,
            self.lists.capacity,
            self.strings.capacity,
        )
        self.units.destroy()
        self.lists.destroy()
        self.strings.destroy()
