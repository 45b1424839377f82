"""Identifier allocation strategies.

Allocators only talk to a store through `id_in_use` and `get_max_id`; they
keep no counters of their own, so a restarted process allocates correctly
from whatever the store already holds. The store's create path stays the
single enforcement point for uniqueness.
"""
from __future__ import annotations
import random
from dataclasses import dataclass
from typing import Protocol

from .errors import ErrorCode, Result, fail, ok
from .logging_util import warn

MAX_ID = 2**63 - 1  # SQLite INTEGER upper bound
MAX_ATTEMPTS = 1000


class IdSource(Protocol):  # pragma: no cover - structural typing helper
    def id_in_use(self, row_id: int) -> bool: ...
    def get_max_id(self) -> Result[int]: ...


class IdAllocator(Protocol):
    def allocate(self, store: IdSource) -> Result[int]:
        """Return an id not currently used by `store`."""
        ...


def _next_sequential(store: IdSource) -> Result[int]:
    max_id = store.get_max_id()
    if not max_id.success:
        return max_id
    if max_id.value >= MAX_ID:
        return fail(ErrorCode.CANNOT_GET_UNUSED_ID,
                    f"Cannot get an unused id: max id {max_id.value} is at the upper bound",
                    max_id=max_id.value)
    return ok(max_id.value + 1)


class SequentialIdAllocator:
    def allocate(self, store: IdSource) -> Result[int]:
        return _next_sequential(store)


class RandomIdAllocator:
    """Uniform random ids in the closed range [min_id, max_id].

    The range should be much larger than the expected row count; once no free
    id is found in MAX_ATTEMPTS draws the allocator hands out max id + 1 (which
    may lie outside the range) and reports a warning.
    """

    def __init__(self, min_id: int = 1, max_id: int = MAX_ID, rng: random.Random | None = None):
        self.set_range(min_id, max_id)
        self._rng = rng or random.SystemRandom()

    def set_range(self, min_id: int, max_id: int) -> None:
        if min_id < 1 or max_id > MAX_ID or min_id > max_id:
            raise ValueError(f"Invalid id range [{min_id}, {max_id}]")
        self.min_id = min_id
        self.max_id = max_id

    def allocate(self, store: IdSource) -> Result[int]:
        for _ in range(MAX_ATTEMPTS):
            try:
                candidate = self._rng.randint(self.min_id, self.max_id)
            except (OSError, NotImplementedError) as e:
                return fail(ErrorCode.RANDOM_GENERATOR_ERROR,
                            f"Random number generator failed: {e}")
            if not store.id_in_use(candidate):
                return ok(candidate)
        warning = (f"No unused id found after {MAX_ATTEMPTS} random attempts "
                   f"in [{self.min_id}, {self.max_id}], using max id + 1")
        warn("id_allocation_exhausted", min_id=self.min_id, max_id=self.max_id, attempts=MAX_ATTEMPTS)
        return _next_sequential(store).with_warnings(warning)


@dataclass
class AllocationPolicy:
    """Primary allocator plus what to do when it fails.

    With `fallback_to_sequential` a failed primary is replaced by sequential
    allocation and a warning; otherwise the failure is returned to the caller.
    """
    allocator: IdAllocator
    fallback_to_sequential: bool = False

    def allocate(self, store: IdSource) -> Result[int]:
        result = self.allocator.allocate(store)
        if result.success or not self.fallback_to_sequential:
            return result
        warning = (f"Id allocator error: {result.error.message} code {int(result.error.code)}, "
                   f"defaulting to sequential ids")
        warn("id_allocator_fallback", code=int(result.error.code), error=result.error.message)
        return _next_sequential(store).with_warnings(*result.warnings, warning)
