"""Non-reentrant guard for payout and mint operations.

A key is held for the duration of the operation; a nested or overlapping
call for the same (operation, actor) key is rejected instead of queued.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterator
from contextlib import contextmanager

from rundao.errors import StateConflictError


class NonReentrantGuard:
    def __init__(self) -> None:
        self._active: set[tuple[str, Hashable]] = set()

    def is_held(self, operation: str, actor: Hashable) -> bool:
        return (operation, actor) in self._active

    @contextmanager
    def hold(self, operation: str, actor: Hashable) -> Iterator[None]:
        key = (operation, actor)
        if key in self._active:
            raise StateConflictError(f"{operation} is already in progress for {actor}")
        self._active.add(key)
        try:
            yield
        finally:
            self._active.discard(key)


guard = NonReentrantGuard()
