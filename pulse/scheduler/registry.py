"""OperationRegistry — ordered catalog of the operations a scheduler runs."""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from pulse.scheduler.models import Operation

logger = logging.getLogger(__name__)


class OperationRegistry:
    """Insertion-ordered mapping of operation name to coroutine function.

    Registration order is execution order. Re-registering a name replaces
    the callable but keeps the slot the name was first given. Once frozen
    (the owning scheduler has started) no further registration is accepted.
    """

    def __init__(self) -> None:
        self._operations: dict[str, Operation] = {}
        self._frozen = False

    def register(self, name: str, operation: Operation) -> None:
        """Add an operation. Raises TypeError for non-async callables."""
        if self._frozen:
            msg = f"Cannot register '{name}': registry is frozen"
            raise RuntimeError(msg)
        if not name:
            msg = "Operation name must not be empty"
            raise ValueError(msg)
        if not inspect.iscoroutinefunction(operation):
            msg = f"Operation '{name}' must be an async function"
            raise TypeError(msg)

        if name in self._operations:
            logger.debug("Replacing operation %s (position kept)", name)
        # dict assignment to an existing key keeps its insertion position
        self._operations[name] = operation

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Operation | None:
        return self._operations.get(name)

    def names(self) -> list[str]:
        """Return operation names in execution order."""
        return list(self._operations.keys())

    def __iter__(self) -> Iterator[tuple[str, Operation]]:
        return iter(list(self._operations.items()))

    def __len__(self) -> int:
        return len(self._operations)

    def __contains__(self, name: object) -> bool:
        return name in self._operations
